"""
SecretVault - secure persistence of the wallet seed phrase.

The seed is encrypted with AES-256-GCM. The vault key lives in its own
owner-only file next to the vault, mirroring a device keychain entry.
Only one seed is stored at a time; storing a new one supersedes the old.
"""

import asyncio
import base64
import json
import os
import secrets
from pathlib import Path
from typing import Callable, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from loguru import logger
from mnemonic import Mnemonic

AES_KEY_SIZE = 32
AES_NONCE_SIZE = 12
SECURE_FILE_MODE = 0o600
VAULT_VERSION = 1
# Associated data binding the ciphertext to its purpose
SEED_AAD = b"cashuwallet:seed"


def set_secure_permissions(filepath: Path) -> None:
    """Restrict a file to owner read/write. No-op on non-POSIX systems."""
    if os.name == "posix":
        try:
            os.chmod(filepath, SECURE_FILE_MODE)
        except OSError as e:
            logger.warning(f"Could not restrict permissions on {filepath}: {e}")


def _write_atomic(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{secrets.token_hex(4)}.tmp")
    try:
        with open(tmp, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        set_secure_permissions(tmp)
        os.replace(tmp, path)
    finally:
        if tmp.exists():
            tmp.unlink()


class SecretVault:
    def __init__(
        self,
        vault_path: Path,
        key_path: Path,
        generator: Optional[Callable[[], str]] = None,
    ):
        self.vault_path = Path(vault_path)
        self.key_path = Path(key_path)
        self._generator = generator
        self._mnemo = Mnemonic("english")

    def generate_seed(self) -> str:
        """Produce a fresh seed phrase. Nothing is persisted."""
        if self._generator is not None:
            return self._generator()
        return self._mnemo.generate(strength=128)

    def validate_mnemonic(self, phrase: str) -> bool:
        words = phrase.split()
        if len(words) not in (12, 15, 18, 21, 24):
            return False
        try:
            return self._mnemo.check(" ".join(words))
        except (ValueError, LookupError):
            return False

    async def store_seed(self, mnemonic: str) -> bool:
        """Persist the seed. Returns False on failure, never raises."""
        try:
            await asyncio.to_thread(self._store, mnemonic)
        except Exception as e:
            logger.error(f"Failed to store seed phrase: {type(e).__name__}: {str(e)}")
            return False
        logger.info("Seed phrase stored in vault")
        return True

    async def retrieve_seed(self) -> Optional[str]:
        """Return the stored seed, or None when absent or unreadable."""
        try:
            return await asyncio.to_thread(self._retrieve)
        except (OSError, ValueError, KeyError, InvalidTag) as e:
            logger.error(f"Failed to retrieve seed phrase: {type(e).__name__}: {str(e)}")
            return None

    async def has_seed(self) -> bool:
        return self.vault_path.exists()

    async def remove_seed(self) -> bool:
        try:
            await asyncio.to_thread(self._remove)
        except OSError as e:
            logger.error(f"Failed to remove seed phrase: {e}")
            return False
        return True

    def _load_key(self, create: bool) -> Optional[bytes]:
        if self.key_path.exists():
            key = self.key_path.read_bytes()
            if len(key) != AES_KEY_SIZE:
                raise ValueError("vault key has an unexpected length")
            return key
        if not create:
            return None
        key = AESGCM.generate_key(bit_length=AES_KEY_SIZE * 8)
        _write_atomic(self.key_path, key)
        return key

    def _store(self, mnemonic: str) -> None:
        key = self._load_key(create=True)
        nonce = secrets.token_bytes(AES_NONCE_SIZE)
        ciphertext = AESGCM(key).encrypt(nonce, mnemonic.encode("utf-8"), SEED_AAD)
        payload = {
            "version": VAULT_VERSION,
            "nonce": base64.b64encode(nonce).decode("ascii"),
            "ciphertext": base64.b64encode(ciphertext).decode("ascii"),
        }
        _write_atomic(self.vault_path, json.dumps(payload).encode("utf-8"))

    def _retrieve(self) -> Optional[str]:
        if not self.vault_path.exists():
            return None
        key = self._load_key(create=False)
        if key is None:
            raise ValueError("vault exists but its key is missing")
        payload = json.loads(self.vault_path.read_text(encoding="utf-8"))
        nonce = base64.b64decode(payload["nonce"])
        ciphertext = base64.b64decode(payload["ciphertext"])
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, SEED_AAD)
        return plaintext.decode("utf-8")

    def _remove(self) -> None:
        if self.vault_path.exists():
            self.vault_path.unlink()
