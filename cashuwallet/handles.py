import asyncio
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from loguru import logger

from .backend import WalletBackend, WalletHandle
from .errors import StorageError
from .utils import get_error_message, mint_db_filename

# (name, store factory) pairs tried in order; the factory receives the db path
StorageStrategy = Tuple[str, Callable[[Path], Any]]


class WalletHandleCache:
    """
    Lazily constructs and caches one native wallet handle per mint URL.

    Construction is attempted with each storage strategy in turn: the
    per-mint database file first, then the backend's in-memory store. The
    first strategy that yields a wallet wins.
    """

    def __init__(
        self,
        backend: WalletBackend,
        wallets_dir: Path,
        currency_unit: str = "sat",
        hash_db_paths: bool = False,
        strategies: Optional[List[StorageStrategy]] = None,
    ):
        self.backend = backend
        self.wallets_dir = Path(wallets_dir)
        self.currency_unit = currency_unit
        self.hash_db_paths = hash_db_paths
        self.strategies: List[StorageStrategy] = strategies or [
            ("storage", lambda path: backend.open_store(str(path))),
            ("memory", lambda path: backend.memory_store()),
        ]
        self._handles: Dict[str, WalletHandle] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def db_path(self, mint_url: str) -> Path:
        return self.wallets_dir / mint_db_filename(mint_url, with_hash=self.hash_db_paths)

    def has_database(self, mint_url: str) -> bool:
        return self.db_path(mint_url).exists()

    def get(self, mint_url: str) -> Optional[WalletHandle]:
        return self._handles.get(mint_url)

    def __contains__(self, mint_url: str) -> bool:
        return mint_url in self._handles

    async def get_or_create(
        self, mint_url: str, seed: str, restore: bool = False
    ) -> WalletHandle:
        """
        Return the cached handle for ``mint_url`` or build a new one.

        Args:
            mint_url: The mint the handle is bound to
            seed: The wallet mnemonic shared by every mint
            restore: Construct through the backend's restore path, which
                rescans the mint for proofs belonging to the seed

        Raises:
            StorageError: when every storage strategy failed
        """
        handle = self._handles.get(mint_url)
        if handle is not None:
            return handle

        lock = self._locks.setdefault(mint_url, asyncio.Lock())
        async with lock:
            handle = self._handles.get(mint_url)
            if handle is not None:
                return handle
            handle = await asyncio.to_thread(self._construct, mint_url, seed, restore)
            self._handles[mint_url] = handle
            logger.info(f"Wallet handle ready for {mint_url}")
            return handle

    def _construct(self, mint_url: str, seed: str, restore: bool) -> WalletHandle:
        path = self.db_path(mint_url)
        path.parent.mkdir(parents=True, exist_ok=True)
        build = self.backend.restore_wallet if restore else self.backend.create_wallet

        failures = []
        for name, make_store in self.strategies:
            try:
                store = make_store(path)
                if store is None:
                    raise StorageError(f"{name} store is undefined")
                native = build(mint_url, self.currency_unit, store, seed)
            except Exception as e:
                message = get_error_message(e)
                logger.warning(f"Wallet construction with {name} store failed for {mint_url}: {message}")
                failures.append(f"{name}: {message}")
                continue
            return WalletHandle(native, mint_url, str(path) if name == "storage" else None)

        raise StorageError(
            f"Wallet storage failed for {mint_url}. " + ". ".join(failures)
        )

    def invalidate(self, mint_url: str) -> None:
        if self._handles.pop(mint_url, None) is not None:
            logger.debug(f"Dropped wallet handle for {mint_url}")

    def invalidate_all(self) -> None:
        self._handles.clear()
        logger.debug("Dropped all wallet handles")
