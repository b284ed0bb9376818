import hashlib
import re
import sys
from typing import Optional, Union

from loguru import logger


def format_sats(amount: Union[int, str]) -> str:
    """Format an amount with the correct unit: 0 sat, 1 sat, 2 sats."""
    unit = "sat" if int(amount) in (0, 1) else "sats"
    return f"{amount} {unit}"


def get_error_message(error: BaseException) -> str:
    """Extract a human readable message from native and Python errors."""
    # Native binding errors carry their text in inner.msg
    inner = getattr(error, "inner", None)
    msg = getattr(inner, "msg", None)
    if msg:
        return str(msg)
    message = getattr(error, "message", None)
    if message:
        return str(message)
    return str(error) or type(error).__name__


def mint_db_filename(mint_url: str, with_hash: bool = False) -> str:
    """
    Derive a filesystem safe, deterministic database filename for a mint.

    Non-alphanumeric characters are replaced by underscores, runs of
    underscores are collapsed and leading/trailing underscores trimmed.
    With ``with_hash`` a short digest of the raw URL is appended so that
    distinct URLs never share a file.
    """
    safe = re.sub(r"[^a-zA-Z0-9]", "_", mint_url)
    safe = re.sub(r"_+", "_", safe).strip("_")
    if with_hash:
        digest = hashlib.sha256(mint_url.encode("utf-8")).hexdigest()[:12]
        safe = f"{safe}_{digest}"
    return f"cdk_wallet_{safe}.db"


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Install the loguru sinks used by the wallet service."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="{time:HH:mm:ss} [{level}] {name}: {message}",
    )
    if log_file:
        logger.add(
            log_file,
            level=level,
            rotation="1 day",
            retention="7 days",
            encoding="utf-8",
        )
