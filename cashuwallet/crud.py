import json
from typing import List, Optional

from loguru import logger

from .db import Database, row_value
from .models import BalanceRecord

MINT_URLS_KEY = "@cashu_mint_urls"
ACTIVE_MINT_KEY = "@cashu_active_mint"
CACHED_BALANCES_KEY = "@cashu_cached_balances"


async def get_item(db: Database, key: str) -> Optional[str]:
    row = await db.fetchone("SELECT value FROM storage WHERE key = :key", {"key": key})
    return row_value(row, "value")


async def set_item(db: Database, key: str, value: str) -> None:
    await db.execute(
        """
        INSERT INTO storage (key, value) VALUES (:key, :value)
        ON CONFLICT (key) DO UPDATE SET value = :value
        """,
        {"key": key, "value": value},
    )


async def remove_item(db: Database, key: str) -> None:
    await db.execute("DELETE FROM storage WHERE key = :key", {"key": key})


async def get_mint_urls(db: Database) -> List[str]:
    """Load the ordered mint URL list. A corrupt entry reads as empty."""
    raw = await get_item(db, MINT_URLS_KEY)
    if not raw:
        return []
    try:
        urls = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.error(f"Stored mint URL list is not valid JSON: {e}")
        return []
    return [url for url in urls if isinstance(url, str)]


async def save_mint_urls(db: Database, urls: List[str]) -> None:
    await set_item(db, MINT_URLS_KEY, json.dumps(urls))


async def get_active_mint_url(db: Database) -> Optional[str]:
    return await get_item(db, ACTIVE_MINT_KEY)


async def save_active_mint_url(db: Database, url: Optional[str]) -> None:
    if url:
        await set_item(db, ACTIVE_MINT_KEY, url)
    else:
        await remove_item(db, ACTIVE_MINT_KEY)


async def get_cached_balances(db: Database) -> List[BalanceRecord]:
    raw = await get_item(db, CACHED_BALANCES_KEY)
    if not raw:
        return []
    try:
        return [BalanceRecord.deserialize(item) for item in json.loads(raw)]
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        logger.error(f"Failed to load cached balances: {type(e).__name__}: {str(e)}")
        return []


async def save_cached_balances(db: Database, records: List[BalanceRecord]) -> None:
    await set_item(
        db, CACHED_BALANCES_KEY, json.dumps([record.serialize() for record in records])
    )
