from typing import Awaitable, Callable, Dict, List

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from .backend import WalletHandle
from .crud import get_cached_balances, save_cached_balances
from .db import Database
from .errors import StorageError, WalletError, translate_error
from .events import Notifier
from .models import BalanceChanged, BalanceRecord
from .utils import format_sats

HandleProvider = Callable[[str], Awaitable[WalletHandle]]


class BalanceCache:
    """
    Persisted per-mint balance snapshot.

    Amounts are authoritative only as of their last successful sync. Two
    concurrent syncs of the same mint may race; the last writer wins.
    """

    def __init__(self, db: Database, notifier: Notifier, wallet_for: HandleProvider):
        self.db = db
        self.notifier = notifier
        self._wallet_for = wallet_for
        self._records: Dict[str, int] = {}

    async def load(self) -> List[BalanceRecord]:
        records = await get_cached_balances(self.db)
        self._records = {record.mint_url: record.amount for record in records}
        return records

    def records(self) -> List[BalanceRecord]:
        return self._to_records(self._records)

    @staticmethod
    def _to_records(values: Dict[str, int]) -> List[BalanceRecord]:
        return [BalanceRecord(mint_url=url, amount=amount) for url, amount in values.items()]

    def get_cached(self, mint_url: str) -> int:
        return self._records.get(mint_url, 0)

    def total(self) -> int:
        return sum(self._records.values())

    async def _save(self, values: Dict[str, int]) -> None:
        # In-memory records only change once the write went through
        try:
            await save_cached_balances(self.db, self._to_records(values))
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to save cached balances: {e}") from e
        self._records = values

    async def update(self, mint_url: str, amount: int) -> None:
        """Replace or append the record for ``mint_url`` and notify subscribers."""
        amount = max(0, int(amount))
        await self._save({**self._records, mint_url: amount})
        logger.debug(f"Cached balance for {mint_url}: {format_sats(amount)}")
        self.notifier.emit(BalanceChanged(mint_url=mint_url, amount=amount))

    async def adjust(self, mint_url: str, delta: int) -> int:
        amount = max(0, self.get_cached(mint_url) + delta)
        await self.update(mint_url, amount)
        return amount

    async def sync(self, mint_url: str) -> int:
        """
        Query the live wallet balance and cache it.

        On failure the cached value is left untouched and the error is
        raised to the caller.
        """
        try:
            wallet = await self._wallet_for(mint_url)
            amount = await wallet.balance()
        except WalletError:
            raise
        except Exception as e:
            raise translate_error(e, "balance sync") from e
        await self.update(mint_url, amount)
        logger.info(f"Synced balance for {mint_url}: {format_sats(amount)}")
        return amount

    async def clear(self) -> None:
        await self._save({})
