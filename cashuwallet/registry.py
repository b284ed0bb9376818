from typing import List
from urllib.parse import urlparse

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from .crud import (
    get_active_mint_url,
    get_mint_urls,
    save_active_mint_url,
    save_mint_urls,
)
from .db import Database
from .errors import CannotRemoveActiveMint, StorageError, ValidationError
from .models import Mint


def validate_mint_url(url: str) -> str:
    url = (url or "").strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(f"Invalid mint URL: {url!r} (expected http or https)")
    return url


class MintRegistry:
    """Persisted ordered set of mint URLs plus the active one."""

    def __init__(self, db: Database):
        self.db = db
        self._urls: List[str] = []
        self._active: str = ""

    @property
    def active_url(self) -> str:
        return self._active

    async def load(self) -> None:
        urls = await get_mint_urls(self.db)
        # Drop duplicates that may have been written by older versions
        self._urls = list(dict.fromkeys(urls))
        active = await get_active_mint_url(self.db)
        if active in self._urls:
            self._active = active
        else:
            self._active = self._urls[0] if self._urls else ""
        logger.info(f"Loaded {len(self._urls)} mint(s), active: {self._active or 'none'}")

    async def _persist(self) -> None:
        try:
            await save_mint_urls(self.db, self._urls)
            await save_active_mint_url(self.db, self._active)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to save mint URLs: {e}") from e

    def list(self) -> List[str]:
        return list(self._urls)

    def mints(self) -> List[Mint]:
        return [Mint(url=url, active=url == self._active) for url in self._urls]

    async def add(self, url: str) -> bool:
        """
        Add a mint URL. Idempotent; the first mint added becomes active.

        Returns:
            True when the URL was newly inserted
        """
        url = validate_mint_url(url)
        if url in self._urls:
            return False
        previous = (list(self._urls), self._active)
        self._urls.append(url)
        if len(self._urls) == 1:
            self._active = url
        try:
            await self._persist()
        except StorageError:
            self._urls, self._active = previous
            raise
        logger.info(f"Added mint {url}")
        return True

    async def set_active(self, url: str) -> bool:
        if url not in self._urls:
            return False
        if url == self._active:
            return True
        previous = self._active
        self._active = url
        try:
            await self._persist()
        except StorageError:
            self._active = previous
            raise
        logger.info(f"Active mint set to {url}")
        return True

    async def remove(self, url: str) -> None:
        if url == self._active:
            raise CannotRemoveActiveMint(url)
        if url not in self._urls:
            return
        previous = list(self._urls)
        self._urls.remove(url)
        try:
            await self._persist()
        except StorageError:
            self._urls = previous
            raise
        logger.info(f"Removed mint {url}")

    async def clear(self) -> None:
        self._urls = []
        self._active = ""
        await self._persist()
        logger.info("Cleared all mints")
