from pathlib import Path
from typing import Any, List, Optional

from loguru import logger
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine


class Database:
    """Minimal async database wrapper with named-parameter queries."""

    def __init__(self, url: str):
        self.url = url
        parsed = make_url(url)
        if parsed.get_backend_name() == "sqlite" and parsed.database:
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
        self.engine: AsyncEngine = create_async_engine(url)
        logger.debug(f"Database engine created for {parsed.render_as_string(hide_password=True)}")

    async def execute(self, query: str, values: Optional[dict] = None) -> None:
        async with self.engine.begin() as conn:
            await conn.execute(text(query), values or {})

    async def fetchone(self, query: str, values: Optional[dict] = None) -> Optional[dict]:
        async with self.engine.connect() as conn:
            result = await conn.execute(text(query), values or {})
            row = result.mappings().first()
            return dict(row) if row else None

    async def fetchall(self, query: str, values: Optional[dict] = None) -> List[dict]:
        async with self.engine.connect() as conn:
            result = await conn.execute(text(query), values or {})
            return [dict(row) for row in result.mappings().all()]

    async def close(self) -> None:
        await self.engine.dispose()


def row_value(row: Optional[dict], key: str, default: Any = None) -> Any:
    return row[key] if row else default
