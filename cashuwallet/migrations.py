# Migration file for the cashuwallet local state

from loguru import logger

from .db import Database, row_value


async def m001_initial(db: Database):
    """
    Create the key/value table holding the mint list, active mint
    and cached balances
    """
    await db.execute(
        """
        CREATE TABLE IF NOT EXISTS storage (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );
        """
    )


MIGRATIONS = [m001_initial]


async def run_migrations(db: Database) -> int:
    """Apply every migration not yet recorded in dbversions. Returns the version."""
    await db.execute(
        """
        CREATE TABLE IF NOT EXISTS dbversions (
            db TEXT PRIMARY KEY,
            version INTEGER NOT NULL
        );
        """
    )
    row = await db.fetchone(
        "SELECT version FROM dbversions WHERE db = :db", {"db": "cashuwallet"}
    )
    current = row_value(row, "version", 0)

    for version, migration in enumerate(MIGRATIONS, start=1):
        if version <= current:
            continue
        logger.info(f"Running migration {migration.__name__}")
        await migration(db)
        await db.execute(
            """
            INSERT INTO dbversions (db, version) VALUES (:db, :version)
            ON CONFLICT (db) DO UPDATE SET version = :version
            """,
            {"db": "cashuwallet", "version": version},
        )
        current = version

    return current
