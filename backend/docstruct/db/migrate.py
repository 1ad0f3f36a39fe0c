from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from docstruct.db.database import connect


MIGRATIONS_DIR = Path(__file__).parent / "migrations"

logger = logging.getLogger(__name__)


async def apply_migrations() -> None:
    conn = await connect()
    try:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                id SERIAL PRIMARY KEY,
                filename TEXT UNIQUE NOT NULL,
                applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
            """
        )

        applied = {
            r[0]
            for r in await conn.fetch("SELECT filename FROM schema_migrations ORDER BY id")
        }

        for sql_file in iter_migration_files(MIGRATIONS_DIR):
            if sql_file.name in applied:
                continue
            logger.info("[migrate] applying %s", sql_file.name)
            sql = sql_file.read_text(encoding="utf-8")
            async with conn.transaction():
                await conn.execute(sql)
                await conn.execute(
                    "INSERT INTO schema_migrations (filename) VALUES ($1)", sql_file.name
                )
    finally:
        await conn.close()


def iter_migration_files(path: Path) -> Iterable[Path]:
    files = sorted(path.glob("*.sql"), key=lambda p: p.name)
    return files
