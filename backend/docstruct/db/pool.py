from __future__ import annotations

import logging

import asyncpg

from docstruct.core.config import settings


from typing import Optional
_pool: Optional[asyncpg.Pool] = None

logger = logging.getLogger(__name__)


async def init_pool() -> None:
    global _pool
    if _pool is None:
        logger.info("Creating database pool...")
        _pool = await asyncpg.create_pool(
            host=settings.postgres_host,
            port=settings.postgres_port,
            database=settings.postgres_db,
            user=settings.postgres_user,
            password=settings.postgres_password,
            min_size=settings.postgres_pool_min_size,
            max_size=settings.postgres_pool_max_size,
        )
        logger.info("Database pool created: %s", _pool)
    else:
        logger.info("Database pool already exists: %s", _pool)


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("Database pool not initialized. Call init_pool() first.")
    return _pool
