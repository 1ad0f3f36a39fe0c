import asyncpg

from docstruct.core.config import settings


async def connect() -> asyncpg.Connection:
    return await asyncpg.connect(
        host=settings.postgres_host,
        port=settings.postgres_port,
        database=settings.postgres_db,
        user=settings.postgres_user,
        password=settings.postgres_password,
    )


async def check_postgres_connection() -> None:
    conn = await connect()
    try:
        await conn.execute("SELECT 1;")
    finally:
        await conn.close()
