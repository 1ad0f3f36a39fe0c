import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from docstruct.core.config import settings
from docstruct.db.database import check_postgres_connection
from docstruct.services.storage import ensure_bucket_exists
from docstruct.api.documents import router as documents_router
from docstruct.db.migrate import apply_migrations
from docstruct.db.pool import init_pool, close_pool, get_pool


logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title=settings.app_name, version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def catch_unhandled_errors(request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Request %s %s failed", request.method, request.url.path)
            return JSONResponse(
                status_code=500, content={"detail": str(exc) or "Unknown error"}
            )

    @app.get("/health")
    async def health():
        try:
            pool = get_pool()
        except RuntimeError as exc:
            return JSONResponse(
                status_code=503,
                content={"status": "unavailable", "detail": str(exc)},
            )

        try:
            await pool.fetchval("SELECT 1;")
        except Exception as exc:  # noqa: BLE001
            return JSONResponse(
                status_code=503,
                content={
                    "status": "unavailable",
                    "detail": f"Database health check failed: {exc}",
                },
            )

        return {"status": "ok"}

    @app.on_event("startup")
    async def on_startup():
        logger.info("Checking Postgres connection...")
        await check_postgres_connection()

        logger.info("Ensuring MinIO bucket exists...")
        await ensure_bucket_exists(
            settings.minio_bucket_documents,
            max_attempts=settings.minio_connect_max_attempts,
            initial_delay_seconds=settings.minio_connect_initial_delay_seconds,
        )

        logger.info("Applying database migrations...")
        await apply_migrations()

        logger.info("Initializing database pool...")
        await init_pool()
        logger.info("Startup completed")

    @app.on_event("shutdown")
    async def on_shutdown():
        try:
            await close_pool()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Shutdown DB pool close failed: %s", exc)

    app.include_router(documents_router, prefix=settings.api_prefix)

    return app


app = create_app()
