from __future__ import annotations

import io
import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Optional
from urllib.parse import urlparse
from uuid import uuid4

from minio import Minio
from minio.error import S3Error
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from docstruct.core.config import settings


MAX_FILE_SIZE_BYTES: Final[int] = 50 * 1024 * 1024
DEFAULT_CONTENT_TYPE: Final[str] = "application/octet-stream"


@dataclass
class StorageUploadResult:
    bucket: str
    object_name: str
    file_name: str
    size: int
    content_type: str


def get_minio_client() -> Minio:
    endpoint, secure = _normalize_minio_endpoint(
        settings.minio_endpoint, settings.minio_secure
    )
    return Minio(
        endpoint=endpoint,
        access_key=settings.minio_access_key,
        secret_key=settings.minio_secret_key,
        secure=secure,
    )


async def ensure_bucket_exists(
    bucket_name: str, max_attempts: int = 5, initial_delay_seconds: float = 1.0
) -> None:
    last_connection_error: Exception | None = None

    for attempt in range(1, max_attempts + 1):
        client = get_minio_client()
        try:
            if not client.bucket_exists(bucket_name):
                client.make_bucket(bucket_name)
            return
        except S3Error as exc:  # pragma: no cover - external dependency behaviour
            raise RuntimeError(
                f"Failed to ensure MinIO bucket '{bucket_name}' exists: {exc}"
            ) from exc
        except (Urllib3HTTPError, OSError) as exc:
            last_connection_error = exc
            if attempt < max_attempts:
                await asyncio.sleep(initial_delay_seconds * attempt)
            else:
                break

    if last_connection_error is not None:
        raise RuntimeError(
            "Unable to connect to MinIO after multiple attempts. "
            "Check MINIO_ENDPOINT and network connectivity."
        ) from last_connection_error


async def upload_document_bytes(
    file_name: str, data: bytes, content_type: Optional[str] = None
) -> StorageUploadResult:
    """Store an original upload so the document can be re-ingested later."""

    if not file_name:
        raise ValueError("Uploaded file must include a filename")

    size = len(data)
    if size == 0:
        raise ValueError("Uploaded file is empty")
    if size > MAX_FILE_SIZE_BYTES:
        raise ValueError("Uploaded file exceeds maximum allowed size")

    client = get_minio_client()
    bucket = settings.minio_bucket_documents
    object_name = _build_object_name(file_name)
    resolved_type = (content_type or DEFAULT_CONTENT_TYPE).lower()

    try:
        await asyncio.to_thread(
            client.put_object,
            bucket_name=bucket,
            object_name=object_name,
            data=io.BytesIO(data),
            length=size,
            content_type=resolved_type,
        )
    except S3Error as exc:  # pragma: no cover - external dependency behaviour
        raise RuntimeError(f"Failed to store file in MinIO: {exc}") from exc

    return StorageUploadResult(
        bucket=bucket,
        object_name=object_name,
        file_name=Path(file_name).name,
        size=size,
        content_type=resolved_type,
    )


async def download_document_bytes(object_name: str) -> bytes:
    client = get_minio_client()

    def _read() -> bytes:
        response = client.get_object(settings.minio_bucket_documents, object_name)
        try:
            return response.read()
        finally:
            response.close()
            response.release_conn()

    try:
        return await asyncio.to_thread(_read)
    except S3Error as exc:  # pragma: no cover - external dependency behaviour
        raise RuntimeError(f"Failed to read file from MinIO: {exc}") from exc


def _build_object_name(filename: str) -> str:
    clean_name = Path(filename).name.replace(" ", "_")
    unique_prefix = uuid4().hex
    return f"{unique_prefix}/{clean_name}"


def _normalize_minio_endpoint(endpoint: str, secure: bool) -> tuple[str, bool]:
    cleaned = endpoint.strip()
    if not cleaned:
        raise ValueError("MinIO endpoint cannot be empty")

    updated_secure = secure
    if "://" in cleaned:
        parsed = urlparse(cleaned)
        if parsed.scheme not in {"http", "https"}:
            raise ValueError("MinIO endpoint must use http or https scheme")
        updated_secure = parsed.scheme == "https"
        cleaned = parsed.netloc or parsed.path

    cleaned = cleaned.rstrip("/")
    if not cleaned:
        raise ValueError("MinIO endpoint cannot be empty")

    return cleaned, updated_secure
