from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from typing import Optional


class DocumentStatus(str, Enum):
    PENDING = "pending"
    NORMALIZED = "normalized"
    STRUCTURED = "structured"
    FAILED = "failed"


class DocumentSource(str, Enum):
    TEXT = "text"
    UPLOAD = "upload"
    LINK = "link"


class DocumentBase(BaseModel):
    original_name: str = Field(..., min_length=1)
    mime: Optional[str] = None
    source: DocumentSource
    language: Optional[str] = Field(default=None, max_length=16)


class DocumentCreate(DocumentBase):
    status: DocumentStatus = DocumentStatus.PENDING
    normalized_text: Optional[str] = None
    char_count: Optional[int] = Field(default=None, ge=0)
    file_path: Optional[str] = None
    file_size: Optional[int] = Field(default=None, ge=0)


class Document(DocumentBase):
    """Document metadata; the normalized text is loaded separately."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    status: DocumentStatus
    char_count: Optional[int] = None
    file_path: Optional[str] = None
    file_size: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class IngestTextRequest(BaseModel):
    text: str = Field(..., min_length=1)
    language: Optional[str] = Field(default=None, max_length=16)


class IngestLinkRequest(BaseModel):
    url: str = Field(..., min_length=1, max_length=2048)
    language: Optional[str] = Field(default=None, max_length=16)


class TextSlice(BaseModel):
    document_id: UUID
    start: int
    end: int
    text: str
