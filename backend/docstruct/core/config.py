from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings

from typing import List, Optional

DEFAULT_HEADING_KEYWORDS = [
    "CHAPTER",
    "Chapter",
    "PART",
    "Part",
    "SECTION",
    "Section",
    "Introduction",
    "INTRODUCTION",
    "Acknowledgments",
    "ACKNOWLEDGMENTS",
]

DEFAULT_STRUCTURE_PROMPT = (
    "You split documents into a hierarchical outline of parts, chapters, sections "
    "and subsections. For every node return its type, a short title, a verbatim "
    "start_anchor copied from the first characters of the node and a verbatim "
    "end_anchor copied from its last characters, its nesting depth (0 for top-level "
    "nodes) and your confidence between 0 and 1. Anchors must be exact substrings "
    "of the supplied text and at least 20 characters long whenever possible."
)


class Settings(BaseSettings):
    # App
    app_name: str = "Docstruct API"
    environment: str = Field(default="development")
    api_prefix: str = "/api"
    log_level: str = Field(default="INFO")

    # Postgres
    postgres_host: str = Field(default="postgres")
    postgres_port: int = Field(default=5432)
    postgres_db: str = Field(default="docstruct")
    postgres_user: str = Field(default="docstruct")
    postgres_password: str = Field(default="docstruct")
    postgres_pool_min_size: int = Field(default=1)
    postgres_pool_max_size: int = Field(default=10)

    # MinIO
    minio_endpoint: str = Field(default="minio:9000")
    minio_access_key: str = Field(default="minioadmin")
    minio_secret_key: str = Field(default="minioadmin")
    minio_secure: bool = Field(default=False)
    minio_bucket_documents: str = Field(default="documents")
    minio_connect_max_attempts: int = Field(default=20)
    minio_connect_initial_delay_seconds: float = Field(default=1.0)

    # Normalization
    normalization_dehyphenate: bool = Field(default=True)
    normalization_collapse_spaces: bool = Field(default=True)

    # Structure LLM
    openai_api_key: Optional[str] = Field(default=None)
    openai_organization: Optional[str] = Field(default=None)
    structure_llm_model: Optional[str] = Field(default=None)
    structure_llm_base_url: Optional[str] = Field(default=None)
    structure_llm_completion_path: Optional[str] = Field(default=None)
    structure_llm_temperature: float = Field(default=0.1)
    structure_llm_timeout_seconds: float = Field(default=120.0)
    structure_llm_retry_attempts: int = Field(default=3)
    structure_llm_max_output_tokens: int = Field(default=8192)
    structure_llm_force_json: bool = Field(default=True)
    structure_llm_system_prompt: str = Field(default=DEFAULT_STRUCTURE_PROMPT)

    # Chunking of large documents before structure proposal.
    structure_chunk_max_chars: int = Field(default=60000)
    structure_chunk_overlap_chars: int = Field(default=2000)

    # Anchor resolution
    anchor_heading_keywords: List[str] = Field(
        default_factory=lambda: list(DEFAULT_HEADING_KEYWORDS)
    )

    # Link fetching
    link_fetch_connect_timeout_seconds: float = Field(default=5.0)
    link_fetch_read_timeout_seconds: float = Field(default=15.0)
    link_fetch_max_redirects: int = Field(default=3)
    link_fetch_max_bytes: int = Field(default=5 * 1024 * 1024)
    link_fetch_user_agent: str = Field(default="docstruct-link-fetcher/0.1")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
