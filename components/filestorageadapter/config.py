
from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageSettings(BaseSettings):
    STORAGE_ADAPTER: str = Field(default="fs")  # "fs" | "s3" | "vercel-blob"
    STORAGE_BASE_PATH: Optional[str] = None
    # Local FS
    FS_ROOT_DIR: str = Field(default="./storage")
    FS_BASE_URL: Optional[str] = None
    # S3
    AWS_REGION: Optional[str] = None
    AWS_DEFAULT_REGION: Optional[str] = None
    AWS_S3_BUCKET: str = Field(default="local-storage-bucket")
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    AWS_SESSION_TOKEN: Optional[str] = None
    S3_ENDPOINT_URL: Optional[str] = None
    S3_FORCE_PATH_STYLE: Optional[bool] = None  # unset: path style iff an endpoint is given
    # Vercel Blob
    VERCEL_BLOB_TOKEN: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("VERCEL_BLOB_TOKEN", "BLOB_READ_WRITE_TOKEN")
    )
    VERCEL_BLOB_API_URL: Optional[str] = None

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")
