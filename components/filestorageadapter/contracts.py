
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, conint, constr, model_validator
from pydantic.alias_generators import to_camel

DEFAULT_MIME_TYPE = "application/octet-stream"
DEFAULT_LIST_LIMIT = 1000
DEFAULT_SIGNED_URL_EXPIRATION = 3600  # seconds


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------- Files ----------

class FileMetadata(_CamelModel):
    key: Optional[str] = None  # caller-facing key, base path stripped
    name: str
    mime_type: str = DEFAULT_MIME_TYPE
    size_in_bytes: conint(ge=0)
    uploaded_at: datetime
    custom_metadata: Optional[Dict[str, Any]] = None


class FileObject(FileMetadata):
    content: bytes


class ListResult(_CamelModel):
    files: List[FileMetadata] = Field(default_factory=list)
    next_cursor: Optional[str] = None
    has_more: bool = False


# ---------- Operation options ----------

class UploadOptions(_CamelModel):
    content_type: Optional[str] = None
    cache_control: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    is_publicly_accessible: bool = False


class ByteRange(_CamelModel):
    start_byte: conint(ge=0)
    end_byte: conint(ge=0)  # inclusive

    @model_validator(mode="after")
    def _ordered(self) -> "ByteRange":
        if self.end_byte < self.start_byte:
            raise ValueError("end_byte must be >= start_byte")
        return self

    @property
    def length(self) -> int:
        return self.end_byte - self.start_byte + 1


class DownloadOptions(_CamelModel):
    range: Optional[ByteRange] = None


class ListOptions(_CamelModel):
    prefix: str = ""
    limit: conint(ge=1) = DEFAULT_LIST_LIMIT
    cursor: Optional[str] = None  # opaque


class SignedUrlOptions(_CamelModel):
    expires_in: conint(gt=0, le=7 * 24 * 3600) = DEFAULT_SIGNED_URL_EXPIRATION
    content_type: Optional[str] = None


class SignedUrlUploadResult(_CamelModel):
    url: str
    method: Literal["PUT"] = "PUT"
    headers: Optional[Dict[str, str]] = None


# ---------- Adapter configuration ----------

class _FrozenConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    base_path: Optional[str] = None


class FsAdapterConfig(_FrozenConfig):
    kind: Literal["fs"] = "fs"
    root_dir: constr(strip_whitespace=True, min_length=1)
    base_url: Optional[str] = None


class S3Credentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_key_id: constr(min_length=1)
    secret_access_key: constr(min_length=1)
    session_token: Optional[str] = None


class S3AdapterConfig(_FrozenConfig):
    kind: Literal["s3"] = "s3"
    bucket: constr(strip_whitespace=True, min_length=1)
    region: constr(strip_whitespace=True, min_length=1)
    endpoint: Optional[str] = None
    credentials: Optional[S3Credentials] = None
    force_path_style: bool = False


class VercelBlobAdapterConfig(_FrozenConfig):
    kind: Literal["vercel-blob"] = "vercel-blob"
    token: constr(strip_whitespace=True, min_length=1)
    api_url: Optional[str] = None


AdapterConfig = Annotated[
    Union[FsAdapterConfig, S3AdapterConfig, VercelBlobAdapterConfig],
    Field(discriminator="kind"),
]


# ---------- Unified Wire Format (UWF) ----------

class ErrorPayload(BaseModel):
    type: Literal["VALIDATION", "NOT_FOUND", "UNSUPPORTED", "CONFIGURATION", "CONFLICT", "UPSTREAM", "INTERNAL"]
    code: constr(strip_whitespace=True, min_length=1)
    message: constr(strip_whitespace=True, min_length=1)
    details: Optional[Dict[str, Any]] = None


class MetaPayload(BaseModel):
    request_id: Optional[str] = None
    duration_ms: Optional[int] = None
    adapter: Optional[str] = None


class UWFResponse(BaseModel):
    ok: bool
    result: Optional[Any] = None
    error: Optional[ErrorPayload] = None
    meta: MetaPayload = Field(default_factory=MetaPayload)
