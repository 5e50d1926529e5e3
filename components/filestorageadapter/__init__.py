"""
FileStorageAdapter package export surface.

One operation set (upload, download, get_metadata, delete, exists, list,
get_signed_url, get_signed_url_upload, copy, move) over interchangeable
backends: local filesystem, S3-compatible object stores and Vercel Blob.
"""

from __future__ import annotations

from .contracts import (
    AdapterConfig,
    ByteRange,
    DownloadOptions,
    FileMetadata,
    FileObject,
    FsAdapterConfig,
    ListOptions,
    ListResult,
    S3AdapterConfig,
    S3Credentials,
    SignedUrlOptions,
    SignedUrlUploadResult,
    UploadOptions,
    UWFResponse,
    VercelBlobAdapterConfig,
)
from .errors import (
    BackendError,
    CapabilityUnsupported,
    ConfigurationError,
    FileNotFound,
    FileStorageError,
    InvalidRequest,
    MoveError,
)
from .ports import FileStoragePort
from .adapters import LocalFSFileAdapter, S3FileAdapter, VercelBlobFileAdapter
from .config import StorageSettings
from .factory import make_adapter, make_adapter_from_env
from .service import FileStorageService
