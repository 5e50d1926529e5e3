"""
Adapter construction.

``make_adapter`` turns one tagged config variant into an adapter instance.
``make_adapter_from_env`` reads StorageSettings and builds that config; it is
the only place environment variables are consulted.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Union

from pydantic import TypeAdapter

from .adapters.local_fs import LocalFSFileAdapter
from .adapters.s3 import S3FileAdapter
from .adapters.vercel_blob import VercelBlobFileAdapter
from .config import StorageSettings
from .contracts import AdapterConfig, FsAdapterConfig, S3AdapterConfig, S3Credentials, VercelBlobAdapterConfig
from .errors import ConfigurationError
from .ports import FileStoragePort

_config_adapter = TypeAdapter(AdapterConfig)


def parse_adapter_config(data: Dict[str, Any]) -> Union[FsAdapterConfig, S3AdapterConfig, VercelBlobAdapterConfig]:
    return _config_adapter.validate_python(data)


def make_adapter(config: Union[AdapterConfig, Dict[str, Any]]) -> FileStoragePort:
    if isinstance(config, dict):
        config = parse_adapter_config(config)
    if config.kind == "fs":
        return LocalFSFileAdapter(config)
    if config.kind == "s3":
        return S3FileAdapter(config)
    if config.kind == "vercel-blob":
        return VercelBlobFileAdapter(config)
    raise ConfigurationError(f"Unknown adapter kind: {config.kind}")


def config_from_settings(cfg: StorageSettings):
    kind = cfg.STORAGE_ADAPTER.strip().lower()
    base_path = cfg.STORAGE_BASE_PATH or None

    if kind == "fs":
        return FsAdapterConfig(root_dir=cfg.FS_ROOT_DIR, base_url=cfg.FS_BASE_URL or None, base_path=base_path)

    if kind == "s3":
        region = cfg.AWS_REGION or cfg.AWS_DEFAULT_REGION
        if not region:
            raise ConfigurationError("AWS_REGION/AWS_DEFAULT_REGION must be configured for S3 adapter")
        credentials = None
        if cfg.AWS_ACCESS_KEY_ID and cfg.AWS_SECRET_ACCESS_KEY:
            credentials = S3Credentials(
                access_key_id=cfg.AWS_ACCESS_KEY_ID,
                secret_access_key=cfg.AWS_SECRET_ACCESS_KEY,
                session_token=cfg.AWS_SESSION_TOKEN,
            )
        endpoint = cfg.S3_ENDPOINT_URL or None
        force_path_style = cfg.S3_FORCE_PATH_STYLE if cfg.S3_FORCE_PATH_STYLE is not None else bool(endpoint)
        return S3AdapterConfig(
            bucket=cfg.AWS_S3_BUCKET,
            region=region,
            endpoint=endpoint,
            credentials=credentials,
            force_path_style=force_path_style,
            base_path=base_path,
        )

    if kind in ("vercel-blob", "vercel_blob", "vercel"):
        if not cfg.VERCEL_BLOB_TOKEN:
            raise ConfigurationError("VERCEL_BLOB_TOKEN is not configured")
        return VercelBlobAdapterConfig(
            token=cfg.VERCEL_BLOB_TOKEN, api_url=cfg.VERCEL_BLOB_API_URL or None, base_path=base_path
        )

    raise ConfigurationError(f"Unknown STORAGE_ADAPTER: {cfg.STORAGE_ADAPTER}")


def make_adapter_from_env(settings: Optional[StorageSettings] = None) -> FileStoragePort:
    return make_adapter(config_from_settings(settings or StorageSettings()))
