
from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, ValidationError

from .content import Content
from .contracts import (
    DownloadOptions, ErrorPayload, ListOptions, MetaPayload, SignedUrlOptions, UploadOptions, UWFResponse
)
from .errors import (
    BackendError, CapabilityUnsupported, ConfigurationError, FileNotFound, InvalidRequest, MoveError
)
from .ports import FileStoragePort

log = logging.getLogger("filestorage")

# Optional OpenTelemetry
try:
    from opentelemetry import trace
    tracer = trace.get_tracer("filestorage")
except ImportError:  # pragma: no cover
    tracer = None

_CLIENT_ERRORS = (FileNotFound, InvalidRequest, CapabilityUnsupported, ValidationError)


@contextmanager
def _span(name: str, **attrs):
    if tracer:
        with tracer.start_as_current_span(name) as span:
            for k, v in attrs.items():
                if v is not None:
                    span.set_attribute(f"storage.{k}", v)
            yield
    else:
        yield


def _dump(result: Any) -> Any:
    if isinstance(result, BaseModel):
        return result.model_dump(by_alias=True)
    return result


def _uwf_ok(result, meta: MetaPayload) -> UWFResponse:
    return UWFResponse(ok=True, result=_dump(result), meta=meta)


def _uwf_err(e: Exception, meta: MetaPayload) -> UWFResponse:
    details = None
    if isinstance(e, (InvalidRequest, ValidationError)):
        t, code = "VALIDATION", "FILE_VALIDATION"
    elif isinstance(e, FileNotFound):
        t, code = "NOT_FOUND", "FILE_NOT_FOUND"
    elif isinstance(e, CapabilityUnsupported):
        t, code = "UNSUPPORTED", "FILE_UNSUPPORTED"
    elif isinstance(e, ConfigurationError):
        t, code = "CONFIGURATION", "FILE_CONFIGURATION"
    elif isinstance(e, MoveError):
        t, code = "CONFLICT", "FILE_MOVE_FAILED"
        details = {
            "source_key": e.source_key,
            "destination_key": e.destination_key,
            "rolled_back": e.rolled_back,
        }
    elif isinstance(e, BackendError):
        t, code = "UPSTREAM", "FILE_UPSTREAM"
    else:
        t, code = "INTERNAL", "FILE_INTERNAL"

    err = ErrorPayload(type=t, code=code, message=str(e) or type(e).__name__, details=details)
    return UWFResponse(ok=False, error=err, meta=meta)


class FileStorageService:
    """Façade over one adapter: UWF envelopes, timing, logging and tracing."""

    def __init__(self, adapter: FileStoragePort, adapter_name: Optional[str] = None):
        self.adapter = adapter
        self.adapter_name = adapter_name or adapter.adapter

    async def _run(self, op: str, call: Callable[[], Awaitable[Any]], **attrs) -> UWFResponse:
        t0 = time.time()
        meta = MetaPayload(adapter=self.adapter_name)
        with _span(f"storage.{op}", adapter=self.adapter_name, **attrs):
            try:
                res = await call()
            except Exception as e:
                meta.duration_ms = int((time.time() - t0) * 1000)
                if isinstance(e, _CLIENT_ERRORS):
                    log.warning("storage.%s rejected adapter=%s attrs=%s err=%s", op, self.adapter_name, attrs, e)
                else:
                    log.exception("storage.%s err adapter=%s attrs=%s dur_ms=%s", op, self.adapter_name, attrs, meta.duration_ms)
                return _uwf_err(e, meta)
            meta.duration_ms = int((time.time() - t0) * 1000)
            log.info("storage.%s ok adapter=%s attrs=%s dur_ms=%s", op, self.adapter_name, attrs, meta.duration_ms)
            return _uwf_ok(res, meta)

    async def upload(self, key: str, content: Content, options: Optional[UploadOptions] = None) -> UWFResponse:
        return await self._run("upload", lambda: self.adapter.upload(key, content, options), key=key)

    async def download(self, key: str, options: Optional[DownloadOptions] = None) -> UWFResponse:
        return await self._run("download", lambda: self.adapter.download(key, options), key=key)

    async def metadata(self, key: str) -> UWFResponse:
        return await self._run("metadata", lambda: self.adapter.get_metadata(key), key=key)

    async def exists(self, key: str) -> UWFResponse:
        return await self._run("exists", lambda: self.adapter.exists(key), key=key)

    async def delete(self, key: str) -> UWFResponse:
        return await self._run("delete", lambda: self.adapter.delete(key), key=key)

    async def list(self, options: Optional[ListOptions] = None) -> UWFResponse:
        prefix = options.prefix if options else None
        return await self._run("list", lambda: self.adapter.list(options), prefix=prefix)

    async def signed_url(self, key: str, options: Optional[SignedUrlOptions] = None) -> UWFResponse:
        return await self._run("signed_url", lambda: self.adapter.get_signed_url(key, options), key=key)

    async def signed_url_upload(self, key: str, options: Optional[SignedUrlOptions] = None) -> UWFResponse:
        return await self._run("signed_url_upload", lambda: self.adapter.get_signed_url_upload(key, options), key=key)

    async def copy(self, source_key: str, destination_key: str) -> UWFResponse:
        return await self._run(
            "copy", lambda: self.adapter.copy(source_key, destination_key), source=source_key, destination=destination_key
        )

    async def move(self, source_key: str, destination_key: str) -> UWFResponse:
        return await self._run(
            "move", lambda: self.adapter.move(source_key, destination_key), source=source_key, destination=destination_key
        )

    async def aclose(self) -> None:
        await self.adapter.aclose()
