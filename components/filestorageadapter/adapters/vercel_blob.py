
from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from ..compound import move_with_compensation
from ..content import Content, to_buffer
from ..contracts import (
    DownloadOptions, FileMetadata, FileObject, ListOptions, ListResult,
    SignedUrlOptions, SignedUrlUploadResult, UploadOptions, VercelBlobAdapterConfig
)
from ..errors import BackendError, CapabilityUnsupported, FileNotFound, InvalidRequest
from ..keys import extract_name, full_key, guess_mime_type, list_prefix, normalize_key, strip_prefix
from ..ports import FileStoragePort

log = logging.getLogger("filestorage.vercel_blob")

DEFAULT_API_URL = "https://blob.vercel-storage.com"
API_VERSION = "7"
MAX_PAGE_SIZE = 1000
_MAX_AGE_RE = re.compile(r"max-age=(\d+)")


def _max_age(cache_control: Optional[str]) -> Optional[int]:
    if not cache_control:
        return None
    m = _MAX_AGE_RE.search(cache_control)
    return int(m.group(1)) if m else None


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or resp.reason_phrase
    err = body.get("error") if isinstance(body, dict) else None
    if isinstance(err, dict):
        return str(err.get("message") or err.get("code") or resp.reason_phrase)
    return resp.text or resp.reason_phrase


def _is_not_found(resp: httpx.Response) -> bool:
    if resp.status_code == 404:
        return True
    try:
        body = resp.json()
    except ValueError:
        return False
    err = body.get("error") if isinstance(body, dict) else None
    return isinstance(err, dict) and err.get("code") == "not_found"


class VercelBlobFileAdapter(FileStoragePort):
    """
    Vercel Blob backend, spoken to over its HTTP API.

    Blobs are always public: ``is_publicly_accessible`` is accepted and
    ignored, ``get_signed_url`` returns the permanent public URL. Range reads
    and pre-signed uploads are not offered by the service.

    As with S3, keys are used verbatim when no base path is configured.
    """

    def __init__(self, config: VercelBlobAdapterConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.api_url = (config.api_url or DEFAULT_API_URL).rstrip("/")
        self._owns_client = client is None
        self.http = client or httpx.AsyncClient(timeout=30.0)
        self.adapter = "vercel-blob"

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http.aclose()

    def _key(self, key: str) -> str:
        if not normalize_key(key):
            raise InvalidRequest("key must not be empty")
        return full_key(key, self.config.base_path)

    def _display(self, pathname: str) -> str:
        return strip_prefix(pathname, self.config.base_path)

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {"authorization": f"Bearer {self.config.token}", "x-api-version": API_VERSION}
        if extra:
            headers.update(extra)
        return headers

    async def _request(self, op: str, key: str, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            resp = await self.http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise BackendError(f"vercel-blob {op} failed for '{key}': {e}") from e
        if resp.status_code >= 400:
            if _is_not_found(resp):
                raise FileNotFound(f"File not found: {key}")
            raise BackendError(f"vercel-blob {op} failed for '{key}': {resp.status_code} {_error_message(resp)}")
        return resp

    async def _head(self, key: str, pathname: str) -> Optional[Dict[str, Any]]:
        try:
            resp = await self._request(
                "head", key, "GET", f"{self.api_url}/", params={"url": pathname}, headers=self._headers()
            )
        except FileNotFound:
            return None
        return resp.json()

    def _metadata(self, pathname: str, blob: Dict[str, Any], extra: Optional[Dict[str, Any]] = None) -> FileMetadata:
        display = self._display(blob.get("pathname") or pathname)
        custom = dict(extra or {})
        custom.update({"url": blob.get("url"), "pathname": blob.get("pathname") or pathname})
        return FileMetadata(
            key=display,
            name=extract_name(display),
            mime_type=blob.get("contentType") or guess_mime_type(display),
            size_in_bytes=int(blob.get("size") or 0),
            uploaded_at=blob.get("uploadedAt") or datetime.now(timezone.utc),
            custom_metadata=custom,
        )

    async def upload(self, key: str, content: Content, options: Optional[UploadOptions] = None) -> FileMetadata:
        opts = options or UploadOptions()
        pathname = self._key(key)
        body = await to_buffer(content)
        content_type = opts.content_type or guess_mime_type(key)

        extra = {"x-add-random-suffix": "0", "x-allow-overwrite": "1", "x-content-type": content_type}
        max_age = _max_age(opts.cache_control)
        if max_age is not None:
            extra["x-cache-control-max-age"] = str(max_age)

        resp = await self._request(
            "upload", key, "PUT", f"{self.api_url}/{quote(pathname)}", content=body, headers=self._headers(extra)
        )
        blob = resp.json()
        log.debug("vercel-blob upload pathname=%s size=%s", pathname, len(body))

        meta = self._metadata(pathname, blob, extra=opts.metadata)
        return meta.model_copy(update={
            "mime_type": content_type,
            "size_in_bytes": len(body),
            "uploaded_at": datetime.now(timezone.utc),
        })

    async def download(self, key: str, options: Optional[DownloadOptions] = None) -> FileObject:
        if options is not None and options.range is not None:
            raise CapabilityUnsupported(
                "Range downloads are not supported by Vercel Blob. "
                "Download the full file and slice it in memory instead."
            )
        pathname = self._key(key)
        blob = await self._head(key, pathname)
        if blob is None:
            raise FileNotFound(f"File not found: {key}")

        resp = await self._request("download", key, "GET", blob["url"])
        content = resp.content
        meta = self._metadata(pathname, blob)
        return FileObject(**meta.model_dump(), content=content)

    async def get_metadata(self, key: str) -> Optional[FileMetadata]:
        pathname = self._key(key)
        blob = await self._head(key, pathname)
        return self._metadata(pathname, blob) if blob is not None else None

    async def delete(self, key: str) -> bool:
        pathname = self._key(key)
        # the delete endpoint reports success for unknown urls
        blob = await self._head(key, pathname)
        if blob is None:
            return False
        await self._request(
            "delete", key, "POST", f"{self.api_url}/delete", json={"urls": [blob["url"]]}, headers=self._headers()
        )
        return True

    async def list(self, options: Optional[ListOptions] = None) -> ListResult:
        opts = options or ListOptions()
        params: Dict[str, Any] = {"limit": min(opts.limit, MAX_PAGE_SIZE)}
        prefix = list_prefix(opts.prefix, self.config.base_path)
        if prefix:
            params["prefix"] = prefix
        if opts.cursor:
            params["cursor"] = opts.cursor

        resp = await self._request("list", prefix or "/", "GET", f"{self.api_url}/", params=params, headers=self._headers())
        data = resp.json()

        files = []
        for blob in data.get("blobs", []) or []:
            display = self._display(blob.get("pathname", ""))
            files.append(FileMetadata(
                key=display,
                name=extract_name(display),
                mime_type=guess_mime_type(display),
                size_in_bytes=int(blob.get("size") or 0),
                uploaded_at=blob.get("uploadedAt") or datetime.now(timezone.utc),
            ))

        has_more = bool(data.get("hasMore"))
        return ListResult(files=files, next_cursor=data.get("cursor") if has_more else None, has_more=has_more)

    async def get_signed_url(self, key: str, options: Optional[SignedUrlOptions] = None) -> str:
        pathname = self._key(key)
        blob = await self._head(key, pathname)
        if blob is None:
            raise FileNotFound(f"File not found: {key}")
        return blob["url"]

    async def get_signed_url_upload(self, key: str, options: Optional[SignedUrlOptions] = None) -> SignedUrlUploadResult:
        raise CapabilityUnsupported(
            "Signed upload URLs are not supported for Vercel Blob adapter. Use the upload() method directly."
        )

    async def copy(self, source_key: str, destination_key: str) -> FileMetadata:
        src, dst = self._key(source_key), self._key(destination_key)
        blob = await self._head(source_key, src)
        if blob is None:
            raise FileNotFound(f"File not found: {source_key}")

        extra = {"x-add-random-suffix": "0", "x-allow-overwrite": "1"}
        if blob.get("contentType"):
            extra["x-content-type"] = blob["contentType"]
        await self._request(
            "copy", source_key, "PUT", f"{self.api_url}/{quote(dst)}",
            params={"fromUrl": blob["url"]}, headers=self._headers(extra),
        )

        meta = await self.get_metadata(destination_key)
        if meta is None:
            raise BackendError(f'Failed to copy file from "{source_key}" to "{destination_key}"')
        return meta

    async def move(self, source_key: str, destination_key: str) -> FileMetadata:
        same = self._key(source_key) == self._key(destination_key)
        return await move_with_compensation(self, source_key, destination_key, same_object=same)
