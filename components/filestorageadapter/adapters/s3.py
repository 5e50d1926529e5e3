
from __future__ import annotations

import asyncio
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from ..compound import move_with_compensation
from ..content import Content, to_buffer
from ..contracts import (
    DEFAULT_MIME_TYPE, DownloadOptions, FileMetadata, FileObject, ListOptions, ListResult,
    S3AdapterConfig, SignedUrlOptions, SignedUrlUploadResult, UploadOptions
)
from ..errors import BackendError, FileNotFound, InvalidRequest
from ..keys import extract_name, full_key, guess_mime_type, list_prefix, normalize_key, strip_prefix
from ..ports import FileStoragePort

log = logging.getLogger("filestorage.s3")

# Single user-metadata entry holding the caller's metadata as JSON. S3 lowercases
# user-metadata keys and only stores strings, so one JSON document keeps the
# original casing and value types.
CUSTOM_METADATA_KEY = "custom-metadata"

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
# ListObjectsV2 never returns more than this per page
MAX_PAGE_SIZE = 1000
_CONTENT_RANGE_RE = re.compile(r"bytes\s+\d+-\d+/(\d+)")


def _status(e: ClientError) -> Optional[int]:
    return e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")


def _is_not_found(e: ClientError) -> bool:
    code = str(e.response.get("Error", {}).get("Code", ""))
    return _status(e) == 404 or code in _NOT_FOUND_CODES


def _decode_custom_metadata(raw: Optional[Dict[str, str]]) -> Optional[Dict[str, Any]]:
    if not raw:
        return None
    encoded = raw.get(CUSTOM_METADATA_KEY)
    if encoded is None:
        # written by another tool: expose the raw user metadata
        return dict(raw)
    try:
        decoded = json.loads(encoded)
    except ValueError:
        return dict(raw)
    return decoded if isinstance(decoded, dict) else dict(raw)


class S3FileAdapter(FileStoragePort):
    """
    S3 (or S3-compatible) backend.

    Without a base path keys are used verbatim as object keys: ``/a.txt`` and
    ``a//b`` are distinct objects and are reported back unchanged.
    """

    def __init__(self, config: S3AdapterConfig, client: Any = None):
        self.config = config
        self.bucket = config.bucket
        if client is None:
            creds = config.credentials
            client = boto3.client(
                "s3",
                region_name=config.region,
                endpoint_url=config.endpoint,
                aws_access_key_id=creds.access_key_id if creds else None,
                aws_secret_access_key=creds.secret_access_key if creds else None,
                aws_session_token=creds.session_token if creds else None,
                config=BotoConfig(s3={"addressing_style": "path" if config.force_path_style else "auto"}),
            )
        self.s3 = client
        self.adapter = "s3"

    def _key(self, key: str) -> str:
        if not normalize_key(key):
            raise InvalidRequest("key must not be empty")
        return full_key(key, self.config.base_path)

    def _display(self, fk: str) -> str:
        return strip_prefix(fk, self.config.base_path)

    async def _call(self, op: str, key: str, fn, **kwargs):
        try:
            return await asyncio.to_thread(fn, **kwargs)
        except ClientError as e:
            if _is_not_found(e):
                raise FileNotFound(f"File not found: {key}") from e
            if _status(e) == 416:
                raise InvalidRequest(f"range not satisfiable for {key}") from e
            raise BackendError(f"s3 {op} failed for '{key}': {e}") from e
        except BotoCoreError as e:
            raise BackendError(f"s3 {op} failed for '{key}': {e}") from e

    def _metadata_from_head(self, fk: str, resp: Dict[str, Any]) -> FileMetadata:
        display = self._display(fk)
        return FileMetadata(
            key=display,
            name=extract_name(display),
            mime_type=resp.get("ContentType") or DEFAULT_MIME_TYPE,
            size_in_bytes=int(resp.get("ContentLength") or 0),
            uploaded_at=resp.get("LastModified") or datetime.now(timezone.utc),
            custom_metadata=_decode_custom_metadata(resp.get("Metadata")),
        )

    async def upload(self, key: str, content: Content, options: Optional[UploadOptions] = None) -> FileMetadata:
        opts = options or UploadOptions()
        fk = self._key(key)
        body = await to_buffer(content)
        content_type = opts.content_type or guess_mime_type(key)

        kwargs: Dict[str, Any] = {"Bucket": self.bucket, "Key": fk, "Body": body, "ContentType": content_type}
        if opts.cache_control:
            kwargs["CacheControl"] = opts.cache_control
        if opts.metadata:
            kwargs["Metadata"] = {CUSTOM_METADATA_KEY: json.dumps(opts.metadata, default=str)}
        if opts.is_publicly_accessible:
            kwargs["ACL"] = "public-read"

        await self._call("upload", key, self.s3.put_object, **kwargs)
        log.debug("s3 upload bucket=%s key=%s size=%s", self.bucket, fk, len(body))

        display = self._display(fk)
        return FileMetadata(
            key=display,
            name=extract_name(display),
            mime_type=content_type,
            size_in_bytes=len(body),
            uploaded_at=datetime.now(timezone.utc),
            custom_metadata=opts.metadata,
        )

    async def download(self, key: str, options: Optional[DownloadOptions] = None) -> FileObject:
        rng = (options or DownloadOptions()).range
        fk = self._key(key)
        kwargs: Dict[str, Any] = {"Bucket": self.bucket, "Key": fk}
        if rng is not None:
            kwargs["Range"] = f"bytes={rng.start_byte}-{rng.end_byte}"

        obj = await self._call("download", key, self.s3.get_object, **kwargs)
        body = obj.get("Body")
        if body is None:
            raise BackendError(f"Failed to download file: {key}")
        try:
            content = await asyncio.to_thread(body.read)
        finally:
            body.close()

        meta = self._metadata_from_head(fk, obj)
        # ContentLength is the length of the returned range; the total lives in Content-Range
        size = meta.size_in_bytes or len(content)
        if rng is not None:
            m = _CONTENT_RANGE_RE.match(obj.get("ContentRange") or "")
            if m:
                size = int(m.group(1))
        return FileObject(**meta.model_copy(update={"size_in_bytes": size}).model_dump(), content=content)

    async def get_metadata(self, key: str) -> Optional[FileMetadata]:
        fk = self._key(key)
        try:
            resp = await self._call("head", key, self.s3.head_object, Bucket=self.bucket, Key=fk)
        except FileNotFound:
            return None
        return self._metadata_from_head(fk, resp)

    async def delete(self, key: str) -> bool:
        fk = self._key(key)
        # DeleteObject succeeds for missing keys, so probe first
        if await self.get_metadata(key) is None:
            return False
        try:
            await self._call("delete", key, self.s3.delete_object, Bucket=self.bucket, Key=fk)
        except FileNotFound:
            return False
        return True

    async def list(self, options: Optional[ListOptions] = None) -> ListResult:
        opts = options or ListOptions()
        kwargs: Dict[str, Any] = {"Bucket": self.bucket, "MaxKeys": min(opts.limit, MAX_PAGE_SIZE)}
        prefix = list_prefix(opts.prefix, self.config.base_path)
        if prefix:
            kwargs["Prefix"] = prefix
        if opts.cursor:
            kwargs["ContinuationToken"] = opts.cursor

        resp = await self._call("list", prefix or "/", self.s3.list_objects_v2, **kwargs)

        files = []
        for obj in resp.get("Contents", []) or []:
            display = self._display(obj.get("Key", ""))
            files.append(FileMetadata(
                key=display,
                name=extract_name(display),
                mime_type=guess_mime_type(display),
                size_in_bytes=int(obj.get("Size") or 0),
                uploaded_at=obj.get("LastModified") or datetime.now(timezone.utc),
            ))

        truncated = bool(resp.get("IsTruncated"))
        return ListResult(
            files=files,
            next_cursor=resp.get("NextContinuationToken") if truncated else None,
            has_more=truncated,
        )

    async def get_signed_url(self, key: str, options: Optional[SignedUrlOptions] = None) -> str:
        opts = options or SignedUrlOptions()
        params: Dict[str, Any] = {"Bucket": self.bucket, "Key": self._key(key)}
        if opts.content_type:
            params["ResponseContentType"] = opts.content_type
        return await self._call(
            "presign", key, self.s3.generate_presigned_url,
            ClientMethod="get_object", Params=params, ExpiresIn=opts.expires_in,
        )

    async def get_signed_url_upload(self, key: str, options: Optional[SignedUrlOptions] = None) -> SignedUrlUploadResult:
        opts = options or SignedUrlOptions()
        params: Dict[str, Any] = {"Bucket": self.bucket, "Key": self._key(key)}
        if opts.content_type:
            params["ContentType"] = opts.content_type
        url = await self._call(
            "presign", key, self.s3.generate_presigned_url,
            ClientMethod="put_object", Params=params, ExpiresIn=opts.expires_in,
        )
        headers = {"Content-Type": opts.content_type} if opts.content_type else None
        return SignedUrlUploadResult(url=url, headers=headers)

    async def copy(self, source_key: str, destination_key: str) -> FileMetadata:
        src, dst = self._key(source_key), self._key(destination_key)
        await self._call(
            "copy", source_key, self.s3.copy_object,
            Bucket=self.bucket, Key=dst, CopySource={"Bucket": self.bucket, "Key": src},
        )
        meta = await self.get_metadata(destination_key)
        if meta is None:
            raise BackendError(f'Failed to copy file from "{source_key}" to "{destination_key}"')
        return meta

    async def move(self, source_key: str, destination_key: str) -> FileMetadata:
        same = self._key(source_key) == self._key(destination_key)
        return await move_with_compensation(self, source_key, destination_key, same_object=same)
