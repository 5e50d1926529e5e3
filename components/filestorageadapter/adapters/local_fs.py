
from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import os
import shutil
import stat
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple
from urllib.parse import quote

from pydantic import ValidationError

from ..compound import move_with_compensation
from ..content import Content, to_buffer
from ..contracts import (
    DownloadOptions, FileMetadata, FileObject, FsAdapterConfig, ListOptions, ListResult,
    SignedUrlOptions, SignedUrlUploadResult, UploadOptions
)
from ..errors import BackendError, CapabilityUnsupported, ConfigurationError, FileNotFound, InvalidRequest
from ..keys import SEP, extract_name, full_key, guess_mime_type, list_prefix, normalize_key, strip_prefix
from ..ports import FileStoragePort

log = logging.getLogger("filestorage.fs")

SIDECAR_SUFFIX = ".meta.json"
TEMP_SUFFIX = ".partial"


@contextmanager
def _io_errors(op: str, key: str):
    try:
        yield
    except OSError as e:
        raise BackendError(f"filesystem {op} failed for '{key}': {e}") from e


def _encode_cursor(rel: str) -> str:
    return base64.urlsafe_b64encode(rel.encode("utf-8")).decode("ascii").rstrip("=")


def _decode_cursor(cursor: str) -> str:
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        rel = base64.b64decode(padded.encode("ascii"), altchars=b"-_", validate=True).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise InvalidRequest("invalid list cursor") from e
    if not rel:
        raise InvalidRequest("invalid list cursor")
    return rel


def _scan(directory: Path) -> List[Tuple[str, bool]]:
    try:
        with os.scandir(directory) as it:
            entries = [(e.name, e.is_dir(follow_symlinks=False)) for e in it]
    except (FileNotFoundError, NotADirectoryError):
        return []
    entries.sort()
    return entries


class LocalFSFileAdapter(FileStoragePort):
    """
    Filesystem backend.

    Every object is two records: the data file at ``<root>/<full key>`` and a
    JSON sidecar ``<data file>.meta.json`` holding its FileMetadata. Without a
    readable sidecar, metadata is rebuilt from the data file's stat.

    Keys are always normalized (separators unified, empty and "." segments
    dropped) because they double as relative paths, so ``/a//b.txt`` is
    stored and reported as ``a/b.txt`` even without a base path.
    """

    def __init__(self, config: FsAdapterConfig):
        self.config = config
        self.root = Path(config.root_dir).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self.base_url = config.base_url
        self.adapter = "fs"

    # ---------- Paths ----------

    def _rel(self, key: str) -> str:
        rel = normalize_key(full_key(key, self.config.base_path))
        if not normalize_key(key) or not rel:
            raise InvalidRequest("key must not be empty")
        if ".." in rel.split(SEP):
            raise InvalidRequest("invalid key (traversal detected)")
        if rel.endswith(SIDECAR_SUFFIX) or rel.endswith(TEMP_SUFFIX):
            raise InvalidRequest(f"keys ending in {SIDECAR_SUFFIX} or {TEMP_SUFFIX} are reserved")
        return rel

    def _display(self, rel: str) -> str:
        return strip_prefix(rel, self.config.base_path)

    @staticmethod
    def _sidecar(path: Path) -> Path:
        return path.with_name(path.name + SIDECAR_SUFFIX)

    @staticmethod
    def _write_atomic(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}{TEMP_SUFFIX}")
        try:
            with open(tmp, "wb") as f:
                f.write(data)
            os.replace(tmp, path)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise

    def _write_sidecar(self, path: Path, meta: FileMetadata) -> None:
        self._write_atomic(self._sidecar(path), meta.model_dump_json(by_alias=True, indent=2).encode("utf-8"))

    def _load_metadata(self, path: Path, display_key: str) -> Optional[FileMetadata]:
        try:
            st = path.stat()
        except (FileNotFoundError, NotADirectoryError):
            return None
        if not stat.S_ISREG(st.st_mode):
            return None

        meta: Optional[FileMetadata] = None
        try:
            meta = FileMetadata.model_validate_json(self._sidecar(path).read_bytes())
        except FileNotFoundError:
            pass
        except (ValidationError, ValueError):
            log.debug("corrupt sidecar for %s, rebuilding from stat", display_key)

        if meta is None:
            meta = FileMetadata(
                name=extract_name(display_key),
                mime_type=guess_mime_type(display_key),
                size_in_bytes=st.st_size,
                uploaded_at=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
            )
        # the data file is authoritative for size
        return meta.model_copy(update={
            "key": display_key, "name": extract_name(display_key), "size_in_bytes": st.st_size,
        })

    def _prune_empty_dirs(self, directory: Path) -> None:
        while directory != self.root and self.root in directory.parents:
            try:
                directory.rmdir()
            except OSError:
                break
            directory = directory.parent

    # ---------- Operations ----------

    async def upload(self, key: str, content: Content, options: Optional[UploadOptions] = None) -> FileMetadata:
        opts = options or UploadOptions()
        rel = self._rel(key)
        path = self.root / rel
        data = await to_buffer(content)
        display = self._display(rel)

        meta = FileMetadata(
            key=display,
            name=extract_name(display),
            mime_type=opts.content_type or guess_mime_type(display),
            size_in_bytes=len(data),
            uploaded_at=datetime.now(timezone.utc),
            custom_metadata=opts.metadata,
        )

        def write_sync():
            with _io_errors("upload", key):
                self._write_atomic(path, data)
                self._write_sidecar(path, meta)

        await asyncio.to_thread(write_sync)
        log.debug("fs upload key=%s size=%s", rel, len(data))
        return meta

    async def download(self, key: str, options: Optional[DownloadOptions] = None) -> FileObject:
        rng = (options or DownloadOptions()).range
        rel = self._rel(key)
        path = self.root / rel

        def read_sync():
            with _io_errors("download", key):
                try:
                    with open(path, "rb") as f:
                        size = os.fstat(f.fileno()).st_size
                        if rng is None:
                            data = f.read()
                        else:
                            if rng.start_byte >= size:
                                raise InvalidRequest(
                                    f"range {rng.start_byte}-{rng.end_byte} not satisfiable for {size} bytes"
                                )
                            f.seek(rng.start_byte)
                            data = f.read(rng.length)
                except (FileNotFoundError, NotADirectoryError, IsADirectoryError):
                    raise FileNotFound(f"File not found: {key}")
                meta = self._load_metadata(path, self._display(rel))
            if meta is None:
                raise FileNotFound(f"File not found: {key}")
            return meta, data

        meta, data = await asyncio.to_thread(read_sync)
        return FileObject(**meta.model_dump(), content=data)

    async def get_metadata(self, key: str) -> Optional[FileMetadata]:
        rel = self._rel(key)

        def load():
            with _io_errors("metadata", key):
                return self._load_metadata(self.root / rel, self._display(rel))

        return await asyncio.to_thread(load)

    async def delete(self, key: str) -> bool:
        rel = self._rel(key)
        path = self.root / rel

        def rm() -> bool:
            with _io_errors("delete", key):
                if path.is_dir():
                    return False
                try:
                    path.unlink()
                except (FileNotFoundError, NotADirectoryError):
                    return False
                self._sidecar(path).unlink(missing_ok=True)
                self._prune_empty_dirs(path.parent)
            return True

        deleted = await asyncio.to_thread(rm)
        log.debug("fs delete key=%s deleted=%s", rel, deleted)
        return deleted

    async def list(self, options: Optional[ListOptions] = None) -> ListResult:
        opts = options or ListOptions()
        # walked paths are always normalized, so the prefix must be too
        raw = opts.prefix.replace("\\", SEP)
        caller_prefix = normalize_key(raw)
        if caller_prefix and raw.endswith(SEP):
            caller_prefix += SEP
        prefix = list_prefix(caller_prefix, self.config.base_path)
        if ".." in prefix.split(SEP):
            raise InvalidRequest("invalid prefix (traversal detected)")
        after = tuple(_decode_cursor(opts.cursor).split(SEP)) if opts.cursor else None

        start_rel = prefix.rsplit(SEP, 1)[0] if SEP in prefix else ""
        files: List[FileMetadata] = []
        last_rel: Optional[str] = None
        has_more = False

        async def walk(directory: Path, rel_dir: str) -> bool:
            nonlocal last_rel, has_more
            with _io_errors("list", rel_dir or "/"):
                entries = await asyncio.to_thread(_scan, directory)
            for name, is_dir in entries:
                rel = f"{rel_dir}{SEP}{name}" if rel_dir else name
                if is_dir:
                    as_dir = rel + SEP
                    if not (as_dir.startswith(prefix) or prefix.startswith(as_dir)):
                        continue
                    parts = tuple(rel.split(SEP))
                    if after is not None and parts < after[:len(parts)]:
                        continue
                    if await walk(directory / name, rel):
                        return True
                    continue
                if name.endswith(SIDECAR_SUFFIX) or name.endswith(TEMP_SUFFIX):
                    continue
                if not rel.startswith(prefix):
                    continue
                if after is not None and tuple(rel.split(SEP)) <= after:
                    continue
                if len(files) >= opts.limit:
                    has_more = True
                    return True
                with _io_errors("list", rel):
                    meta = await asyncio.to_thread(self._load_metadata, directory / name, self._display(rel))
                if meta is not None:
                    files.append(meta)
                    last_rel = rel
            return False

        await walk(self.root / start_rel if start_rel else self.root, start_rel)
        return ListResult(
            files=files,
            next_cursor=_encode_cursor(last_rel) if has_more and last_rel else None,
            has_more=has_more,
        )

    async def get_signed_url(self, key: str, options: Optional[SignedUrlOptions] = None) -> str:
        rel = self._rel(key)
        if not self.base_url:
            raise ConfigurationError("base_url not configured for filesystem adapter")
        return f"{self.base_url.rstrip('/')}/{quote(rel)}"

    async def get_signed_url_upload(self, key: str, options: Optional[SignedUrlOptions] = None) -> SignedUrlUploadResult:
        raise CapabilityUnsupported("Signed upload URLs are not supported for the filesystem adapter")

    async def copy(self, source_key: str, destination_key: str) -> FileMetadata:
        src_rel, dst_rel = self._rel(source_key), self._rel(destination_key)
        src, dst = self.root / src_rel, self.root / dst_rel

        def copy_sync() -> Optional[FileMetadata]:
            with _io_errors("copy", source_key):
                meta = self._load_metadata(src, self._display(src_rel))
                if meta is None:
                    raise FileNotFound(f"File not found: {source_key}")
                dst.parent.mkdir(parents=True, exist_ok=True)
                tmp = dst.with_name(f".{dst.name}.{uuid.uuid4().hex}{TEMP_SUFFIX}")
                try:
                    shutil.copyfile(src, tmp)
                    os.replace(tmp, dst)
                except FileNotFoundError:
                    tmp.unlink(missing_ok=True)
                    raise FileNotFound(f"File not found: {source_key}")
                except BaseException:
                    tmp.unlink(missing_ok=True)
                    raise
                dst_display = self._display(dst_rel)
                self._write_sidecar(dst, meta.model_copy(update={
                    "key": dst_display,
                    "name": extract_name(dst_display),
                    "uploaded_at": datetime.now(timezone.utc),
                }))
                return self._load_metadata(dst, dst_display)

        meta = await asyncio.to_thread(copy_sync)
        if meta is None:
            raise BackendError(f'Failed to copy file from "{source_key}" to "{destination_key}"')
        return meta

    async def move(self, source_key: str, destination_key: str) -> FileMetadata:
        same = self._rel(source_key) == self._rel(destination_key)
        return await move_with_compensation(self, source_key, destination_key, same_object=same)
