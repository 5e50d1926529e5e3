
from __future__ import annotations

import asyncio
import inspect
from typing import Any, AsyncIterable, Iterable, Union

from .errors import InvalidRequest

BytesLike = Union[bytes, bytearray, memoryview]
# bytes-like buffer | object with .read() (sync or async) | (async) iterable of chunks
Content = Union[BytesLike, Any, AsyncIterable[Any], Iterable[Any]]


def _coerce_chunk(chunk: Any) -> bytes:
    if isinstance(chunk, bytes):
        return chunk
    if isinstance(chunk, str):
        return chunk.encode("utf-8")
    if isinstance(chunk, (bytearray, memoryview)):
        return bytes(chunk)
    if isinstance(chunk, int):
        return bytes([chunk])
    try:
        return bytes(chunk)
    except TypeError as e:
        raise InvalidRequest(f"cannot convert chunk of type {type(chunk).__name__} to bytes") from e


async def _read_all(file_like: Any) -> bytes:
    reader = file_like.read
    if inspect.iscoroutinefunction(reader):
        data = await reader()
    else:
        data = await asyncio.to_thread(reader)
        if inspect.isawaitable(data):
            data = await data
    return _coerce_chunk(data)


async def to_buffer(content: Content) -> bytes:
    """Materialize upload content into a single bytes object.

    Accepts an in-memory buffer (returned as-is when already ``bytes``), a
    file-like object exposing ``read()`` (sync or async, e.g. an open binary
    file or an ``UploadFile``), or a sync/async iterable of chunks. Chunks are
    concatenated in arrival order; errors raised while reading propagate.
    """
    if isinstance(content, bytes):
        return content
    if isinstance(content, (bytearray, memoryview)):
        return bytes(content)
    if isinstance(content, str):
        raise InvalidRequest("text content must be encoded to bytes before upload")

    if callable(getattr(content, "read", None)):
        return await _read_all(content)

    if hasattr(content, "__aiter__"):
        chunks = [_coerce_chunk(chunk) async for chunk in content]
        return b"".join(chunks)

    if isinstance(content, Iterable):
        def drain() -> bytes:
            return b"".join(_coerce_chunk(chunk) for chunk in content)

        return await asyncio.to_thread(drain)

    raise InvalidRequest(f"unsupported content type: {type(content).__name__}")
