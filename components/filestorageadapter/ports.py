
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from .content import Content
from .contracts import (
    DownloadOptions, FileMetadata, FileObject, ListOptions, ListResult,
    SignedUrlOptions, SignedUrlUploadResult, UploadOptions
)


class FileStoragePort(ABC):
    """Operation set every storage backend implements.

    Not-found is an absence marker for ``get_metadata`` (``None``),
    ``exists`` (``False``) and ``delete`` (``False``); every other operation
    raises on a missing object.
    """

    adapter: str = "abstract"

    @abstractmethod
    async def upload(self, key: str, content: Content, options: Optional[UploadOptions] = None) -> FileMetadata: ...

    @abstractmethod
    async def download(self, key: str, options: Optional[DownloadOptions] = None) -> FileObject: ...

    @abstractmethod
    async def get_metadata(self, key: str) -> Optional[FileMetadata]: ...

    @abstractmethod
    async def delete(self, key: str) -> bool: ...

    async def exists(self, key: str) -> bool:
        return await self.get_metadata(key) is not None

    @abstractmethod
    async def list(self, options: Optional[ListOptions] = None) -> ListResult: ...

    @abstractmethod
    async def get_signed_url(self, key: str, options: Optional[SignedUrlOptions] = None) -> str: ...

    @abstractmethod
    async def get_signed_url_upload(self, key: str, options: Optional[SignedUrlOptions] = None) -> SignedUrlUploadResult: ...

    @abstractmethod
    async def copy(self, source_key: str, destination_key: str) -> FileMetadata: ...

    @abstractmethod
    async def move(self, source_key: str, destination_key: str) -> FileMetadata: ...

    async def aclose(self) -> None:
        """Release clients the adapter created itself."""
