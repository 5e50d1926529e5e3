
from __future__ import annotations

from typing import Optional


class FileStorageError(Exception):
    """Base class for file storage adapter errors."""


class FileNotFound(FileStorageError):
    pass


class InvalidRequest(FileStorageError):
    pass


class CapabilityUnsupported(FileStorageError):
    """The backend does not offer the requested operation."""


class ConfigurationError(FileStorageError):
    """A backend parameter needed for the operation is not configured."""


class BackendError(FileStorageError):
    """Backend I/O failure; the native exception is chained as __cause__."""


class MoveError(FileStorageError):
    """Delete-source phase of a move failed after the copy succeeded."""

    def __init__(
        self,
        message: str,
        *,
        source_key: str,
        destination_key: str,
        rolled_back: bool,
        rollback_error: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.source_key = source_key
        self.destination_key = destination_key
        self.rolled_back = rolled_back
        self.rollback_error = rollback_error

    @property
    def duplicate_possible(self) -> bool:
        return not self.rolled_back
