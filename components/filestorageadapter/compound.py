"""
Two-phase move shared by all backends.

    1. copy source -> destination; a failure here fails the move as-is.
    2. delete source; on failure delete the destination again (rollback).

If the rollback fails too, both objects may exist. That state is reported
through ``MoveError.rolled_back == False`` and never hidden.
"""

from __future__ import annotations

import logging

from .contracts import FileMetadata
from .errors import InvalidRequest, MoveError
from .ports import FileStoragePort

log = logging.getLogger("filestorage.move")


async def move_with_compensation(
    adapter: FileStoragePort, source_key: str, destination_key: str, *, same_object: bool = False
) -> FileMetadata:
    if same_object:
        raise InvalidRequest(f'source and destination resolve to the same object: "{source_key}"')

    metadata = await adapter.copy(source_key, destination_key)

    try:
        deleted = await adapter.delete(source_key)
    except Exception as cause:
        try:
            await adapter.delete(destination_key)
        except Exception as rollback_error:
            log.warning(
                "move rollback failed adapter=%s src=%s dst=%s err=%s",
                adapter.adapter, source_key, destination_key, rollback_error,
            )
            raise MoveError(
                f'Failed to move file from "{source_key}" to "{destination_key}": {cause}; '
                f"rollback of the destination also failed ({rollback_error}), "
                f"so both source and destination may now exist",
                source_key=source_key,
                destination_key=destination_key,
                rolled_back=False,
                rollback_error=rollback_error,
            ) from cause
        raise MoveError(
            f'Failed to move file from "{source_key}" to "{destination_key}": {cause}',
            source_key=source_key,
            destination_key=destination_key,
            rolled_back=True,
        ) from cause

    if not deleted:
        # source disappeared between copy and delete; the destination holds the data
        log.warning("move source vanished before delete adapter=%s src=%s", adapter.adapter, source_key)
    return metadata
