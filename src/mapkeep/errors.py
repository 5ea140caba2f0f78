"""Error taxonomy shared by the storage engine, channel and persistence adapter."""

from __future__ import annotations


class MapkeepError(Exception):
    """Base class for all mapkeep errors."""


class NotFound(MapkeepError):
    """No document file exists for the given id."""

    def __init__(self, map_id: str) -> None:
        super().__init__(f"Mindmap with id {map_id} not found")
        self.map_id = map_id


class ParseError(MapkeepError):
    """Document content is not well-formed mindmap markup."""

    def __init__(self, map_id: str, diagnostic: str) -> None:
        super().__init__(f"Failed to parse mindmap {map_id}: {diagnostic}")
        self.map_id = map_id
        self.diagnostic = diagnostic


class StorageIOError(MapkeepError):
    """Directory or file create/read/write/copy failure."""


class ExportFailure(StorageIOError):
    """The export destination could not be written."""


class InvalidCommand(MapkeepError):
    """Command or notification rejected at the channel boundary."""
