"""Persistence contract for the embedded mindmap editor.

The editor loads and saves element trees; it never learns that documents
live in files. Everything goes through the command channel.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Protocol, runtime_checkable
from xml.etree import ElementTree

from mapkeep.errors import ParseError
from mapkeep.storage.metadata import FALLBACK_TITLE, extract_title

if TYPE_CHECKING:
    from mapkeep.channel import CommandChannel

logger = logging.getLogger(__name__)

PERSISTENCE_MODES = ("unlocked", "locked")


@dataclass
class SaveResult:
    """Outcome of a background save."""

    map_id: str
    ok: bool
    title: str = FALLBACK_TITLE
    error: BaseException | None = None


SaveCallback = Callable[[SaveResult], None]
SaveFuture = asyncio.Future[SaveResult] | concurrent.futures.Future[SaveResult]


@dataclass
class MapInfo:
    """Header information the editor shows alongside a document."""

    id: str
    title: str
    creator: str
    locked: bool = False
    locked_message: str = ""
    starred: bool = False
    zoom: float = 1.0

    def update_title(self, title: str) -> None:
        # Persisted titles come from the central topic on the next save.
        self.title = title


@runtime_checkable
class PersistenceManager(Protocol):
    """What the editor engine requires from whatever backs it."""

    async def load_document(self, map_id: str) -> ElementTree.Element: ...

    def save_document(
        self,
        map_id: str,
        model: ElementTree.Element,
        options: dict[str, Any] | None = None,
        on_result: SaveCallback | None = None,
    ) -> SaveFuture: ...

    def discard_changes(self, map_id: str) -> None: ...

    def unlock(self, map_id: str) -> None: ...


class LocalPersistence:
    """Single-user persistence over the command channel (no locking)."""

    def __init__(self, channel: CommandChannel, creator: str = "local") -> None:
        self._channel = channel
        self._creator = creator

    async def load_document(self, map_id: str) -> ElementTree.Element:
        """Load and parse a document. NotFound from the channel passes through."""
        xml = await self._channel.invoke("load", map_id)
        try:
            return ElementTree.fromstring(xml)
        except ElementTree.ParseError as e:
            logger.error("Failed to parse mindmap %s: %s", map_id, e)
            raise ParseError(map_id, str(e)) from e

    def save_document(
        self,
        map_id: str,
        model: ElementTree.Element,
        options: dict[str, Any] | None = None,
        on_result: SaveCallback | None = None,
    ) -> SaveFuture:
        """Serialize ``model`` and save it in the background.

        Never raises; the returned future always resolves to a SaveResult and
        ``on_result`` receives the same value. Outside a running event loop
        nothing can be scheduled, so the result is an already-resolved
        ``concurrent.futures.Future`` reporting the failure. ``options``
        (history/preference flags) are accepted for contract compatibility
        and ignored.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            logger.error("Cannot save mindmap %s without a running event loop", map_id)
            resolved: concurrent.futures.Future[SaveResult] = concurrent.futures.Future()
            self._finish(resolved, SaveResult(map_id=map_id, ok=False, error=e), on_result)
            return resolved

        try:
            xml = ElementTree.tostring(model, encoding="unicode")
        except Exception as e:
            logger.error("Failed to serialize mindmap %s: %s", map_id, e)
            future: asyncio.Future[SaveResult] = loop.create_future()
            self._finish(future, SaveResult(map_id=map_id, ok=False, error=e), on_result)
            return future

        # Title from the serialized text so it matches exactly what is stored.
        title = extract_title(xml)
        future = loop.create_future()
        task = loop.create_task(self._channel.invoke("save", map_id, xml, title))

        def _done(t: asyncio.Task) -> None:
            if t.cancelled():
                result = SaveResult(map_id, ok=False, title=title, error=asyncio.CancelledError())
            elif t.exception() is not None:
                logger.error("Failed to save mindmap %s: %s", map_id, t.exception())
                result = SaveResult(map_id, ok=False, title=title, error=t.exception())
            else:
                result = SaveResult(map_id, ok=True, title=title)
            self._finish(future, result, on_result)

        task.add_done_callback(_done)
        return future

    def _finish(
        self,
        future: SaveFuture,
        result: SaveResult,
        on_result: SaveCallback | None,
    ) -> None:
        if not future.done():
            future.set_result(result)
        if on_result is not None:
            try:
                on_result(result)
            except Exception:
                logger.exception("Save callback for %s failed", result.map_id)

    def discard_changes(self, map_id: str) -> None:
        """Intentional no-op: a local document has no server-side draft to drop."""

    def unlock(self, map_id: str) -> None:
        """Intentional no-op: local documents are never locked."""

    async def map_info(self, map_id: str) -> MapInfo:
        """Build the editor header for ``map_id`` from the advisory listing."""
        for entry in await self._channel.invoke("list"):
            if entry["id"] == map_id:
                return MapInfo(id=map_id, title=entry["title"], creator=self._creator)
        # Listing may omit a file it could not read; fall back to the content.
        xml = await self._channel.invoke("load", map_id)
        return MapInfo(id=map_id, title=extract_title(xml), creator=self._creator)


def build_persistence(
    mode: str, channel: CommandChannel, creator: str = "local"
) -> PersistenceManager:
    """Select the persistence capability named by configuration."""
    if mode == "unlocked":
        return LocalPersistence(channel, creator=creator)
    if mode == "locked":
        raise ValueError("Shared (locked) persistence is not available in a local deployment")
    raise ValueError(f"Unknown persistence mode: {mode!r} (expected one of {PERSISTENCE_MODES})")
