"""Command channel, the only way the presentation layer reaches storage.

Two closed allow-lists gate the boundary:
1. COMMANDS: request/response, initiated by the presentation layer
2. NOTIFICATIONS: zero-argument signals emitted by the privileged side

Anything outside them is rejected with InvalidCommand before a handler runs.
"""

from __future__ import annotations

import inspect
import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable
from urllib.parse import urlparse

from mapkeep.connectors.base import BrowserOpener, CancelSaveDialog
from mapkeep.errors import InvalidCommand
from mapkeep.storage.engine import MAP_EXTENSION

if TYPE_CHECKING:
    from mapkeep.connectors.base import NotificationHandler, SaveDialog, UrlOpener
    from mapkeep.storage.engine import MapStorage

logger = logging.getLogger(__name__)

COMMANDS = frozenset(
    {
        "list",
        "load",
        "save",
        "create",
        "delete",
        "export",
        "export_raw",
        "import",
        "get_storage_location",
        "open_external",
    }
)

NOTIFICATIONS = frozenset({"new_document_requested", "save_requested"})

EXTERNAL_URL_SCHEMES = frozenset({"http", "https", "mailto"})


class _Subscription:
    __slots__ = ("handler", "active")

    def __init__(self, handler: NotificationHandler) -> None:
        self.handler = handler
        self.active = True


def _require(name: str, value: Any, kind: type | tuple[type, ...]) -> None:
    if not isinstance(value, kind):
        raise InvalidCommand(f"Argument '{name}' has unexpected type {type(value).__name__}")


class CommandChannel:
    """Validated dispatch from command names to storage operations."""

    def __init__(
        self,
        storage: MapStorage,
        *,
        dialog: SaveDialog | None = None,
        opener: UrlOpener | None = None,
    ) -> None:
        self._storage = storage
        self._dialog = dialog or CancelSaveDialog()
        self._opener = opener or BrowserOpener()
        self._handlers: dict[str, Callable[..., Any]] = {
            "list": self._list,
            "load": self._load,
            "save": self._save,
            "create": self._create,
            "delete": self._delete,
            "export": self._export,
            "export_raw": self._export_raw,
            "import": self._import,
            "get_storage_location": self._get_storage_location,
            "open_external": self._open_external,
        }
        self._subscribers: dict[str, list[_Subscription]] = {name: [] for name in NOTIFICATIONS}
        self._subscription_lock = threading.RLock()

    # ── Commands ─────────────────────────────────────────────

    async def invoke(self, command: str, *args: Any) -> Any:
        """Dispatch ``command`` to its handler and return the complete result."""
        if not isinstance(command, str) or command not in COMMANDS:
            logger.warning("Rejected command: %r", command)
            raise InvalidCommand(f"Invalid command: {command!r}")

        handler = self._handlers[command]
        try:
            inspect.signature(handler).bind(*args)
        except TypeError as e:
            logger.warning("Rejected malformed '%s' request: %s", command, e)
            raise InvalidCommand(f"Malformed arguments for '{command}': {e}") from e

        logger.debug("Dispatching %s (%d args)", command, len(args))
        return await handler(*args)

    async def _list(self) -> list[dict]:
        return [m.to_dict() for m in await self._storage.list_maps()]

    async def _load(self, map_id: str) -> str:
        _require("id", map_id, str)
        return await self._storage.load(map_id)

    async def _save(self, map_id: str, content: str, title_hint: str | None = None) -> None:
        _require("id", map_id, str)
        _require("content", content, str)
        # The stored title always comes from content; the hint is informational.
        logger.debug("Saving %s (title hint: %s)", map_id, title_hint)
        await self._storage.save(map_id, content)

    async def _create(self, title: str) -> str:
        _require("title", title, str)
        return await self._storage.create(title)

    async def _delete(self, map_id: str) -> None:
        _require("id", map_id, str)
        await self._storage.delete(map_id)

    async def _export(self, map_id: str, title_hint: str | None = None) -> bool:
        _require("id", map_id, str)
        ext = MAP_EXTENSION.lstrip(".")
        default_name = f"{title_hint}.{ext}" if title_hint else f"mindmap.{ext}"
        destination = await self._dialog.ask_save_path("Export Mindmap", default_name, ext)
        if not destination:
            return False
        await self._storage.export_to(map_id, Path(destination))
        return True

    async def _export_raw(self, content: bytes, name: str, extension: str) -> bool:
        _require("content", content, (bytes, bytearray, memoryview))
        _require("name", name, str)
        _require("extension", extension, str)
        destination = await self._dialog.ask_save_path(
            f"Save {extension.upper()}", name, extension
        )
        if not destination:
            return False
        await self._storage.write_external(Path(destination), bytes(content))
        return True

    async def _import(self, title: str, content: str) -> str:
        _require("title", title, str)
        _require("content", content, str)
        return await self._storage.import_map(title, content)

    async def _get_storage_location(self) -> str:
        return str(self._storage.storage_location)

    async def _open_external(self, url: str) -> None:
        _require("url", url, str)
        scheme = urlparse(url).scheme.lower()
        if scheme not in EXTERNAL_URL_SCHEMES:
            logger.warning("Ignoring external URL with scheme %r: %s", scheme, url)
            return
        await self._opener.open(url)

    # ── Notifications ────────────────────────────────────────

    def _check_notification(self, notification: str) -> None:
        if not isinstance(notification, str) or notification not in NOTIFICATIONS:
            logger.warning("Rejected notification: %r", notification)
            raise InvalidCommand(f"Invalid notification: {notification!r}")

    def subscribe(self, notification: str, handler: NotificationHandler) -> Callable[[], None]:
        """Register ``handler``; the returned callable detaches it (idempotent).

        Once the unsubscribe callable has returned, the handler is never
        called again for this subscription.
        """
        self._check_notification(notification)
        subscription = _Subscription(handler)
        with self._subscription_lock:
            self._subscribers[notification].append(subscription)

        def unsubscribe() -> None:
            with self._subscription_lock:
                subscription.active = False
                try:
                    self._subscribers[notification].remove(subscription)
                except ValueError:
                    pass

        return unsubscribe

    async def notify(self, notification: str) -> int:
        """Deliver ``notification`` to current subscribers. Returns delivery count."""
        self._check_notification(notification)
        with self._subscription_lock:
            snapshot = list(self._subscribers[notification])

        delivered = 0
        for subscription in snapshot:
            # Membership is re-checked under the lock right before delivery,
            # so an unsubscribe that has returned always wins.
            with self._subscription_lock:
                if not subscription.active:
                    continue
                try:
                    result = subscription.handler()
                except Exception:
                    logger.exception("Handler for %s failed", notification)
                    continue
            delivered += 1
            if inspect.isawaitable(result):
                try:
                    await result
                except Exception:
                    logger.exception("Handler for %s failed", notification)
        return delivered
