"""Presentation-side protocols the command channel depends on."""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from pathlib import Path
from typing import Awaitable, Callable, Protocol, Union, runtime_checkable

logger = logging.getLogger(__name__)

# Notification subscribers; may be plain functions or coroutine functions.
NotificationHandler = Callable[[], Union[None, Awaitable[None]]]


@runtime_checkable
class SaveDialog(Protocol):
    """Asks the user where to write an exported file."""

    async def ask_save_path(self, title: str, default_name: str, extension: str) -> Path | None:
        """Return the chosen destination, or None if the user cancelled."""
        ...


@runtime_checkable
class UrlOpener(Protocol):
    """Hands a URL to the desktop environment."""

    async def open(self, url: str) -> None: ...


class CancelSaveDialog:
    """Dialog for headless use: every export is treated as cancelled."""

    async def ask_save_path(self, title: str, default_name: str, extension: str) -> Path | None:
        logger.info("No save dialog available, cancelling '%s'", title)
        return None


class BrowserOpener:
    """Opens URLs with the stdlib webbrowser module, off the event loop."""

    async def open(self, url: str) -> None:
        loop = asyncio.get_running_loop()
        opened = await loop.run_in_executor(None, webbrowser.open, url)
        if not opened:
            logger.warning("No browser available to open %s", url)
