"""mapkeep hub: wires storage, channel and persistence together.

Responsibilities:
1. Build the storage engine from configuration (explicit storage root)
2. Own the command channel handed to the presentation layer
3. Select the editor persistence capability
4. Emit menu notifications on behalf of the privileged side
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mapkeep.channel import CommandChannel
from mapkeep.config import MapkeepConfig
from mapkeep.persistence import build_persistence
from mapkeep.storage.engine import MapStorage

if TYPE_CHECKING:
    from mapkeep.connectors.base import SaveDialog, UrlOpener
    from mapkeep.persistence import PersistenceManager

logger = logging.getLogger(__name__)


class Mapkeep:
    """Owns the privileged side of the application."""

    def __init__(
        self,
        config: MapkeepConfig,
        *,
        dialog: SaveDialog | None = None,
        opener: UrlOpener | None = None,
    ) -> None:
        self.config = config
        self.storage = MapStorage(
            config.storage.dir,
            list_concurrency=config.storage.list_concurrency,
            atomic_writes=config.storage.atomic_writes,
            export_roots=config.storage.export_roots,
        )
        self.channel = CommandChannel(self.storage, dialog=dialog, opener=opener)
        self._persistence: PersistenceManager | None = None

    @property
    def persistence(self) -> PersistenceManager:
        if self._persistence is None:
            self._persistence = build_persistence(
                self.config.persistence.mode,
                self.channel,
                creator=self.config.persistence.creator,
            )
        return self._persistence

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        """Prepare the storage root. Raises StorageIOError if it cannot be created."""
        await self.storage.initialize()
        logger.info("Storage ready at %s", self.storage.storage_location)

    # ── Menu notifications ────────────────────────────────────

    async def request_new_document(self) -> int:
        return await self.channel.notify("new_document_requested")

    async def request_save(self) -> int:
        return await self.channel.notify("save_requested")
