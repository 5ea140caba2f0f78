"""File-backed mindmap storage.

One ``<id>.wxml`` file per document inside a single storage root. The engine
is the only reader/writer of that directory. Titles are never stored; they
are derived from content on every listing.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import os
import shutil
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Sequence, TypeVar
from xml.sax.saxutils import quoteattr

from mapkeep.errors import ExportFailure, NotFound, StorageIOError
from mapkeep.storage.metadata import extract_title

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAP_EXTENSION = ".wxml"

DEFAULT_MAP_TEMPLATE = """\
<map name={title} version="tango" theme="prism" layout="mindmap">
    <topic central="true" text={title} id="1" fontStyle=";;#ffffff;;;"/>
</map>"""


@dataclass
class MapMetadata:
    """Advisory listing record. ``title`` may lag behind the file content."""

    id: str
    title: str
    created: float  # epoch ms
    modified: float  # epoch ms
    file_path: str

    def to_dict(self) -> dict:
        data = asdict(self)
        data["filePath"] = data.pop("file_path")
        return data


def render_template(title: str) -> str:
    return DEFAULT_MAP_TEMPLATE.format(title=quoteattr(title))


def is_valid_id(map_id: str) -> bool:
    """Only canonical UUID strings address documents."""
    if not isinstance(map_id, str):
        return False
    try:
        return str(uuid.UUID(map_id)) == map_id
    except ValueError:
        return False


# newline="" keeps content byte-for-byte: no \r\n or \r translation either way.
def _read_text(path: Path) -> str:
    with path.open(encoding="utf-8", newline="") as f:
        return f.read()


def _write_text(path: Path, content: str, mode: str) -> None:
    with path.open(mode, encoding="utf-8", newline="") as f:
        f.write(content)


class MapStorage:
    """Read/write access to the mindmap directory."""

    def __init__(
        self,
        root: Path,
        *,
        list_concurrency: int = 16,
        atomic_writes: bool = True,
        export_roots: Sequence[Path] = (),
    ) -> None:
        self.root = Path(root)
        self.atomic_writes = atomic_writes
        self.export_roots = [Path(p).expanduser().resolve() for p in export_roots]
        self._list_concurrency = max(1, list_concurrency)
        self._map_locks: dict[str, asyncio.Lock] = {}  # per-id serialization

    @property
    def storage_location(self) -> Path:
        return self.root

    # ── Executor plumbing ────────────────────────────────────

    async def _run(self, func: Callable[..., T], *args) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    async def _run_uncancelled(self, func: Callable[..., T], *args) -> T:
        """Run a write so that cancelling the caller cannot abort it half-way."""
        return await asyncio.shield(self._run(func, *args))

    # ── Lane locks (per-id serialization) ────────────────────

    def _get_map_lock(self, map_id: str) -> asyncio.Lock:
        if map_id not in self._map_locks:
            self._map_locks[map_id] = asyncio.Lock()
        return self._map_locks[map_id]

    # ── Paths ────────────────────────────────────────────────

    def _path_for(self, map_id: str) -> Path:
        if not is_valid_id(map_id):
            raise NotFound(str(map_id))
        return self.root / f"{map_id}{MAP_EXTENSION}"

    def _check_export_scope(self, destination: Path) -> None:
        if not self.export_roots:
            return
        resolved = destination.expanduser().resolve()
        for allowed in self.export_roots:
            if resolved == allowed or allowed in resolved.parents:
                return
        raise ExportFailure(f"Export destination {destination} is outside the permitted directories")

    # ── Initialization ───────────────────────────────────────

    async def initialize(self) -> None:
        """Ensure the storage root exists. Idempotent."""
        try:
            await self._run(functools.partial(self.root.mkdir, parents=True, exist_ok=True))
        except OSError as e:
            raise StorageIOError(f"Cannot create storage directory {self.root}: {e}") from e

    # ── Listing ──────────────────────────────────────────────

    async def list_maps(self) -> list[MapMetadata]:
        """Return metadata for every readable document, newest first.

        Unreadable files are logged and left out; they never fail the call.
        """
        await self.initialize()
        try:
            paths = await self._run(self._scan)
        except OSError as e:
            logger.error("Error listing mindmaps in %s: %s", self.root, e)
            return []

        semaphore = asyncio.Semaphore(self._list_concurrency)

        async def read_one(path: Path) -> MapMetadata:
            async with semaphore:
                return await self._run(self._read_metadata, path)

        results = await asyncio.gather(*(read_one(p) for p in paths), return_exceptions=True)

        maps: list[MapMetadata] = []
        for path, result in zip(paths, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning("Skipping unreadable mindmap %s: %s", path.name, result)
                continue
            maps.append(result)

        maps.sort(key=lambda m: m.id)
        maps.sort(key=lambda m: m.modified, reverse=True)
        return maps

    def _scan(self) -> list[Path]:
        paths = []
        for path in sorted(self.root.glob(f"*{MAP_EXTENSION}")):
            if not path.is_file():
                continue
            if not is_valid_id(path.stem):
                logger.debug("Ignoring foreign file %s", path.name)
                continue
            paths.append(path)
        return paths

    def _read_metadata(self, path: Path) -> MapMetadata:
        stats = path.stat()
        content = _read_text(path)
        created = getattr(stats, "st_birthtime", stats.st_ctime)
        return MapMetadata(
            id=path.stem,
            title=extract_title(content),
            created=created * 1000,
            modified=stats.st_mtime_ns / 1_000_000,
            file_path=str(path),
        )

    # ── Single-document operations ───────────────────────────

    async def load(self, map_id: str) -> str:
        path = self._path_for(map_id)
        try:
            return await self._run(_read_text, path)
        except FileNotFoundError as e:
            raise NotFound(map_id) from e
        except (OSError, UnicodeDecodeError) as e:
            raise StorageIOError(f"Cannot read mindmap {map_id}: {e}") from e

    async def save(self, map_id: str, content: str) -> None:
        """Replace the document's content entirely."""
        path = self._path_for(map_id)
        async with self._get_map_lock(map_id):
            try:
                await self._run_uncancelled(self._replace, path, content)
            except FileNotFoundError as e:
                raise NotFound(map_id) from e
            except OSError as e:
                raise StorageIOError(f"Cannot save mindmap {map_id}: {e}") from e
        logger.debug("Saved mindmap %s (%d chars)", map_id, len(content))

    def _replace(self, path: Path, content: str) -> None:
        previous_mtime = path.stat().st_mtime_ns  # FileNotFoundError if deleted
        if self.atomic_writes:
            tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
            try:
                _write_text(tmp, content, "x")
                os.replace(tmp, path)
            finally:
                tmp.unlink(missing_ok=True)
        else:
            _write_text(path, content, "w")

        # mtime must never move backwards across saves of the same document
        stats = path.stat()
        if stats.st_mtime_ns < previous_mtime:
            os.utime(path, ns=(stats.st_atime_ns, previous_mtime))

    async def create(self, title: str) -> str:
        """Allocate a fresh id and write the default template for ``title``."""
        map_id = await self._create_with(render_template(title))
        logger.info("Created mindmap %s (%s)", map_id, title)
        return map_id

    async def import_map(self, title: str, content: str) -> str:
        """Store already-converted mindmap markup as a new document."""
        map_id = await self._create_with(content)
        logger.info("Imported mindmap %s (%s)", map_id, title)
        return map_id

    async def _create_with(self, content: str) -> str:
        await self.initialize()
        map_id = str(uuid.uuid4())
        path = self._path_for(map_id)
        try:
            await self._run_uncancelled(self._write_new, path, content)
        except OSError as e:
            raise StorageIOError(f"Cannot create mindmap file {path}: {e}") from e
        return map_id

    def _write_new(self, path: Path, content: str) -> None:
        # "x" mode: an existing file is never overwritten
        _write_text(path, content, "x")

    async def delete(self, map_id: str) -> None:
        path = self._path_for(map_id)
        async with self._get_map_lock(map_id):
            try:
                await self._run_uncancelled(path.unlink)
            except FileNotFoundError as e:
                raise NotFound(map_id) from e
            except OSError as e:
                raise StorageIOError(f"Failed to delete mindmap {map_id}: {e}") from e
        # Only once the file is gone: any save still queued on the old lock,
        # and any save that takes a fresh one, can only end in NotFound.
        self._map_locks.pop(map_id, None)
        logger.info("Deleted mindmap %s", map_id)

    async def export_to(self, map_id: str, destination: Path) -> None:
        """Copy the document's current on-disk content to ``destination``."""
        source = self._path_for(map_id)
        destination = Path(destination)

        try:
            content = await self._run(source.read_bytes)
        except FileNotFoundError as e:
            raise NotFound(map_id) from e
        except OSError as e:
            raise StorageIOError(f"Cannot read mindmap {map_id} for export: {e}") from e

        self._check_export_scope(destination)
        try:
            await self._run_uncancelled(destination.write_bytes, content)
        except OSError as e:
            raise ExportFailure(f"Failed to export mindmap {map_id} to {destination}: {e}") from e
        logger.info("Exported mindmap %s to %s", map_id, destination)

    async def write_external(self, destination: Path, content: bytes) -> None:
        """Write arbitrary bytes outside the store (converted exports)."""
        destination = Path(destination)
        self._check_export_scope(destination)
        try:
            await self._run_uncancelled(destination.write_bytes, bytes(content))
        except OSError as e:
            raise ExportFailure(f"Failed to write {destination}: {e}") from e
        logger.info("Wrote %d bytes to %s", len(content), destination)
