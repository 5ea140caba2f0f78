"""Local CLI REPL connector: a terminal presentation layer over the channel."""

from __future__ import annotations

import asyncio
import logging
import shlex
import sys
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from mapkeep.errors import MapkeepError

if TYPE_CHECKING:
    from mapkeep.channel import CommandChannel

logger = logging.getLogger(__name__)

HELP_TEXT = """\
Commands:
  ls                     list mindmaps, newest first
  new <title>            create a mindmap
  show <id>              print a mindmap's markup
  rm <id>                delete a mindmap
  export <id> [title]    copy a mindmap to a file of your choice
  import <file> [title]  add an existing .wxml file as a new mindmap
  where                  show the storage directory
  open <url>             open a link in the browser
  quit                   leave"""


def _read_line(prompt: str) -> str | None:
    try:
        sys.stdout.write(prompt)
        sys.stdout.flush()
        raw = sys.stdin.buffer.readline()
        if not raw:
            return None
        return raw.decode("utf-8", errors="replace").rstrip("\n")
    except EOFError:
        return None


def format_listing(maps: list[dict]) -> str:
    if not maps:
        return "(no mindmaps yet)"
    lines = []
    for m in maps:
        modified = datetime.fromtimestamp(m["modified"] / 1000).strftime("%Y-%m-%d %H:%M")
        lines.append(f"{m['id']}  {modified}  {m['title']}")
    return "\n".join(lines)


class PromptSaveDialog:
    """Save dialog that asks for a destination path on stdin."""

    async def ask_save_path(self, title: str, default_name: str, extension: str) -> Path | None:
        loop = asyncio.get_running_loop()
        answer = await loop.run_in_executor(
            None, _read_line, f"{title}: save as [{default_name}] (empty line cancels): "
        )
        if answer is None or not answer.strip():
            return None
        path = Path(answer.strip()).expanduser()
        if path.is_dir():
            path = path / default_name
        if not path.suffix:
            path = path.with_suffix(f".{extension}")
        return path


class CLIConnector:
    """Interactive REPL connector. Reads from stdin, writes to stdout."""

    def __init__(self, channel: CommandChannel) -> None:
        self._channel = channel
        self._running = False

    @property
    def name(self) -> str:
        return "cli"

    async def start(self) -> None:
        self._running = True
        loop = asyncio.get_running_loop()
        unsubscribe = self._channel.subscribe("new_document_requested", self._on_new_requested)

        print("mapkeep (type 'help' for commands, 'quit' or Ctrl+C to leave)")
        print("-" * 48)

        try:
            while self._running:
                try:
                    line = await loop.run_in_executor(None, _read_line, "\nmapkeep> ")
                except (EOFError, KeyboardInterrupt):
                    print("\nBye!")
                    break

                if line is None or line.strip().lower() in ("exit", "quit"):
                    print("Bye!")
                    break

                if not line.strip():
                    continue

                print(await self.handle_line(line))
        finally:
            unsubscribe()

    async def stop(self) -> None:
        self._running = False

    def _on_new_requested(self) -> None:
        print("\nNew mindmap requested, use: new <title>")

    async def handle_line(self, line: str) -> str:
        """Run one REPL command and return the text to show."""
        try:
            parts = shlex.split(line)
        except ValueError as e:
            return f"Error: {e}"
        if not parts:
            return ""
        cmd, args = parts[0].lower(), parts[1:]

        try:
            return await self._dispatch(cmd, args)
        except MapkeepError as e:
            logger.debug("Command %s failed: %s", cmd, e)
            return f"Error: {e}"

    async def _dispatch(self, cmd: str, args: list[str]) -> str:
        if cmd in ("help", "?"):
            return HELP_TEXT
        if cmd in ("ls", "list"):
            return format_listing(await self._channel.invoke("list"))
        if cmd == "new" and args:
            title = " ".join(args)
            map_id = await self._channel.invoke("create", title)
            return f"Created {map_id} ({title})"
        if cmd == "show" and len(args) == 1:
            return await self._channel.invoke("load", args[0])
        if cmd == "rm" and len(args) == 1:
            await self._channel.invoke("delete", args[0])
            return f"Deleted {args[0]}"
        if cmd == "export" and args:
            title = " ".join(args[1:]) or None
            done = await self._channel.invoke("export", args[0], title)
            return "Exported." if done else "Export cancelled."
        if cmd == "import" and args:
            return await self._import(Path(args[0]).expanduser(), " ".join(args[1:]))
        if cmd == "where":
            return await self._channel.invoke("get_storage_location")
        if cmd == "open" and len(args) == 1:
            await self._channel.invoke("open_external", args[0])
            return f"Opening {args[0]}"
        return f"Unknown command: {' '.join([cmd, *args])} (type 'help')"

    async def _import(self, source: Path, title: str) -> str:
        loop = asyncio.get_running_loop()
        try:
            content = await loop.run_in_executor(None, source.read_text, "utf-8")
        except (OSError, UnicodeDecodeError) as e:
            return f"Error: cannot read {source}: {e}"
        map_id = await self._channel.invoke("import", title or source.stem, content)
        return f"Imported {source.name} as {map_id}"
