"""Entry point: python -m mapkeep [shell|list|create|show|delete|export|where]

- No args / "shell": Interactive REPL over the command channel
- Other commands:   One-shot requests through the same channel
"""

from __future__ import annotations

import asyncio
import logging
import shlex
import sys

from mapkeep.config import load_config
from mapkeep.errors import MapkeepError

USAGE = """\
Usage: python -m mapkeep [command] [args]
  shell                 Interactive REPL (default)
  list                  List mindmaps, newest first
  create <title>        Create a mindmap and print its id
  show <id>             Print a mindmap's markup
  delete <id>           Delete a mindmap
  export <id> [title]   Export a mindmap (asks for a destination)
  where                 Print the storage directory"""


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _build_app():
    from mapkeep.connectors.cli import PromptSaveDialog
    from mapkeep.core import Mapkeep

    config = load_config()
    _setup_logging(config.log_level)
    return Mapkeep(config, dialog=PromptSaveDialog())


def _run_shell() -> None:
    """Interactive REPL mode."""
    from mapkeep.connectors.cli import CLIConnector

    app = _build_app()

    async def run() -> None:
        await app.start()
        await CLIConnector(app.channel).start()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


def _run_once(cmd: str, args: list[str]) -> int:
    """One-shot mode: run a single REPL command and print its output."""
    from mapkeep.connectors.cli import CLIConnector

    app = _build_app()
    repl_cmd = {"list": "ls", "create": "new", "delete": "rm"}.get(cmd, cmd)
    line = " ".join([repl_cmd, *map(shlex.quote, args)])

    async def run() -> str:
        await app.start()
        return await CLIConnector(app.channel).handle_line(line)

    try:
        output = asyncio.run(run())
    except MapkeepError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(output)
    return 1 if output.startswith(("Error:", "Unknown command:")) else 0


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "shell"

    if cmd in ("shell", "repl"):
        _run_shell()
    elif cmd in ("list", "create", "show", "delete", "export", "where"):
        sys.exit(_run_once(cmd, sys.argv[2:]))
    else:
        print(USAGE)
        sys.exit(1)


if __name__ == "__main__":
    main()
