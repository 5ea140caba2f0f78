"""Tests for the REPL connector and the command line entry point."""

from __future__ import annotations

import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from mapkeep import __main__ as entry
from mapkeep.channel import CommandChannel
from mapkeep.connectors.base import CancelSaveDialog, SaveDialog, UrlOpener, BrowserOpener
from mapkeep.connectors.cli import CLIConnector, PromptSaveDialog, format_listing
from mapkeep.storage.engine import MapStorage


@pytest.fixture
def dialog() -> MagicMock:
    d = MagicMock()
    d.ask_save_path = AsyncMock(return_value=None)
    return d


@pytest.fixture
def channel(tmp_path: Path, dialog: MagicMock) -> CommandChannel:
    return CommandChannel(MapStorage(tmp_path / "maps"), dialog=dialog)


@pytest.fixture
def cli(channel: CommandChannel) -> CLIConnector:
    return CLIConnector(channel)


class TestHandleLine:
    @pytest.mark.asyncio
    async def test_create_and_list(self, cli: CLIConnector):
        out = await cli.handle_line("new Trip Plan")
        assert out.startswith("Created ")
        assert out.endswith("(Trip Plan)")
        listing = await cli.handle_line("ls")
        assert "Trip Plan" in listing

    @pytest.mark.asyncio
    async def test_quoted_title(self, cli: CLIConnector, channel: CommandChannel):
        await cli.handle_line('new "Budget  2025"')
        [entry_] = await channel.invoke("list")
        assert entry_["title"] == "Budget  2025"

    @pytest.mark.asyncio
    async def test_show_and_remove(self, cli: CLIConnector, channel: CommandChannel):
        map_id = await channel.invoke("create", "Short lived")
        assert 'text="Short lived"' in await cli.handle_line(f"show {map_id}")
        assert await cli.handle_line(f"rm {map_id}") == f"Deleted {map_id}"
        assert (await cli.handle_line(f"show {map_id}")).startswith("Error:")

    @pytest.mark.asyncio
    async def test_empty_listing(self, cli: CLIConnector):
        assert await cli.handle_line("ls") == "(no mindmaps yet)"

    @pytest.mark.asyncio
    async def test_export(self, cli: CLIConnector, channel, dialog, tmp_path: Path):
        map_id = await channel.invoke("create", "Out")
        assert await cli.handle_line(f"export {map_id}") == "Export cancelled."
        dialog.ask_save_path.return_value = tmp_path / "out.wxml"
        assert await cli.handle_line(f"export {map_id} Out") == "Exported."
        assert (tmp_path / "out.wxml").exists()

    @pytest.mark.asyncio
    async def test_import(self, cli: CLIConnector, channel: CommandChannel, tmp_path: Path):
        source = tmp_path / "fixture-map.wxml"
        source.write_text('<map><topic central="true" text="Imported Map"/></map>', encoding="utf-8")
        out = await cli.handle_line(f"import {source}")
        assert out.startswith("Imported fixture-map.wxml as ")
        [entry_] = await channel.invoke("list")
        assert entry_["title"] == "Imported Map"

    @pytest.mark.asyncio
    async def test_import_missing_file(self, cli: CLIConnector, tmp_path: Path):
        out = await cli.handle_line(f"import {tmp_path / 'nope.wxml'}")
        assert out.startswith("Error: cannot read")

    @pytest.mark.asyncio
    async def test_where(self, cli: CLIConnector, tmp_path: Path):
        assert await cli.handle_line("where") == str(tmp_path / "maps")

    @pytest.mark.asyncio
    async def test_unknown(self, cli: CLIConnector):
        assert (await cli.handle_line("frobnicate")).startswith("Unknown command")

    @pytest.mark.asyncio
    async def test_unbalanced_quotes(self, cli: CLIConnector):
        assert (await cli.handle_line('new "oops')).startswith("Error:")

    @pytest.mark.asyncio
    async def test_help(self, cli: CLIConnector):
        assert "import <file>" in await cli.handle_line("help")


class TestFormatListing:
    def test_rows(self):
        maps = [{"id": "abc", "title": "Plan", "modified": 1_700_000_000_000}]
        out = format_listing(maps)
        assert out.startswith("abc  ")
        assert out.endswith("  Plan")


class TestDialogs:
    def test_protocols(self):
        assert isinstance(PromptSaveDialog(), SaveDialog)
        assert isinstance(CancelSaveDialog(), SaveDialog)
        assert isinstance(BrowserOpener(), UrlOpener)

    @pytest.mark.asyncio
    async def test_cancel_dialog(self):
        assert await CancelSaveDialog().ask_save_path("Export", "m.wxml", "wxml") is None

    @pytest.mark.asyncio
    async def test_prompt_dialog_adds_name_and_extension(self, monkeypatch, tmp_path: Path):
        from mapkeep.connectors import cli as cli_module

        monkeypatch.setattr(cli_module, "_read_line", lambda prompt: str(tmp_path))
        path = await PromptSaveDialog().ask_save_path("Export", "Plan.wxml", "wxml")
        assert path == tmp_path / "Plan.wxml"

        monkeypatch.setattr(cli_module, "_read_line", lambda prompt: str(tmp_path / "plan"))
        path = await PromptSaveDialog().ask_save_path("Export", "Plan.wxml", "wxml")
        assert path == tmp_path / "plan.wxml"

    @pytest.mark.asyncio
    async def test_prompt_dialog_cancel(self, monkeypatch):
        from mapkeep.connectors import cli as cli_module

        monkeypatch.setattr(cli_module, "_read_line", lambda prompt: "")
        assert await PromptSaveDialog().ask_save_path("Export", "Plan.wxml", "wxml") is None


class TestEntryPoint:
    def test_usage_on_unknown_command(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["mapkeep", "bogus"])
        with pytest.raises(SystemExit) as exc_info:
            entry.main()
        assert exc_info.value.code == 1
        assert "Usage" in capsys.readouterr().out

    def test_one_shot_commands(self, monkeypatch, capsys, tmp_path: Path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("MAPKEEP_STORAGE_DIR", str(tmp_path / "maps"))

        assert entry._run_once("list", []) == 0
        assert "(no mindmaps yet)" in capsys.readouterr().out

        assert entry._run_once("create", ["Trip Plan"]) == 0
        assert "(Trip Plan)" in capsys.readouterr().out

        assert entry._run_once("list", []) == 0
        assert "Trip Plan" in capsys.readouterr().out

        assert entry._run_once("show", ["not-an-id"]) == 1
