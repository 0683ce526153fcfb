"""Tests for icebreaker.cli: Click command-line interface."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from icebreaker import __version__
from icebreaker.cli import main
from icebreaker.errors import RemoteError
from icebreaker.models import (
    APIAccess,
    APIType,
    Bits,
    Cost,
    Details,
    EndpointId,
    File,
    HFModel,
    Id,
    ModelOnline,
    OpenAIConfig,
    Quantity,
)


@pytest.fixture
def home(tmp_path, monkeypatch):
    monkeypatch.setenv("ICEBREAKER_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("ICEBREAKER_LIBRARY", str(tmp_path / "library"))
    return tmp_path


def _bookmarks(home) -> dict:
    return json.loads((home / "home" / "bookmarks.json").read_text())


def _online() -> ModelOnline:
    return ModelOnline(
        endpoint_id=EndpointId.remote(APIType.NanoGPT, "openai/gpt-4o-mini"),
        config=APIAccess(APIType.NanoGPT, OpenAIConfig(api_key="sk")),
        cost=Cost(Quantity.usd_per_1m(0.15), Quantity.usd_per_1m(0.6)),
    )


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


class TestMainGroup:
    def test_help(self):
        result = CliRunner().invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "GGUF" in result.output

    def test_version(self):
        result = CliRunner().invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output


# ---------------------------------------------------------------------------
# Catalog commands
# ---------------------------------------------------------------------------


class TestScan:
    def test_empty_library(self, home):
        result = CliRunner().invoke(main, ["scan"])
        assert result.exit_code == 0
        assert "No models yet" in result.output

    def test_lists_local_models(self, home):
        weight = home / "library" / "author1" / "modelA" / "modelA-Q4_K_M.gguf"
        weight.parent.mkdir(parents=True)
        weight.write_bytes(b"\0" * 10)

        result = CliRunner().invoke(main, ["scan"])
        assert result.exit_code == 0
        assert "local:author1/modelA" in result.output
        assert "modelA-Q4_K_M.gguf" in result.output

    def test_library_option(self, home, tmp_path):
        other = tmp_path / "other"
        result = CliRunner().invoke(main, ["--library", str(other), "scan"])
        assert result.exit_code == 0
        assert str(other) in result.output


class TestSearch:
    def test_search(self, home):
        hits = [
            HFModel(
                Id("bartowski/Llama-3.2-1B-Instruct-GGUF"),
                datetime(2024, 9, 25, tzinfo=timezone.utc),
                12_300,
                85,
            )
        ]
        with patch("icebreaker.hub.search", new=AsyncMock(return_value=hits)) as mock:
            result = CliRunner().invoke(main, ["search", "llama"])
        assert result.exit_code == 0
        mock.assert_awaited_once_with("llama")
        assert "bartowski/Llama-3.2-1B-Instruct-GGUF" in result.output
        assert "12.30k" in result.output

    def test_remote_failure_exits_1(self, home):
        failing = AsyncMock(side_effect=RemoteError("hub answered HTTP 503", status_code=503))
        with patch("icebreaker.hub.search", new=failing):
            result = CliRunner().invoke(main, ["search", "llama"])
        assert result.exit_code == 1
        assert "HTTP 503" in result.output


class TestDetails:
    def test_details(self, home):
        info = Details(
            last_modified=datetime(2024, 9, 25, tzinfo=timezone.utc),
            downloads=12_300,
            likes=85,
            architecture="llama",
            parameters=1_235_814_432,
        )
        with patch("icebreaker.hub.fetch_details", new=AsyncMock(return_value=info)) as mock:
            result = CliRunner().invoke(main, ["details", "a/b"])
        assert result.exit_code == 0
        mock.assert_awaited_once_with(EndpointId.local("a/b"))
        assert "1B" in result.output
        assert "llama" in result.output

    def test_remote_endpoint_rejected(self, home):
        result = CliRunner().invoke(main, ["details", "remote:NanoGPT:a/b"])
        assert result.exit_code == 2


class TestFiles:
    def test_grouped_listing(self, home):
        groups = {
            Bits(4): [File(Id("a/b"), "b-Q4_K_M.gguf", 4_000_000_000)],
            Bits(8): [File(Id("a/b"), "b-Q8_0.gguf", 8_000_000_000)],
        }
        with patch("icebreaker.hub.list_files", new=AsyncMock(return_value=groups)):
            result = CliRunner().invoke(main, ["files", "a/b"])
        assert result.exit_code == 0
        assert "4-bit" in result.output
        assert "b-Q8_0.gguf  (8 GB)" in result.output


class TestPull:
    def test_existing_file_is_reused(self, home):
        weight = home / "library" / "a" / "b" / "b-Q4_K_M.gguf"
        weight.parent.mkdir(parents=True)
        weight.write_bytes(b"\0" * 10)
        groups = {Bits(4): [File(Id("a/b"), "b-Q4_K_M.gguf", 10)]}

        with patch("icebreaker.hub.list_files", new=AsyncMock(return_value=groups)):
            result = CliRunner().invoke(main, ["pull", "a/b", "b-Q4_K_M.gguf"])
        assert result.exit_code == 0, result.output
        assert str(weight) in result.output

    def test_unknown_file(self, home):
        with patch("icebreaker.hub.list_files", new=AsyncMock(return_value={})):
            result = CliRunner().invoke(main, ["pull", "a/b", "missing.gguf"])
        assert result.exit_code == 1


class TestBookmark:
    def test_add_list_remove(self, home):
        runner = CliRunner()
        result = runner.invoke(main, ["bookmark", "add", "a/b"])
        assert result.exit_code == 0
        assert _bookmarks(home)["bookmarks"] == [{"Local": "a/b"}]

        result = runner.invoke(main, ["bookmark", "list"])
        assert "local:a/b" in result.output
        assert "not installed" in result.output

        result = runner.invoke(main, ["bookmark", "remove", "local:a/b"])
        assert result.exit_code == 0
        assert _bookmarks(home)["bookmarks"] == []

    def test_remote_key(self, home):
        result = CliRunner().invoke(main, ["bookmark", "add", "remote:NanoGPT:x/y"])
        assert result.exit_code == 0
        assert _bookmarks(home)["bookmarks"] == [
            {"Remote": {"api_type": "NanoGPT", "id": "x/y"}}
        ]

    def test_malformed_key(self, home):
        result = CliRunner().invoke(main, ["bookmark", "add", "remote:nope"])
        assert result.exit_code == 2


class TestConfig:
    def test_set_library(self, home, tmp_path, monkeypatch):
        monkeypatch.delenv("ICEBREAKER_LIBRARY")
        target = tmp_path / "models-here"
        result = CliRunner().invoke(main, ["config", "--library", str(target)])
        assert result.exit_code == 0
        settings = json.loads((home / "home" / "settings.json").read_text())
        assert settings["library"] == str(target.resolve())


# ---------------------------------------------------------------------------
# Remote provider commands
# ---------------------------------------------------------------------------


class TestProvider:
    def test_add_and_remove(self, home):
        runner = CliRunner()
        result = runner.invoke(main, ["provider", "add", "nanogpt", "--api-key", "sk-x"])
        assert result.exit_code == 0
        src = _bookmarks(home)["api_src"]
        assert src["NanoGPT"]["openai_compat"]["api_key"] == "sk-x"

        result = runner.invoke(main, ["provider", "remove", "NanoGPT"])
        assert result.exit_code == 0
        assert _bookmarks(home)["api_src"] == {}

    def test_unknown_kind(self, home):
        result = CliRunner().invoke(main, ["provider", "add", "acme", "--api-key", "k"])
        assert result.exit_code == 2

    def test_models(self, home):
        listing = {_online().endpoint_id: _online()}
        with patch(
            "icebreaker.providers.list_provider_models", new=AsyncMock(return_value=listing)
        ):
            result = CliRunner().invoke(main, ["provider", "models"])
        assert result.exit_code == 0
        assert "remote:NanoGPT:openai/gpt-4o-mini" in result.output
        assert "$0.15 / $0.60 per 1M" in result.output


class TestInstallAndStatus:
    def test_install_then_status(self, home):
        listing = {_online().endpoint_id: _online()}
        runner = CliRunner()
        with patch(
            "icebreaker.providers.list_provider_models", new=AsyncMock(return_value=listing)
        ):
            result = runner.invoke(main, ["install", "remote:NanoGPT:openai/gpt-4o-mini"])
        assert result.exit_code == 0, result.output
        assert (home / "library" / "openai_gpt-4o-mini.json").exists()
        assert "remote:NanoGPT:openai/gpt-4o-mini" in _bookmarks(home)["apis"]

        with patch("icebreaker.providers.probe", new=AsyncMock(return_value=True)):
            result = runner.invoke(main, ["status"])
        assert result.exit_code == 0
        assert "Up" in result.output

    def test_install_requires_remote_key(self, home):
        result = CliRunner().invoke(main, ["install", "a/b"])
        assert result.exit_code == 2

    def test_install_unknown_model(self, home):
        with patch("icebreaker.providers.list_provider_models", new=AsyncMock(return_value={})):
            result = CliRunner().invoke(main, ["install", "remote:NanoGPT:x/y"])
        assert result.exit_code == 1

    def test_status_without_models(self, home):
        result = CliRunner().invoke(main, ["status"])
        assert result.exit_code == 0
        assert "No API models installed" in result.output
