"""Tests for the command-line entry point."""

import json
import sys
from pathlib import Path

import pytest

from offlinecache import main


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Write a config that keeps everything in memory."""
    path = tmp_path / "config.yaml"
    path.write_text(
        "site:\n"
        "  origin: https://afz.example\n"
        "storage:\n"
        "  backend: memory\n"
        "proxy:\n"
        "  enabled: false\n"
    )
    return path


def _run(monkeypatch: pytest.MonkeyPatch, *argv: str) -> None:
    monkeypatch.setattr(sys, "argv", ["offlinecache", *argv])
    main()


class TestClassifyCommand:
    """Tests for the classify subcommand."""

    def test_prints_strategy(self, config_file: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture) -> None:
        _run(monkeypatch, "classify", "-c", str(config_file), "https://afz.example/css/afz-unified-design.css")

        result = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert result == {
            "url": "https://afz.example/css/afz-unified-design.css",
            "method": "GET",
            "strategy": "cache-first",
        }

    def test_accept_header(self, config_file: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture) -> None:
        _run(monkeypatch, "classify", "-c", str(config_file), "https://afz.example/pages/about.html", "--accept", "text/html")

        result = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert result["strategy"] == "network-first-offline"

    def test_missing_config_exits(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        with pytest.raises(SystemExit) as exc_info:
            _run(monkeypatch, "classify", "-c", str(tmp_path / "missing.yaml"), "https://afz.example/")
        assert exc_info.value.code == 1


class TestSyncCommand:
    """Tests for the sync subcommand."""

    def test_unknown_tag_exits(self, config_file: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture) -> None:
        with pytest.raises(SystemExit) as exc_info:
            _run(monkeypatch, "sync", "-c", str(config_file), "newsletter")

        assert exc_info.value.code == 1
        assert "Unknown sync tag" in capsys.readouterr().out

    def test_empty_queue(self, config_file: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture) -> None:
        _run(monkeypatch, "sync", "-c", str(config_file), "donation-submission")

        assert "donation-submission: 0/0 replayed, 0 still pending" in capsys.readouterr().out


class TestStatusCommand:
    """Tests for the status subcommand."""

    def test_reports_empty_storage(self, config_file: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture) -> None:
        _run(monkeypatch, "status", "-c", str(config_file))

        out = capsys.readouterr().out
        assert "Current generation: afz-advocacy-v1.0.6" in out
        assert "No cache stores." in out
        assert "Pending donation submissions: 0" in out
