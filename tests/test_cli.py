"""
Tests for src/stance_cli.py - diff, decay and demo subcommands.
"""

import json
import sys
from pathlib import Path

import pytest

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src import logging_utils
from src.stance_cli import main
from stance_core.controller import StanceController
from stance_core.state import StanceDelta


@pytest.fixture(autouse=True)
def no_log_handler(monkeypatch):
    """Keep the CLI from installing a root handler on captured streams."""
    monkeypatch.setattr(logging_utils, "_configured", True)


@pytest.fixture
def exports(tmp_path, controller):
    """Two exported conversations: untouched and shifted to poetic."""
    plain = controller.create_conversation()
    shifted = controller.create_conversation()
    controller.apply_delta(shifted.id, StanceDelta(frame="poetic", values={"risk": 80}))

    left = tmp_path / "left.json"
    right = tmp_path / "right.json"
    left.write_text(controller.export_conversation(plain.id), encoding="utf-8")
    right.write_text(controller.export_conversation(shifted.id), encoding="utf-8")
    return str(left), str(right)


class TestDiffCommand:

    def test_unified(self, exports, capsys):
        assert main(["diff", *exports]) == 0
        out = capsys.readouterr().out
        assert "~ frame: pragmatic → poetic [major]" in out
        assert "~ values.risk: 50 → 80 [major]" in out

    def test_tree(self, exports, capsys):
        assert main(["diff", *exports, "--format", "tree"]) == 0
        out = capsys.readouterr().out
        assert "├─ values" in out
        assert "  ├─ risk [~]" in out

    def test_color(self, exports, capsys):
        assert main(["diff", *exports, "--color"]) == 0
        assert "\033[33m" in capsys.readouterr().out

    def test_missing_file(self, exports, tmp_path, capsys):
        assert main(["diff", exports[0], str(tmp_path / "nope.json")]) == 1
        assert "No exported conversation" in capsys.readouterr().err

    def test_invalid_payload(self, exports, tmp_path, capsys):
        bad = tmp_path / "bad.json"
        bad.write_text("{not json", encoding="utf-8")
        assert main(["diff", exports[0], str(bad)]) == 1
        assert "Error:" in capsys.readouterr().err


class TestDecayCommand:

    def test_report(self, exports, capsys):
        assert main(["decay", exports[0]]) == 0
        out = capsys.readouterr().out
        assert "Overall health: 41" in out
        assert "Action needed in: 0 days" in out
        assert "Critical:" in out
        assert "  - sentience.awarenessLevel" in out
        assert "[urgent]" in out

    def test_threshold(self, exports, capsys):
        assert main(["decay", exports[0], "--threshold", "0"]) == 0
        out = capsys.readouterr().out
        assert "Action needed in: never" in out
        assert "Recommendations:" not in out

    def test_json(self, exports, capsys):
        assert main(["decay", exports[1], "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["model"]["stanceId"] == "conv-2"
        assert data["analysis"]["overallHealth"] == 44.0

    def test_missing_file(self, tmp_path):
        assert main(["decay", str(tmp_path / "nope.json")]) == 1


class TestDemoAndHelp:

    def test_demo(self, capsys):
        assert main(["demo"]) == 0
        out = capsys.readouterr().out
        assert "Stance Evolution Demo" in out
        assert "--- Rollback 2 ---" in out
        assert "frame=poetic" in out

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "stance-cli" in capsys.readouterr().out
