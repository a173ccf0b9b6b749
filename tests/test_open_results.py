"""
Tests for opening command output lines.

subprocess.Popen is patched so nothing is actually launched; the files
being opened are real.
"""

from unittest.mock import patch

import pytest

from sifter.search.router import CommandResult
from sifter.utils.helpers import open_command_result


@pytest.fixture
def popen():
    with patch("sifter.utils.helpers.subprocess.Popen") as popen:
        yield popen


@pytest.fixture
def notes(tmp_path):
    path = tmp_path / "notes.md"
    path.write_text("one\ntwo\nthree\n")
    return path


class TestGrepHits:
    """path:line:content output opens at the line."""

    def test_editor_gets_line_argument(self, popen, notes, monkeypatch):
        monkeypatch.setenv("EDITOR", "vim")
        result = CommandResult.from_line(f"{notes}:3:three")

        assert open_command_result(result) is True
        assert popen.call_args.args[0] == ["vim", "+3", str(notes)]

    def test_editor_with_arguments(self, popen, notes, monkeypatch):
        monkeypatch.setenv("EDITOR", "code --wait")
        open_command_result(CommandResult.from_line(f"{notes}:2:two"))
        assert popen.call_args.args[0] == ["code", "--wait", "+2", str(notes)]

    def test_no_editor_uses_xdg_open_without_line(self, popen, notes, monkeypatch):
        monkeypatch.delenv("EDITOR", raising=False)

        assert open_command_result(CommandResult.from_line(f"{notes}:2:two")) is True
        assert popen.call_args.args[0] == ["xdg-open", str(notes)]

    def test_missing_file_is_not_opened(self, popen, tmp_path, monkeypatch):
        monkeypatch.setenv("EDITOR", "vim")
        result = CommandResult.from_line(f"{tmp_path}/gone.md:1:x")

        assert open_command_result(result) is False
        popen.assert_not_called()


class TestPlainLines:

    def test_existing_path_goes_to_xdg_open(self, popen, notes):
        assert open_command_result(CommandResult(str(notes))) is True
        assert popen.call_args.args[0] == ["xdg-open", str(notes)]

    def test_other_text_is_not_openable(self, popen):
        assert open_command_result(CommandResult("warning: something odd")) is False
        popen.assert_not_called()

    def test_spawn_failure_returns_false(self, notes):
        with patch("sifter.utils.helpers.subprocess.Popen", side_effect=FileNotFoundError("xdg-open")):
            assert open_command_result(CommandResult(str(notes))) is False
