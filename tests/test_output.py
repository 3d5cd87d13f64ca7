"""Tests for the output formatting system.

Covers:
- OutputFormat resolution (auto -> rich/plain based on TTY)
- NO_COLOR / TERM=dumb color disabling
- stdout vs stderr discipline
- Quiet and verbose modes
- print_record and print_table in JSON and plain modes
- Global instance management
"""

from __future__ import annotations

import json

import pytest

from tasklink import output as output_module
from tasklink.output import (
    OutputFormat,
    OutputManager,
    _should_disable_color,
    get_output,
    reset_output,
    set_output,
)


# ------------------------------------------------------------------ #
# Fixtures
# ------------------------------------------------------------------ #


@pytest.fixture(autouse=True)
def _reset_global_output():
    reset_output()
    yield
    reset_output()


@pytest.fixture()
def non_tty(monkeypatch):
    monkeypatch.setattr("tasklink.output._is_tty", lambda: False)


@pytest.fixture()
def tty(monkeypatch):
    monkeypatch.setattr("tasklink.output._is_tty", lambda: True)


# ------------------------------------------------------------------ #
# Format resolution and colour control
# ------------------------------------------------------------------ #


class TestFormatResolution:
    def test_auto_on_tty_is_rich(self, tty, monkeypatch) -> None:
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.delenv("TERM", raising=False)
        assert OutputManager().format == OutputFormat.RICH

    def test_auto_when_piped_is_plain(self, non_tty) -> None:
        assert OutputManager().format == OutputFormat.PLAIN

    def test_no_color_forces_plain(self, tty) -> None:
        assert OutputManager(no_color=True).format == OutputFormat.PLAIN

    def test_explicit_format_wins(self, tty) -> None:
        assert OutputManager(format=OutputFormat.JSON).format == OutputFormat.JSON

    @pytest.mark.parametrize(
        "env, expected",
        [({"NO_COLOR": ""}, True), ({"TERM": "dumb"}, True), ({"TERM": "xterm"}, False)],
    )
    def test_should_disable_color(self, monkeypatch, env, expected) -> None:
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.delenv("TERM", raising=False)
        for key, value in env.items():
            monkeypatch.setenv(key, value)
        assert _should_disable_color() is expected


# ------------------------------------------------------------------ #
# Data output
# ------------------------------------------------------------------ #


class TestPrintRecord:
    def test_json(self, capsys) -> None:
        OutputManager(format=OutputFormat.JSON).print_record({"gid": "u-1", "email": None})
        captured = capsys.readouterr()
        assert json.loads(captured.out) == {"gid": "u-1", "email": None}
        assert captured.err == ""

    def test_plain(self, capsys) -> None:
        OutputManager(format=OutputFormat.PLAIN).print_record({"gid": "u-1", "email": None})
        assert capsys.readouterr().out == "gid\tu-1\nemail\t\n"


class TestPrintTable:
    def test_json_is_list_of_objects(self, capsys) -> None:
        OutputManager(format=OutputFormat.JSON).print_table(
            ["gid", "name"], [["w-1", "Eng"], ["w-2", "Home"]]
        )
        assert json.loads(capsys.readouterr().out) == [
            {"gid": "w-1", "name": "Eng"},
            {"gid": "w-2", "name": "Home"},
        ]

    def test_plain_is_tsv(self, capsys) -> None:
        OutputManager(format=OutputFormat.PLAIN).print_table(["gid", "name"], [["w-1", "Eng"]])
        assert capsys.readouterr().out == "gid\tname\nw-1\tEng\n"


# ------------------------------------------------------------------ #
# Diagnostics
# ------------------------------------------------------------------ #


class TestDiagnostics:
    def test_everything_goes_to_stderr(self, capsys) -> None:
        out = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        out.info("hello")
        out.success("done")
        out.warning("careful")
        out.error("broken")
        out.suggest("try this")
        captured = capsys.readouterr()
        assert captured.out == ""
        assert captured.err.splitlines() == [
            "hello",
            "done",
            "Warning: careful",
            "Error: broken",
            "→ try this",
        ]

    def test_quiet_keeps_warnings_and_errors(self, capsys) -> None:
        out = OutputManager(format=OutputFormat.PLAIN, no_color=True, quiet=True)
        out.info("hello")
        out.success("done")
        out.suggest("try this")
        out.warning("careful")
        out.error("broken")
        assert capsys.readouterr().err.splitlines() == ["Warning: careful", "Error: broken"]

    def test_debug_needs_verbose(self, capsys) -> None:
        OutputManager(no_color=True).debug("hidden")
        OutputManager(no_color=True, verbose=True).debug("shown")
        assert capsys.readouterr().err == "[debug] shown\n"


# ------------------------------------------------------------------ #
# Global instance
# ------------------------------------------------------------------ #


class TestGlobalOutput:
    def test_lazy_default(self) -> None:
        assert isinstance(get_output(), OutputManager)
        assert get_output() is get_output()

    def test_set_and_module_helpers(self, capsys) -> None:
        set_output(OutputManager(no_color=True))
        output_module.error("boom")
        output_module.info("note")
        assert capsys.readouterr().err == "Error: boom\nnote\n"
