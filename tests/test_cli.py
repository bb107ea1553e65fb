"""Tests for the command-line front end."""

import json

import pytest

from exactcalc_pkg.cli import CalculatorSession, format_display, main_entry
from exactcalc_pkg.config import VERSION
from exactcalc_pkg.display_policy import ELLIPSIS
from exactcalc_pkg.types import DisplayString


def run(tmp_path, *args):
    return main_entry(["--data-dir", str(tmp_path), *args])


def feed_input(monkeypatch, lines):
    it = iter(lines)

    def fake_input(prompt=""):
        try:
            return next(it)
        except StopIteration:
            raise EOFError from None

    monkeypatch.setattr("builtins.input", fake_input)


def test_format_display():
    assert format_display(DisplayString("0.25", 2), True) == "0.25"
    assert format_display(DisplayString("5.", 0), True) == "5"
    assert format_display(DisplayString("0.333", 3), False) == "0.333" + ELLIPSIS
    assert format_display(DisplayString("1" + "0" * 9, -12), True) == "1E20"
    assert format_display(DisplayString("-12345", -3), False) == "-1.2345E6" + ELLIPSIS


@pytest.mark.parametrize(
    "expr,expected",
    [
        ("1/4", "0.25"),
        ("2^10", "1024"),
        ("10^50", "1E50"),
        ("50+10%", "55"),
        ("sqrt(2)^2", "2"),
        ("5!", "120"),
    ],
)
def test_eval_exact(tmp_path, capsys, expr, expected):
    assert run(tmp_path, "-e", expr) == 0
    assert capsys.readouterr().out.strip() == expected


def test_eval_digits(tmp_path, capsys):
    assert run(tmp_path, "-e", "1/3", "-d", "5") == 0
    assert capsys.readouterr().out.strip() == "0.33333" + ELLIPSIS
    assert run(tmp_path, "-e", "pi", "-d", "5") == 0
    assert capsys.readouterr().out.strip() == "3.14159" + ELLIPSIS


def test_eval_degrees(tmp_path, capsys):
    assert run(tmp_path, "--degrees", "-e", "sin(30)") == 0
    assert capsys.readouterr().out.strip() == "0.5"


def test_json_output(tmp_path, capsys):
    assert run(tmp_path, "--format", "json", "-e", "1/4") == 0
    data = json.loads(capsys.readouterr().out)
    assert data["ok"] is True
    assert data["result"] == "0.25"
    assert data["exact"] is True
    assert data["index"] == 1


def test_eval_error(tmp_path, capsys):
    assert run(tmp_path, "-e", "1/0") == 1
    assert "Can't divide by 0" in capsys.readouterr().out


def test_syntax_error(tmp_path, capsys):
    assert run(tmp_path, "--format", "json", "-e", "2+foo") == 1
    data = json.loads(capsys.readouterr().out)
    assert data["ok"] is False
    assert data["error_code"] == "SYNTAX_ERROR"


def test_version(tmp_path, capsys):
    assert run(tmp_path, "--version") == 0
    assert capsys.readouterr().out.strip() == VERSION


def test_references_across_runs(tmp_path, capsys):
    assert run(tmp_path, "-e", "1+1") == 0
    assert run(tmp_path, "-e", "@1*2") == 0
    assert capsys.readouterr().out.split() == ["2", "4"]
    assert run(tmp_path, "--history") == 0
    out = capsys.readouterr().out
    assert "@1: 1+1" in out
    assert "@2:" in out


def test_bad_reference(tmp_path, capsys):
    assert run(tmp_path, "-e", "@5+1") == 1
    assert "No stored expression @5" in capsys.readouterr().out
    assert run(tmp_path, "-e", "@0") == 1
    assert "No stored expression @0" in capsys.readouterr().out


def test_clear_history(tmp_path, capsys):
    run(tmp_path, "-e", "3")
    assert run(tmp_path, "--clear-history") == 0
    assert run(tmp_path, "--history") == 0
    assert "History is empty." in capsys.readouterr().out


def test_repl(tmp_path, capsys, monkeypatch):
    feed_input(monkeypatch, ["1+1", "", "history", "quit"])
    assert run(tmp_path) == 0
    out = capsys.readouterr().out
    assert "@1 = 2" in out
    assert "@1: 1+1" in out
    assert "Goodbye." in out


def test_repl_memory(tmp_path, capsys, monkeypatch):
    feed_input(monkeypatch, ["mr", "5", "m+", "m+", "m-", "mr"])
    assert run(tmp_path) == 0
    lines = capsys.readouterr().out.splitlines()
    assert "Error: Memory is empty" in lines
    results = [line for line in lines if line in ("5", "10")]
    assert results == ["5", "10", "5", "5"]


def test_repl_degrees_and_help(tmp_path, capsys, monkeypatch):
    feed_input(monkeypatch, ["help", "degrees", "cos(60)", "radians", "cos(0)"])
    assert run(tmp_path) == 0
    out = capsys.readouterr().out
    assert "Commands:" in out
    assert "@1 = 0.5" in out
    assert "@2 = 1" in out


def test_session_more_without_input(tmp_path):
    session = CalculatorSession(data_dir=tmp_path)
    try:
        assert session.more()["error_code"] == "NO_INPUT"
        assert session.memory_add()["error_code"] == "NO_INPUT"
        res = session.evaluate("2*3")
        assert res["ok"] and res["result"] == "6"
        again = session.more()
        assert again["result"] == "6"
        assert again["index"] == 2
    finally:
        session.close()
