"""Tests for the persistent expression store and preferences."""

import json

import pytest

from exactcalc_pkg.expression import CalculatorExpr
from exactcalc_pkg.expression_store import MAXIMUM_MIN_INDEX, ExpressionRow, ExpressionStore
from exactcalc_pkg.preferences import Preferences


def make_row(text, degree_mode=False):
    return ExpressionRow(CalculatorExpr.from_text(text).to_bytes(), degree_mode)


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "history.jsonl"


def test_index_assignment(store_path):
    store = ExpressionStore(store_path)
    try:
        assert store.max_index == 0
        assert store.min_index == MAXIMUM_MIN_INDEX
        assert store.add_row(True, make_row("1+1")) == 1
        assert store.add_row(True, make_row("2+2")) == 2
        assert store.add_row(False, make_row("3")) == MAXIMUM_MIN_INDEX - 1
        assert store.add_row(False, make_row("4")) == MAXIMUM_MIN_INDEX - 2
        assert store.max_index == 2
        assert store.min_index == MAXIMUM_MIN_INDEX - 2
        assert len(store) == 4
    finally:
        store.close()


def test_get_row(store_path):
    store = ExpressionStore(store_path)
    try:
        index = store.add_row(True, make_row("sin(30)", degree_mode=True))
        row = store.get_row(index)
        assert row.degree_mode is True
        assert str(CalculatorExpr.from_bytes(row.expression)) == "sin(30)"
        with pytest.raises(KeyError):
            store.get_row(99)
    finally:
        store.close()


def test_rows_survive_reopen(store_path):
    store = ExpressionStore(store_path)
    store.add_row(True, make_row("1/3"))
    store.add_row(False, make_row("7"))
    store.close()

    reopened = ExpressionStore(store_path)
    try:
        assert reopened.max_index == 1
        assert reopened.min_index == MAXIMUM_MIN_INDEX - 1
        assert str(CalculatorExpr.from_bytes(reopened.get_row(1).expression)) == "1÷3"
        assert reopened.add_row(True, make_row("5")) == 2
    finally:
        reopened.close()


def test_bad_lines_are_skipped(store_path):
    good = make_row("42").to_dict(3)
    store_path.write_text("not json\n" + json.dumps(good) + "\n{}\n", encoding="utf-8")
    store = ExpressionStore(store_path)
    try:
        assert store.max_index == 3
        assert len(store) == 1
    finally:
        store.close()


def test_erase_all(store_path):
    store = ExpressionStore(store_path)
    store.add_row(True, make_row("1"))
    store.add_row(False, make_row("2"))
    store.erase_all()
    store.wait_for_pending_writes()
    assert store.max_index == 0
    assert store.min_index == MAXIMUM_MIN_INDEX
    assert store.indices() == []
    assert store.add_row(True, make_row("3")) == 2
    assert store.add_row(False, make_row("4")) == MAXIMUM_MIN_INDEX - 2
    assert store.indices() == [MAXIMUM_MIN_INDEX - 2, 2]
    store.close()


def test_erased_indices_stay_retired_after_reopen(store_path):
    store = ExpressionStore(store_path)
    store.add_row(True, make_row("1"))
    store.add_row(True, make_row("2"))
    store.erase_all()
    store.close()

    reopened = ExpressionStore(store_path)
    try:
        assert reopened.max_index == 0
        assert len(reopened) == 0
        assert reopened.add_row(True, make_row("3")) == 3
    finally:
        reopened.close()


def test_add_after_close_fails(store_path):
    store = ExpressionStore(store_path)
    store.close()
    with pytest.raises(RuntimeError):
        store.add_row(True, make_row("1"))


def test_preferences_defaults(tmp_path):
    prefs = Preferences(tmp_path / "preferences.json")
    assert prefs.degree_mode is False
    assert prefs.memory_index == 0


def test_preferences_persist(tmp_path):
    path = tmp_path / "preferences.json"
    prefs = Preferences(path)
    prefs.degree_mode = True
    prefs.memory_index = -11
    reloaded = Preferences(path)
    assert reloaded.degree_mode is True
    assert reloaded.memory_index == -11


def test_corrupt_preferences_use_defaults(tmp_path):
    path = tmp_path / "preferences.json"
    path.write_text("{broken", encoding="utf-8")
    assert Preferences(path).degree_mode is False
    path.write_text('{"degree_mode": "yes", "memory_index": 3}', encoding="utf-8")
    prefs = Preferences(path)
    assert prefs.degree_mode is False
    assert prefs.memory_index == 3
