"""
Unit tests for per-day counters and the daily summary rollover.
"""

import datetime
import json

import pytest

from gamelog_monitor.day_state import DayState

from .conftest import utc_timestamp

FEB_1 = datetime.date(2026, 2, 1)
FEB_2 = datetime.date(2026, 2, 2)


@pytest.fixture
def summaries():
    return []


@pytest.fixture
def path(tmp_path):
    return str(tmp_path / "day-counters.json")


def make_state(path, summaries):
    return DayState(path, lambda date, counts: summaries.append((date, counts)), datetime.timezone.utc)


def test_fresh_load_writes_counters(path, summaries):
    state = make_state(path, summaries)
    state.load(FEB_1)

    with open(path) as f:
        data = json.load(f)
    assert data["date"] == "2026-02-01"
    assert all(v == 0 for v in data["counts"].values())


def test_incr_persists(path, summaries):
    state = make_state(path, summaries)
    state.load(FEB_1)
    state.incr("deaths")
    state.incr("deaths")

    reloaded = make_state(path, summaries)
    reloaded.load(FEB_1)
    assert reloaded.counts["deaths"] == 2
    assert summaries == []


def test_rollover_emits_one_summary(path, summaries):
    state = make_state(path, summaries)
    state.load(FEB_1)
    state.incr("deaths")
    state.incr("builds")

    assert state.check_rollover(FEB_2) is True
    assert state.check_rollover(FEB_2) is False
    assert summaries == [(FEB_1, {"deaths": 1, "builds": 1})]
    assert state.date == FEB_2
    assert state.current.total == 0


def test_rollover_of_empty_day_is_silent(path, summaries):
    state = make_state(path, summaries)
    state.load(FEB_1)
    assert state.check_rollover(FEB_2) is True
    assert summaries == []


def test_rollover_ignores_past_dates(path, summaries):
    state = make_state(path, summaries)
    state.load(FEB_2)
    assert state.check_rollover(FEB_1) is False


def test_event_timestamp_triggers_rollover(path, summaries):
    state = make_state(path, summaries)
    state.load(FEB_1)
    state.incr("connects", utc_timestamp(2026, 2, 1, 23, 59))
    state.incr("connects", utc_timestamp(2026, 2, 2, 0, 1))

    assert summaries == [(FEB_1, {"connects": 1})]
    assert state.counts["connects"] == 1


def test_stale_file_is_summarised_on_load(path, summaries):
    with open(path, "w") as f:
        json.dump({"date": "2026-01-31", "counts": {"deaths": 4, "loots": 0}}, f)

    state = make_state(path, summaries)
    state.load(FEB_1)

    assert summaries == [(datetime.date(2026, 1, 31), {"deaths": 4})]
    assert state.date == FEB_1


def test_corrupt_file_starts_fresh(path, summaries):
    with open(path, "w") as f:
        f.write('{"date": "not a date"}')

    state = make_state(path, summaries)
    state.load(FEB_1)
    assert state.date == FEB_1
    assert summaries == []


def test_summary_failure_does_not_block_rollover(path):
    def explode(date, counts):
        raise RuntimeError("webhook down")

    state = DayState(path, explode, datetime.timezone.utc)
    state.load(FEB_1)
    state.incr("deaths")
    assert state.check_rollover(FEB_2) is True
    assert state.date == FEB_2


def test_incr_before_load_raises(path, summaries):
    with pytest.raises(RuntimeError):
        make_state(path, summaries).incr("deaths")
