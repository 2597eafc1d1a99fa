import json
import os

from gamelog_monitor.persistence import atomic_write_json, backup_corrupt_file, load_json_state


def test_atomic_write_creates_directories(tmp_path):
    path = str(tmp_path / "nested" / "state.json")
    atomic_write_json(path, {"a": 1})

    with open(path) as f:
        assert json.load(f) == {"a": 1}
    assert not os.path.exists(path + ".tmp")


def test_atomic_write_replaces_existing(tmp_path):
    path = str(tmp_path / "state.json")
    atomic_write_json(path, [1])
    atomic_write_json(path, [2])
    with open(path) as f:
        assert json.load(f) == [2]


def test_missing_file_returns_default(tmp_path):
    path = str(tmp_path / "missing.json")
    assert load_json_state(path, dict) == {}
    assert not os.path.exists(path)


def test_unparseable_file_is_backed_up_and_reset(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{{{")

    assert load_json_state(str(path), lambda: {"fresh": True}) == {"fresh": True}
    assert json.loads(path.read_text()) == {"fresh": True}
    backups = list(tmp_path.glob("state.json.corrupt-*"))
    assert len(backups) == 1
    assert backups[0].read_text() == "{{{"


def test_invalid_shape_is_backed_up(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("[1, 2]")

    assert load_json_state(str(path), dict, lambda d: isinstance(d, dict)) == {}
    assert list(tmp_path.glob("state.json.corrupt-*"))


def test_backup_of_missing_file(tmp_path):
    assert backup_corrupt_file(str(tmp_path / "nope.json")) is None
