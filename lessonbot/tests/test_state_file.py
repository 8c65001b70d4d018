from __future__ import annotations

import json
from pathlib import Path

from lessonbot.state_file import WaitlistFile, load_waitlist, replace_waitlist


def test_written_waitlist_reads_back_in_order(tmp_path: Path) -> None:
    path = str(tmp_path / "waitlist.json")
    keys = ["2024-06-21T18:00", "2024-06-03T17:00", "2024-06-14T18:00"]

    replace_waitlist(path, "2024-06", keys)
    store = load_waitlist(path)

    assert store.target_month == "2024-06"
    assert list(store.slots) == keys


def test_file_format(tmp_path: Path) -> None:
    path = tmp_path / "waitlist.json"
    replace_waitlist(str(path), "2024-06", ["2024-06-03T17:00"])

    assert json.loads(path.read_text(encoding="utf-8")) == {
        "targetMonth": "2024-06",
        "slots": ["2024-06-03T17:00"],
    }


def test_replace_overwrites_instead_of_merging(tmp_path: Path) -> None:
    waitlist = WaitlistFile(str(tmp_path / "nested" / "waitlist.json"))
    waitlist.replace("2024-06", ["2024-06-03T17:00", "2024-06-04T17:00"])
    waitlist.replace("2024-07", ["2024-07-01T17:00"])

    store = waitlist.load()
    assert store.target_month == "2024-07"
    assert store.slots == ("2024-07-01T17:00",)


def test_duplicate_keys_are_dropped(tmp_path: Path) -> None:
    path = str(tmp_path / "waitlist.json")
    store = replace_waitlist(path, "2024-06", ["2024-06-03T17:00", "2024-06-03T17:00", "2024-06-04T17:00"])
    assert store.slots == ("2024-06-03T17:00", "2024-06-04T17:00")


def test_missing_file_is_empty(tmp_path: Path) -> None:
    store = load_waitlist(str(tmp_path / "absent.json"))
    assert store.target_month is None
    assert store.slots == ()


def test_corrupted_file_is_empty(tmp_path: Path) -> None:
    path = tmp_path / "waitlist.json"
    path.write_text("{not json", encoding="utf-8")
    assert load_waitlist(str(path)).slots == ()
