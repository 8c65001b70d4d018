from __future__ import annotations

import json
import logging
import os
import tempfile
from typing import Iterable

from lessonbot.domain import WaitlistStore

logger = logging.getLogger(__name__)


def load_waitlist(path: str) -> WaitlistStore:
    if not os.path.exists(path):
        return WaitlistStore(target_month=None, slots=())

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except json.JSONDecodeError:
        # A corrupted file must not block the watcher; treat as empty.
        logger.warning("Waitlist file %s is not valid JSON, ignoring it", path)
        return WaitlistStore(target_month=None, slots=())

    if not isinstance(raw, dict):
        return WaitlistStore(target_month=None, slots=())

    target_month = raw.get("targetMonth")
    slots: list[str] = []
    for item in raw.get("slots") or []:
        if isinstance(item, str) and item not in slots:
            slots.append(item)

    return WaitlistStore(
        target_month=str(target_month) if target_month else None,
        slots=tuple(slots),
    )


def replace_waitlist(path: str, target_month: str, slots: Iterable[str]) -> WaitlistStore:
    """Overwrite the waitlist file wholesale; entries are never merged."""
    ordered: list[str] = []
    for key in slots:
        if key not in ordered:
            ordered.append(key)

    store = WaitlistStore(target_month=target_month, slots=tuple(ordered))
    data = {"targetMonth": store.target_month, "slots": list(store.slots)}

    folder = os.path.dirname(os.path.abspath(path))
    if folder and not os.path.exists(folder):
        os.makedirs(folder, exist_ok=True)

    # Atomic write
    with tempfile.NamedTemporaryFile("w", delete=False, encoding="utf-8", dir=folder, suffix=".tmp") as tf:
        json.dump(data, tf, ensure_ascii=False, indent=2)
        tmp_name = tf.name

    os.replace(tmp_name, path)
    return store


class WaitlistFile:
    """The waitlist file handed to both the registrar (writer) and the watcher (reader)."""

    def __init__(self, path: str) -> None:
        self.path = path

    def load(self) -> WaitlistStore:
        return load_waitlist(self.path)

    def replace(self, target_month: str, slots: Iterable[str]) -> WaitlistStore:
        return replace_waitlist(self.path, target_month, slots)
