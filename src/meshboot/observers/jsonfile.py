# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/observers/jsonfile.py

from __future__ import annotations
import json
from pathlib import Path
from .interface import Observer
from .events import BaseEvent


class JsonFileObserver(Observer):
    """
    Appends every bootstrap event to a .jsonl file next to the run log,
    one object per line tagged with the event class under "type".
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def notify(self, event: BaseEvent) -> None:
        record = {"type": type(event).__name__, **event.dict()}
        # reopened per event so a crashed run still leaves complete lines
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record) + "\n")
