"""Crash-safe fraud flag journal.

Purpose
-------
Watcher flags are permanent. An in-memory ledger alone would forget them on
restart, silently re-enabling a flagged submodule. This journal provides an
append-only, fsync'd record of (watcher, submodule) flags that:
- survives process restarts
- repairs a torn final line on load, so later appends start on a fresh line
- never records the same pair twice in memory (load de-duplicates)

A line that is complete but unreadable is skipped; every readable flag
around it is still replayed.

Threat model note: anyone who can rewrite the journal file can erase flags.
Ship it to append-only storage in deployments where that matters.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Set, Tuple

from .crypto import canonical_json_dumps

logger = logging.getLogger("optimistic_ism")


@dataclass(frozen=True)
class FlagJournalRecord:
    watcher: str
    submodule: str
    ts_utc: str


def _parse_line(raw: bytes) -> Optional[FlagJournalRecord]:
    try:
        rec = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(rec, dict):
        return None
    watcher = rec.get("watcher")
    submodule = rec.get("submodule")
    if not isinstance(watcher, str) or not isinstance(submodule, str):
        return None
    return FlagJournalRecord(watcher, submodule, str(rec.get("ts_utc", "")))


class FlagJournal:
    """Append-only journal of (watcher, submodule) with fsync for durability."""

    def __init__(self, path: str):
        self.path = str(path)
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def load(self) -> List[FlagJournalRecord]:
        """Load records, repairing a torn tail left by a crash mid-append."""
        with self._lock:
            p = Path(self.path)
            if not p.exists() or p.stat().st_size == 0:
                return []

            data = p.read_bytes()
            if not data.endswith(b"\n"):
                self._repair_tail(p, data)
                data = p.read_bytes()

            seen: Set[Tuple[str, str]] = set()
            records: List[FlagJournalRecord] = []
            for lineno, raw in enumerate(data.split(b"\n"), start=1):
                if not raw.strip():
                    continue
                rec = _parse_line(raw.strip())
                if rec is None:
                    logger.warning("Skipping unreadable flag journal line %d in %s", lineno, self.path)
                    continue
                if (rec.watcher, rec.submodule) in seen:
                    continue
                seen.add((rec.watcher, rec.submodule))
                records.append(rec)
            return records

    def _repair_tail(self, p: Path, data: bytes) -> None:
        # The unterminated tail is either a whole record whose newline never
        # landed (terminate it) or a torn write (cut it off).
        tail_start = data.rfind(b"\n") + 1
        tail = data[tail_start:]
        with open(p, "r+b") as f:
            if _parse_line(tail.strip()) is not None:
                f.seek(0, os.SEEK_END)
                f.write(b"\n")
            else:
                logger.warning("Discarding torn flag journal tail (%d bytes) in %s", len(tail), self.path)
                f.truncate(tail_start)
            f.flush()
            os.fsync(f.fileno())

    def append(self, watcher: str, submodule: str, ts_utc: str) -> None:
        """Append a record and fsync to make it durable."""
        with self._lock:
            line = canonical_json_dumps({"watcher": watcher, "submodule": submodule, "ts_utc": ts_utc}) + "\n"
            p = Path(self.path)
            p.parent.mkdir(parents=True, exist_ok=True)
            with open(p, "a", encoding="utf-8") as f:
                f.write(line)
                f.flush()
                os.fsync(f.fileno())
