"""Fraud flag ledger.

Append-only per-submodule flag counters guarded by a set of
(watcher, submodule) pairs. There is no way to remove a pair or decrement a
counter, so `count(s)` always equals the number of distinct watchers that
flagged `s`.

When a FlagJournal is attached, each flag is made durable before the
in-memory ledger changes; a failed append leaves the ledger untouched.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Optional, Set, Tuple

from .errors import ism_error, OISM_E_ALREADY_FLAGGED, OISM_E_STORAGE
from .flag_journal import FlagJournal

logger = logging.getLogger("optimistic_ism")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class FraudFlagLedger:
    def __init__(self, journal: Optional[FlagJournal] = None):
        self._flagged: Set[Tuple[str, str]] = set()
        self._counts: Counter = Counter()
        self.journal = journal
        if journal is not None:
            try:
                records = journal.load()
            except OSError as e:
                raise ism_error(
                    OISM_E_STORAGE,
                    "flag journal unavailable",
                    retryable=True,
                    http_status=503,
                    path=journal.path,
                ) from e
            for rec in records:
                self._record(rec.watcher, rec.submodule)
            if records:
                logger.info("Replayed %d fraud flags from %s", len(records), journal.path)

    def _record(self, watcher: str, submodule: str) -> None:
        self._flagged.add((watcher, submodule))
        self._counts[submodule] += 1

    def flag_count(self, submodule: str) -> int:
        return self._counts.get(submodule, 0)

    def has_flagged(self, watcher: str, submodule: str) -> bool:
        return (watcher, submodule) in self._flagged

    def flag(self, watcher: str, submodule: str) -> int:
        """Record a flag and return the new count for `submodule`."""
        if (watcher, submodule) in self._flagged:
            raise ism_error(
                OISM_E_ALREADY_FLAGGED,
                "watcher already flagged this submodule",
                http_status=409,
                watcher=watcher,
                submodule=submodule,
            )
        if self.journal is not None:
            try:
                self.journal.append(watcher, submodule, _now_iso())
            except OSError as e:
                raise ism_error(
                    OISM_E_STORAGE,
                    "failed to persist fraud flag",
                    retryable=True,
                    http_status=503,
                    path=self.journal.path,
                ) from e
        self._record(watcher, submodule)
        return self._counts[submodule]
