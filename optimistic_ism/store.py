"""Pre-verification state stores.

A store maps a message identifier to its PreVerificationRecord. Stores do no
validation; every invariant is enforced by the engine. Absence is explicit
(`get` returns None), so a deleted record and a never-written one look the
same.

Backends:
- MemoryPreVerificationStore: dict-backed, for tests and single-process use.
- SqlitePreVerificationStore: durable, WAL + synchronous=FULL.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Protocol

from .errors import ism_error, OISM_E_STORAGE


@dataclass(frozen=True)
class PreVerificationRecord:
    fraud_window_end: int
    used_submodule: str

    def as_dict(self) -> Dict[str, object]:
        return {"fraud_window_end": self.fraud_window_end, "used_submodule": self.used_submodule}


class PreVerificationStore(Protocol):
    def get(self, message_id: str) -> Optional[PreVerificationRecord]: ...

    def put(self, message_id: str, record: PreVerificationRecord) -> None: ...

    def delete(self, message_id: str) -> None: ...


class MemoryPreVerificationStore:
    def __init__(self) -> None:
        self._records: Dict[str, PreVerificationRecord] = {}

    def get(self, message_id: str) -> Optional[PreVerificationRecord]:
        return self._records.get(message_id)

    def put(self, message_id: str, record: PreVerificationRecord) -> None:
        self._records[message_id] = record

    def delete(self, message_id: str) -> None:
        self._records.pop(message_id, None)


class SqlitePreVerificationStore:
    """
    Persistent pre-verification records.

    A connection is opened per operation; every write commits before the
    call returns, so a record is either fully visible or absent.
    """

    def __init__(self, db_path: str = "optimistic_ism.db", timeout_seconds: float = 5.0):
        self.db_path = db_path
        self.timeout_seconds = float(timeout_seconds)
        self._init_db()

    @contextmanager
    def _db(self, op_name: str) -> Iterator[sqlite3.Connection]:
        """Connection wrapper that turns sqlite failures into ISMError (fail-closed)."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout_seconds)
            try:
                with conn:
                    yield conn
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise ism_error(
                OISM_E_STORAGE,
                f"storage operation failed: {op_name}",
                retryable=True,
                http_status=503,
                error=str(e),
            ) from e

    def _init_db(self) -> None:
        with self._db("init") as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = FULL")
            conn.execute("PRAGMA busy_timeout = 5000")
            conn.execute("""
            CREATE TABLE IF NOT EXISTS pre_verifications (
                message_id TEXT PRIMARY KEY,
                fraud_window_end INTEGER NOT NULL,
                used_submodule TEXT NOT NULL
            )
            """)

    def get(self, message_id: str) -> Optional[PreVerificationRecord]:
        with self._db("get") as conn:
            row = conn.execute(
                "SELECT fraud_window_end, used_submodule FROM pre_verifications WHERE message_id = ?",
                (message_id,),
            ).fetchone()
        if row is None:
            return None
        return PreVerificationRecord(fraud_window_end=int(row[0]), used_submodule=str(row[1]))

    def put(self, message_id: str, record: PreVerificationRecord) -> None:
        with self._db("put") as conn:
            conn.execute(
                """
                INSERT INTO pre_verifications (message_id, fraud_window_end, used_submodule)
                VALUES (?, ?, ?)
                ON CONFLICT(message_id) DO UPDATE SET
                    fraud_window_end = excluded.fraud_window_end,
                    used_submodule = excluded.used_submodule
                """,
                (message_id, int(record.fraud_window_end), record.used_submodule),
            )

    def delete(self, message_id: str) -> None:
        with self._db("delete") as conn:
            conn.execute("DELETE FROM pre_verifications WHERE message_id = ?", (message_id,))
