"""Environment-driven configuration for the optimistic ISM.

Env:
- OISM_FRAUD_WINDOW_SECONDS (default: 3600)
- OISM_OWNER
- OISM_WATCHER_KEYS_JSON / OISM_WATCHER_KEYS_FILE: {"watcher_id": "<public_key_hex>", ...}
- OISM_WATCHER_THRESHOLD (default: simple majority of watchers)
- OISM_SUBMODULE_ID (default: attest-v1)
- OISM_SUBMODULE_KEYS_JSON / OISM_SUBMODULE_KEYS_FILE: {"signer_id": "<public_key_hex>", ...}
- OISM_SUBMODULE_THRESHOLD (default: simple majority of signers)
- OISM_DB_PATH (empty: in-memory store)
- OISM_FLAG_JOURNAL_PATH (empty: no journal)

Malformed values fail closed with ValueError("CONFIG_ERROR: ...").
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from .crypto import load_public_keys
from .engine import OptimisticISM
from .flag_journal import FlagJournal
from .ledger import FraudFlagLedger
from .quorum import AttestationSubmodule, WatcherQuorumFactory
from .store import MemoryPreVerificationStore, SqlitePreVerificationStore


def _get_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = (os.getenv(name, "") or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"CONFIG_ERROR: {name} must be an integer, got {raw!r}") from e


def _load_key_map(json_env: str, file_env: str) -> Dict[str, str]:
    raw_json = (os.getenv(json_env, "") or "").strip()
    file_path = (os.getenv(file_env, "") or "").strip()
    if not raw_json and not file_path:
        return {}
    try:
        if raw_json:
            data = json.loads(raw_json)
        else:
            with open(file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError("expected a JSON object")
        return load_public_keys(data)
    except (OSError, ValueError) as e:
        source = json_env if raw_json else file_env
        raise ValueError(f"CONFIG_ERROR: invalid key map in {source}: {e}") from e


def _majority(n: int) -> int:
    return n // 2 + 1 if n > 0 else 0


def _check_threshold(name: str, threshold: int, signers: int) -> None:
    if not 1 <= threshold <= signers:
        raise ValueError(f"CONFIG_ERROR: {name} must be between 1 and {signers}, got {threshold}")


@dataclass(frozen=True)
class OptimisticIsmConfig:
    fraud_window_seconds: int = 3600
    owner: str = ""
    watcher_keys: Dict[str, str] = field(default_factory=dict)
    watcher_threshold: int = 0
    submodule_id: str = "attest-v1"
    submodule_keys: Dict[str, str] = field(default_factory=dict)
    submodule_threshold: int = 0
    db_path: str = ""
    flag_journal_path: str = ""

    @classmethod
    def from_env(cls) -> "OptimisticIsmConfig":
        window = _get_int("OISM_FRAUD_WINDOW_SECONDS", cls.fraud_window_seconds)
        if window < 0:
            raise ValueError("CONFIG_ERROR: OISM_FRAUD_WINDOW_SECONDS must be >= 0")
        watcher_keys = _load_key_map("OISM_WATCHER_KEYS_JSON", "OISM_WATCHER_KEYS_FILE")
        submodule_keys = _load_key_map("OISM_SUBMODULE_KEYS_JSON", "OISM_SUBMODULE_KEYS_FILE")
        return cls(
            fraud_window_seconds=window,
            owner=(os.getenv("OISM_OWNER", "") or "").strip(),
            watcher_keys=watcher_keys,
            watcher_threshold=_get_int("OISM_WATCHER_THRESHOLD", _majority(len(watcher_keys))),
            submodule_id=(os.getenv("OISM_SUBMODULE_ID", "") or "").strip() or cls.submodule_id,
            submodule_keys=submodule_keys,
            submodule_threshold=_get_int("OISM_SUBMODULE_THRESHOLD", _majority(len(submodule_keys))),
            db_path=(os.getenv("OISM_DB_PATH", "") or "").strip(),
            flag_journal_path=(os.getenv("OISM_FLAG_JOURNAL_PATH", "") or "").strip(),
        )

    def as_public_dict(self) -> Dict[str, object]:
        return {
            "fraud_window_seconds": self.fraud_window_seconds,
            "owner": self.owner,
            "watchers": sorted(self.watcher_keys),
            "watcher_threshold": self.watcher_threshold,
            "submodule_id": self.submodule_id,
            "submodule_signers": sorted(self.submodule_keys),
            "submodule_threshold": self.submodule_threshold,
            "db_path": self.db_path or None,
            "flag_journal_path": self.flag_journal_path or None,
        }


def build_engine(config: OptimisticIsmConfig, *, clock: Optional[Callable[[], int]] = None) -> OptimisticISM:
    """Wire an engine from config: attestation submodule, watcher quorum, stores."""
    if not config.owner:
        raise ValueError("CONFIG_ERROR: OISM_OWNER is required")
    if not config.watcher_keys:
        raise ValueError("CONFIG_ERROR: OISM_WATCHER_KEYS_JSON or OISM_WATCHER_KEYS_FILE is required")
    if not config.submodule_keys:
        raise ValueError("CONFIG_ERROR: OISM_SUBMODULE_KEYS_JSON or OISM_SUBMODULE_KEYS_FILE is required")
    _check_threshold("OISM_WATCHER_THRESHOLD", config.watcher_threshold, len(config.watcher_keys))
    _check_threshold("OISM_SUBMODULE_THRESHOLD", config.submodule_threshold, len(config.submodule_keys))

    submodule = AttestationSubmodule(
        config.submodule_id,
        sorted(config.submodule_keys.items()),
        config.submodule_threshold,
    )
    store = SqlitePreVerificationStore(config.db_path) if config.db_path else MemoryPreVerificationStore()
    journal = FlagJournal(config.flag_journal_path) if config.flag_journal_path else None
    return OptimisticISM(
        fraud_window=config.fraud_window_seconds,
        submodule=submodule,
        owner=config.owner,
        watchers=sorted(config.watcher_keys),
        watcher_threshold=config.watcher_threshold,
        quorum_factory=WatcherQuorumFactory(config.watcher_keys),
        store=store,
        ledger=FraudFlagLedger(journal),
        clock=clock,
    )
