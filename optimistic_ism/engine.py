"""Optimistic ISM protocol engine.

Lifecycle per message identifier:

    Unseen --pre_verify--> PreVerified --(window elapsed, submodule clean)--> Finalized
                               |
                               +--remove_message--> Unseen

`Finalized` is never stored. `verify` recomputes it from the record, the
clock, and the flag ledger on every call and never mutates state.

Every public operation runs under one engine-wide lock, so calls are totally
ordered and no call observes a partially applied effect of another.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, Sequence

from .errors import (
    ism_error,
    OISM_E_BAD_REQUEST,
    OISM_E_FRAUD_WINDOW_ONGOING,
    OISM_E_NOT_PRE_VERIFIED,
    OISM_E_NOT_WATCHER,
    OISM_E_QUORUM_NOT_MET,
    OISM_E_SHARED_TRUST_ROOT,
    OISM_E_SUBMODULE_FLAGGED,
    OISM_E_VERIFICATION_FAILED,
)
from .ledger import FraudFlagLedger
from .message import message_id
from .metrics import record_fraud_flag, record_pre_verify, record_removal, record_verify
from .registry import ModuleType, OwnerGuard, Submodule, SubmoduleRegistry, WatcherRegistry, coerce_submodule
from .store import MemoryPreVerificationStore, PreVerificationRecord, PreVerificationStore

logger = logging.getLogger("optimistic_ism")

QuorumFactory = Callable[[Sequence[str], int], object]


def _now_unix() -> int:
    return int(time.time())


def _check_independent(submodule: object, quorum_verifier: object) -> None:
    """Reject a quorum verifier that shares a trust root with the submodule.

    Same object, same module_id, or same signing domain all let a
    pre-verification authorization double as removal authorization.
    """
    reason = None
    if submodule is quorum_verifier:
        reason = "same_object"
    elif getattr(submodule, "module_id", None) == getattr(quorum_verifier, "module_id", object()):
        reason = "same_module_id"
    else:
        s_domain = getattr(submodule, "domain", None)
        if s_domain is not None and s_domain == getattr(quorum_verifier, "domain", None):
            reason = "same_signing_domain"
    if reason is not None:
        raise ism_error(
            OISM_E_SHARED_TRUST_ROOT,
            "quorum verifier must be independent of the pre-verify submodule",
            reason=reason,
            submodule=getattr(submodule, "module_id", None),
        )


class OptimisticISM:
    """Pre-verify / fraud-window / finalize state machine with watcher vetoes."""

    module_type = ModuleType.OPTIMISTIC

    def __init__(
        self,
        *,
        fraud_window: int,
        submodule: Submodule,
        owner: str,
        watchers: Sequence[str],
        watcher_threshold: int,
        quorum_factory: QuorumFactory,
        store: Optional[PreVerificationStore] = None,
        ledger: Optional[FraudFlagLedger] = None,
        clock: Optional[Callable[[], int]] = None,
        message_id_fn: Callable[[bytes], str] = message_id,
    ):
        self._lock = threading.RLock()
        self._guard = OwnerGuard(owner)
        self._fraud_window = self._validate_window(fraud_window)
        self._submodules = SubmoduleRegistry(submodule, self._guard)
        self._watchers = WatcherRegistry(watchers)
        self._threshold = int(watcher_threshold)
        if self._threshold < 1 or self._threshold > len(self._watchers):
            logger.warning(
                "Watcher threshold %d outside 1..%d; flagging will not behave as a quorum",
                self._threshold,
                len(self._watchers),
            )
        self._quorum = quorum_factory(self._watchers.watchers, self._threshold)
        _check_independent(self._submodules.current, self._quorum)
        self._store = store if store is not None else MemoryPreVerificationStore()
        self._ledger = ledger if ledger is not None else FraudFlagLedger()
        self._clock = clock or _now_unix
        self._message_id = message_id_fn

    @staticmethod
    def _validate_window(seconds: int) -> int:
        if isinstance(seconds, bool) or not isinstance(seconds, int) or seconds < 0:
            raise ism_error(OISM_E_BAD_REQUEST, "fraud window must be a non-negative integer", fraud_window=seconds)
        return seconds

    # ---------------------------
    # Read-only accessors
    # ---------------------------

    @property
    def fraud_window(self) -> int:
        return self._fraud_window

    @property
    def watcher_threshold(self) -> int:
        return self._threshold

    @property
    def submodule(self) -> Submodule:
        return self._submodules.current

    @property
    def owner(self) -> str:
        return self._guard.owner

    @property
    def watchers(self) -> tuple:
        return self._watchers.watchers

    @property
    def quorum_verifier(self) -> object:
        return self._quorum

    def message_id(self, message: bytes) -> str:
        return self._message_id(message)

    def is_watcher(self, identity: str) -> bool:
        return self._watchers.is_watcher(identity)

    def flag_count(self, submodule: str) -> int:
        with self._lock:
            return self._ledger.flag_count(submodule)

    def pre_verification(self, msg_id: str) -> Optional[PreVerificationRecord]:
        with self._lock:
            return self._store.get(msg_id)

    # ---------------------------
    # Lifecycle
    # ---------------------------

    def pre_verify(self, metadata: bytes, message: bytes) -> bool:
        with self._lock:
            submodule = self._submodules.current
            try:
                ok = submodule.verify(metadata, message)
            except Exception as e:
                record_pre_verify("verification_failed")
                raise ism_error(
                    OISM_E_VERIFICATION_FAILED,
                    "submodule verification raised",
                    http_status=422,
                    submodule=submodule.module_id,
                    cause=str(e),
                ) from e
            if not ok:
                record_pre_verify("verification_failed")
                raise ism_error(
                    OISM_E_VERIFICATION_FAILED,
                    "submodule rejected message",
                    http_status=422,
                    submodule=submodule.module_id,
                )

            msg_id = self._message_id(message)
            record = PreVerificationRecord(
                fraud_window_end=self._clock() + self._fraud_window,
                used_submodule=submodule.module_id,
            )
            previous = self._store.get(msg_id)
            if previous is not None:
                logger.warning(
                    "Overwriting pre-verification of %s: submodule %s -> %s, window end %d -> %d",
                    msg_id,
                    previous.used_submodule,
                    record.used_submodule,
                    previous.fraud_window_end,
                    record.fraud_window_end,
                )
            self._store.put(msg_id, record)
            record_pre_verify("ok")
            logger.info(
                "Pre-verified %s via %s; fraud window ends at %d",
                msg_id,
                record.used_submodule,
                record.fraud_window_end,
            )
            return True

    def verify(self, metadata: bytes, message: bytes) -> bool:
        with self._lock:
            msg_id = self._message_id(message)
            record = self._store.get(msg_id)
            if record is None:
                record_verify("not_pre_verified")
                raise ism_error(OISM_E_NOT_PRE_VERIFIED, "message was not pre-verified", http_status=404, message_id=msg_id)

            now = self._clock()
            if not record.fraud_window_end < now:
                record_verify("fraud_window_ongoing")
                raise ism_error(
                    OISM_E_FRAUD_WINDOW_ONGOING,
                    "fraud window has not elapsed",
                    http_status=409,
                    message_id=msg_id,
                    fraud_window_end=record.fraud_window_end,
                    now=now,
                )

            flags = self._ledger.flag_count(record.used_submodule)
            if flags >= self._threshold:
                record_verify("submodule_flagged")
                raise ism_error(
                    OISM_E_SUBMODULE_FLAGGED,
                    "submodule that pre-verified this message was flagged",
                    http_status=409,
                    message_id=msg_id,
                    submodule=record.used_submodule,
                    flag_count=flags,
                    threshold=self._threshold,
                )

            record_verify("ok")
            logger.debug("Verified %s (submodule %s, %d flags)", msg_id, record.used_submodule, flags)
            return True

    def remove_message(self, metadata: bytes, message: bytes) -> None:
        with self._lock:
            # Quorum verifier failures propagate unchanged.
            if not self._quorum.verify(metadata, message):
                raise ism_error(OISM_E_QUORUM_NOT_MET, "watcher quorum not met", http_status=403)
            msg_id = self._message_id(message)
            self._store.delete(msg_id)
            record_removal()
            logger.info("Removed pre-verification of %s by watcher quorum", msg_id)

    def mark_fraudulent(self, caller: str, submodule: str) -> None:
        with self._lock:
            if not self._watchers.is_watcher(caller):
                raise ism_error(OISM_E_NOT_WATCHER, "caller is not a watcher", http_status=403, caller=caller)
            count = self._ledger.flag(caller, submodule)
            record_fraud_flag()
            logger.info("Watcher %s flagged submodule %s (%d/%d)", caller, submodule, count, self._threshold)

    # ---------------------------
    # Administration
    # ---------------------------

    def set_fraud_window(self, caller: str, seconds: int) -> None:
        with self._lock:
            self._guard.require_owner(caller)
            self._fraud_window = self._validate_window(seconds)
            logger.info("Fraud window set to %ds", seconds)

    def set_submodule(self, caller: str, submodule: Submodule) -> None:
        with self._lock:
            self._guard.require_owner(caller)
            submodule = coerce_submodule(submodule)
            _check_independent(submodule, self._quorum)
            self._submodules.set(caller, submodule)
            logger.info("Active submodule set to %s", submodule.module_id)

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        with self._lock:
            self._guard.transfer(caller, new_owner)
