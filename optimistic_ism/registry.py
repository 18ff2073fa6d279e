"""
optimistic_ism.registry: submodule, watcher and owner bookkeeping.

- Submodule: protocol implemented by pluggable verification strategies.
- OwnerGuard: single-owner access control for privileged setters.
- SubmoduleRegistry: the currently active submodule (owner-swappable).
- WatcherRegistry: immutable watcher set fixed at construction.
"""

from __future__ import annotations

import logging
from enum import IntEnum
from typing import FrozenSet, Iterable, Protocol, runtime_checkable

from .errors import ism_error, OISM_E_BAD_REQUEST, OISM_E_UNAUTHORIZED

logger = logging.getLogger("optimistic_ism")


class ModuleType(IntEnum):
    """Verification strategy tags, used by orchestrating callers for discovery."""
    UNUSED = 0
    ROUTING = 1
    AGGREGATION = 2
    LEGACY_MULTISIG = 3
    MERKLE_ROOT_MULTISIG = 4
    MESSAGE_ID_MULTISIG = 5
    NULL = 6
    CCIP_READ = 7
    OPTIMISTIC = 8


@runtime_checkable
class Submodule(Protocol):
    """Protocol implemented by verification submodules."""
    module_id: str

    def verify(self, metadata: bytes, message: bytes) -> bool: ...


def coerce_submodule(obj: object) -> Submodule:
    if obj is None:
        raise TypeError("submodule is None")
    if not isinstance(obj, Submodule):
        raise TypeError(f"Unsupported submodule type: {type(obj)}")
    module_id = getattr(obj, "module_id", None)
    if not isinstance(module_id, str) or not module_id:
        raise TypeError("submodule.module_id must be a non-empty string")
    return obj


class OwnerGuard:
    """Single-owner access control."""

    def __init__(self, owner: str):
        if not owner:
            raise ism_error(OISM_E_BAD_REQUEST, "owner must be a non-empty identity")
        self._owner = owner

    @property
    def owner(self) -> str:
        return self._owner

    def require_owner(self, caller: str) -> None:
        if not caller or caller != self._owner:
            raise ism_error(
                OISM_E_UNAUTHORIZED,
                "caller is not the owner",
                http_status=403,
                caller=caller,
            )

    def transfer(self, caller: str, new_owner: str) -> None:
        self.require_owner(caller)
        if not new_owner:
            raise ism_error(OISM_E_BAD_REQUEST, "new owner must be a non-empty identity")
        logger.info("Ownership transferred from %s to %s", self._owner, new_owner)
        self._owner = new_owner


class SubmoduleRegistry:
    """Holds the active submodule. No history is kept."""

    def __init__(self, initial: Submodule, guard: OwnerGuard):
        self._current = coerce_submodule(initial)
        self._guard = guard

    @property
    def current(self) -> Submodule:
        return self._current

    def set(self, caller: str, submodule: Submodule) -> None:
        self._guard.require_owner(caller)
        self._current = coerce_submodule(submodule)


class WatcherRegistry:
    def __init__(self, watchers: Iterable[str]):
        ordered = []
        for w in watchers:
            if not isinstance(w, str) or not w:
                raise ism_error(OISM_E_BAD_REQUEST, "watcher ids must be non-empty strings")
            if w not in ordered:
                ordered.append(w)
        self._ordered = tuple(ordered)
        self._members: FrozenSet[str] = frozenset(ordered)

    def is_watcher(self, identity: str) -> bool:
        return identity in self._members

    @property
    def watchers(self) -> tuple:
        return self._ordered

    def __len__(self) -> int:
        return len(self._ordered)
