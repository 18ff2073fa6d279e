from __future__ import annotations

from typing import Sequence

import pytest

from optimistic_ism.engine import OptimisticISM


class FakeClock:
    def __init__(self, now: int = 0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def set(self, now: int) -> None:
        self.now = now


class StaticSubmodule:
    """Submodule with a fixed verdict; optionally raises."""

    def __init__(self, module_id: str, verdict: bool = True, error: Exception | None = None):
        self.module_id = module_id
        self.verdict = verdict
        self.error = error
        self.calls = 0

    def verify(self, metadata: bytes, message: bytes) -> bool:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.verdict


class StaticQuorum:
    def __init__(self, watchers: Sequence[str], threshold: int, verdict: bool = True):
        self.module_id = "static-quorum"
        self.watchers = tuple(watchers)
        self.threshold = threshold
        self.verdict = verdict
        self.error: Exception | None = None

    def verify(self, metadata: bytes, message: bytes) -> bool:
        if self.error is not None:
            raise self.error
        return self.verdict


def static_quorum_factory(watchers, threshold):
    return StaticQuorum(watchers, threshold)


@pytest.fixture
def clock():
    return FakeClock(0)


@pytest.fixture
def make_engine(clock):
    def _make(**overrides) -> OptimisticISM:
        kwargs = dict(
            fraud_window=3600,
            submodule=StaticSubmodule("S"),
            owner="owner",
            watchers=["A", "B", "C"],
            watcher_threshold=2,
            quorum_factory=static_quorum_factory,
            clock=clock,
        )
        kwargs.update(overrides)
        return OptimisticISM(**kwargs)

    return _make
