"""Test fixtures shared by unit/integration tests."""

from __future__ import annotations

from collections.abc import Callable
from itertools import count

import pytest

from trace_assistant.agent.reducer.pacing_config import DEFAULT_PHASE_GAPS_MS, PacingConfig
from trace_assistant.agent.reducer.session import AnalysisSession


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def instant_pacing() -> PacingConfig:
    return PacingConfig(
        phase_gaps_ms={phase: 0.0 for phase in DEFAULT_PHASE_GAPS_MS},
        profile_name="instant",
    )


@pytest.fixture
def make_session(clock: FakeClock) -> Callable[..., AnalysisSession]:
    def _make(pacing: PacingConfig | None = None, **kwargs) -> AnalysisSession:
        ids = count(1)
        return AnalysisSession(
            kwargs.pop("session_id", "sess_test"),
            pacing=pacing,
            clock=clock,
            id_factory=lambda: f"m{next(ids)}",
            **kwargs,
        )

    return _make


@pytest.fixture
def session(make_session) -> AnalysisSession:
    return make_session()
