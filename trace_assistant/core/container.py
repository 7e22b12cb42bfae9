"""Dependency container: settings, pacing config and the session store."""

from __future__ import annotations

from dataclasses import dataclass

from trace_assistant.agent.reducer.pacing_config import PacingConfig, resolve_pacing_config
from trace_assistant.agent.runtime.session_state import SessionStateStore
from trace_assistant.core.config import Settings


@dataclass
class AppContainer:
    settings: Settings
    pacing: PacingConfig
    session_store: SessionStateStore


def build_container(settings: Settings) -> AppContainer:
    pacing = resolve_pacing_config(settings)
    session_store = SessionStateStore(
        pacing=pacing,
        backend_url=settings.analysis_backend_url,
        limit=settings.session_store_limit,
    )
    return AppContainer(settings=settings, pacing=pacing, session_store=session_store)
