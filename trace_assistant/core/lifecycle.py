"""Lifecycle hooks for startup diagnostics."""

from __future__ import annotations

from trace_assistant.core.container import AppContainer
from trace_assistant.infra.observability.logger import get_logger

logger = get_logger(__name__)


def on_startup(container: AppContainer) -> None:
    pacing = container.pacing
    logger.info(
        "Reducer pacing loaded: profile=%s gaps=%s answer_flush_chars=%s session_limit=%s",
        pacing.profile_name,
        pacing.phase_gaps_ms,
        pacing.answer_flush_chars,
        container.settings.session_store_limit,
    )


def on_shutdown(container: AppContainer) -> None:
    logger.info("Trace assistant shutdown complete. sessions=%s", len(container.session_store))
