"""Explicit per-session reducer context: every state record plus an outbox of message effects."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any
from uuid import uuid4

from trace_assistant.agent.reducer.answer_stream import StreamingAnswerState
from trace_assistant.agent.reducer.dedup_cache import DedupCache
from trace_assistant.agent.reducer.error_aggregator import ErrorAggregator
from trace_assistant.agent.reducer.flow_state import StreamingFlowState
from trace_assistant.agent.reducer.intervention import InterventionStateMachine
from trace_assistant.agent.reducer.pacing_config import PacingConfig
from trace_assistant.protocol.messages import (
    AddMessageEffect,
    ChatMessage,
    MessageEffect,
    MessageRole,
    UpdateMessageEffect,
)

Clock = Callable[[], float]
IdFactory = Callable[[], str]


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


def _new_message_id() -> str:
    return f"msg_{uuid4().hex[:12]}"


class AnalysisSession:
    """State of one analysis run; handlers mutate it and queue effects."""

    def __init__(
        self,
        session_id: str,
        *,
        pacing: PacingConfig | None = None,
        backend_url: str = "",
        clock: Clock | None = None,
        id_factory: IdFactory | None = None,
    ) -> None:
        self.session_id = session_id
        self.pacing = pacing or PacingConfig()
        self.backend_url = backend_url.rstrip("/")
        self._clock = clock or _monotonic_ms
        self._id_factory = id_factory or _new_message_id
        self._effects: list[MessageEffect] = []

        self.flow = StreamingFlowState.from_pacing(self.pacing)
        self.answer = StreamingAnswerState()
        self.intervention = InterventionStateMachine()
        self.errors = ErrorAggregator()
        self.dedup = DedupCache()
        self.completion_handled = False
        self.conclusion_card_shown = False

    def now_ms(self) -> float:
        return self._clock()

    def generate_id(self) -> str:
        return self._id_factory()

    def add_message(self, *, role: MessageRole, content: str = "", **extra: Any) -> str:
        """Queue an add effect and return the new message id."""
        message = ChatMessage(
            id=self.generate_id(),
            role=role,
            content=content,
            timestamp=int(self.now_ms()),
            **extra,
        )
        self._effects.append(AddMessageEffect(message=message))
        return message.id

    def update_message(self, message_id: str, **changes: Any) -> None:
        self._effects.append(UpdateMessageEffect(message_id=message_id, changes=changes))

    def drain_effects(self) -> list[MessageEffect]:
        effects = self._effects
        self._effects = []
        return effects

    def discard_effects(self) -> list[MessageEffect]:
        """Drop queued effects and forget message ids whose add was never emitted."""
        effects = self.drain_effects()
        dropped = {effect.message.id for effect in effects if isinstance(effect, AddMessageEffect)}
        if self.flow.message_id in dropped:
            self.flow.message_id = None
        if self.flow.conversation_message_id in dropped:
            self.flow.conversation_message_id = None
        if self.answer.message_id in dropped:
            self.answer.message_id = None
        return effects
