"""Ordered chat transcript that materialises reducer effects."""

from __future__ import annotations

from collections.abc import Iterable

from trace_assistant.infra.observability.logger import get_logger
from trace_assistant.protocol.messages import AddMessageEffect, ChatMessage, MessageEffect

logger = get_logger(__name__)


class Transcript:
    """Apply add/update effects in arrival order to a message list."""

    def __init__(self) -> None:
        self._messages: list[ChatMessage] = []
        self._index: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._messages)

    def apply(self, effects: Iterable[MessageEffect]) -> None:
        for effect in effects:
            if isinstance(effect, AddMessageEffect):
                self._index[effect.message.id] = len(self._messages)
                self._messages.append(effect.message.model_copy(deep=True))
                continue
            position = self._index.get(effect.message_id)
            if position is None:
                logger.warning("transcript.update.missing message_id=%s", effect.message_id)
                continue
            current = self._messages[position]
            self._messages[position] = current.model_copy(update=effect.changes)

    def get(self, message_id: str) -> ChatMessage | None:
        position = self._index.get(message_id)
        return None if position is None else self._messages[position]

    def messages(self) -> list[ChatMessage]:
        return [message.model_copy(deep=True) for message in self._messages]
