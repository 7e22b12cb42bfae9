"""Incremental final-answer message built from answer_token events."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from trace_assistant.agent.reducer.field_reader import read_bool, read_record, read_string
from trace_assistant.infra.observability.logger import get_logger
from trace_assistant.protocol.messages import AnswerStatus

if TYPE_CHECKING:
    from trace_assistant.agent.reducer.session import AnalysisSession

logger = get_logger(__name__)

ANSWER_MESSAGE_TAG = "answer_stream"
SENTENCE_FINAL_MARKS: tuple[str, ...] = ("。", "！", "？", "；", "…", ".", "!", "?", ";")


@dataclass
class StreamingAnswerState:
    """Rendered and buffered halves of the streamed answer."""

    content: str = ""
    pending: str = ""
    status: AnswerStatus = "idle"
    message_id: str | None = None
    last_render_at: float | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in {"completed", "failed"}

    def should_flush(self, *, now: float, flush_chars: int, interval_ms: float) -> bool:
        if not self.pending:
            return False
        if "\n" in self.pending:
            return True
        if self.pending.rstrip().endswith(SENTENCE_FINAL_MARKS):
            return True
        if len(self.pending) >= flush_chars:
            return True
        if self.last_render_at is None:
            return True
        return now - self.last_render_at >= interval_ms


def _render(session: "AnalysisSession", *, now: float) -> None:
    answer = session.answer
    flushed = answer.pending
    answer.content += flushed
    answer.pending = ""
    answer.last_render_at = now
    if not answer.content:
        return
    if answer.message_id is None:
        answer.message_id = session.add_message(
            role="assistant",
            content=answer.content,
            flow_tag=ANSWER_MESSAGE_TAG,
        )
    elif flushed:
        session.update_message(answer.message_id, content=answer.content)


def handle_answer_token(session: "AnalysisSession", payload: Any) -> None:
    answer = session.answer
    data = read_record(payload, "data")
    token = read_string(data, "token") or read_string(data, "delta")
    done = read_bool(data, "done")
    if answer.is_terminal:
        logger.debug(
            "reducer.answer.discard session_id=%s status=%s token_len=%s",
            session.session_id,
            answer.status,
            len(token),
        )
        return
    if token:
        answer.pending += token
        answer.status = "streaming"
    now = session.now_ms()
    if done:
        _render(session, now=now)
        answer.status = "completed"
        logger.info(
            "reducer.answer.completed session_id=%s chars=%s",
            session.session_id,
            len(answer.content),
        )
        return
    if answer.should_flush(
        now=now,
        flush_chars=session.pacing.answer_flush_chars,
        interval_ms=session.pacing.answer_flush_interval_ms,
    ):
        _render(session, now=now)


def finalize_answer(session: "AnalysisSession", status: AnswerStatus) -> None:
    """Force the buffered tail to render and freeze the stream."""
    answer = session.answer
    if answer.is_terminal:
        return
    if answer.status == "idle" and not answer.pending:
        return
    _render(session, now=session.now_ms())
    answer.status = status
    logger.info(
        "reducer.answer.finalized session_id=%s status=%s chars=%s",
        session.session_id,
        status,
        len(answer.content),
    )


def overwrite_answer(session: "AnalysisSession", authoritative: str, *, report_url: str | None = None) -> bool:
    """Replace the streamed preview with the final text; False when nothing was streamed."""
    answer = session.answer
    if answer.message_id is None:
        return False
    answer.content = authoritative
    answer.pending = ""
    answer.status = "completed"
    answer.last_render_at = session.now_ms()
    changes: dict[str, Any] = {"content": authoritative}
    if report_url:
        changes["report_url"] = report_url
    session.update_message(answer.message_id, **changes)
    return True
