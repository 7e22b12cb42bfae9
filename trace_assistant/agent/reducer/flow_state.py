"""Streaming flow state: narration line buffers and the ordinal-gated conversation timeline."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from trace_assistant.agent.events.event_types import CONVERSATION_PHASES, CONVERSATION_ROLES
from trace_assistant.agent.reducer.dedup_cache import BoundedIdSet
from trace_assistant.agent.reducer.field_reader import (
    read_field,
    read_int,
    read_record,
    read_string,
    read_trimmed,
)
from trace_assistant.agent.reducer.pacing_config import PacingConfig
from trace_assistant.infra.observability.logger import get_logger, short
from trace_assistant.protocol.messages import FlowStatus

if TYPE_CHECKING:
    from trace_assistant.agent.reducer.session import AnalysisSession

logger = get_logger(__name__)

FlowBuffer = Literal["phases", "thoughts", "tools", "outputs"]

FLOW_MESSAGE_TAG = "analysis_flow"
CONVERSATION_MESSAGE_TAG = "conversation_timeline"

_SECTION_TITLES: dict[str, str] = {
    "phases": "阶段",
    "thoughts": "思考",
    "tools": "工具",
    "outputs": "产出",
}
_STATUS_HEADERS: dict[str, str] = {
    "idle": "⏳ 等待分析开始",
    "running": "⏳ 分析进行中",
    "completed": "✅ 分析过程",
    "failed": "❌ 分析中断",
}


@dataclass(frozen=True)
class ConversationStepTimelineItem:
    """One backend-numbered step of the assistant transcript."""

    ordinal: int
    phase: str
    role: str
    text: str

    def render(self) -> str:
        return f"#{self.ordinal} [{self.phase}/{self.role}] {self.text}"


@dataclass
class StreamingFlowState:
    """Five sub-stream buffers plus one lifecycle status for a session."""

    line_limit: int = 6
    conversation_line_limit: int = 240
    seen_event_limit: int = 512
    status: FlowStatus = "idle"
    message_id: str | None = None
    conversation_message_id: str | None = None
    conversation_pending_steps: dict[int, ConversationStepTimelineItem] = field(default_factory=dict)
    conversation_last_ordinal: int = 0
    conversation_last_flush_at: float | None = None
    phases: deque[str] = field(init=False)
    thoughts: deque[str] = field(init=False)
    tools: deque[str] = field(init=False)
    outputs: deque[str] = field(init=False)
    conversation_lines: deque[str] = field(init=False)
    conversation_seen_event_ids: BoundedIdSet = field(init=False)

    def __post_init__(self) -> None:
        limit = max(1, self.line_limit)
        self.phases = deque(maxlen=limit)
        self.thoughts = deque(maxlen=limit)
        self.tools = deque(maxlen=limit)
        self.outputs = deque(maxlen=limit)
        self.conversation_lines = deque(maxlen=max(1, self.conversation_line_limit))
        self.conversation_seen_event_ids = BoundedIdSet(self.seen_event_limit)

    @classmethod
    def from_pacing(cls, pacing: PacingConfig) -> "StreamingFlowState":
        return cls(
            line_limit=pacing.flow_line_limit,
            conversation_line_limit=pacing.conversation_line_limit,
            seen_event_limit=pacing.seen_event_limit,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in {"completed", "failed"}

    def push_line(self, buffer: FlowBuffer, text: str) -> bool:
        """Append one narration line; refused once the flow is terminal."""
        line = " ".join(text.split())
        if not line or self.is_terminal:
            return False
        target: deque[str] = getattr(self, buffer)
        if target and target[-1] == line:
            return False
        target.append(line)
        if self.status == "idle":
            self.status = "running"
        return True

    def accept_step(self, event_id: str, item: ConversationStepTimelineItem) -> str | None:
        """Buffer a step by ordinal; return a discard reason or None when kept."""
        if self.is_terminal:
            return "terminal"
        if event_id and not self.conversation_seen_event_ids.add(event_id):
            return "duplicate_event"
        if item.ordinal <= self.conversation_last_ordinal:
            return "stale_ordinal"
        if item.ordinal in self.conversation_pending_steps:
            return "ordinal_taken"
        self.conversation_pending_steps[item.ordinal] = item
        if self.status == "idle":
            self.status = "running"
        return None

    def drain(self, *, now: float, pacing: PacingConfig, force: bool) -> list[ConversationStepTimelineItem]:
        """Pop contiguous ordinals; paced passes release at most one item."""
        released: list[ConversationStepTimelineItem] = []
        while True:
            next_item = self.conversation_pending_steps.get(self.conversation_last_ordinal + 1)
            if next_item is None:
                break
            if not force:
                if released:
                    break
                last = self.conversation_last_flush_at
                if last is not None and now - last < pacing.gap_for(next_item.phase):
                    break
            del self.conversation_pending_steps[next_item.ordinal]
            self.conversation_lines.append(next_item.render())
            self.conversation_last_ordinal = next_item.ordinal
            self.conversation_last_flush_at = now
            released.append(next_item)
        return released

    def render_flow(self) -> str:
        lines = [f"**{_STATUS_HEADERS.get(self.status, self.status)}**"]
        for buffer in ("phases", "thoughts", "tools", "outputs"):
            entries: deque[str] = getattr(self, buffer)
            if not entries:
                continue
            lines.append("")
            lines.append(f"_{_SECTION_TITLES[buffer]}_")
            lines.extend(f"- {entry}" for entry in entries)
        return "\n".join(lines)

    def render_conversation(self) -> str:
        return "\n".join(self.conversation_lines)


def _normalize_phase(raw: str) -> str:
    value = raw.strip().lower()
    return value if value in CONVERSATION_PHASES else "progress"


def _normalize_role(raw: str) -> str:
    value = raw.strip().lower()
    return value if value in CONVERSATION_ROLES else "agent"


def _step_text(data: dict[str, Any]) -> str:
    content = read_field(data, "content")
    if isinstance(content, str):
        return " ".join(content.split())
    text = read_string(read_record(data, "content"), "text") or read_string(data, "text")
    return " ".join(text.split())


def parse_conversation_step(
    payload: Any,
    *,
    fallback_ordinal: int,
) -> tuple[str, ConversationStepTimelineItem]:
    """Build (event_id, item) from a conversation_step payload or a backfill entry."""
    data = read_record(payload, "data") or (dict(payload) if isinstance(payload, dict) else {})
    event_id = read_trimmed(payload, "id") or read_trimmed(data, "eventId") or read_trimmed(data, "event_id")
    ordinal = read_int(data, "ordinal", 0)
    if ordinal <= 0:
        ordinal = fallback_ordinal
    item = ConversationStepTimelineItem(
        ordinal=ordinal,
        phase=_normalize_phase(read_string(data, "phase")),
        role=_normalize_role(read_string(data, "role")),
        text=_step_text(data),
    )
    return event_id, item


def ingest_conversation_step(session: "AnalysisSession", payload: Any) -> bool:
    """Buffer one conversation step without flushing; return True when kept."""
    flow = session.flow
    event_id, item = parse_conversation_step(
        payload,
        fallback_ordinal=flow.conversation_last_ordinal + 1,
    )
    reason = flow.accept_step(event_id, item)
    if reason is not None:
        logger.debug(
            "reducer.conversation.discard session_id=%s event_id=%s ordinal=%s reason=%s",
            session.session_id,
            event_id or "-",
            item.ordinal,
            reason,
        )
        return False
    return True


def handle_conversation_step(session: "AnalysisSession", payload: Any) -> None:
    # The dispatcher runs the single paced flush pass after every event.
    ingest_conversation_step(session, payload)


def flush_conversation(session: "AnalysisSession", *, force: bool) -> int:
    """Run one flush pass and sync the transcript message; return released count."""
    flow = session.flow
    released = flow.drain(now=session.now_ms(), pacing=session.pacing, force=force)
    if not released:
        return 0
    logger.debug(
        "reducer.conversation.flush session_id=%s released=%s last_ordinal=%s pending=%s force=%s",
        session.session_id,
        [item.ordinal for item in released],
        flow.conversation_last_ordinal,
        len(flow.conversation_pending_steps),
        force,
    )
    content = flow.render_conversation()
    if flow.conversation_message_id is None:
        flow.conversation_message_id = session.add_message(
            role="assistant",
            content=content,
            flow_tag=CONVERSATION_MESSAGE_TAG,
        )
    else:
        session.update_message(flow.conversation_message_id, content=content)
    return len(released)


def push_flow_line(session: "AnalysisSession", buffer: FlowBuffer, text: str) -> bool:
    """Append a narration line and re-render the single flow message."""
    if not session.flow.push_line(buffer, text):
        if session.flow.is_terminal:
            logger.debug(
                "reducer.flow.discard session_id=%s buffer=%s reason=terminal text=%s",
                session.session_id,
                buffer,
                short(text, limit=80),
            )
        return False
    sync_flow_message(session)
    return True


def sync_flow_message(session: "AnalysisSession") -> None:
    flow = session.flow
    content = flow.render_flow()
    if flow.message_id is None:
        flow.message_id = session.add_message(
            role="assistant",
            content=content,
            flow_tag=FLOW_MESSAGE_TAG,
        )
    else:
        session.update_message(flow.message_id, content=content)


def finalize_flow(session: "AnalysisSession", status: FlowStatus) -> None:
    """Force-flush the timeline and freeze the flow at a terminal status."""
    flow = session.flow
    if flow.is_terminal:
        return
    flush_conversation(session, force=True)
    if flow.conversation_pending_steps:
        logger.info(
            "reducer.conversation.gap session_id=%s last_ordinal=%s stranded=%s",
            session.session_id,
            flow.conversation_last_ordinal,
            sorted(flow.conversation_pending_steps),
        )
    flow.status = status
    if flow.message_id is not None:
        sync_flow_message(session)
    logger.info(
        "reducer.flow.finalized session_id=%s status=%s transcript_lines=%s",
        session.session_id,
        status,
        len(flow.conversation_lines),
    )
