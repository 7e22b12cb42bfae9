"""Intervention protocol: the backend pauses and asks the user to pick an option."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from trace_assistant.agent.reducer.field_reader import (
    read_bool,
    read_int,
    read_list,
    read_number,
    read_record,
    read_string,
    read_trimmed,
)
from trace_assistant.infra.observability.logger import get_logger
from trace_assistant.protocol.messages import InterventionDto, InterventionOptionDto

if TYPE_CHECKING:
    from trace_assistant.agent.reducer.session import AnalysisSession

logger = get_logger(__name__)

InterventionPhase = Literal["idle", "active"]
InterventionOutcome = Literal["resolved", "timed_out"]

INTERVENTION_TYPES: frozenset[str] = frozenset(
    {
        "low_confidence",
        "ambiguity",
        "timeout",
        "agent_request",
        "circuit_breaker",
        "validation_required",
    }
)
INTERVENTION_ACTIONS: frozenset[str] = frozenset(
    {"continue", "focus", "abort", "custom", "select_option"}
)
DEFAULT_INTERVENTION_TYPE = "agent_request"
DEFAULT_OPTION_ACTION = "continue"
DEFAULT_TIMEOUT_MS = 60000

_TYPE_EMOJI: dict[str, str] = {
    "low_confidence": "🤔",
    "ambiguity": "🔀",
    "timeout": "⏰",
    "circuit_breaker": "⚠️",
}
_ACTION_EMOJI: dict[str, str] = {
    "continue": "▶️",
    "focus": "🎯",
    "abort": "🛑",
}


@dataclass(frozen=True)
class InterventionOption:
    id: str
    label: str
    description: str
    action: str
    recommended: bool = False


@dataclass(frozen=True)
class InterventionContext:
    confidence: float = 0.0
    elapsed_time_ms: int = 0
    rounds_completed: int = 0
    progress_summary: str = ""
    trigger_reason: str = ""
    findings_count: int = 0


@dataclass(frozen=True)
class InterventionPoint:
    intervention_id: str
    type: str
    options: list[InterventionOption]
    context: InterventionContext
    timeout: int

    def to_dto(self) -> InterventionDto:
        return InterventionDto(
            intervention_id=self.intervention_id,
            type=self.type,
            options=[
                InterventionOptionDto(
                    id=option.id,
                    label=option.label,
                    description=option.description,
                    action=option.action,
                    recommended=option.recommended,
                )
                for option in self.options
            ],
            context={
                "confidence": self.context.confidence,
                "elapsedTimeMs": self.context.elapsed_time_ms,
                "roundsCompleted": self.context.rounds_completed,
                "progressSummary": self.context.progress_summary,
                "triggerReason": self.context.trigger_reason,
                "findingsCount": self.context.findings_count,
            },
            timeout=self.timeout,
        )


def sanitize_option(raw: Any, position: int) -> InterventionOption:
    """Default each option field independently; position is 1-based."""
    action = read_trimmed(raw, "action")
    return InterventionOption(
        id=read_trimmed(raw, "id") or f"option_{position}",
        label=read_trimmed(raw, "label") or f"选项 {position}",
        description=read_string(raw, "description"),
        action=action if action in INTERVENTION_ACTIONS else DEFAULT_OPTION_ACTION,
        recommended=read_bool(raw, "recommended"),
    )


def sanitize_context(raw: Any) -> InterventionContext:
    return InterventionContext(
        confidence=read_number(raw, "confidence", 0.0) or 0.0,
        elapsed_time_ms=read_int(raw, "elapsedTimeMs", 0),
        rounds_completed=read_int(raw, "roundsCompleted", 0),
        progress_summary=read_string(raw, "progressSummary"),
        trigger_reason=read_string(raw, "triggerReason"),
        findings_count=read_int(raw, "findingsCount", 0),
    )


def sanitize_intervention(data: Any) -> InterventionPoint | None:
    """Build an InterventionPoint; None only when the id is missing."""
    intervention_id = read_trimmed(data, "interventionId")
    if not intervention_id:
        return None
    raw_type = read_trimmed(data, "type")
    timeout = read_int(data, "timeout", 0)
    return InterventionPoint(
        intervention_id=intervention_id,
        type=raw_type if raw_type in INTERVENTION_TYPES else DEFAULT_INTERVENTION_TYPE,
        options=[
            sanitize_option(entry, position)
            for position, entry in enumerate(read_list(data, "options"), start=1)
        ],
        context=sanitize_context(read_record(data, "context")),
        timeout=timeout if timeout > 0 else DEFAULT_TIMEOUT_MS,
    )


@dataclass
class InterventionStateMachine:
    """Idle -> Active -> {Resolved, TimedOut} -> Idle."""

    phase: InterventionPhase = "idle"
    active: InterventionPoint | None = None
    last_outcome: InterventionOutcome | None = None
    closed_ids: set[str] = field(default_factory=set)

    def request(self, point: InterventionPoint) -> bool:
        if point.intervention_id in self.closed_ids:
            return False
        if self.active is not None and self.active.intervention_id == point.intervention_id:
            return False
        self.active = point
        self.phase = "active"
        self.last_outcome = None
        return True

    def close(self, outcome: InterventionOutcome, intervention_id: str = "") -> bool:
        """Return to Idle; False only when this id was already closed."""
        target = intervention_id or (self.active.intervention_id if self.active else "")
        if target in self.closed_ids:
            return False
        if target:
            self.closed_ids.add(target)
        self.active = None
        self.phase = "idle"
        self.last_outcome = outcome
        return True


def handle_intervention_required(session: "AnalysisSession", payload: Any) -> None:
    point = sanitize_intervention(read_record(payload, "data"))
    if point is None:
        logger.warning("reducer.intervention.invalid session_id=%s reason=missing_id", session.session_id)
        return
    if not session.intervention.request(point):
        logger.debug(
            "reducer.intervention.skip session_id=%s intervention_id=%s",
            session.session_id,
            point.intervention_id,
        )
        return
    logger.info(
        "reducer.intervention.active session_id=%s intervention_id=%s type=%s options=%s timeout=%s",
        session.session_id,
        point.intervention_id,
        point.type,
        len(point.options),
        point.timeout,
    )
    emoji = _TYPE_EMOJI.get(point.type, "❓")
    reason = point.context.trigger_reason or "分析需要用户输入才能继续。"
    session.add_message(
        role="system",
        content=f"{emoji} **需要您的决定**\n\n{reason}\n\n_请在下方选择操作..._",
    )


def handle_intervention_resolved(session: "AnalysisSession", payload: Any) -> None:
    data = read_record(payload, "data")
    action = read_trimmed(data, "action", "continue")
    if not session.intervention.close("resolved", read_trimmed(data, "interventionId")):
        logger.debug("reducer.intervention.resolve_skip session_id=%s action=%s", session.session_id, action)
        return
    logger.info("reducer.intervention.resolved session_id=%s action=%s", session.session_id, action)
    emoji = _ACTION_EMOJI.get(action, "✅")
    session.add_message(
        role="assistant",
        content=f"{emoji} 已收到您的决定: **{action}**\n\n_分析继续中..._",
    )


def handle_intervention_timeout(session: "AnalysisSession", payload: Any) -> None:
    data = read_record(payload, "data")
    default_action = read_trimmed(data, "defaultAction", "abort")
    if not session.intervention.close("timed_out", read_trimmed(data, "interventionId")):
        logger.debug("reducer.intervention.timeout_skip session_id=%s", session.session_id)
        return
    logger.info(
        "reducer.intervention.timed_out session_id=%s default_action=%s",
        session.session_id,
        default_action,
    )
    session.add_message(
        role="system",
        content=f"⏰ **响应超时**\n\n已自动执行默认操作: **{default_action}**",
    )
