"""Non-fatal skill errors collected during a run and summarised once at the end."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from trace_assistant.agent.reducer.field_reader import read_record, read_trimmed
from trace_assistant.infra.observability.logger import get_logger, short

if TYPE_CHECKING:
    from trace_assistant.agent.reducer.session import AnalysisSession

logger = get_logger(__name__)


@dataclass(frozen=True)
class CollectedError:
    skill_id: str
    error: str
    timestamp: float
    step_id: str | None = None


@dataclass
class ErrorAggregator:
    errors: list[CollectedError] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.errors)

    def collect(self, error: CollectedError) -> None:
        self.errors.append(error)

    def drain(self) -> list[CollectedError]:
        drained = self.errors
        self.errors = []
        return drained


def render_error_summary(errors: list[CollectedError]) -> str:
    grouped: dict[str, list[CollectedError]] = {}
    for item in errors:
        grouped.setdefault(item.skill_id, []).append(item)

    lines = [f"### ⚠️ 分析过程中遇到 {len(errors)} 个错误", ""]
    for skill_id, items in grouped.items():
        lines.append(f"**Skill: {skill_id}**")
        for item in items:
            step_info = f" (step: {item.step_id})" if item.step_id else ""
            lines.append(f"- {item.error}{step_info}")
        lines.append("")
    lines.append("*这些错误不影响其他分析结果的展示，但可能导致部分数据缺失。*")
    return "\n".join(lines)


def handle_skill_error(session: "AnalysisSession", payload: Any) -> None:
    data = read_record(payload, "data")
    error = CollectedError(
        skill_id=read_trimmed(payload, "skillId") or read_trimmed(data, "skillId") or "unknown",
        step_id=read_trimmed(data, "stepId") or None,
        error=read_trimmed(data, "error") or "Unknown error",
        timestamp=session.now_ms(),
    )
    session.errors.collect(error)
    logger.info(
        "reducer.skill_error.collected session_id=%s skill=%s step=%s error=%s pending=%s",
        session.session_id,
        error.skill_id,
        error.step_id or "-",
        short(error.error, limit=160),
        len(session.errors),
    )


def flush_error_summary(session: "AnalysisSession") -> bool:
    """Render the grouped summary once and empty the list."""
    if not len(session.errors):
        return False
    errors = session.errors.drain()
    session.add_message(role="assistant", content=render_error_summary(errors))
    logger.info("reducer.skill_error.summary session_id=%s count=%s", session.session_id, len(errors))
    return True
