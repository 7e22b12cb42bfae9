"""Event dispatcher: route one backend event to its handler and collect the resulting effects.

``dispatch`` is the only entry point. It never raises; a handler crash is
logged with the event type and turns into an empty result. After every
non-terminal event one paced flush pass runs over the conversation timeline,
so buffered steps are revealed opportunistically as later events arrive.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from trace_assistant.agent.events.event_types import SILENT_EVENT_NAMES
from trace_assistant.agent.reducer.answer_stream import (
    finalize_answer,
    handle_answer_token,
    overwrite_answer,
)
from trace_assistant.agent.reducer.artifacts import (
    handle_data_envelope,
    handle_skill_data,
    handle_skill_diagnostics,
    handle_skill_layered_result,
    handle_skill_section,
    handle_sql_executed,
)
from trace_assistant.agent.reducer.contract_normalizer import render_conclusion_contract
from trace_assistant.agent.reducer.error_aggregator import flush_error_summary, handle_skill_error
from trace_assistant.agent.reducer.field_reader import (
    read_aliased,
    read_field,
    read_int,
    read_list,
    read_number,
    read_record,
    read_string,
    read_string_array,
    read_trimmed,
    round_half_up,
    to_text,
)
from trace_assistant.agent.reducer.flow_state import (
    finalize_flow,
    flush_conversation,
    handle_conversation_step,
    ingest_conversation_step,
    push_flow_line,
)
from trace_assistant.agent.reducer.intervention import (
    handle_intervention_required,
    handle_intervention_resolved,
    handle_intervention_timeout,
)
from trace_assistant.infra.observability.logger import get_logger, short
from trace_assistant.protocol.messages import MessageEffect

if TYPE_CHECKING:
    from trace_assistant.agent.reducer.session import AnalysisSession

logger = get_logger(__name__)

AGENT_DRIVEN_ARCHITECTURES: frozenset[str] = frozenset({"v2-agent-driven", "agent-driven"})
_METADATA_SECTION = re.compile(r"(?:^|\n)(?:##\s*分析元数据|\*\*分析元数据\*\*)")
_STRATEGY_EMOJI: dict[str, str] = {"conclude": "✅", "deep_dive": "🔍", "pivot": "↩️"}


@dataclass(frozen=True)
class HandlerResult:
    is_terminal: bool = False
    stop_loading: bool = False


TERMINAL = HandlerResult(is_terminal=True, stop_loading=True)


@dataclass
class DispatchResult:
    """Outcome of folding one event: lifecycle flags plus queued message effects."""

    is_terminal: bool = False
    stop_loading: bool = False
    effects: list[MessageEffect] = field(default_factory=list)


Handler = Callable[["AnalysisSession", Any], HandlerResult | None]


def _percent(fraction: float | None) -> int:
    return round_half_up((fraction or 0.0) * 100)


# ---------------------------------------------------------------------------
# Narration: phases / thoughts / tools / outputs
# ---------------------------------------------------------------------------


def format_analysis_plan(plan: Any, fallback_message: str = "") -> str:
    if not isinstance(plan, dict):
        return f"### 🧭 分析计划已确认\n\n{fallback_message or '先收集证据，再给根因假设。'}"

    lines = ["### 🧭 分析计划已确认"]
    objective = read_trimmed(plan, "objective")
    if objective:
        lines.extend(["", f"目标: {objective}"])
    mode = read_trimmed(plan, "mode")
    if mode:
        lines.extend(["", f"模式: `{mode}`"])
    strategy = read_record(plan, "strategy")
    if strategy:
        name = read_trimmed(strategy, "name") or read_trimmed(strategy, "id") or "unknown"
        lines.extend(["", f"策略: **{name}**"])

    steps = read_list(plan, "steps")
    if steps:
        lines.extend(["", "**步骤**"])
        for step in sorted(steps, key=lambda item: read_number(item, "order") or 0):
            order = read_int(step, "order", 0)
            lines.append(f"{order}. **{read_trimmed(step, 'title') or '步骤'}**: {read_string(step, 'action')}")

    evidence = read_string_array(plan, "evidence")
    if evidence:
        lines.extend(["", "**证据清单**"])
        lines.extend(f"- {item}" for item in evidence)

    lines.extend(["", "说明: 先收集证据，再给根因假设。"])
    return "\n".join(lines)


def _on_progress(session: "AnalysisSession", payload: Any) -> None:
    data = read_record(payload, "data")
    message = read_trimmed(data, "message")
    if read_trimmed(data, "phase") == "analysis_plan":
        session.add_message(
            role="assistant",
            content=format_analysis_plan(read_field(data, "plan"), message),
        )
        push_flow_line(session, "phases", "🧭 分析计划已确认")
        return
    if message:
        push_flow_line(session, "phases", message)


def _on_round_start(session: "AnalysisSession", payload: Any) -> None:
    data = read_record(payload, "data")
    if not data:
        return
    current = read_int(data, "round", 0) or 1
    max_rounds = read_int(data, "maxRounds", 0) or 5
    message = read_trimmed(data, "message") or f"分析轮次 {current}"
    push_flow_line(session, "phases", f"🔄 {message} ({current}/{max_rounds})")


def _on_stage_start(session: "AnalysisSession", payload: Any) -> None:
    message = read_trimmed(read_record(payload, "data"), "message")
    if message:
        push_flow_line(session, "phases", f"📋 {message}")


def _on_strategy_selected(session: "AnalysisSession", payload: Any) -> None:
    data = read_record(payload, "data")
    if not data:
        return
    emoji = "🧠" if read_trimmed(data, "selectionMethod") == "llm" else "🔑"
    name = read_trimmed(data, "strategyName") or "unknown"
    push_flow_line(
        session,
        "phases",
        f"{emoji} 选择策略: {name} ({_percent(read_number(data, 'confidence'))}%)",
    )
    reasoning = read_trimmed(data, "reasoning")
    if reasoning:
        push_flow_line(session, "thoughts", reasoning)


def _on_strategy_fallback(session: "AnalysisSession", payload: Any) -> None:
    data = read_record(payload, "data")
    if not data:
        return
    reason = read_trimmed(data, "reason") or "未匹配到预设策略，启动自适应分析..."
    push_flow_line(session, "phases", f"🔄 使用假设驱动分析: {reason}")


def _on_strategy_decision(session: "AnalysisSession", payload: Any) -> None:
    data = read_record(payload, "data")
    if not data:
        return
    strategy = read_trimmed(data, "strategy") or "continue"
    message = read_trimmed(data, "message") or f"策略: {strategy}"
    emoji = _STRATEGY_EMOJI.get(strategy, "➡️")
    push_flow_line(
        session,
        "phases",
        f"{emoji} {message} (置信度: {_percent(read_number(data, 'confidence'))}%)",
    )


def _on_synthesis_complete(session: "AnalysisSession", payload: Any) -> None:
    data = read_record(payload, "data")
    if not data:
        return
    message = read_trimmed(data, "message") or "综合分析结果"
    confirmed = read_int(data, "confirmedFindings", 0)
    updated = read_int(data, "updatedHypotheses", 0)
    push_flow_line(session, "phases", f"📝 {message}: 确认 {confirmed} 个发现，更新 {updated} 个假设")


def _on_thought(session: "AnalysisSession", payload: Any) -> None:
    data = read_record(payload, "data")
    text = read_trimmed(data, "thought") or read_trimmed(data, "content") or read_trimmed(data, "message")
    if text:
        push_flow_line(session, "thoughts", short(text, limit=200))


def _on_agent_dialogue(session: "AnalysisSession", payload: Any) -> None:
    data = read_record(payload, "data")
    text = read_trimmed(data, "message") or read_trimmed(data, "content")
    if not text:
        return
    agent = read_trimmed(data, "agentId") or read_trimmed(data, "from")
    line = f"{agent}: {text}" if agent else text
    push_flow_line(session, "thoughts", short(line, limit=200))


def _on_sql_generated(session: "AnalysisSession", payload: Any) -> None:
    sql = read_trimmed(read_record(payload, "data"), "sql")
    push_flow_line(session, "tools", f"生成 SQL: {short(sql, limit=80)}" if sql else "生成 SQL")


def _on_agent_task_dispatched(session: "AnalysisSession", payload: Any) -> None:
    data = read_record(payload, "data")
    if not data:
        return
    task_count = read_int(data, "taskCount", 0)
    agents = read_string_array(data, "agents")
    message = read_trimmed(data, "message") or f"派发 {task_count} 个任务"
    line = f"🤖 {message}"
    if agents:
        line += f" → {', '.join(agents)}"
    push_flow_line(session, "tools", line)


def _on_agent_response(session: "AnalysisSession", payload: Any) -> None:
    agent = read_trimmed(read_record(payload, "data"), "agentId") or "unknown"
    push_flow_line(session, "tools", f"{agent} 完成任务")


def _on_finding(session: "AnalysisSession", payload: Any) -> None:
    data = read_record(payload, "data")
    finding = read_record(data, "finding") or data
    title = read_trimmed(finding, "title") or read_trimmed(finding, "description")
    if title:
        push_flow_line(session, "outputs", f"发现: {short(title, limit=120)}")


def _on_hypothesis_generated(session: "AnalysisSession", payload: Any) -> None:
    data = read_record(payload, "data")
    hypotheses = [
        text
        for text in (to_text(item) or read_trimmed(item, "description") for item in read_list(data, "hypotheses"))
        if text
    ]
    if not hypotheses:
        return
    numbered = [f"{position}. {text}" for position, text in enumerate(hypotheses, start=1)]
    if read_field(data, "evidenceBased") is True:
        lines = [f"### 🧪 基于证据形成了 {len(hypotheses)} 个待验证假设"]
        summary = read_string_array(data, "evidenceSummary")
        if summary:
            lines.extend(["", "**首轮证据摘要**", *(f"- {item}" for item in summary)])
        lines.extend(["", "**待验证假设**", *numbered, "", "_下一步将继续验证并收敛假设。_"])
    else:
        lines = [f"### 🧪 生成了 {len(hypotheses)} 个分析假设", *numbered, "", "_AI 将验证这些假设..._"]
    session.add_message(role="assistant", content="\n".join(lines))
    push_flow_line(session, "thoughts", f"生成 {len(hypotheses)} 个假设")


def _on_silent(session: "AnalysisSession", payload: Any) -> None:
    logger.debug("reducer.dispatch.silent session_id=%s", session.session_id)


# ---------------------------------------------------------------------------
# Lifecycle: analysis_completed / error / end
# ---------------------------------------------------------------------------


def _append_agent_metadata(content: str, payload: Any, data: dict[str, Any]) -> str:
    if read_trimmed(payload, "architecture") not in AGENT_DRIVEN_ARCHITECTURES:
        return content
    hypotheses = read_field(data, "hypotheses")
    if not isinstance(hypotheses, list):
        return content
    confirmed = [item for item in hypotheses if read_trimmed(item, "status") == "confirmed"]
    confidence = read_number(data, "confidence") or 0.0
    if _METADATA_SECTION.search(content) or not (confirmed or confidence > 0):
        return content
    lines = [
        "",
        "",
        "---",
        "**分析元数据**",
        f"- 置信度: {_percent(confidence)}%",
        f"- 分析轮次: {read_int(data, 'rounds', 0) or 1}",
    ]
    if confirmed:
        lines.append(f"- 确认假设: {', '.join(read_string(item, 'description') for item in confirmed)}")
    return content + "\n".join(lines)


def _report_url(session: "AnalysisSession", data: dict[str, Any]) -> str | None:
    report_url = read_trimmed(data, "reportUrl")
    if report_url:
        return f"{session.backend_url}{report_url}"
    report_error = read_trimmed(data, "reportError")
    if report_error:
        logger.warning(
            "reducer.completion.report_failed session_id=%s error=%s",
            session.session_id,
            short(report_error, limit=160),
        )
    return None


def _on_analysis_completed(session: "AnalysisSession", payload: Any) -> HandlerResult:
    if session.completion_handled:
        logger.info("reducer.completion.skip session_id=%s reason=already_handled", session.session_id)
        return TERMINAL

    data = read_record(payload, "data")
    for entry in read_list(data, "conversationTimeline"):
        ingest_conversation_step(session, entry)
    finalize_flow(session, "completed")

    contract = read_aliased(data, ("conclusionContract", "conclusion_contract"))
    answer = (
        read_trimmed(data, "answer")
        or read_trimmed(data, "conclusion")
        or render_conclusion_contract(contract)
        or ""
    )
    if answer:
        session.completion_handled = True
        content = _append_agent_metadata(answer, payload, data)
        report_url = _report_url(session, data)
        if overwrite_answer(session, content, report_url=report_url):
            logger.info("reducer.completion.answer session_id=%s mode=overwrite", session.session_id)
        elif session.conclusion_card_shown:
            logger.info("reducer.completion.answer session_id=%s mode=suppressed", session.session_id)
        else:
            session.add_message(role="assistant", content=content, report_url=report_url)
            logger.info("reducer.completion.answer session_id=%s mode=append", session.session_id)
    finalize_answer(session, "completed")

    flush_error_summary(session)
    return TERMINAL


def _on_error(session: "AnalysisSession", payload: Any) -> HandlerResult:
    data = read_record(payload, "data")
    message = read_trimmed(data, "error") or read_trimmed(data, "message")
    finalize_flow(session, "failed")
    finalize_answer(session, "failed")
    if message:
        session.add_message(role="assistant", content=f"**错误:** {message}")
    logger.warning(
        "reducer.error.fatal session_id=%s error=%s",
        session.session_id,
        short(message, limit=160) or "-",
    )
    flush_error_summary(session)
    return TERMINAL


def _on_end(session: "AnalysisSession", payload: Any) -> HandlerResult:
    finalize_flow(session, "completed")
    finalize_answer(session, "completed")
    return HandlerResult(stop_loading=True)


_HANDLERS: dict[str, Handler] = {
    "progress": _on_progress,
    "conversation_step": handle_conversation_step,
    "answer_token": handle_answer_token,
    "thought": _on_thought,
    "worker_thought": _on_thought,
    "agent_dialogue": _on_agent_dialogue,
    "sql_generated": _on_sql_generated,
    "sql_executed": handle_sql_executed,
    "skill_section": handle_skill_section,
    "skill_diagnostics": handle_skill_diagnostics,
    "skill_layered_result": handle_skill_layered_result,
    "skill_data": handle_skill_data,
    "data": handle_data_envelope,
    "finding": _on_finding,
    "hypothesis_generated": _on_hypothesis_generated,
    "round_start": _on_round_start,
    "stage_start": _on_stage_start,
    "agent_task_dispatched": _on_agent_task_dispatched,
    "agent_response": _on_agent_response,
    "synthesis_complete": _on_synthesis_complete,
    "strategy_decision": _on_strategy_decision,
    "strategy_selected": _on_strategy_selected,
    "strategy_fallback": _on_strategy_fallback,
    "intervention_required": handle_intervention_required,
    "intervention_resolved": handle_intervention_resolved,
    "intervention_timeout": handle_intervention_timeout,
    "skill_error": handle_skill_error,
    "analysis_completed": _on_analysis_completed,
    "error": _on_error,
    "end": _on_end,
}
_HANDLERS.update({name: _on_silent for name in SILENT_EVENT_NAMES})


def dispatch(event_type: str, raw_payload: Any, session: "AnalysisSession") -> DispatchResult:
    """Fold one event into ``session`` and return the effects it produced."""
    handler = _HANDLERS.get(event_type) if isinstance(event_type, str) else None
    if handler is None:
        logger.info("reducer.dispatch.unknown session_id=%s event=%s", session.session_id, event_type)
        return DispatchResult()

    try:
        outcome = handler(session, raw_payload) or HandlerResult()
        if not outcome.is_terminal and not session.flow.is_terminal:
            flush_conversation(session, force=False)
    except Exception:
        logger.exception("reducer.dispatch.failed session_id=%s event=%s", session.session_id, event_type)
        session.discard_effects()
        return DispatchResult()

    effects = session.drain_effects()
    logger.debug(
        "reducer.dispatch session_id=%s event=%s terminal=%s stop_loading=%s effects=%s",
        session.session_id,
        event_type,
        outcome.is_terminal,
        outcome.stop_loading,
        len(effects),
    )
    return DispatchResult(
        is_terminal=outcome.is_terminal,
        stop_loading=outcome.stop_loading,
        effects=effects,
    )
