"""Event layer: names of backend stream events understood by the reducer."""

from __future__ import annotations

from typing import Literal, get_args

EventName = Literal[
    "connected",
    "progress",
    "conversation_step",
    "answer_token",
    "thought",
    "worker_thought",
    "sql_generated",
    "sql_executed",
    "step_completed",
    "skill_section",
    "skill_diagnostics",
    "skill_layered_result",
    "skill_data",
    "data",
    "finding",
    "hypothesis_generated",
    "round_start",
    "stage_start",
    "agent_task_dispatched",
    "agent_dialogue",
    "agent_response",
    "synthesis_complete",
    "strategy_decision",
    "strategy_selected",
    "strategy_fallback",
    "focus_updated",
    "incremental_scope",
    "conclusion",
    "intervention_required",
    "intervention_resolved",
    "intervention_timeout",
    "analysis_completed",
    "skill_error",
    "error",
    "end",
]

KNOWN_EVENT_NAMES: frozenset[str] = frozenset(get_args(EventName))

# Acknowledged but intentionally not rendered.
SILENT_EVENT_NAMES: frozenset[str] = frozenset(
    {"connected", "step_completed", "conclusion", "focus_updated", "incremental_scope"}
)

ConversationPhase = Literal["progress", "thinking", "tool", "result", "error"]
ConversationRole = Literal["agent", "system"]

CONVERSATION_PHASES: tuple[str, ...] = get_args(ConversationPhase)
CONVERSATION_ROLES: tuple[str, ...] = get_args(ConversationRole)
