"""Pacing config resolver for the conversation timeline and answer stream."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from trace_assistant.core.config import Settings
from trace_assistant.infra.observability.logger import get_logger

logger = get_logger(__name__)

DEFAULT_PHASE_GAPS_MS: dict[str, float] = {
    "thinking": 220.0,
    "tool": 160.0,
    "result": 120.0,
    "progress": 120.0,
    "error": 0.0,
}


@dataclass(frozen=True)
class PacingConfig:
    """Normalized reveal pacing and buffer bounds for one analysis session."""

    phase_gaps_ms: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_PHASE_GAPS_MS))
    answer_flush_chars: int = 24
    answer_flush_interval_ms: float = 16.0
    flow_line_limit: int = 6
    conversation_line_limit: int = 240
    seen_event_limit: int = 512
    profile_name: str = "default"

    def gap_for(self, phase: str) -> float:
        return self.phase_gaps_ms.get(phase, self.phase_gaps_ms.get("progress", 0.0))


def _load_profile(profile_file: Path, profile_name: str) -> dict[str, Any]:
    candidate = profile_file
    if not candidate.exists() and not candidate.is_absolute():
        project_root = Path(__file__).resolve().parents[3]
        rooted = project_root / candidate
        if rooted.exists():
            candidate = rooted
    if not candidate.exists():
        return {}
    try:
        raw = yaml.safe_load(candidate.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError):
        logger.warning("pacing.profile.unreadable file=%s", candidate)
        return {}
    if not isinstance(raw, dict):
        return {}
    profiles = raw.get("profiles")
    if not isinstance(profiles, dict):
        return {}
    payload = profiles.get(profile_name)
    if not isinstance(payload, dict):
        payload = profiles.get("default")
    if not isinstance(payload, dict):
        return {}
    return payload


def _pick_float(payload: dict[str, Any], key: str, fallback: float) -> float:
    value = payload.get(key)
    if isinstance(value, bool):
        return fallback
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return fallback
    return fallback


def _pick_int(payload: dict[str, Any], key: str, fallback: int) -> int:
    value = payload.get(key)
    if isinstance(value, bool):
        return fallback
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return fallback
    return fallback


def _pick_gaps(payload: dict[str, Any]) -> dict[str, float]:
    gaps = dict(DEFAULT_PHASE_GAPS_MS)
    raw = payload.get("phase_gaps_ms")
    if not isinstance(raw, dict):
        return gaps
    for phase, value in raw.items():
        if not isinstance(phase, str):
            continue
        gaps[phase] = max(0.0, _pick_float({"v": value}, "v", gaps.get(phase, 0.0)))
    return gaps


def resolve_pacing_config(settings: Settings) -> PacingConfig:
    """Build pacing config from app settings with clamped bounds."""
    profile = _load_profile(
        settings.reducer_pacing_profiles_file,
        settings.reducer_pacing_profile,
    )
    defaults = PacingConfig()
    flow_line_limit = _pick_int(profile, "flow_line_limit", defaults.flow_line_limit)
    conversation_line_limit = _pick_int(
        profile, "conversation_line_limit", defaults.conversation_line_limit
    )
    seen_event_limit = _pick_int(profile, "seen_event_limit", defaults.seen_event_limit)

    # Explicit positive settings win over profile values.
    if settings.reducer_flow_line_limit > 0:
        flow_line_limit = settings.reducer_flow_line_limit
    if settings.reducer_conversation_line_limit > 0:
        conversation_line_limit = settings.reducer_conversation_line_limit
    if settings.reducer_seen_event_limit > 0:
        seen_event_limit = settings.reducer_seen_event_limit

    config = PacingConfig(
        phase_gaps_ms=_pick_gaps(profile),
        answer_flush_chars=max(1, _pick_int(profile, "answer_flush_chars", defaults.answer_flush_chars)),
        answer_flush_interval_ms=max(
            0.0,
            _pick_float(profile, "answer_flush_interval_ms", defaults.answer_flush_interval_ms),
        ),
        flow_line_limit=max(1, flow_line_limit),
        conversation_line_limit=max(10, conversation_line_limit),
        seen_event_limit=max(16, seen_event_limit),
        profile_name=settings.reducer_pacing_profile,
    )
    logger.debug(
        "pacing.resolved profile=%s gaps=%s flow_lines=%s conversation_lines=%s seen_ids=%s",
        config.profile_name,
        config.phase_gaps_ms,
        config.flow_line_limit,
        config.conversation_line_limit,
        config.seen_event_limit,
    )
    return config
