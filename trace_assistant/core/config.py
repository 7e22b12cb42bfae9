"""Configuration layer: load runtime settings from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _resolve_path(path_like: str) -> Path:
    candidate = Path(path_like)
    if candidate.is_absolute():
        return candidate
    if candidate.exists():
        return candidate
    project_root = Path(__file__).resolve().parents[2]
    rooted = project_root / candidate
    if rooted.exists():
        return rooted
    return candidate


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """Immutable application settings used across API/reducer layers."""

    app_name: str = "Trace Assistant Stream API"
    app_version: str = "0.1.0"
    env: str = "dev"
    log_level: str = "INFO"
    reducer_log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8010
    cors_allow_origins: str = "http://localhost:10000,http://127.0.0.1:10000"
    analysis_backend_url: str = "http://localhost:3000"
    reducer_pacing_profiles_file: Path = Path("trace_assistant/agent/profiles/pacing_profiles.yaml")
    reducer_pacing_profile: str = "default"
    reducer_flow_line_limit: int = 0
    reducer_conversation_line_limit: int = 0
    reducer_seen_event_limit: int = 0
    session_store_limit: int = 64

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from process env with deterministic defaults."""
        return cls(
            app_name=os.getenv("APP_NAME", cls.app_name),
            app_version=os.getenv("APP_VERSION", cls.app_version),
            env=os.getenv("APP_ENV", cls.env),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
            reducer_log_level=os.getenv("REDUCER_LOG_LEVEL", cls.reducer_log_level),
            host=os.getenv("HOST", cls.host),
            port=_env_int("PORT", cls.port),
            cors_allow_origins=os.getenv("CORS_ALLOW_ORIGINS", cls.cors_allow_origins),
            analysis_backend_url=os.getenv("ANALYSIS_BACKEND_URL", cls.analysis_backend_url).rstrip("/"),
            reducer_pacing_profiles_file=_resolve_path(
                os.getenv(
                    "REDUCER_PACING_PROFILES_FILE",
                    str(cls.reducer_pacing_profiles_file),
                )
            ),
            reducer_pacing_profile=os.getenv(
                "REDUCER_PACING_PROFILE",
                cls.reducer_pacing_profile,
            ),
            # 0 keeps the profile value; see pacing_config.resolve_pacing_config.
            reducer_flow_line_limit=_env_int(
                "REDUCER_FLOW_LINE_LIMIT", cls.reducer_flow_line_limit
            ),
            reducer_conversation_line_limit=_env_int(
                "REDUCER_CONVERSATION_LINE_LIMIT", cls.reducer_conversation_line_limit
            ),
            reducer_seen_event_limit=_env_int(
                "REDUCER_SEEN_EVENT_LIMIT", cls.reducer_seen_event_limit
            ),
            session_store_limit=_env_int("SESSION_STORE_LIMIT", cls.session_store_limit),
        )
