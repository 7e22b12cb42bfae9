"""Unit tests for environment-driven settings."""

from __future__ import annotations

from pathlib import Path

from trace_assistant.core.config import Settings


def test_from_env_defaults(monkeypatch) -> None:
    for name in ("PORT", "APP_ENV", "ANALYSIS_BACKEND_URL", "REDUCER_PACING_PROFILE", "REDUCER_PACING_PROFILES_FILE"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.port == 8010
    assert settings.env == "dev"
    assert settings.reducer_pacing_profile == "default"
    assert settings.reducer_pacing_profiles_file.name == "pacing_profiles.yaml"
    assert settings.reducer_pacing_profiles_file.exists()


def test_from_env_overrides(monkeypatch, tmp_path: Path) -> None:
    profile_file = tmp_path / "pacing.yaml"
    profile_file.write_text("profiles: {}\n", encoding="utf-8")
    monkeypatch.setenv("PORT", "9100")
    monkeypatch.setenv("ANALYSIS_BACKEND_URL", "http://trace-backend:3000/")
    monkeypatch.setenv("REDUCER_PACING_PROFILE", "relaxed")
    monkeypatch.setenv("REDUCER_PACING_PROFILES_FILE", str(profile_file))
    monkeypatch.setenv("SESSION_STORE_LIMIT", "8")

    settings = Settings.from_env()

    assert settings.port == 9100
    assert settings.analysis_backend_url == "http://trace-backend:3000"
    assert settings.reducer_pacing_profile == "relaxed"
    assert settings.reducer_pacing_profiles_file == profile_file
    assert settings.session_store_limit == 8


def test_invalid_integers_fall_back(monkeypatch) -> None:
    monkeypatch.setenv("PORT", "eighty")
    monkeypatch.setenv("REDUCER_FLOW_LINE_LIMIT", "  ")

    settings = Settings.from_env()

    assert settings.port == 8010
    assert settings.reducer_flow_line_limit == 0
