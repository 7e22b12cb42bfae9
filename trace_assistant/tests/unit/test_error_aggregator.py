"""Unit tests for non-fatal skill error collection and the one-shot summary."""

from __future__ import annotations

from trace_assistant.agent.reducer.dispatcher import dispatch
from trace_assistant.agent.reducer.error_aggregator import CollectedError, render_error_summary


def _skill_error(skill_id: str | None, error: str, step_id: str | None = None, *, nested: bool = False) -> dict:
    data: dict = {"error": error}
    if step_id:
        data["stepId"] = step_id
    payload: dict = {"data": data}
    if skill_id and nested:
        data["skillId"] = skill_id
    elif skill_id:
        payload["skillId"] = skill_id
    return payload


def test_three_errors_then_completion_render_one_summary(session) -> None:
    for payload in (
        _skill_error("jank_analysis", "query timed out", "frames"),
        _skill_error("jank_analysis", "missing table", nested=True),
        _skill_error(None, "boom"),
    ):
        assert dispatch("skill_error", payload, session).effects == []
    assert len(session.errors) == 3

    result = dispatch("analysis_completed", {"data": {"answer": "根因: 主线程阻塞"}}, session)

    contents = [effect.message.content for effect in result.effects if effect.kind == "add"]
    summaries = [content for content in contents if "分析过程中遇到" in content]
    assert contents[0] == "根因: 主线程阻塞"
    assert len(summaries) == 1
    assert "### ⚠️ 分析过程中遇到 3 个错误" in summaries[0]
    assert "**Skill: jank_analysis**\n- query timed out (step: frames)\n- missing table" in summaries[0]
    assert "**Skill: unknown**\n- boom" in summaries[0]
    assert len(session.errors) == 0

    repeat = dispatch("analysis_completed", {"data": {"answer": "again"}}, session)
    assert repeat.is_terminal is True
    assert repeat.effects == []


def test_fatal_error_also_flushes_summary(session) -> None:
    dispatch("skill_error", _skill_error("startup", "no launch slice"), session)

    result = dispatch("error", {"data": {"error": "backend lost trace"}}, session)

    contents = [effect.message.content for effect in result.effects]
    assert result.is_terminal is True
    assert result.stop_loading is True
    assert contents == [
        "**错误:** backend lost trace",
        render_error_summary([CollectedError(skill_id="startup", error="no launch slice", timestamp=0)]),
    ]
    assert len(session.errors) == 0
