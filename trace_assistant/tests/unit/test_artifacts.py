"""Unit tests for progressive artifact rendering and dedup keys."""

from __future__ import annotations

from trace_assistant.agent.reducer.artifacts import (
    envelope_dedup_key,
    format_layer_name,
    normalize_markdown_spacing,
    parse_summary_to_table,
)
from trace_assistant.agent.reducer.dispatcher import dispatch
from trace_assistant.agent.reducer.flow_state import FLOW_MESSAGE_TAG


def _added(result) -> list:
    return [effect.message for effect in result.effects if effect.kind == "add"]


def _layered(skill_id: str = "jank_analysis") -> dict:
    return {
        "data": {
            "skillId": skill_id,
            "skillName": "Jank Analysis",
            "layers": {
                "overview": {
                    "jank_types": {
                        "data": [{"jank_type": "App Deadline Missed", "count": 12}],
                        "display": {"format": "chart", "title": "掉帧类型分布"},
                    },
                },
                "list": {
                    "jank_frames": {
                        "data": {
                            "columns": ["frame_id", "dur_ms", "session_id"],
                            "rows": [[101, 33.4, 7], [102, 41.0, 7]],
                        },
                        "display": {"title": "掉帧列表", "metadataFields": ["session_id"]},
                    },
                },
            },
            "result": {
                "conclusion": {
                    "category": "APP",
                    "component": "MAIN_THREAD",
                    "confidence": 0.72,
                    "summary": "onBindViewHolder 过重",
                    "evidence": ["帧 101 主线程 28ms"],
                },
            },
        }
    }


def test_layered_result_renders_once_per_skill(session) -> None:
    first = dispatch("skill_layered_result", _layered(), session)
    messages = _added(first)

    chart = next(message for message in messages if message.chart_data)
    assert chart.chart_data["title"] == "掉帧类型分布"
    assert chart.chart_data["data"] == [{"label": "App Deadline Missed", "value": 12.0}]

    table = next(message for message in messages if message.sql_result)
    assert table.sql_result["columns"] == ["frame_id", "dur_ms"]
    assert table.sql_result["rows"] == [[101, 33.4], [102, 41.0]]
    assert table.sql_result["section_title"] == "📋 掉帧列表 (2条)"
    assert table.sql_result["metadata"] == {"session_id": 7}

    card = next(message for message in messages if "🎯 分析结论" in message.content)
    assert "**问题分类:** 📱 **应用问题**" in card.content
    assert "**问题组件:** `主线程`" in card.content
    assert "**置信度:** ███████░░░ 72%" in card.content
    assert session.conclusion_card_shown is True

    flow = next(message for message in messages if message.flow_tag == FLOW_MESSAGE_TAG)
    assert "_产出_" in flow.content

    assert dispatch("skill_layered_result", _layered(), session).effects == []
    assert dispatch("skill_data", {"data": _layered()["data"]}, session).effects == []


def test_conclusion_card_suppresses_second_final_message(session) -> None:
    dispatch("skill_layered_result", _layered(), session)

    result = dispatch("analysis_completed", {"data": {"answer": "final"}}, session)

    assert result.is_terminal is True
    assert all(message.content != "final" for message in _added(result))


def test_data_envelope_dedup_by_source(session) -> None:
    envelope = {
        "meta": {"source": "jank_analysis:frames", "skillId": "jank_analysis"},
        "data": {"text": "共 2 帧超时"},
        "display": {"format": "text", "title": "帧统计"},
    }

    first = dispatch("data", {"id": "d1", "envelope": envelope}, session)
    second = dispatch("data", {"id": "d2", "envelope": [envelope]}, session)

    assert [message.content for message in _added(first)][0] == "**帧统计**\n\n共 2 帧超时"
    assert second.effects == []


def test_table_envelope_drops_hidden_and_metadata_columns(session) -> None:
    envelope = {
        "meta": {"skillId": "startup", "stepId": "phases"},
        "data": {"columns": ["id", "phase", "dur", "pid"], "rows": [[1, "bindApplication", 120, 42]]},
        "display": {
            "format": "table",
            "title": "启动阶段",
            "columns": [{"name": "id", "hidden": True}, {"name": "phase"}, {"name": "dur"}, {"name": "pid"}],
            "metadataFields": ["pid"],
        },
    }

    result = dispatch("data", {"envelope": [envelope, {"meta": {}}]}, session)

    table = next(message for message in _added(result) if message.sql_result)
    assert table.sql_result["columns"] == ["phase", "dur"]
    assert table.sql_result["rows"] == [["bindApplication", 120]]
    assert [column["name"] for column in table.sql_result["column_definitions"]] == ["phase", "dur"]
    assert envelope_dedup_key(envelope) == "startup:phases"


def test_skill_section_and_diagnostics_dedup(session) -> None:
    section = {
        "skillId": "jank_analysis",
        "data": {
            "sectionIndex": 1,
            "totalSections": 3,
            "sectionTitle": "慢帧",
            "columns": ["frame"],
            "rows": [[1]],
            "rowCount": 1,
        },
    }
    diagnostics = {
        "data": {
            "skillId": "jank_analysis",
            "diagnostics": [
                {"severity": "critical", "message": "主线程阻塞", "suggestions": ["拆分布局"]},
                {"severity": "info", "message": "GPU 正常"},
            ],
        }
    }

    section_messages = _added(dispatch("skill_section", section, session))
    assert section_messages[0].sql_result["section_title"] == "慢帧 (1/3)"
    assert dispatch("skill_section", section, session).effects == []

    diagnostic_messages = _added(dispatch("skill_diagnostics", diagnostics, session))
    content = diagnostic_messages[0].content
    assert content.startswith("**🔍 诊断结果**")
    assert "🔴 **严重问题:**\n- 主线程阻塞\n  *建议: 拆分布局*" in content
    assert "🔵 **提示:**\n- GPU 正常" in content
    assert dispatch("skill_diagnostics", diagnostics, session).effects == []
    assert "skill_section:jank_analysis:1" in session.dedup


def test_sql_executed_reports_row_count(session) -> None:
    result = dispatch(
        "sql_executed",
        {"data": {"sql": "select 1", "result": {"columns": ["x"], "rows": [[1], [2]], "rowCount": 2}}},
        session,
    )

    message = _added(result)[0]
    assert message.content == "📊 查询到 **2** 条记录"
    assert message.sql_result["query"] == "select 1"


def test_formatting_helpers() -> None:
    assert parse_summary_to_table("fps: 58, jank: 3") == (["fps", "jank"], [["58", "3"]])
    assert parse_summary_to_table("just a sentence") is None
    assert format_layer_name("jank_frames") == "卡顿帧"
    assert format_layer_name("render_thread_slices") == "Render Thread Slices"
    assert normalize_markdown_spacing("a  \n\n\n\nb\r\n") == "a\n\nb"
