"""Progressive artifact renderer: skill tables, diagnostics, layered results and data envelopes.

Each artifact is rendered at most once per session. Its dedup key is admitted
into ``session.dedup`` before anything is emitted; a repeat is dropped with a
debug log. Every rendered artifact also pushes its title onto the ``outputs``
line of the flow message.
"""

from __future__ import annotations

import hashlib
import json
import re
from typing import TYPE_CHECKING, Any

from trace_assistant.agent.reducer.field_reader import (
    as_record,
    coerce_number,
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
from trace_assistant.agent.reducer.flow_state import push_flow_line
from trace_assistant.infra.observability.logger import get_logger

if TYPE_CHECKING:
    from trace_assistant.agent.reducer.session import AnalysisSession

logger = get_logger(__name__)

CONCLUSION_CARD_MARKER = "🎯 分析结论"

_LAYER_NAMES: dict[str, str] = {
    "jank_frames": "卡顿帧",
    "scrolling_sessions": "滑动会话",
    "frame_details": "帧详情",
    "frame_analysis": "帧分析",
    "slow_frames": "慢帧",
    "blocked_frames": "阻塞帧",
    "sessions": "会话",
    "frames": "帧数据",
    "metrics": "指标",
    "overview": "概览",
    "summary": "摘要",
}
_CATEGORY_NAMES: dict[str, str] = {
    "APP": "应用问题",
    "SYSTEM": "系统问题",
    "MIXED": "混合问题",
    "UNKNOWN": "未知",
}
_CATEGORY_EMOJI: dict[str, str] = {"APP": "📱", "SYSTEM": "⚙️", "MIXED": "🔄"}
_COMPONENT_NAMES: dict[str, str] = {
    "MAIN_THREAD": "主线程",
    "RENDER_THREAD": "渲染线程",
    "SURFACE_FLINGER": "SurfaceFlinger",
    "BINDER": "Binder 跨进程调用",
    "CPU_SCHEDULING": "CPU 调度",
    "CPU_AFFINITY": "CPU 亲和性",
    "GPU": "GPU",
    "MEMORY": "内存",
    "IO": "IO",
    "MAIN_THREAD_BLOCKING": "主线程阻塞",
    "UNKNOWN": "未知",
}
_SEVERITY_ICONS: dict[str, str] = {"critical": "🔴", "warning": "🟡"}

_BLANK_RUN = re.compile(r"\n[ \t]*\n(?:[ \t]*\n)+")
_TRAILING_SPACE = re.compile(r"[ \t]+\n")
_SUMMARY_SPLIT = re.compile(r"[,|]")
_SUMMARY_PAIR = re.compile(r"^([^:]+):\s*(.+)$")


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def normalize_markdown_spacing(content: str) -> str:
    """Collapse runs of blank lines so chat bubbles stay compact."""
    text = content.replace("\r\n", "\n")
    text = _TRAILING_SPACE.sub("\n", text)
    text = _BLANK_RUN.sub("\n\n", text)
    return text.strip()


def format_layer_name(key: str) -> str:
    mapped = _LAYER_NAMES.get(key.lower())
    if mapped:
        return mapped
    return " ".join(part[:1].upper() + part[1:] for part in key.replace("_", " ").split(" ") if part)


def translate_category(category: str) -> str:
    return _CATEGORY_NAMES.get(category, category)


def translate_component(component: str) -> str:
    return _COMPONENT_NAMES.get(component, component)


def parse_summary_to_table(summary: str) -> tuple[list[str], list[list[str]]] | None:
    """Turn ``"a: 1, b: 2"`` into a one-row table; None with fewer than two pairs."""
    parts = [part.strip() for part in _SUMMARY_SPLIT.split(summary) if part.strip()]
    if len(parts) < 2:
        return None
    pairs: list[tuple[str, str]] = []
    for part in parts:
        match = _SUMMARY_PAIR.match(part)
        if match:
            pairs.append((match.group(1).strip(), match.group(2).strip()))
    if len(pairs) < 2:
        return None
    return [key for key, _ in pairs], [[value for _, value in pairs]]


def parse_evidence(evidence: Any) -> list[str]:
    if isinstance(evidence, list):
        return [text for text in (to_text(item) for item in evidence) if text]
    if isinstance(evidence, str) and evidence.strip():
        try:
            parsed = json.loads(evidence)
        except ValueError:
            return [evidence.strip()]
        if isinstance(parsed, list):
            return [text for text in (to_text(item) for item in parsed) if text]
    return []


def _metric_icon(severity: str) -> str:
    return _SEVERITY_ICONS.get(severity, "🟢")


def _diagnostics_digest(diagnostics: list[Any]) -> str:
    joined = "\n".join(read_string(item, "message") for item in diagnostics)
    return hashlib.sha1(joined.encode("utf-8")).hexdigest()[:12]


def _render_output(session: "AnalysisSession", title: str) -> None:
    push_flow_line(session, "outputs", title)


def _skill_id(payload: Any, data: dict[str, Any]) -> str:
    return read_trimmed(data, "skillId") or read_trimmed(payload, "skillId") or "unknown"


# ---------------------------------------------------------------------------
# sql_executed / skill_section / skill_diagnostics
# ---------------------------------------------------------------------------


def handle_sql_executed(session: "AnalysisSession", payload: Any) -> None:
    data = read_record(payload, "data")
    result = read_record(data, "result")
    if not result:
        return
    row_count = read_int(result, "rowCount", 0)
    session.add_message(
        role="assistant",
        content=f"📊 查询到 **{row_count}** 条记录",
        sql_result={
            "columns": read_list(result, "columns"),
            "rows": read_list(result, "rows"),
            "row_count": row_count,
            "query": read_string(data, "sql"),
            "expandable_data": read_field(result, "expandableData"),
            "summary": read_field(result, "summary"),
        },
    )
    _render_output(session, f"SQL 查询返回 {row_count} 行")


def handle_skill_section(session: "AnalysisSession", payload: Any) -> None:
    section = read_record(payload, "data")
    if not section:
        return
    skill_id = _skill_id(payload, section)
    slot = read_trimmed(section, "sectionIndex") or read_trimmed(section, "stepId") or "unknown"
    if not session.dedup.admit(f"skill_section:{skill_id}:{slot}"):
        return

    title = read_trimmed(section, "sectionTitle") or read_trimmed(section, "title") or skill_id
    index = read_int(section, "sectionIndex", 0)
    total = read_int(section, "totalSections", 0)
    section_title = f"{title} ({index}/{total})" if total else title
    row_count = read_int(section, "rowCount", 0)
    if row_count <= 0:
        logger.debug("reducer.artifact.empty session_id=%s section=%s", session.session_id, section_title)
        return
    session.add_message(
        role="assistant",
        sql_result={
            "columns": read_list(section, "columns"),
            "rows": read_list(section, "rows"),
            "row_count": row_count,
            "query": "",
            "section_title": section_title,
            "expandable_data": read_field(section, "expandableData"),
            "summary": read_field(section, "summary"),
        },
    )
    _render_output(session, section_title)


def render_diagnostics(diagnostics: list[Any]) -> str:
    grouped: dict[str, list[dict[str, Any]]] = {"critical": [], "warning": [], "info": []}
    for item in diagnostics:
        record = as_record(item)
        severity = read_trimmed(record, "severity")
        if severity in grouped:
            grouped[severity].append(record)

    lines = ["**🔍 诊断结果**", ""]
    if grouped["critical"]:
        lines.append("🔴 **严重问题:**")
        for record in grouped["critical"]:
            lines.append(f"- {read_string(record, 'message')}")
            suggestions = read_string_array(record, "suggestions")
            if suggestions:
                lines.append(f"  *建议: {'; '.join(suggestions)}*")
        lines.append("")
    if grouped["warning"]:
        lines.append("🟡 **警告:**")
        lines.extend(f"- {read_string(record, 'message')}" for record in grouped["warning"])
        lines.append("")
    if grouped["info"]:
        lines.append("🔵 **提示:**")
        lines.extend(f"- {read_string(record, 'message')}" for record in grouped["info"])
    return "\n".join(lines).strip()


def handle_skill_diagnostics(session: "AnalysisSession", payload: Any) -> None:
    data = read_record(payload, "data")
    diagnostics = read_list(data, "diagnostics")
    if not diagnostics:
        return
    skill_id = _skill_id(payload, data)
    slot = read_trimmed(data, "stepId") or _diagnostics_digest(diagnostics)
    if not session.dedup.admit(f"skill_diagnostics:{skill_id}:{slot}"):
        return
    session.add_message(role="assistant", content=render_diagnostics(diagnostics))
    _render_output(session, f"诊断结果 {len(diagnostics)} 条")


# ---------------------------------------------------------------------------
# skill_layered_result / skill_data
# ---------------------------------------------------------------------------


def _is_step_result(value: Any) -> bool:
    return isinstance(value, dict) and isinstance(value.get("data"), list)


def _pick_key(keys: list[str], needles: tuple[str, ...]) -> str | None:
    for key in keys:
        lowered = key.lower()
        if any(needle in lowered for needle in needles):
            return key
    return None


def build_chart_data(value: Any, title: str) -> dict[str, Any] | None:
    rows = read_list(value, "data")
    first = as_record(rows[0]) if rows else {}
    if not first:
        return None
    keys = list(first)
    label_key = _pick_key(keys, ("label", "name", "type"))
    value_key = _pick_key(keys, ("value", "count", "total"))
    if label_key is None or value_key is None:
        return None
    return {
        "type": "bar",
        "title": title,
        "data": [
            {
                "label": to_text(read_field(row, label_key)) or "Unknown",
                "value": coerce_number(read_field(row, value_key)) or 0,
            }
            for row in rows
        ],
    }


def build_metric_data(value: Any, title: str) -> dict[str, Any] | None:
    rows = read_list(value, "data")
    first = as_record(rows[0]) if rows else {}
    if not first:
        return None
    keys = list(first)
    value_key = _pick_key(keys, ("value", "total", "avg"))
    if value_key is not None:
        raw = first[value_key]
        metric: dict[str, Any] = {
            "title": title,
            "value": f"{raw:.2f}" if isinstance(raw, (int, float)) and not isinstance(raw, bool) else to_text(raw),
        }
        status = read_trimmed(first, "status")
        if status:
            metric["status"] = status
        return metric
    if len(keys) == 1:
        return {"title": title, "value": to_text(first[keys[0]])}
    return None


def _process_overview_layer(
    session: "AnalysisSession",
    overview: dict[str, Any],
    skill_name: str,
) -> None:
    for key, value in overview.items():
        if value is None:
            continue
        display = read_record(value, "display")
        fmt = (read_trimmed(display, "format") or "table").lower()
        title = read_trimmed(display, "title") if _is_step_result(value) else ""
        if not title:
            title = format_layer_name(key) + (f" ({skill_name})" if skill_name else "")

        if fmt == "chart":
            chart = build_chart_data(value, title)
            if chart is not None:
                session.add_message(role="assistant", chart_data=chart)
                _render_output(session, title)
                continue
        elif fmt == "metric":
            metric = build_metric_data(value, title)
            if metric is not None:
                session.add_message(role="assistant", metric_data=metric)
                _render_output(session, title)
                continue

        if _is_step_result(value):
            rows = [as_record(row) for row in value["data"]]
            if not rows or not rows[0]:
                continue
            columns = list(rows[0])
            session.add_message(
                role="assistant",
                sql_result={
                    "columns": columns,
                    "rows": [[row.get(column) for column in columns] for row in rows],
                    "row_count": len(rows),
                    "section_title": f"📊 {title}",
                },
            )
            _render_output(session, title)
        elif isinstance(value, dict):
            columns = list(value)
            session.add_message(
                role="assistant",
                sql_result={
                    "columns": columns,
                    "rows": [[value[column] for column in columns]],
                    "row_count": 1,
                    "section_title": f"📈 {format_layer_name(key)}",
                },
            )
            _render_output(session, format_layer_name(key))


def _hidden_columns(display: dict[str, Any]) -> set[str]:
    hidden = set(read_string_array(display, "hidden_columns") or read_string_array(display, "hiddenColumns"))
    for column in read_list(display, "columns"):
        if read_field(column, "hidden") is True:
            name = read_trimmed(column, "name")
            if name:
                hidden.add(name)
    return hidden


def _process_list_layer(session: "AnalysisSession", layer: dict[str, Any]) -> None:
    for key, value in layer.items():
        title = format_layer_name(key)
        metadata_columns: list[str] = []
        hidden: set[str] = set()
        items: list[dict[str, Any]] = []
        columns: list[str] = []
        rows: list[list[Any]] = []
        expandable: Any = None
        summary_report: Any = None

        step_data = read_field(value, "data")
        payload_format = isinstance(step_data, dict) and (
            isinstance(step_data.get("columns"), list) or isinstance(step_data.get("rows"), list)
        )
        if isinstance(value, dict) and (isinstance(step_data, list) or payload_format):
            display = read_record(value, "display")
            title = read_trimmed(display, "title") or title
            metadata_columns = read_string_array(display, "metadataFields") or read_string_array(
                display, "metadata_columns"
            )
            hidden = _hidden_columns(display)
            if payload_format:
                all_columns = [to_text(column) for column in read_list(step_data, "columns")]
                all_rows = [row for row in read_list(step_data, "rows") if isinstance(row, list)]
                expandable = read_field(step_data, "expandableData")
                summary_report = read_field(step_data, "summary")
                items = [dict(zip(all_columns, row)) for row in all_rows]
                to_hide = hidden | set(metadata_columns)
                visible = [index for index, column in enumerate(all_columns) if column not in to_hide]
                columns = [all_columns[index] for index in visible]
                rows = [[row[index] if index < len(row) else None for index in visible] for row in all_rows]
            else:
                items = [as_record(item) for item in step_data]
        elif isinstance(value, list):
            items = [as_record(item) for item in value]

        if not items and not rows:
            continue
        if not columns and items:
            to_hide = hidden | set(metadata_columns)
            columns = [column for column in items[0] if column not in to_hide]
            rows = [[item.get(column) for column in columns] for item in items]

        header_metadata = {
            column: items[0][column] for column in metadata_columns if items and column in items[0]
        }
        sql_result: dict[str, Any] = {
            "columns": columns,
            "rows": rows,
            "row_count": len(rows),
            "section_title": f"📋 {title} ({len(rows)}条)",
        }
        if isinstance(expandable, list) and any(expandable):
            sql_result["expandable_data"] = expandable
        if header_metadata:
            sql_result["metadata"] = header_metadata
        if summary_report is not None:
            sql_result["summary_report"] = summary_report
        session.add_message(role="assistant", sql_result=sql_result)
        _render_output(session, f"{title} {len(rows)} 行")


def extract_conclusion_from_overview(overview: dict[str, Any]) -> dict[str, Any] | None:
    candidate = as_record(overview.get("conclusion") or overview.get("root_cause_classification"))
    for source, prefixed in ((candidate, True), (overview, False)):
        category = read_trimmed(source, "problem_category") or (read_trimmed(source, "category") if prefixed else "")
        if not category:
            continue
        return {
            "category": category,
            "component": read_trimmed(source, "problem_component") or read_trimmed(source, "component"),
            "confidence": read_number(source, "confidence") or 0.5,
            "summary": read_string(source, "root_cause_summary") or read_string(source, "summary"),
            "evidence": parse_evidence(read_field(source, "evidence")),
            "suggestion": read_string(source, "suggestion"),
        }
    return None


def render_conclusion_card(conclusion: dict[str, Any]) -> str:
    category = read_trimmed(conclusion, "category")
    confidence = read_number(conclusion, "confidence") or 0.5
    percent = round_half_up(confidence * 100)
    filled = max(0, min(10, percent // 10))
    bar = "█" * filled + "░" * (10 - filled)

    lines = [
        f"## {CONCLUSION_CARD_MARKER}",
        "",
        f"**问题分类:** {_CATEGORY_EMOJI.get(category, '❓')} **{translate_category(category)}**",
        f"**问题组件:** `{translate_component(read_trimmed(conclusion, 'component'))}`",
        f"**置信度:** {bar} {percent}%",
        "",
        "### 📋 根因分析",
        read_string(conclusion, "summary"),
    ]
    suggestion = read_string(conclusion, "suggestion")
    if suggestion:
        lines.extend(["", "### 💡 优化建议", suggestion])
    evidence = parse_evidence(read_field(conclusion, "evidence"))
    if evidence:
        lines.extend(["", "### 📊 证据"])
        lines.extend(f"- {item}" for item in evidence)
    return "\n".join(lines)


def _render_summary(session: "AnalysisSession", summary: str) -> None:
    table = parse_summary_to_table(summary)
    if table is None:
        session.add_message(role="assistant", content=f"**📝 分析摘要:** {summary}")
    else:
        columns, rows = table
        session.add_message(
            role="assistant",
            sql_result={
                "columns": columns,
                "rows": rows,
                "row_count": len(rows),
                "section_title": "📝 分析摘要",
            },
        )
    _render_output(session, "分析摘要")


def handle_skill_layered_result(session: "AnalysisSession", payload: Any) -> None:
    data = read_record(payload, "data")
    result = read_record(data, "result")
    layers = read_record(result, "layers") or read_record(data, "layers")
    if not layers:
        return
    result_metadata = read_record(result, "metadata")
    skill_id = read_trimmed(data, "skillId") or read_trimmed(result_metadata, "skillId") or "unknown"
    if not session.dedup.admit(f"skill_layered_result:{skill_id}"):
        return
    skill_name = (
        read_trimmed(result_metadata, "skillName")
        or read_trimmed(data, "skillName")
        or read_trimmed(data, "skillId")
    )
    logger.info(
        "reducer.artifact.layered session_id=%s skill=%s layers=%s",
        session.session_id,
        skill_id,
        sorted(layers),
    )

    overview = read_record(layers, "overview") or read_record(layers, "L1")
    if overview:
        _process_overview_layer(session, overview, skill_name)
    listing = read_record(layers, "list") or read_record(layers, "L2")
    if listing:
        _process_list_layer(session, listing)

    conclusion = read_record(result, "conclusion") or extract_conclusion_from_overview(overview)
    category = read_trimmed(conclusion, "category")
    if conclusion and category and category != "UNKNOWN":
        session.add_message(role="assistant", content=render_conclusion_card(conclusion))
        session.conclusion_card_shown = True
        _render_output(session, f"分析结论: {translate_category(category)}")

    summary = read_trimmed(data, "summary")
    if summary:
        _render_summary(session, summary)


def handle_skill_data(session: "AnalysisSession", payload: Any) -> None:
    """Deprecated event; reshaped into a layered result."""
    data = read_record(payload, "data")
    if not data:
        return
    logger.warning("reducer.artifact.deprecated session_id=%s event=skill_data", session.session_id)
    handle_skill_layered_result(
        session,
        {
            "data": {
                "skillId": read_field(data, "skillId"),
                "skillName": read_field(data, "skillName"),
                "layers": read_field(data, "layers"),
                "diagnostics": read_field(data, "diagnostics"),
            }
        },
    )


# ---------------------------------------------------------------------------
# data envelopes
# ---------------------------------------------------------------------------


def is_data_envelope(value: Any) -> bool:
    return isinstance(value, dict) and all(key in value for key in ("meta", "data", "display"))


def envelope_dedup_key(envelope: dict[str, Any]) -> str:
    meta = read_record(envelope, "meta")
    source = read_trimmed(meta, "source")
    if source:
        return source
    return f"{read_trimmed(meta, 'skillId') or 'unknown'}:{read_trimmed(meta, 'stepId') or 'unknown'}"


def _render_metric_lines(metrics: list[Any]) -> list[str]:
    lines = []
    for metric in metrics:
        icon = _metric_icon(read_trimmed(metric, "severity"))
        value = to_text(read_field(metric, "value"))
        lines.append(f"{icon} **{read_string(metric, 'label')}:** {value}{read_string(metric, 'unit')}")
    return lines


def _render_table_envelope(session: "AnalysisSession", envelope: dict[str, Any], title: str) -> None:
    display = read_record(envelope, "display")
    payload = read_record(envelope, "data")
    columns = [to_text(column) for column in read_list(payload, "columns")]
    rows = [row for row in read_list(payload, "rows") if isinstance(row, list)]
    column_defs = read_list(display, "columns")

    if column_defs:
        to_hide = {
            read_trimmed(column, "name") for column in column_defs if read_field(column, "hidden") is True
        } | set(read_string_array(display, "metadataFields"))
        to_hide.discard("")
        if to_hide and columns:
            visible = [index for index, column in enumerate(columns) if column not in to_hide]
            columns = [columns[index] for index in visible]
            rows = [[row[index] if index < len(row) else None for index in visible] for row in rows]
            column_defs = [column for column in column_defs if read_trimmed(column, "name") not in to_hide]

    if not rows:
        return
    session.add_message(
        role="assistant",
        sql_result={
            "columns": columns,
            "rows": rows,
            "row_count": len(rows),
            "column_definitions": column_defs or None,
            "section_title": title,
            "group": read_field(display, "group"),
            "collapsible": read_field(display, "collapsible"),
            "default_collapsed": read_field(display, "defaultCollapsed"),
            "max_visible_rows": read_field(display, "maxVisibleRows"),
            "expandable_data": read_field(payload, "expandableData"),
        },
    )
    _render_output(session, f"{title or '数据表'} {len(rows)} 行")


def render_data_envelope(session: "AnalysisSession", envelope: dict[str, Any]) -> None:
    display = read_record(envelope, "display")
    payload = read_record(envelope, "data")
    fmt = read_trimmed(display, "format") or "table"
    title = read_string(display, "title")

    if fmt == "text":
        text = read_string(payload, "text")
        if text:
            session.add_message(role="assistant", content=f"**{title}**\n\n{text}")
            _render_output(session, title)
    elif fmt == "summary":
        summary = read_record(payload, "summary")
        if summary:
            heading = read_string(summary, "title") or title
            sections = [f"## 📊 {heading}"]
            body = normalize_markdown_spacing(to_text(read_field(summary, "content")))
            if body:
                sections.append(body)
            metrics = read_list(summary, "metrics")
            if metrics:
                sections.append("\n".join(["### 关键指标", *_render_metric_lines(metrics)]))
            session.add_message(role="assistant", content="\n\n".join(sections))
            _render_output(session, heading)
    elif fmt == "metric":
        metrics = read_list(read_record(payload, "summary"), "metrics")
        if metrics:
            lines = [f"### 📈 {title}", ""]
            for metric in metrics:
                icon = _metric_icon(read_trimmed(metric, "severity"))
                value = to_text(read_field(metric, "value"))
                lines.append(f"| {icon} {read_string(metric, 'label')} | **{value}{read_string(metric, 'unit')}** |")
            session.add_message(role="assistant", content="\n".join(lines))
            _render_output(session, title)
    elif fmt == "chart":
        chart = read_record(payload, "chart")
        if chart:
            session.add_message(
                role="assistant",
                content=f"### 📉 {title}\n\n**图表类型:** {read_string(chart, 'type')}\n\n*[图表渲染暂未实现，数据已记录]*",
                chart_data=chart,
            )
            _render_output(session, title)
    elif fmt == "timeline":
        session.add_message(role="assistant", content=f"### ⏱️ {title}\n\n*[时间线渲染暂未实现]*")
        _render_output(session, title)
    else:
        _render_table_envelope(session, envelope, title)


def handle_data_envelope(session: "AnalysisSession", payload: Any) -> None:
    raw = read_field(payload, "envelope")
    envelopes = raw if isinstance(raw, list) else [raw]
    for envelope in envelopes:
        if not is_data_envelope(envelope):
            logger.warning("reducer.artifact.invalid_envelope session_id=%s", session.session_id)
            continue
        if not session.dedup.admit(envelope_dedup_key(envelope)):
            continue
        render_data_envelope(session, envelope)
