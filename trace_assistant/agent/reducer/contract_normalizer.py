"""Render the final conclusion contract, tolerating historical field-name variants.

Backends have shipped the contract as snake_case and camelCase, with
``conclusion`` and ``conclusions``, and with the cluster policy either nested
in ``metadata`` or at the root. Every field is looked up through the alias
table in ``contract_aliases``; the first present key wins. A section that is
absent renders an explicit placeholder line instead of failing.
"""

from __future__ import annotations

from typing import Any

from trace_assistant.agent.reducer.contract_aliases import aliases
from trace_assistant.agent.reducer.field_reader import (
    as_record,
    coerce_number,
    read_aliased,
    read_aliased_list,
    read_aliased_number,
    read_aliased_record,
    read_aliased_text,
    round_half_up,
    to_text,
)

MAX_CONCLUSIONS = 3
DEFAULT_MAX_CLUSTERS = 5
MAX_EVIDENCE_ITEMS = 12
MAX_LIST_ITEMS = 6
MAX_FRAME_REFS_SHOWN = 8

DEFAULT_CLUSTER_HEADING = "掉帧聚类（先看大头）"
GENERIC_CLUSTER_HEADING = "问题聚类（先看大头）"
SCENE_CLUSTER_HEADINGS: dict[str, str] = {
    "scrolling": DEFAULT_CLUSTER_HEADING,
    "jank": DEFAULT_CLUSTER_HEADING,
    "startup": "启动耗时聚类（先看大头）",
    "app_launch": "启动耗时聚类（先看大头）",
    "launch": "启动耗时聚类（先看大头）",
    "anr": "ANR 阻塞聚类（先看大头）",
    "interaction": "交互延迟聚类（先看大头）",
    "click": "交互延迟聚类（先看大头）",
    "tap": "交互延迟聚类（先看大头）",
    "memory": "内存问题聚类（先看大头）",
}

_DECOMPOSITION_LABELS: tuple[tuple[str, str], ...] = (
    ("trigger", "触发因子（直接原因）"),
    ("supply", "供给约束（资源瓶颈）"),
    ("amplification", "放大路径（问题放大环节）"),
)


def to_percent(value: Any) -> float | None:
    """Fractions (<= 1) scale to percentages; larger values already are."""
    number = coerce_number(value)
    if number is None:
        return None
    return number * 100 if number <= 1 else number


def _entry_text(entry: Any) -> str:
    if isinstance(entry, dict):
        return read_aliased_text(entry, ("text", "statement", "description", "summary"))
    return to_text(entry)


def _positive_int(value: Any) -> int | None:
    number = coerce_number(value)
    if number is None or number < 1:
        return None
    return int(number)


def resolve_scene_id(contract: dict[str, Any], metadata: dict[str, Any]) -> str:
    raw = read_aliased_text(metadata, aliases("metadata", "scene_id")) or read_aliased_text(
        contract, aliases("root", "scene_id")
    )
    return raw.strip().lower().replace("-", "_")


def cluster_heading(scene_id: str) -> str:
    if not scene_id:
        return DEFAULT_CLUSTER_HEADING
    return SCENE_CLUSTER_HEADINGS.get(scene_id, GENERIC_CLUSTER_HEADING)


def resolve_max_clusters(contract: dict[str, Any], metadata: dict[str, Any]) -> int:
    """Cluster cap from metadata.clusterPolicy, metadata, or a root clusterPolicy."""
    policy = read_aliased_record(metadata, aliases("metadata", "cluster_policy"))
    candidates = (
        read_aliased(policy, aliases("cluster_policy", "max_clusters")),
        read_aliased(metadata, aliases("metadata", "max_clusters")),
        read_aliased(
            read_aliased_record(contract, aliases("root", "cluster_policy")),
            aliases("cluster_policy", "max_clusters"),
        ),
    )
    for candidate in candidates:
        limit = _positive_int(candidate)
        if limit is not None:
            return limit
    return DEFAULT_MAX_CLUSTERS


def _render_conclusion(item: Any, position: int) -> str:
    record = as_record(item)
    if not record and not isinstance(item, dict):
        text = to_text(item)
        return f"{position}. {text or '结论信息缺失'}"
    resolved = read_aliased_text(record, aliases("conclusion", "statement"))
    if not resolved:
        parts = []
        for field_name, label in _DECOMPOSITION_LABELS:
            value = read_aliased_text(record, aliases("conclusion", field_name))
            if value:
                parts.append(f"{label}: {value}")
        resolved = "；".join(parts)
    confidence = to_percent(read_aliased_number(record, aliases("conclusion", "confidence")))
    suffix = f"（置信度: {round_half_up(confidence)}%）" if confidence is not None else ""
    return f"{position}. {resolved or '结论信息缺失'}{suffix}"


def _render_cluster(item: Any) -> list[str]:
    record = as_record(item)
    cluster = read_aliased_text(record, aliases("cluster", "cluster"))
    description = read_aliased_text(record, aliases("cluster", "description"))
    frames = read_aliased_number(record, aliases("cluster", "frames"))
    percentage = to_percent(read_aliased_number(record, aliases("cluster", "percentage")))

    label = f"{cluster or 'K?'}: {description}" if description else (cluster or "K?")
    metrics: list[str] = []
    if frames is not None:
        metrics.append(f"{round_half_up(frames)}帧")
    if percentage is not None:
        metrics.append(f"{percentage:.1f}%")
    lines = [f"- {label}" + (f"（{', '.join(metrics)}）" if metrics else "")]

    frame_refs = [
        text
        for text in (to_text(ref) for ref in read_aliased_list(record, aliases("cluster", "frame_refs")))
        if text
    ]
    shown = frame_refs[:MAX_FRAME_REFS_SHOWN]
    if shown:
        lines.append(f"  - 代表帧: {', '.join(shown)}")

    omitted_raw = read_aliased(record, aliases("cluster", "omitted_frames"))
    if isinstance(omitted_raw, list):
        omitted = len(omitted_raw)
    else:
        omitted = _positive_int(omitted_raw) or 0
    omitted += len(frame_refs) - len(shown)
    if omitted > 0:
        lines.append(f"  - 另有 {omitted} 帧未列出")
    return lines


def _render_evidence(item: Any, position: int) -> list[str]:
    record = as_record(item)
    conclusion_id = read_aliased_text(record, aliases("evidence", "conclusion_id")) or f"C{position}"
    evidence = read_aliased(record, aliases("evidence", "evidence"))
    if isinstance(evidence, list):
        return [f"- {conclusion_id}: {text}" for text in (_entry_text(entry) for entry in evidence) if text]
    text = read_aliased_text(
        record,
        (
            *aliases("evidence", "text"),
            *aliases("evidence", "evidence"),
            *aliases("evidence", "statement"),
            *aliases("evidence", "data"),
        ),
    )
    if not text and not record:
        text = to_text(item)
    return [f"- {conclusion_id}: {text}"] if text else []


def _render_plain_list(items: list[Any]) -> list[str]:
    lines = [f"- {text}" for text in (_entry_text(entry) for entry in items[:MAX_LIST_ITEMS]) if text]
    return lines or ["- 暂无"]


def render_conclusion_contract(contract: Any) -> str | None:
    """Render the contract as markdown, or None when it carries no signal."""
    if not isinstance(contract, dict):
        return None

    conclusions = read_aliased_list(contract, aliases("root", "conclusions"))
    clusters = read_aliased_list(contract, aliases("root", "clusters"))
    evidence_chain = read_aliased_list(contract, aliases("root", "evidence_chain"))
    uncertainties = read_aliased_list(contract, aliases("root", "uncertainties"))
    next_steps = read_aliased_list(contract, aliases("root", "next_steps"))
    metadata = read_aliased_record(contract, aliases("root", "metadata"))

    if not (conclusions or clusters or evidence_chain or uncertainties or next_steps):
        return None

    lines: list[str] = ["## 结论（按可能性排序）"]
    if conclusions:
        lines.extend(
            _render_conclusion(item, position)
            for position, item in enumerate(conclusions[:MAX_CONCLUSIONS], start=1)
        )
    else:
        lines.append("1. 结论信息缺失（证据不足）")
    lines.append("")

    lines.append(f"## {cluster_heading(resolve_scene_id(contract, metadata))}")
    if clusters:
        for item in clusters[: resolve_max_clusters(contract, metadata)]:
            lines.extend(_render_cluster(item))
    else:
        lines.append("- 暂无")
    lines.append("")

    lines.append("## 证据链（对应上述结论）")
    evidence_lines: list[str] = []
    for position, item in enumerate(evidence_chain[:MAX_EVIDENCE_ITEMS], start=1):
        evidence_lines.extend(_render_evidence(item, position))
    lines.extend(evidence_lines or ["- 证据链信息缺失"])
    lines.append("")

    lines.append("## 不确定性与反例")
    lines.extend(_render_plain_list(uncertainties))
    lines.append("")

    lines.append("## 下一步（最高信息增益）")
    lines.extend(_render_plain_list(next_steps))

    raw_confidence = read_aliased_number(metadata, aliases("metadata", "confidence"))
    if raw_confidence is None:
        raw_confidence = read_aliased_number(contract, aliases("root", "confidence"))
    confidence = to_percent(raw_confidence)
    rounds = read_aliased_number(metadata, aliases("metadata", "rounds"))
    if rounds is None:
        rounds = read_aliased_number(contract, aliases("root", "rounds"))
    if confidence is not None or rounds is not None:
        lines.append("")
        lines.append("## 分析元数据")
        if confidence is not None:
            lines.append(f"- 置信度: {round_half_up(confidence)}%")
        if rounds is not None:
            lines.append(f"- 分析轮次: {round_half_up(rounds)}")

    return "\n".join(lines)
