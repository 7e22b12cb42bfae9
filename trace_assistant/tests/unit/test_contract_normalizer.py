"""Unit tests for conclusion contract rendering across field-name variants."""

from __future__ import annotations

from trace_assistant.agent.reducer.contract_normalizer import (
    cluster_heading,
    render_conclusion_contract,
    resolve_max_clusters,
    to_percent,
)


def _clusters(count: int) -> list[dict]:
    return [
        {"cluster": f"K{index}", "description": f"cause {index}", "frames": 10 - index}
        for index in range(1, count + 1)
    ]


def test_cluster_cap_keeps_source_order() -> None:
    contract = {
        "conclusion": [{"statement": "RenderThread blocked", "confidence": 0.87}],
        "clusters": _clusters(6),
        "metadata": {"clusterPolicy": {"maxClusters": 2}, "sceneId": "scrolling"},
    }

    rendered = render_conclusion_contract(contract)

    assert rendered is not None
    assert "- K1: cause 1（9帧）" in rendered
    assert "- K2: cause 2（8帧）" in rendered
    assert rendered.index("- K1:") < rendered.index("- K2:")
    assert "- K3:" not in rendered
    assert "1. RenderThread blocked（置信度: 87%）" in rendered
    assert "## 掉帧聚类（先看大头）" in rendered


def test_snake_case_contract_renders_same_sections() -> None:
    contract = {
        "conclusions": [{"trigger": "binder call", "supply": "little core"}],
        "evidence_chain": [{"conclusion_id": "C1", "evidence": ["slice A", "slice B"]}],
        "next_steps": ["check binder"],
        "metadata": {"scene_id": "app-launch", "max_clusters": 1, "confidence": 0.6, "rounds": 2},
    }

    rendered = render_conclusion_contract(contract)

    assert rendered is not None
    assert "1. 触发因子（直接原因）: binder call；供给约束（资源瓶颈）: little core" in rendered
    assert "## 启动耗时聚类（先看大头）" in rendered
    assert "- C1: slice A" in rendered
    assert "- C1: slice B" in rendered
    assert "- check binder" in rendered
    assert "- 置信度: 60%" in rendered
    assert "- 分析轮次: 2" in rendered


def test_missing_sections_render_placeholders() -> None:
    rendered = render_conclusion_contract({"nextSteps": ["collect another trace"]})

    assert rendered is not None
    assert "1. 结论信息缺失（证据不足）" in rendered
    assert "- 证据链信息缺失" in rendered
    assert "## 不确定性与反例\n- 暂无" in rendered
    assert "分析元数据" not in rendered


def test_contract_without_signal_yields_none() -> None:
    assert render_conclusion_contract(None) is None
    assert render_conclusion_contract("text") is None
    assert render_conclusion_contract({}) is None
    assert render_conclusion_contract({"metadata": {"confidence": 0.9}}) is None


def test_frame_refs_are_clipped_with_hint() -> None:
    cluster = {"cluster": "K1", "frameRefs": [f"f{index}" for index in range(10)], "omittedFrameRefs": 3}

    rendered = render_conclusion_contract({"clusters": [cluster]})

    assert rendered is not None
    assert "  - 代表帧: f0, f1, f2, f3, f4, f5, f6, f7" in rendered
    assert "  - 另有 5 帧未列出" in rendered


def test_helpers() -> None:
    assert to_percent(0.42) == 42.0
    assert to_percent("73%") == 73.0
    assert to_percent(None) is None
    assert cluster_heading("") == "掉帧聚类（先看大头）"
    assert cluster_heading("unknown_scene") == "问题聚类（先看大头）"
    assert resolve_max_clusters({"clusterPolicy": {"max_clusters": "3"}}, {}) == 3
    assert resolve_max_clusters({}, {"maxClusters": 0}) == 5
