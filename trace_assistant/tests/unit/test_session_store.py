"""Unit tests for the in-memory session store."""

from __future__ import annotations

from itertools import count

from trace_assistant.agent.runtime.session_state import SessionStateStore


def _store(clock, instant_pacing, **kwargs) -> SessionStateStore:
    ids = count(1)
    return SessionStateStore(
        pacing=instant_pacing,
        clock=clock,
        id_factory=lambda: f"m{next(ids)}",
        **kwargs,
    )


def test_start_generates_or_reuses_ids(clock, instant_pacing) -> None:
    store = _store(clock, instant_pacing)

    generated = store.start()
    named = store.start("  trace-1 ")

    assert generated.session_id.startswith("sess_")
    assert named.session_id == "trace-1"
    assert named.flow_status == "idle"
    assert named.messages == []
    assert len(store) == 2


def test_restart_replaces_state(clock, instant_pacing) -> None:
    store = _store(clock, instant_pacing)
    store.start("trace-1")
    store.dispatch("trace-1", "progress", {"data": {"message": "加载 trace"}})

    restarted = store.start("trace-1")

    assert restarted.messages == []
    assert len(store) == 1


def test_oldest_sessions_are_evicted(clock, instant_pacing) -> None:
    store = _store(clock, instant_pacing, limit=2)
    for session_id in ("a", "b", "c"):
        store.start(session_id)

    assert store.get("a") is None
    assert store.get("b") is not None
    assert store.get("c") is not None


def test_dispatch_applies_effects_to_transcript(clock, instant_pacing) -> None:
    store = _store(clock, instant_pacing)
    store.start("trace-1")

    store.dispatch("trace-1", "conversation_step", {"id": "e2", "data": {"ordinal": 2, "phase": "tool", "text": "查询帧表"}})
    store.dispatch("trace-1", "conversation_step", {"id": "e1", "data": {"ordinal": 1, "phase": "thinking", "text": "先看主线程"}})
    store.dispatch("trace-1", "answer_token", {"data": {"token": "主线程"}})
    result = store.dispatch("trace-1", "end", {})

    assert result is not None and result.stop_loading is True
    snapshot = store.snapshot("trace-1")
    assert snapshot is not None
    assert snapshot.conversation_lines == ["#1 [thinking/agent] 先看主线程", "#2 [tool/agent] 查询帧表"]
    assert snapshot.conversation_pending_ordinals == []
    assert snapshot.answer_content == "主线程"
    assert snapshot.answer_status == "completed"
    assert snapshot.messages[0].content == "#1 [thinking/agent] 先看主线程\n#2 [tool/agent] 查询帧表"
    assert snapshot.messages[1].content == "主线程"


def test_unknown_session_and_delete(clock, instant_pacing) -> None:
    store = _store(clock, instant_pacing)
    store.start("trace-1")

    assert store.dispatch("missing", "progress", {}) is None
    assert store.snapshot("missing") is None
    assert store.delete("trace-1") is True
    assert store.delete("trace-1") is False
    assert store.list_snapshots() == []
