"""Unit tests for ordinal-gated conversation timeline assembly."""

from __future__ import annotations

from itertools import permutations

import pytest

from trace_assistant.agent.reducer.dispatcher import dispatch
from trace_assistant.agent.reducer.flow_state import CONVERSATION_MESSAGE_TAG, parse_conversation_step


def _step(ordinal: int | None, text: str, *, event_id: str | None = None, phase: str = "progress") -> dict:
    data = {"phase": phase, "role": "agent", "content": {"text": text}}
    if ordinal is not None:
        data["ordinal"] = ordinal
    payload = {"data": data}
    if event_id is not None:
        payload["id"] = event_id
    return payload


def test_out_of_order_step_waits_for_its_predecessor(session) -> None:
    first = dispatch("conversation_step", _step(2, "second"), session)
    assert first.effects == []
    assert session.flow.conversation_last_ordinal == 0

    second = dispatch("conversation_step", _step(1, "first"), session)
    assert len(second.effects) == 1
    added = second.effects[0]
    assert added.kind == "add"
    assert added.message.flow_tag == CONVERSATION_MESSAGE_TAG
    assert added.message.content == "#1 [progress/agent] first"
    assert list(session.flow.conversation_pending_steps) == [2]

    end = dispatch("end", {}, session)
    assert end.stop_loading is True
    assert end.is_terminal is False
    assert list(session.flow.conversation_lines) == [
        "#1 [progress/agent] first",
        "#2 [progress/agent] second",
    ]
    assert end.effects[0].kind == "update"
    assert end.effects[0].message_id == added.message.id
    assert session.flow.status == "completed"


@pytest.mark.parametrize("order", list(permutations([1, 2, 3, 4])))
def test_visible_lines_stay_ordered_for_any_arrival_order(make_session, instant_pacing, order) -> None:
    session = make_session(pacing=instant_pacing)
    for ordinal in order:
        dispatch("conversation_step", _step(ordinal, f"t{ordinal}"), session)
        visible = [int(line.split(" ", 1)[0][1:]) for line in session.flow.conversation_lines]
        assert visible == list(range(1, len(visible) + 1))

    dispatch("end", {}, session)

    assert [line.split(" ", 1)[0] for line in session.flow.conversation_lines] == ["#1", "#2", "#3", "#4"]


def test_paced_flush_releases_one_step_per_event(session, clock) -> None:
    dispatch("conversation_step", _step(2, "b", phase="thinking"), session)
    dispatch("conversation_step", _step(3, "c", phase="tool"), session)
    dispatch("conversation_step", _step(1, "a"), session)
    assert session.flow.conversation_last_ordinal == 1

    clock.advance(100)
    dispatch("progress", {"data": {"message": "working"}}, session)
    assert session.flow.conversation_last_ordinal == 1

    clock.advance(120)
    dispatch("progress", {"data": {"message": "still working"}}, session)
    assert session.flow.conversation_last_ordinal == 2

    clock.advance(160)
    dispatch("connected", {}, session)
    assert session.flow.conversation_last_ordinal == 3


def test_duplicate_event_id_and_taken_ordinal_are_dropped(session) -> None:
    dispatch("conversation_step", _step(2, "second", event_id="evt-2"), session)
    taken = dispatch("conversation_step", _step(2, "impostor", event_id="evt-9"), session)
    repeat = dispatch("conversation_step", _step(3, "redelivered", event_id="evt-2"), session)
    dispatch("conversation_step", _step(1, "first", event_id="evt-1"), session)
    stale = dispatch("conversation_step", _step(1, "late", event_id="evt-7"), session)

    assert taken.effects == []
    assert repeat.effects == []
    assert stale.effects == []
    assert sorted(session.flow.conversation_pending_steps) == [2]

    dispatch("end", {}, session)

    assert list(session.flow.conversation_lines) == [
        "#1 [progress/agent] first",
        "#2 [progress/agent] second",
    ]


def test_missing_ordinal_takes_the_next_expected_slot(session) -> None:
    dispatch("conversation_step", _step(3, "three"), session)
    dispatch("conversation_step", _step(None, "legacy"), session)
    dispatch("end", {}, session)

    assert list(session.flow.conversation_lines) == ["#1 [progress/agent] legacy"]
    assert sorted(session.flow.conversation_pending_steps) == [3]


def test_missing_ordinal_fills_gap_before_buffered_steps(session) -> None:
    dispatch("conversation_step", _step(1, "one"), session)
    dispatch("conversation_step", _step(3, "three"), session)
    dispatch("conversation_step", _step(None, "legacy"), session)
    dispatch("end", {}, session)

    assert list(session.flow.conversation_lines) == [
        "#1 [progress/agent] one",
        "#2 [progress/agent] legacy",
        "#3 [progress/agent] three",
    ]


def test_missing_ordinal_loses_to_buffered_step_in_same_slot(session) -> None:
    dispatch("conversation_step", _step(1, "one"), session)
    dispatch("conversation_step", _step(2, "two"), session)
    assert sorted(session.flow.conversation_pending_steps) == [2]

    dispatch("conversation_step", _step(None, "legacy"), session)
    dispatch("end", {}, session)

    assert list(session.flow.conversation_lines) == [
        "#1 [progress/agent] one",
        "#2 [progress/agent] two",
    ]


def test_steps_after_terminal_are_ignored(session) -> None:
    dispatch("error", {"data": {"error": "backend crashed"}}, session)
    result = dispatch("conversation_step", _step(1, "too late"), session)

    assert result.effects == []
    assert session.flow.status == "failed"
    assert list(session.flow.conversation_lines) == []


def test_parse_normalizes_unknown_phase_and_role() -> None:
    event_id, item = parse_conversation_step(
        {"data": {"eventId": "e9", "ordinal": "5", "phase": "Planning", "role": "robot", "content": "  a\n b "}},
        fallback_ordinal=1,
    )

    assert event_id == "e9"
    assert item.ordinal == 5
    assert item.phase == "progress"
    assert item.role == "agent"
    assert item.render() == "#5 [progress/agent] a b"
