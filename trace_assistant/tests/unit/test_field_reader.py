"""Unit tests for untyped payload readers."""

from __future__ import annotations

from trace_assistant.agent.reducer.field_reader import (
    coerce_number,
    read_aliased,
    read_aliased_number,
    read_aliased_text,
    read_bool,
    read_int,
    read_list,
    read_record,
    read_string,
    read_string_array,
    read_trimmed,
    round_half_up,
)


def test_readers_default_on_wrong_shapes() -> None:
    assert read_record(None, "data") == {}
    assert read_record({"data": [1, 2]}, "data") == {}
    assert read_list({"items": "nope"}, "items") == []
    assert read_string({"name": {"x": 1}}, "name", "fallback") == "fallback"
    assert read_string({"name": True}, "name") == ""
    assert read_int({"n": "oops"}, "n", 7) == 7


def test_numbers_and_strings_coerce() -> None:
    assert coerce_number("87%") == 87.0
    assert coerce_number(" 0.5 ") == 0.5
    assert coerce_number(float("nan")) is None
    assert coerce_number(True) is None
    assert read_string({"ordinal": 3}, "ordinal") == "3"
    assert read_trimmed({"id": "  evt-1  "}, "id") == "evt-1"
    assert read_bool({"done": "true"}, "done") is True
    assert read_string_array({"agents": ["a", 2, None, {"x": 1}]}, "agents") == ["a", "2"]


def test_aliased_reads_take_first_present_key() -> None:
    source = {"nextSteps": None, "next_steps": ["x"], "confidencePercent": "", "confidence": 0.8}

    assert read_aliased(source, ("nextSteps", "next_steps")) == ["x"]
    assert read_aliased_number(source, ("confidencePercent", "confidence")) == 0.8
    assert read_aliased_text({"a": "", "b": " hi "}, ("a", "b")) == "hi"
    assert read_aliased("not a mapping", ("a",), default="d") == "d"


def test_round_half_up_rounds_halves_up() -> None:
    assert round_half_up(0.5) == 1
    assert round_half_up(2.5) == 3
    assert round_half_up(86.4) == 86
