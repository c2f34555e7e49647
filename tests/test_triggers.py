"""Tests for lioncloud.triggers."""

from __future__ import annotations

import pytest

from lioncloud.config import Trigger, TriggerCondition
from lioncloud.triggers import find_matching_trigger, match_value, select


class TestSelect:
    def test_nested_keys(self):
        assert select({"event": {"type": "press"}}, "event.type") == "press"

    def test_list_index(self):
        assert select({"buttons": [1, {"id": 7}]}, "buttons.1.id") == 7

    def test_null_is_a_value(self):
        assert select({"a": None}, "a") is None

    @pytest.mark.parametrize("selector", ["b", "a.b", "list.5", "list.x"])
    def test_missing(self, selector):
        assert not match_value(select({"a": 1, "list": [0]}, selector), None)


class TestMatchValue:
    def test_numbers(self):
        assert match_value(1, 1.0)
        assert match_value(2.5, 2.5)
        assert not match_value("1", 1)
        assert not match_value(True, 1)

    def test_strings(self):
        assert match_value("single", "single")
        assert not match_value("double", "single")

    def test_booleans(self):
        assert match_value(True, True)
        assert not match_value(1, True)

    def test_structures(self):
        assert match_value({"a": [1, 2]}, {"a": [1, 2]})
        assert match_value(None, None)


def _trigger(mode: str, **conditions: object) -> Trigger:
    return Trigger(
        topic="zigbee2mqtt/button",
        conditions=[TriggerCondition(k, v) for k, v in conditions.items()],
        mode=mode,
    )


class TestFindMatchingTrigger:
    def test_first_match_wins(self):
        triggers = [_trigger("Dose1", action="single"), _trigger("Dose2", action="single")]
        assert find_matching_trigger(triggers, b'{"action": "single"}') is triggers[0]

    def test_all_conditions_required(self):
        triggers = [_trigger("Dose2", action="double", battery=100)]
        assert find_matching_trigger(triggers, '{"action": "double", "battery": 90}') is None
        assert find_matching_trigger(triggers, '{"action": "double", "battery": 100}')

    def test_no_conditions_always_matches(self):
        trigger = _trigger("Continuous")
        assert find_matching_trigger([trigger], "{}") is trigger

    def test_non_json_payload(self):
        assert find_matching_trigger([_trigger("Dose1")], b"pressed") is None

    def test_no_match(self):
        assert find_matching_trigger([_trigger("Dose1", action="hold")], '{"action": 1}') is None
