"""Tests for tag value conversion."""

import json
import math

import pytest

from tracekeeper.utils.values import to_analytics_metric, to_bool, to_string


class Unprintable:
    def __str__(self):
        raise RuntimeError("no string form")


class TestToString:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (True, "true"),
            (False, "false"),
            (-69, "-69"),
            (420, "420"),
            (2**64 - 1, "18446744073709551615"),
            (6.283185, "6.283185"),
            (1.0, "1.0"),
            ("hi there", "hi there"),
            ("", ""),
            (None, "nullptr"),
            (b"bytes", "bytes"),
            ([], "[]"),
            (["hi", 420, True], '["hi",420,true]'),
            (("a", None), '["a",null]'),
        ],
    )
    def test_scalars_and_lists(self, value, expected):
        assert to_string(value) == expected

    def test_nested_map_compares_structurally(self):
        value = {"a": "1", "b": 2, "c": {"nesting": True, "list": [1, 2.5, None]}}
        assert json.loads(to_string(value)) == value

    def test_non_string_map_keys_are_stringified(self):
        assert json.loads(to_string({1: "one"})) == {"1": "one"}

    def test_unsupported_value_renders_best_effort(self):
        class Thing:
            def __str__(self):
                return "thing"

        assert to_string(Thing()) == "thing"
        assert json.loads(to_string([Thing()])) == ["thing"]

    def test_unrepresentable_value_renders_empty(self):
        assert to_string(Unprintable()) == ""


class TestToBool:
    @pytest.mark.parametrize("value", ["0", "false", "", 0, 0.0, False])
    def test_falsy(self, value):
        assert to_bool(value) is False

    @pytest.mark.parametrize(
        "value", ["1", "true", "False", "no", " ", 1, -1, 0.1, True, [], ["hi"], {}, {"a": 1}, None]
    )
    def test_truthy(self, value):
        assert to_bool(value) is True


class TestToAnalyticsMetric:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (True, 1.0),
            (False, 0.0),
            (1, 1.0),
            (0, 0.0),
            (1.0, 1.0),
            (0.5, 0.5),
            (0.0, 0.0),
            ("", 0.0),
            ("0.25", 0.25),
            ("1", 1.0),
        ],
    )
    def test_accepted(self, value, expected):
        assert to_analytics_metric(value) == expected

    @pytest.mark.parametrize(
        "value", [-1, 2, -0.1, 1.1, "not a number at all", "1.5", "-0.5", math.nan, None, [0.5], {"a": 0.5}]
    )
    def test_rejected(self, value):
        assert to_analytics_metric(value) is None
