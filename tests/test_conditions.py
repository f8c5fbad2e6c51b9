"""
Tests for ConditionEvaluator.
"""

import logging

import pytest

from deskflow.workflows.domain import Condition, ConditionEvaluator


@pytest.fixture
def evaluator():
    return ConditionEvaluator()


class TestConditionEvaluator:
    """Predicate matching over entity snapshots."""

    def test_empty_conditions_always_match(self, evaluator):
        assert evaluator.matches([], {"status": "open"}) is True

    def test_conditions_are_conjunctive(self, evaluator):
        conditions = [
            Condition(field="priority", operator="equals", value="high"),
            Condition(field="category", operator="equals", value="network"),
        ]
        assert evaluator.matches(conditions, {"priority": "high", "category": "network"})
        assert not evaluator.matches(conditions, {"priority": "high", "category": "hardware"})

    def test_equals_and_not_equals(self, evaluator):
        snapshot = {"status": "open"}
        assert evaluator.evaluate(Condition(field="status", operator="equals", value="open"), snapshot)
        assert evaluator.evaluate(Condition(field="status", operator="not_equals", value="closed"), snapshot)

    def test_contains_is_case_insensitive(self, evaluator):
        snapshot = {"title": "VPN down in Berlin office"}
        assert evaluator.evaluate(Condition(field="title", operator="contains", value="vpn"), snapshot)
        assert evaluator.evaluate(
            Condition(field="title", operator="not_contains", value="printer"), snapshot
        )

    def test_numeric_comparisons(self, evaluator):
        snapshot = {"reopen_count": 3}
        assert evaluator.evaluate(Condition(field="reopen_count", operator="greater_than", value=2), snapshot)
        assert evaluator.evaluate(Condition(field="reopen_count", operator="less_than", value="3.5"), snapshot)
        assert not evaluator.evaluate(Condition(field="reopen_count", operator="greater_than", value=3), snapshot)

    def test_non_numeric_comparison_fails_closed(self, evaluator, caplog):
        condition = Condition(field="priority", operator="greater_than", value="2")

        with caplog.at_level(logging.WARNING):
            assert evaluator.evaluate(condition, {"priority": "high"}) is False

        assert "Condition evaluation failed" in caplog.text

    def test_in_accepts_comma_string_and_list(self, evaluator):
        snapshot = {"priority": "high"}
        assert evaluator.evaluate(Condition(field="priority", operator="in", value="critical, high"), snapshot)
        assert evaluator.evaluate(Condition(field="priority", operator="in", value=["high", "medium"]), snapshot)
        assert evaluator.evaluate(Condition(field="priority", operator="not_in", value="low,medium"), snapshot)

    def test_missing_field_compares_as_empty_string(self, evaluator):
        assert evaluator.evaluate(Condition(field="location", operator="equals", value=""), {})
        assert not evaluator.evaluate(Condition(field="location", operator="contains", value="berlin"), {})
        assert evaluator.evaluate(Condition(field="location", operator="not_equals", value="Berlin"), {})

    def test_dot_notation_walks_nested_values(self, evaluator):
        snapshot = {"asset": {"location": "Berlin"}}
        assert evaluator.evaluate(Condition(field="asset.location", operator="equals", value="Berlin"), snapshot)

    def test_booleans_and_none_are_stringified(self, evaluator):
        snapshot = {"is_vip": True, "assigned_to_id": None}
        assert evaluator.evaluate(Condition(field="is_vip", operator="equals", value=True), snapshot)
        assert evaluator.evaluate(Condition(field="assigned_to_id", operator="equals", value=None), snapshot)

    def test_explain_reports_each_condition(self, evaluator):
        conditions = [
            Condition(field="status", operator="equals", value="open"),
            Condition(field="priority", operator="equals", value="low"),
        ]
        results = evaluator.explain(conditions, {"status": "open", "priority": "high"})
        assert [ok for _, ok in results] == [True, False]
