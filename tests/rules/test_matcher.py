"""Tests for first-match rule selection."""

from unittest.mock import patch

import pytest

from procflow.models import Event, WorkflowInstance
from procflow.rules.context import build_context
from procflow.rules.matcher import RuleMatcher
from procflow.workflow.schema import MessageRule


def _rule(event_type, conditions=None, to=None, transition_conditions=None):
    data = {"matches": {"type": event_type, "conditions": conditions or {}}}
    if to:
        data["transition"] = {"to": to, "conditions": transition_conditions or {}}
    return MessageRule.model_validate(data)


@pytest.fixture
def instance():
    return WorkflowInstance(
        instance_id="inst-1",
        template_id="tpl",
        current_state="review",
        variables={"owner": {"email": "boss@acme.example"}},
    )


def _match(matcher, instance, event):
    return matcher.match(event, build_context(instance, event))


class TestRuleMatcher:
    def test_type_must_match(self, instance):
        matcher = RuleMatcher([_rule("SUBMIT")])
        assert _match(matcher, instance, Event(type="DECISION")) is None

    def test_first_matching_rule_wins(self, instance):
        matcher = RuleMatcher(
            [
                _rule("DECISION", {"verdict": "approve"}, to="approved"),
                _rule("DECISION", {}, to="rejected"),
                _rule("DECISION", {}, to="review"),
            ]
        )

        match = _match(matcher, instance, Event(type="DECISION", data={"verdict": "reject"}))
        assert match.index == 1
        assert match.rule.transition.to == "rejected"

    def test_conditions_recorded(self, instance):
        matcher = RuleMatcher([_rule("DECISION", {"by": "{{owner.email}}"})])
        match = _match(
            matcher, instance, Event(type="DECISION", data={"by": "boss@acme.example"})
        )
        assert match.index == 0
        assert match.conditions[0].matched

    def test_no_rules_means_no_match(self, instance):
        assert _match(RuleMatcher([]), instance, Event(type="X")) is None

    def test_candidates(self):
        matcher = RuleMatcher([_rule("A"), _rule("B"), _rule("A")])
        assert matcher.candidates("A") == [0, 2]

    def test_failing_transition_conditions_do_not_fall_through(self, instance):
        """Matching stops at the rule whose match clause holds."""
        matcher = RuleMatcher(
            [
                _rule("DECISION", {}, to="approved", transition_conditions={"ok": "yes"}),
                _rule("DECISION", {}, to="rejected"),
            ]
        )
        match = _match(matcher, instance, Event(type="DECISION", data={"ok": "no"}))
        assert match.index == 0

    def test_rules_after_winner_are_not_evaluated(self, instance):
        matcher = RuleMatcher(
            [_rule("DECISION", {"verdict": "approve"}), _rule("DECISION", {"x": "y"})]
        )

        with patch.object(
            matcher.evaluator, "evaluate_all", wraps=matcher.evaluator.evaluate_all
        ) as spy:
            _match(matcher, instance, Event(type="DECISION", data={"verdict": "approve"}))

        assert spy.call_count == 1
