"""Tests for transition execution."""

import pytest

from procflow.errors import InvalidTransitionTargetError
from procflow.models import Event, WorkflowInstance
from procflow.rules.context import build_context
from procflow.rules.executor import TransitionExecutor, TransitionStatus
from procflow.rules.matcher import RuleMatcher


@pytest.fixture
def executor(approval_template):
    return TransitionExecutor(approval_template.definition, approval_template.state_actions)


@pytest.fixture
def matcher(approval_template):
    return RuleMatcher(approval_template.message_rules)


@pytest.fixture
def instance(owner_variables, t0):
    return WorkflowInstance(
        instance_id="inst-1",
        template_id="tpl",
        current_state="review",
        variables=owner_variables,
        captures={"amount": "120"},
        created_at=t0,
    )


def _execute(executor, matcher, instance, event):
    match = matcher.match(event, build_context(instance, event))
    assert match is not None
    return executor.execute(match, instance, event)


class TestTransitionExecutor:
    def test_approved_transition_with_message_and_actions(self, executor, matcher, instance):
        event = Event(type="DECISION", data={"verdict": "approve", "by": "boss@acme.example"})
        outcome = _execute(executor, matcher, instance, event)

        assert outcome.status is TransitionStatus.APPROVED
        assert outcome.should_transition
        assert outcome.target == "approved"
        assert outcome.message.type == "notify"
        assert outcome.message.fields == {"text": "approved 120 by boss@acme.example"}
        assert [a.type for a in outcome.actions] == ["SEND_EMAIL"]
        assert outcome.actions[0].config == {
            "to": "boss@acme.example",
            "subject": "Approved 120",
        }

    def test_captures_visible_to_message(self, executor, matcher, instance):
        outcome = _execute(
            executor, matcher, instance, Event(type="NOTE", data={"text": "call back"})
        )

        assert outcome.captures == {"note": "call back"}
        assert outcome.message.fields == {"text": "noted: call back"}
        assert outcome.status is TransitionStatus.NONE

    def test_captures_rendered_as_text(self, executor, matcher, instance):
        instance.current_state = "idle"
        outcome = _execute(executor, matcher, instance, Event(type="SUBMIT", data={"amount": 300}))
        assert outcome.captures == {"amount": "300"}

    def test_executor_does_not_mutate_instance(self, executor, matcher, instance):
        _execute(executor, matcher, instance, Event(type="NOTE", data={"text": "x"}))
        assert instance.captures == {"amount": "120"}
        assert instance.current_state == "review"
        assert instance.history == []

    def test_transition_conditions_see_new_captures(self, executor, matcher, instance, t0):
        # DEADLINE transitions only when the captured due date precedes state entry.
        early = Event(type="DEADLINE", data={"due": "2024-02-01T00:00:00Z"})
        late = Event(type="DEADLINE", data={"due": "2024-04-01T00:00:00Z"})

        assert _execute(executor, matcher, instance, early).status is TransitionStatus.APPROVED

        outcome = _execute(executor, matcher, instance, late)
        assert outcome.status is TransitionStatus.CONDITIONS_FAILED
        assert outcome.captures == {"due": "2024-04-01T00:00:00Z"}
        assert outcome.actions == []

    def test_invalid_target(self, executor, matcher, instance):
        outcome = _execute(executor, matcher, instance, Event(type="ESCALATE"))

        assert outcome.status is TransitionStatus.INVALID_TARGET
        assert not outcome.should_transition
        assert isinstance(outcome.error, InvalidTransitionTargetError)
        assert outcome.error.target == "nowhere"
        assert outcome.error.from_state == "review"

    def test_jump_outside_fsl_edges_is_allowed(self, executor, matcher, instance):
        # review has no FSL edge to terminated, but the state exists
        outcome = _execute(executor, matcher, instance, Event(type="CANCEL"))
        assert outcome.status is TransitionStatus.APPROVED
        assert outcome.target == "terminated"

    def test_check_target(self, executor):
        executor.check_target("approved", "review")
        with pytest.raises(InvalidTransitionTargetError) as exc_info:
            executor.check_target("limbo", "review")
        assert "approved" in exc_info.value.known_states
