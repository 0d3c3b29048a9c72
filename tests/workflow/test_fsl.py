"""Tests for FSL state machine parsing."""

import pytest

from procflow.errors import AmbiguousTransitionError, ParseError
from procflow.workflow.fsl import parse_fsl

INTERVIEW_FSL = """
idle 'start' -> review;
review 'approve' -> approved;
review 'reject' -> rejected;
approved 'complete' -> completed;
rejected 'retry' -> review;
"""


class TestParseFsl:
    def test_states_in_order_of_appearance(self):
        definition = parse_fsl(INTERVIEW_FSL)
        assert definition.states == ["idle", "review", "approved", "rejected", "completed"]

    def test_transitions(self):
        definition = parse_fsl(INTERVIEW_FSL)
        assert len(definition.transitions) == 5
        assert definition.target_for("review", "approve") == "approved"
        assert definition.target_for("review", "complete") is None

    def test_transition_table(self):
        table = parse_fsl(INTERVIEW_FSL).transition_table()
        assert table[("rejected", "retry")] == "review"

    def test_labels_and_next_states(self):
        definition = parse_fsl(INTERVIEW_FSL)
        assert definition.labels_from("review") == ["approve", "reject"]
        assert definition.next_states("review") == {"approved", "rejected"}
        assert definition.next_states("completed") == set()

    def test_idle_is_default_initial(self):
        assert parse_fsl(INTERVIEW_FSL).initial == "idle"

    def test_no_idle_means_no_initial(self):
        assert parse_fsl("draft 'send' -> sent;").initial is None

    def test_explicit_initial(self):
        assert parse_fsl(INTERVIEW_FSL, initial="review").initial == "review"

    def test_unknown_initial(self):
        with pytest.raises(ValueError):
            parse_fsl(INTERVIEW_FSL, initial="limbo")

    def test_final_states_added_when_absent(self):
        definition = parse_fsl(INTERVIEW_FSL, final_states=["completed", "terminated"])
        assert definition.is_final("completed")
        assert definition.is_final("terminated")
        assert definition.has_state("terminated")
        assert not definition.is_final("review")

    def test_labels_may_contain_spaces(self):
        definition = parse_fsl("idle 'send offer' -> offered")
        assert definition.target_for("idle", "send offer") == "offered"

    def test_trailing_semicolon_optional(self):
        definition = parse_fsl("a 'x' -> b; b 'y' -> c")
        assert definition.states == ["a", "b", "c"]

    def test_self_loop(self):
        definition = parse_fsl("review 'comment' -> review;")
        assert definition.next_states("review") == {"review"}

    def test_empty_source(self):
        definition = parse_fsl("")
        assert definition.states == []
        assert definition.transitions == []


class TestFslErrors:
    @pytest.mark.parametrize(
        "source",
        [
            "idle start -> review;",
            "idle 'start' review;",
            "idle 'start' -> ;",
            "'start' -> review;",
            "idle 'start' -> review extra;",
        ],
    )
    def test_malformed_statements(self, source):
        with pytest.raises(ParseError):
            parse_fsl(source)

    def test_parse_error_reports_line(self):
        with pytest.raises(ParseError) as exc_info:
            parse_fsl("idle 'start' -> review;\nreview approve -> done;")
        assert exc_info.value.line == 2
        assert "review approve -> done" in exc_info.value.statement

    def test_ambiguous_transition(self):
        with pytest.raises(AmbiguousTransitionError) as exc_info:
            parse_fsl("review 'decide' -> approved;\nreview 'decide' -> rejected;")
        error = exc_info.value
        assert error.state == "review"
        assert error.label == "decide"
        assert error.targets == ("approved", "rejected")
        assert error.line == 2

    def test_same_label_from_different_states_is_fine(self):
        definition = parse_fsl("a 'go' -> b; b 'go' -> c;")
        assert definition.target_for("b", "go") == "c"
