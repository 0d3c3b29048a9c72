"""Pytest fixtures for procflow tests."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest


@pytest.fixture
def examples_dir() -> Path:
    """Get path to examples directory."""
    return Path(__file__).parent.parent / "examples"


@pytest.fixture
def interview_template_path(examples_dir: Path) -> Path:
    return examples_dir / "interview_scheduling" / "template.yaml"


@pytest.fixture
def interview_events_path(examples_dir: Path) -> Path:
    return examples_dir / "interview_scheduling" / "events.yaml"


@pytest.fixture
def interview_template(interview_template_path: Path):
    """Load the interview scheduling template."""
    from procflow.workflow.parser import TemplateParser

    return TemplateParser.parse_file(interview_template_path)


@pytest.fixture
def interview_variables():
    return {
        "candidate": {"email": "ana@example.com", "name": "Ana"},
        "company": {"email": "hr@acme.example", "department": "Engineering"},
    }


@pytest.fixture
def t0() -> datetime:
    """A fixed point in time every test clock starts from."""
    return datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def at(t0):
    """at(minutes) -> t0 + minutes."""

    def _at(minutes: float) -> datetime:
        return t0 + timedelta(minutes=minutes)

    return _at


@pytest.fixture
def approval_template_dict():
    """Small approval workflow exercising every rule feature."""
    return {
        "name": "approval",
        "version": "1.0",
        "stateMachine": {
            "fsl": (
                "idle 'submit' -> review;\n"
                "review 'approve' -> approved;\n"
                "review 'reject' -> rejected;\n"
                "rejected 'retry' -> review;"
            ),
            "final": ["approved", "terminated"],
        },
        "variables": {
            "owner": {
                "email": {"type": "email", "required": True},
                "limit": {"type": "number"},
            },
        },
        "messageRules": [
            {
                "matches": {"type": "SUBMIT"},
                "captures": {"amount": "{{amount}}"},
                "transition": {"to": "review"},
            },
            {
                "matches": {
                    "type": "DECISION",
                    "conditions": {"verdict": "approve", "by": "{{owner.email}}"},
                },
                "generates": {
                    "type": "notify",
                    "template": {"text": "approved {{captures.amount}} by {{by}}"},
                },
                "transition": {"to": "approved"},
            },
            {
                "matches": {"type": "DECISION", "conditions": {"verdict": "reject"}},
                "transition": {"to": "rejected"},
            },
            {
                "matches": {"type": "DEADLINE"},
                "captures": {"due": "{{due}}"},
                "transition": {
                    "to": "rejected",
                    "conditions": {"due": "(before) {{previousState.time}}"},
                },
            },
            {
                "matches": {"type": "NOTE"},
                "captures": {"note": "{{text}}"},
                "generates": {"type": "ack", "template": {"text": "noted: {{note}}"}},
            },
            {"matches": {"type": "PING"}, "transition": {"to": "review"}},
            {"matches": {"type": "CANCEL"}, "transition": {"to": "terminated"}},
            {"matches": {"type": "ESCALATE"}, "transition": {"to": "nowhere"}},
        ],
        "stateActions": {
            "approved": [
                {
                    "type": "SEND_EMAIL",
                    "config": {
                        "to": "{{owner.email}}",
                        "subject": "Approved {{captures.amount}}",
                    },
                }
            ],
        },
    }


@pytest.fixture
def approval_template(approval_template_dict):
    from procflow.workflow.schema import WorkflowTemplate

    return WorkflowTemplate.model_validate(approval_template_dict)


@pytest.fixture
def owner_variables():
    return {"owner": {"email": "boss@acme.example", "limit": "500"}}
