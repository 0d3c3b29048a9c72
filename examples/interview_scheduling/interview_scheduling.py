"""
procflow - Interview Scheduling

Drives the interview workflow in template.yaml through the async runtime,
one event at a time, and prints what each event did.

What happens on each event:
  1. The runtime locks the instance and builds the lookup context
     (event data, captures, variables, previous state).
  2. Message rules listening for the event type are tried in order; the
     first whose conditions all hold wins.
  3. The winning rule's captures are stored, its message is rendered and,
     if its transition conditions hold, the instance moves to the target
     state and any state actions are requested.

Also shows how to plug in a custom condition operator: "(domain)" matches
an email address against a domain.

Run:
  cd examples/interview_scheduling
  python interview_scheduling.py
"""

import asyncio
from pathlib import Path

from procflow import Event, TemplateParser, WorkflowRuntime, register_operator
from procflow.rules.values import to_text

HERE = Path(__file__).resolve().parent


@register_operator("domain")
def email_domain(actual, expected: str) -> bool:
    """True when an email address belongs to the expected domain."""
    return to_text(actual).lower().endswith("@" + expected.strip().lower())


VARIABLES = {
    "candidate": {"email": "ana@example.com", "name": "Ana"},
    "company": {"email": "hr@acme.example", "department": "Engineering"},
}

EVENTS = [
    Event(
        type="APPLICATION_RECEIVED",
        data={"position": "Backend Engineer"},
        timestamp="2024-03-01T09:00:00Z",
    ),
    Event(
        type="EMAIL_RECEIVED",
        data={
            "from": "ana@example.com",
            "to": "hr@acme.example",
            "subject": "Interview availability",
            "time": "2024-03-02T10:15:00Z",
        },
        timestamp="2024-03-02T10:15:00Z",
    ),
    Event(
        type="EMAIL_RECEIVED",
        data={
            "from": "ana@example.com",
            "to": "hr@acme.example",
            "subject": "Re: Confirmed for Thursday",
            "time": "2024-03-03T08:00:00Z",
        },
        timestamp="2024-03-03T08:00:00Z",
    ),
    Event(
        type="DOCUMENT_UPLOADED",
        data={"documentType": "contract", "url": "https://docs.acme.example/contracts/ana.pdf"},
        timestamp="2024-03-08T16:30:00Z",
    ),
]


async def main():
    template = TemplateParser.parse_file(HERE / "template.yaml")
    runtime = WorkflowRuntime()

    instance = await runtime.create_instance(
        template,
        variables=VARIABLES,
        created_at=EVENTS[0].timestamp.replace(hour=0),
    )
    print(f"Instance {instance.instance_id} created in '{instance.current_state}'\n")

    for event in EVENTS:
        result = await runtime.process_event(instance.instance_id, event)
        if result.transitioned:
            print(f"[{event.type}] {result.from_state} -> {result.new_state}")
        elif result.matched:
            print(f"[{event.type}] rule {result.rule_index} matched, no transition")
        else:
            print(f"[{event.type}] no rule matched")

        if result.generated_message:
            print(f"    message: {result.generated_message.type} {result.generated_message.fields}")
        for action in result.actions:
            print(f"    action:  {action.type} {action.config}")
        if result.error:
            print(f"    error:   {result.error}")

    print(f"\nFinal state: {instance.current_state}")
    print("Path: " + " -> ".join(instance.get_state_sequence()))

    # The custom operator is available to any condition once registered.
    from procflow.rules.context import LayeredContext
    from procflow.rules.conditions import ConditionEvaluator

    check = ConditionEvaluator().evaluate(
        "from", "(domain) example.com", LayeredContext.of({"from": "ana@example.com"})
    )
    print(f"\n(domain) example.com matches ana@example.com: {check.matched}")


if __name__ == "__main__":
    asyncio.run(main())
