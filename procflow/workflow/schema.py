"""
Workflow template schema using Pydantic models.

A template bundles:
- A state machine in FSL text form
- Message rules that react to events
- Declared instance variables and event types
- Actions to request when a state is entered

Example YAML:
```yaml
name: interview-scheduling
stateMachine:
  fsl: |
    idle 'start' -> review;
    review 'approve' -> approved;
  initial: idle
  final: [approved]

variables:
  candidate:
    email: {type: string, required: true}

eventTypes:
  - type: EMAIL_RECEIVED
    schema: {from: string, subject: string, time: string}

messageRules:
  - matches:
      type: EMAIL_RECEIVED
      conditions:
        from: "{{candidate.email}}"
        subject: "(contains) interview"
    captures:
      requestTime: "{{event.data.time}}"
    generates:
      type: contact_candidate
      template:
        title: "interview requested by {{candidate.name}}"
    transition:
      to: review
      conditions:
        requestTime: "(after) {{previousState.time}}"

stateActions:
  approved:
    - type: SEND_EMAIL
      config: {to: "{{candidate.email}}", subject: "Welcome"}
```
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    field_validator,
    model_validator,
)

from procflow.identifiers import DEFAULT_ID_LENGTH, content_id
from procflow.rules.conditions import parse_condition
from procflow.workflow.fsl import StateMachineDefinition, parse_fsl

logger = logging.getLogger(__name__)


def _validate_conditions(conditions: Dict[str, Any]) -> Dict[str, Any]:
    """Parse every condition so unknown operators fail at load time."""
    for field, expression in conditions.items():
        if not field or not str(field).strip():
            raise ValueError("Condition field name must not be empty")
        parse_condition(expression)
    return conditions


class MatchSpec(BaseModel):
    """Which events a rule listens for."""

    model_config = ConfigDict(frozen=True)

    type: str = Field(..., min_length=1)
    conditions: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("conditions")
    @classmethod
    def validate_conditions(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        return _validate_conditions(v)


class GeneratesSpec(BaseModel):
    """Outbound message produced when a rule fires."""

    model_config = ConfigDict(frozen=True)

    type: str = Field(..., min_length=1)
    template: Dict[str, Any] = Field(default_factory=dict)


class TransitionSpec(BaseModel):
    """Rule-driven state change, guarded by its own conditions."""

    model_config = ConfigDict(frozen=True)

    to: str = Field(..., min_length=1)
    conditions: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("conditions")
    @classmethod
    def validate_conditions(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        return _validate_conditions(v)


class MessageRule(BaseModel):
    """
    A declarative reaction to an event.

    Rules are evaluated in authored order and the first whose ``matches``
    clause holds is applied; order rules from most to least specific.
    """

    model_config = ConfigDict(frozen=True)

    matches: MatchSpec
    captures: Dict[str, str] = Field(default_factory=dict)
    generates: Optional[GeneratesSpec] = None
    transition: Optional[TransitionSpec] = None
    description: Optional[str] = None

    @property
    def match_type(self) -> str:
        return self.matches.type

    @property
    def conditions(self) -> Dict[str, Any]:
        return self.matches.conditions


class VariableSpec(BaseModel):
    """Declared instance variable."""

    type: str = "string"
    required: bool = False
    description: Optional[str] = None


class EventTypeSpec(BaseModel):
    """Declared event type and the fields its data carries."""

    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(..., min_length=1)
    field_types: Dict[str, str] = Field(default_factory=dict, alias="schema")

    def missing_fields(self, data: Mapping[str, Any]) -> List[str]:
        return [name for name in self.field_types if name not in data]


class ActionType(str, Enum):
    """Side effects a state may request on entry."""

    SEND_EMAIL = "SEND_EMAIL"
    CALL_API = "CALL_API"
    DOCUSIGN_EVENT = "DOCUSIGN_EVENT"


class StateAction(BaseModel):
    """An action requested when a state is entered. Never executed here."""

    type: ActionType
    config: Dict[str, Any] = Field(default_factory=dict)


class StateMachineSpec(BaseModel):
    """State machine section of a template, as authored."""

    fsl: str = ""
    initial: Optional[str] = None
    final: List[str] = Field(default_factory=list)


class WorkflowTemplate(BaseModel):
    """
    Complete workflow template.

    Templates are immutable once parsed: editing one produces a new template
    with a new id. The FSL text is compiled during validation and exposed as
    ``definition``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    template_id: Optional[str] = Field(default=None, alias="templateId")
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    version: str = "1.0"

    state_machine: StateMachineSpec = Field(alias="stateMachine")
    message_rules: List[MessageRule] = Field(default_factory=list, alias="messageRules")
    variables: Dict[str, Dict[str, VariableSpec]] = Field(default_factory=dict)
    event_types: List[EventTypeSpec] = Field(default_factory=list, alias="eventTypes")
    state_actions: Dict[str, List[StateAction]] = Field(
        default_factory=dict, alias="stateActions"
    )

    metadata: Dict[str, Any] = Field(default_factory=dict)

    _definition: Optional[StateMachineDefinition] = PrivateAttr(default=None)

    @model_validator(mode="after")
    def compile_state_machine(self):
        """Compile the FSL text and check every reference against it."""
        definition = parse_fsl(
            self.state_machine.fsl,
            initial=self.state_machine.initial,
            final_states=self.state_machine.final,
        )
        if not definition.states:
            raise ValueError("State machine must define at least one state")
        self._definition = definition

        declared_events = {e.type for e in self.event_types}
        for index, rule in enumerate(self.message_rules):
            if declared_events and rule.match_type not in declared_events:
                raise ValueError(
                    f"Rule {index} listens for undeclared event type: {rule.match_type}"
                )
            if rule.transition and not definition.has_state(rule.transition.to):
                logger.warning(
                    f"Template '{self.name}': rule {index} targets '{rule.transition.to}', "
                    f"which is not in the state machine"
                )

        for state in self.state_actions:
            if not definition.has_state(state):
                raise ValueError(f"State actions reference unknown state: {state}")

        return self

    @property
    def definition(self) -> StateMachineDefinition:
        if self._definition is None:
            raise RuntimeError(f"Template '{self.name}' has no compiled state machine")
        return self._definition

    @property
    def initial_state(self) -> Optional[str]:
        return self.definition.initial

    @property
    def final_states(self) -> List[str]:
        return list(self.definition.final_states)

    def get_rules_for(self, event_type: str) -> List[MessageRule]:
        """Rules listening for an event type, in authored order."""
        return [r for r in self.message_rules if r.match_type == event_type]

    def get_event_type(self, event_type: str) -> Optional[EventTypeSpec]:
        for spec in self.event_types:
            if spec.type == event_type:
                return spec
        return None

    def get_state_actions(self, state: str) -> List[StateAction]:
        return list(self.state_actions.get(state, []))

    def required_variables(self) -> List[str]:
        """Dotted paths of every required variable."""
        return [
            f"{namespace}.{key}"
            for namespace, keys in self.variables.items()
            for key, spec in keys.items()
            if spec.required
        ]

    def with_id(
        self,
        created_at: Optional[Union[datetime, int, float]] = None,
        length: int = DEFAULT_ID_LENGTH,
    ) -> "WorkflowTemplate":
        """Return this template with a content-addressed id, computing one if needed."""
        if self.template_id:
            return self
        return self.model_copy(
            update={"template_id": content_id(self.name, created_at, length=length)}
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialise using the authored (camelCase) keys."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
