"""
Runtime data model: events, instances, and the records they accumulate.

These are plain dataclasses. Instances are mutated only by WorkflowRuntime;
events and transition records are immutable once created.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from procflow.errors import ProcflowError
from procflow.rules.values import format_timestamp, to_timestamp


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Any, default: Optional[datetime] = None) -> datetime:
    if value is None:
        return default or _utcnow()
    parsed = to_timestamp(value)
    if parsed is None:
        raise ValueError(f"Invalid timestamp: {value!r}")
    return parsed


@dataclass(frozen=True)
class Event:
    """An inbound event. ``data`` is exposed read-only."""

    type: str
    data: Mapping[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self) -> None:
        if not self.type:
            raise ValueError("Event type must not be empty")
        object.__setattr__(self, "data", MappingProxyType(dict(self.data)))
        object.__setattr__(self, "timestamp", _parse_time(self.timestamp))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Event":
        """Build an event from ``{type, data, timestamp?, id?}``."""
        kwargs: Dict[str, Any] = {
            "type": data["type"],
            "data": data.get("data") or {},
        }
        if data.get("timestamp") is not None:
            kwargs["timestamp"] = _parse_time(data["timestamp"])
        if data.get("id") is not None:
            kwargs["event_id"] = str(data["id"])
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.event_id,
            "type": self.type,
            "data": dict(self.data),
            "timestamp": format_timestamp(self.timestamp),
        }


@dataclass(frozen=True)
class GeneratedMessage:
    """Outbound message rendered from a rule's ``generates`` template."""

    type: str
    fields: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "fields": dict(self.fields)}


@dataclass(frozen=True)
class ActionRequest:
    """A side effect to be carried out by an external executor."""

    type: str
    state: str
    config: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "state": self.state, "config": dict(self.config)}


@dataclass(frozen=True)
class TransitionRecord:
    """One committed transition. The audit trail is a list of these."""

    record_id: str
    timestamp: datetime
    event_ref: str
    event_type: str
    from_state: str
    to_state: str
    rule_index: Optional[int] = None
    generated_message: Optional[GeneratedMessage] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.record_id,
            "timestamp": format_timestamp(self.timestamp),
            "eventRef": self.event_ref,
            "eventType": self.event_type,
            "fromState": self.from_state,
            "toState": self.to_state,
            "ruleIndex": self.rule_index,
            "generatedMessage": (
                self.generated_message.to_dict() if self.generated_message else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TransitionRecord":
        message = data.get("generatedMessage")
        return cls(
            record_id=data["id"],
            timestamp=_parse_time(data["timestamp"]),
            event_ref=data.get("eventRef", ""),
            event_type=data.get("eventType", ""),
            from_state=data["fromState"],
            to_state=data["toState"],
            rule_index=data.get("ruleIndex"),
            generated_message=(
                GeneratedMessage(type=message["type"], fields=dict(message.get("fields", {})))
                if message
                else None
            ),
        )


@dataclass
class WorkflowInstance:
    """
    One running execution of a template.

    Maintains:
    - Current state and when it was entered
    - Instance variables (namespace -> key -> value)
    - Captures accumulated over the instance's life
    - The transition history
    """

    instance_id: str
    template_id: str
    current_state: str
    variables: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    captures: Dict[str, Any] = field(default_factory=dict)
    history: List[TransitionRecord] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    last_updated: datetime = field(default_factory=_utcnow)
    state_entered_at: Optional[datetime] = None
    last_event_type: Optional[str] = None

    def __post_init__(self) -> None:
        if self.state_entered_at is None:
            self.state_entered_at = self.created_at

    def get_state_sequence(self) -> List[str]:
        """States visited, starting with the one the instance was created in."""
        if not self.history:
            return [self.current_state]
        return [self.history[0].from_state] + [r.to_state for r in self.history]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.instance_id,
            "templateId": self.template_id,
            "currentState": self.current_state,
            "variables": {ns: dict(values) for ns, values in self.variables.items()},
            "captures": dict(self.captures),
            "history": [r.to_dict() for r in self.history],
            "createdAt": format_timestamp(self.created_at),
            "lastUpdated": format_timestamp(self.last_updated),
            "stateEnteredAt": format_timestamp(self.state_entered_at),
            "lastEventType": self.last_event_type,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WorkflowInstance":
        created_at = _parse_time(data.get("createdAt"))
        return cls(
            instance_id=data["id"],
            template_id=data["templateId"],
            current_state=data["currentState"],
            variables={ns: dict(values) for ns, values in (data.get("variables") or {}).items()},
            captures=dict(data.get("captures") or {}),
            history=[TransitionRecord.from_dict(r) for r in data.get("history") or []],
            created_at=created_at,
            last_updated=_parse_time(data.get("lastUpdated"), default=created_at),
            state_entered_at=_parse_time(data.get("stateEnteredAt"), default=created_at),
            last_event_type=data.get("lastEventType"),
        )


@dataclass
class ProcessResult:
    """
    Outcome of processing one event.

    Errors are reported here rather than raised: ``error`` holds the
    RuntimeWorkflowError (or unexpected exception) that stopped processing.
    """

    instance_id: str
    matched: bool = False
    rule_index: Optional[int] = None
    generated_message: Optional[GeneratedMessage] = None
    transitioned: bool = False
    from_state: Optional[str] = None
    to_state: Optional[str] = None
    captures: Dict[str, Any] = field(default_factory=dict)
    actions: List[ActionRequest] = field(default_factory=list)
    record: Optional[TransitionRecord] = None
    error: Optional[Exception] = None

    @property
    def new_state(self) -> Optional[str]:
        return self.to_state

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> None:
        """Re-raise the reported error, if any."""
        if self.error is not None:
            raise self.error

    def to_dict(self) -> Dict[str, Any]:
        error: Optional[Dict[str, str]] = None
        if self.error is not None:
            error = {
                "type": type(self.error).__name__,
                "message": str(self.error),
                "recoverable": isinstance(self.error, ProcflowError),
            }
        return {
            "instanceId": self.instance_id,
            "matched": self.matched,
            "ruleIndex": self.rule_index,
            "generatedMessage": (
                self.generated_message.to_dict() if self.generated_message else None
            ),
            "transitioned": self.transitioned,
            "fromState": self.from_state,
            "toState": self.to_state,
            "captures": dict(self.captures),
            "actions": [a.to_dict() for a in self.actions],
            "error": error,
        }
