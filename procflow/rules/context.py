"""
Layered variable context used by interpolation and condition evaluation.

A path such as ``candidate.email`` is looked up in each layer in turn; the
first layer where the whole path resolves wins. Layers, highest precedence
first:

1. the current event   (``event.type``, ``event.data.x``, and bare ``x``)
2. captures            (``captures.name`` and bare ``name``)
3. instance variables  (``namespace.key``)
4. previous state      (``previousState.name``, ``previousState.time``)

``event`` is reserved in the event layer and ``captures`` in the captures
layer: a data field or capture with that name is only reachable through
``event.data.event`` or ``captures.captures``.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, TYPE_CHECKING

from procflow.rules.values import format_timestamp

if TYPE_CHECKING:
    from procflow.models import Event, WorkflowInstance

logger = logging.getLogger(__name__)

_MISSING = object()


class LayeredContext:
    """Read-only view over an ordered list of mappings."""

    def __init__(self, layers: Sequence[Mapping[str, Any]]):
        self._layers: List[Mapping[str, Any]] = list(layers)

    @classmethod
    def of(cls, data: Mapping[str, Any]) -> "LayeredContext":
        """Wrap a single plain mapping."""
        return cls([data])

    @property
    def layers(self) -> List[Mapping[str, Any]]:
        return list(self._layers)

    def with_layer(self, layer: Mapping[str, Any], index: int = 0) -> "LayeredContext":
        """Return a new context with ``layer`` inserted at ``index``."""
        layers = list(self._layers)
        layers.insert(index, layer)
        return LayeredContext(layers)

    def replace_layer(self, index: int, layer: Mapping[str, Any]) -> "LayeredContext":
        layers = list(self._layers)
        layers[index] = layer
        return LayeredContext(layers)

    def lookup(self, path: str) -> Tuple[bool, Any]:
        """
        Resolve a dotted path.

        Returns:
            (found, value). Each segment is a mapping lookup; sequences are
            not indexed, so ``items.0`` never resolves.
        """
        segments = [s for s in path.strip().split(".")]
        if not segments or any(not s for s in segments):
            return False, None

        for layer in self._layers:
            value = _walk(layer, segments)
            if value is not _MISSING:
                return True, value
        return False, None

    def resolve(self, path: str, default: Any = None) -> Any:
        found, value = self.lookup(path)
        return value if found else default

    def __contains__(self, path: str) -> bool:
        return self.lookup(path)[0]


def _walk(node: Any, segments: List[str]) -> Any:
    for segment in segments:
        if not isinstance(node, Mapping) or segment not in node:
            return _MISSING
        node = node[segment]
    return node


EVENT_LAYER = 0
CAPTURES_LAYER = 1
VARIABLES_LAYER = 2
PREVIOUS_STATE_LAYER = 3


def event_layer(event: "Event") -> Dict[str, Any]:
    layer: Dict[str, Any] = dict(event.data)
    if "event" in layer:
        logger.debug(f"Event {event.type} field 'event' is shadowed by event metadata")
    layer["event"] = {
        "id": event.event_id,
        "type": event.type,
        "data": dict(event.data),
        "timestamp": format_timestamp(event.timestamp),
    }
    return layer


def captures_layer(captures: Mapping[str, Any]) -> Dict[str, Any]:
    layer: Dict[str, Any] = dict(captures)
    if "captures" in layer:
        logger.debug("Capture 'captures' is shadowed by the captures namespace")
    layer["captures"] = dict(captures)
    return layer


def previous_state_layer(instance: "WorkflowInstance") -> Dict[str, Any]:
    return {
        "previousState": {
            "name": instance.current_state,
            "time": format_timestamp(instance.state_entered_at),
            "event": instance.last_event_type,
        }
    }


def build_context(
    instance: "WorkflowInstance",
    event: Optional["Event"] = None,
    captures: Optional[Mapping[str, Any]] = None,
) -> LayeredContext:
    """
    Build the layered context for an instance and (optionally) an event.

    Args:
        instance: The workflow instance
        event: The event being processed, if any
        captures: Captures to expose instead of ``instance.captures``
    """
    return LayeredContext(
        [
            event_layer(event) if event is not None else {},
            captures_layer(instance.captures if captures is None else captures),
            dict(instance.variables),
            previous_state_layer(instance),
        ]
    )
