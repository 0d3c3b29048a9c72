"""
State machine definition language (FSL).

One transition per statement, statements separated by ``;``:

    idle 'start' -> review;
    review 'approve' -> approved;
    review 'reject' -> rejected;

The definition produced here is not used to dispatch events; message rules
do that. It is the guard that says which states exist, and it keeps the
labelled edges for display and for ``labels_from`` / ``next_states``.
"""

import logging
import re
from typing import Dict, Iterable, List, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from procflow.errors import AmbiguousTransitionError, ParseError

logger = logging.getLogger(__name__)

DEFAULT_INITIAL_STATE = "idle"

STATEMENT_PATTERN = re.compile(
    r"^(?P<source>[A-Za-z0-9_-]+)\s+'(?P<label>[^']+)'\s*->\s*(?P<target>[A-Za-z0-9_-]+)$"
)


class FslTransition(BaseModel):
    """One labelled edge of the state machine."""

    model_config = ConfigDict(frozen=True)

    source: str
    label: str
    target: str
    line: int = 0


class StateMachineDefinition(BaseModel):
    """
    Compiled state machine.

    ``states`` keeps the order in which states first appear in the source.
    """

    model_config = ConfigDict(frozen=True)

    states: List[str]
    initial: Optional[str] = None
    final_states: List[str] = Field(default_factory=list)
    transitions: List[FslTransition] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_references(self):
        known = set(self.states)
        if self.initial is not None and self.initial not in known:
            raise ValueError(f"Initial state '{self.initial}' is not a known state")
        for t in self.transitions:
            if t.source not in known or t.target not in known:
                raise ValueError(f"Transition references unknown state: {t.source} -> {t.target}")
        for state in self.final_states:
            if state not in known:
                raise ValueError(f"Final state '{state}' is not a known state")
        return self

    @property
    def state_set(self) -> Set[str]:
        return set(self.states)

    def has_state(self, state: str) -> bool:
        return state in self.states

    def is_final(self, state: str) -> bool:
        return state in self.final_states

    def target_for(self, state: str, label: str) -> Optional[str]:
        """Target of the edge labelled ``label`` leaving ``state``, if any."""
        for t in self.transitions:
            if t.source == state and t.label == label:
                return t.target
        return None

    def labels_from(self, state: str) -> List[str]:
        return [t.label for t in self.transitions if t.source == state]

    def next_states(self, state: str) -> Set[str]:
        return {t.target for t in self.transitions if t.source == state}

    def transition_table(self) -> Dict[Tuple[str, str], str]:
        return {(t.source, t.label): t.target for t in self.transitions}


def _iter_statements(text: str) -> Iterable[Tuple[int, str]]:
    """Yield (line_number, statement) for every non-blank statement."""
    line = 1
    for chunk in text.split(";"):
        stripped = chunk.strip()
        if stripped:
            leading = chunk[: len(chunk) - len(chunk.lstrip())]
            yield line + leading.count("\n"), " ".join(stripped.split())
        line += chunk.count("\n")


def parse_fsl(
    text: str,
    initial: Optional[str] = None,
    final_states: Optional[Iterable[str]] = None,
) -> StateMachineDefinition:
    """
    Parse FSL text into a StateMachineDefinition.

    Args:
        text: FSL source
        initial: Explicit initial state. Defaults to ``idle`` when that state
            appears in the source, otherwise None.
        final_states: Terminal states. Any not mentioned in the source are
            added to the state set so rules may still jump to them.

    Raises:
        ParseError: A statement does not match the grammar
        AmbiguousTransitionError: A (state, label) pair is defined twice
        ValueError: The explicit initial state is not a known state
    """
    states: List[str] = []
    transitions: List[FslTransition] = []
    seen: Dict[Tuple[str, str], FslTransition] = {}

    def _add_state(name: str) -> None:
        if name not in states:
            states.append(name)

    for line, statement in _iter_statements(text or ""):
        match = STATEMENT_PATTERN.match(statement)
        if not match:
            raise ParseError(statement, line, "expected <state> '<event>' -> <state>")

        source, label, target = match.group("source"), match.group("label"), match.group("target")
        previous = seen.get((source, label))
        if previous is not None:
            raise AmbiguousTransitionError(source, label, (previous.target, target), line)

        edge = FslTransition(source=source, label=label, target=target, line=line)
        seen[(source, label)] = edge
        transitions.append(edge)
        _add_state(source)
        _add_state(target)

    finals = list(dict.fromkeys(final_states or []))
    for state in finals:
        if state not in states:
            logger.debug(f"Final state '{state}' has no FSL edges; adding it to the state set")
            _add_state(state)

    if initial is None and DEFAULT_INITIAL_STATE in states:
        initial = DEFAULT_INITIAL_STATE
    elif initial is not None and initial not in states:
        raise ValueError(f"Initial state '{initial}' does not appear in the state machine")

    definition = StateMachineDefinition(
        states=states,
        initial=initial,
        final_states=finals,
        transitions=transitions,
    )
    logger.debug(
        f"Parsed state machine: {len(states)} states, {len(transitions)} transitions, "
        f"initial={initial!r}"
    )
    return definition
