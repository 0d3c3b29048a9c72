"""
Error taxonomy for procflow.

Two families:

- TemplateError: raised while a template is authored or loaded. These are
  fatal for the template; it never reaches a running instance.
- RuntimeWorkflowError: raised while an event is processed. The runtime
  catches these and reports them on the ProcessResult instead of letting
  them escape.

None of these derive from ValueError, so they pass through pydantic
validators unchanged instead of being folded into a ValidationError.
"""

from typing import Optional


class ProcflowError(Exception):
    """Base class for all procflow errors."""


class TemplateError(ProcflowError):
    """A template (state machine or message rules) is malformed."""


class ParseError(TemplateError):
    """A state machine statement does not follow the FSL grammar."""

    def __init__(self, statement: str, line: int, reason: str = "invalid syntax"):
        self.statement = statement
        self.line = line
        self.reason = reason
        super().__init__(f"Line {line}: {reason}: {statement!r}")


class AmbiguousTransitionError(TemplateError):
    """The same (state, label) pair leads to more than one target."""

    def __init__(self, state: str, label: str, targets: tuple[str, str], line: int = 0):
        self.state = state
        self.label = label
        self.targets = targets
        self.line = line
        super().__init__(
            f"Line {line}: transition '{state}' --'{label}'--> is ambiguous "
            f"(targets: {targets[0]}, {targets[1]})"
        )


class UnknownOperatorError(TemplateError):
    """A condition uses a parenthesised operator nobody registered."""

    def __init__(self, operator: str, expression: str):
        self.operator = operator
        self.expression = expression
        super().__init__(f"Unknown condition operator '({operator})' in {expression!r}")


class RuntimeWorkflowError(ProcflowError):
    """An event could not be fully applied to an instance."""


class InvalidTransitionTargetError(RuntimeWorkflowError):
    """A rule asked to move to a state the state machine does not define."""

    def __init__(self, target: str, from_state: str, known_states: Optional[list[str]] = None):
        self.target = target
        self.from_state = from_state
        self.known_states = known_states or []
        super().__init__(
            f"Cannot transition from '{from_state}' to unknown state '{target}'"
        )


class InstanceTerminatedError(RuntimeWorkflowError):
    """An event arrived for an instance that already sits in a final state."""

    def __init__(self, instance_id: str, state: str):
        self.instance_id = instance_id
        self.state = state
        super().__init__(f"Instance {instance_id} is terminated (final state '{state}')")


class InstanceNotFoundError(RuntimeWorkflowError):
    """No live instance with the given id."""

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Unknown workflow instance: {instance_id}")


class InstanceCreationError(ProcflowError):
    """An instance could not be created from a template."""


class VariableError(InstanceCreationError):
    """A declared variable is missing or has the wrong type."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Variable '{path}': {reason}")


class MissingInitialStateError(InstanceCreationError):
    """The template names no initial state and none was given."""
