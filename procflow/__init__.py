"""
procflow - Rule-driven workflow engine.

Workflow templates describe a process as a finite state machine plus a list
of message rules. Each inbound event is matched against the rules of the
instance it belongs to; the first matching rule may capture values, render an
outbound message and move the instance to a new state.

Quick Start:
    ```python
    from procflow import Event, TemplateParser, WorkflowRuntime

    template = TemplateParser.parse_file("interview.yaml")
    runtime = WorkflowRuntime()

    instance = await runtime.create_instance(
        template,
        variables={"candidate": {"email": "ana@example.com", "name": "Ana"}},
    )

    result = await runtime.process_event(
        instance.instance_id,
        Event(type="EMAIL_RECEIVED", data={"subject": "Interview request"}),
    )
    print(result.new_state, result.generated_message)
    ```

Or from the command line:
    ```bash
    procflow validate interview.yaml
    procflow run interview.yaml events.yaml --var candidate.email=ana@example.com
    ```
"""

__version__ = "0.1.0"

# Errors
from procflow.errors import (
    AmbiguousTransitionError,
    InstanceCreationError,
    InstanceNotFoundError,
    InstanceTerminatedError,
    InvalidTransitionTargetError,
    MissingInitialStateError,
    ParseError,
    ProcflowError,
    RuntimeWorkflowError,
    TemplateError,
    UnknownOperatorError,
    VariableError,
)

# Runtime data model
from procflow.models import (
    ActionRequest,
    Event,
    GeneratedMessage,
    ProcessResult,
    TransitionRecord,
    WorkflowInstance,
)

# Rules
from procflow.rules import (
    ConditionEvaluator,
    ConditionOperatorRegistry,
    LayeredContext,
    RuleMatcher,
    TemplateInterpolator,
    register_operator,
)

# Workflow
from procflow.workflow import (
    StateMachineDefinition,
    TemplateParser,
    TemplateRegistry,
    WorkflowRuntime,
    WorkflowTemplate,
    parse_fsl,
)

# Configuration
from procflow.config.settings import ProcflowSettings

__all__ = [
    # Version
    "__version__",
    # Errors
    "ProcflowError",
    "TemplateError",
    "ParseError",
    "AmbiguousTransitionError",
    "UnknownOperatorError",
    "RuntimeWorkflowError",
    "InvalidTransitionTargetError",
    "InstanceTerminatedError",
    "InstanceNotFoundError",
    "InstanceCreationError",
    "VariableError",
    "MissingInitialStateError",
    # Models
    "Event",
    "GeneratedMessage",
    "ActionRequest",
    "TransitionRecord",
    "WorkflowInstance",
    "ProcessResult",
    # Rules
    "ConditionEvaluator",
    "ConditionOperatorRegistry",
    "LayeredContext",
    "RuleMatcher",
    "TemplateInterpolator",
    "register_operator",
    # Workflow
    "StateMachineDefinition",
    "TemplateParser",
    "TemplateRegistry",
    "WorkflowRuntime",
    "WorkflowTemplate",
    "parse_fsl",
    # Configuration
    "ProcflowSettings",
]
