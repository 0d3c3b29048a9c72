"""
Workflow templates and their runtime.

- fsl: State machine text parsing
- schema: Template models
- parser: Template loading and the template registry
- runtime: Instance management and event processing
"""

from procflow.workflow.fsl import (
    FslTransition,
    StateMachineDefinition,
    parse_fsl,
)
from procflow.workflow.schema import (
    ActionType,
    EventTypeSpec,
    GeneratesSpec,
    MatchSpec,
    MessageRule,
    StateAction,
    StateMachineSpec,
    TransitionSpec,
    VariableSpec,
    WorkflowTemplate,
)
from procflow.workflow.parser import TemplateParser, TemplateRegistry
from procflow.workflow.runtime import WorkflowRuntime

__all__ = [
    # FSL
    "FslTransition",
    "StateMachineDefinition",
    "parse_fsl",
    # Schema
    "ActionType",
    "EventTypeSpec",
    "GeneratesSpec",
    "MatchSpec",
    "MessageRule",
    "StateAction",
    "StateMachineSpec",
    "TransitionSpec",
    "VariableSpec",
    "WorkflowTemplate",
    # Parser
    "TemplateParser",
    "TemplateRegistry",
    # Runtime
    "WorkflowRuntime",
]
