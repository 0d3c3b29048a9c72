"""
Message rule evaluation.

Components:
- values: Coercion between event/variable values and text or timestamps
- context: Layered lookup over event, captures, variables and previous state
- interpolation: ``{{path}}`` placeholder rendering
- conditions: Condition parsing and the pluggable operator registry
- matcher: First-match rule selection
- executor: Captures, generated messages and transition approval
"""

from procflow.rules.values import (
    ValueKind,
    coerce_variable,
    format_timestamp,
    kind_of,
    to_text,
    to_timestamp,
)
from procflow.rules.context import LayeredContext, build_context
from procflow.rules.interpolation import TemplateInterpolator, placeholders
from procflow.rules.conditions import (
    ConditionEvaluator,
    ConditionExpr,
    ConditionOperatorRegistry,
    ConditionResult,
    parse_condition,
    register_operator,
)
from procflow.rules.matcher import RuleMatch, RuleMatcher

__all__ = [
    # Values
    "ValueKind",
    "kind_of",
    "to_text",
    "to_timestamp",
    "format_timestamp",
    "coerce_variable",
    # Context
    "LayeredContext",
    "build_context",
    # Interpolation
    "TemplateInterpolator",
    "placeholders",
    # Conditions
    "ConditionEvaluator",
    "ConditionExpr",
    "ConditionOperatorRegistry",
    "ConditionResult",
    "parse_condition",
    "register_operator",
    # Matcher
    "RuleMatch",
    "RuleMatcher",
]
