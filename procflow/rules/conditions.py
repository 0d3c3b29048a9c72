"""
Condition expressions and the operator registry.

A condition is written either as a bare literal, compared for exact string
equality after interpolation:

    from: "{{candidate.email}}"

or as a parenthesised operator followed by an operand:

    subject: "(contains) interview"
    requestTime: "(after) {{previousState.time}}"

Operators live in ConditionOperatorRegistry. New ones are added with the
@register_operator decorator; the matcher and executor never need to change.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from procflow.errors import UnknownOperatorError
from procflow.rules.context import LayeredContext
from procflow.rules.interpolation import ContextLike, TemplateInterpolator, as_context
from procflow.rules.values import to_text, to_timestamp

logger = logging.getLogger(__name__)

# (actual value, interpolated operand) -> matched
OperatorFunc = Callable[[Any, str], bool]

EQUALITY_OPERATOR = "equals"

_OPERATOR_PATTERN = re.compile(r"^\s*\(\s*([A-Za-z][\w-]*)\s*\)\s*(.*)$", re.DOTALL)


class ConditionOperatorRegistry:
    """
    Registry of condition operators.

    Usage:
        # Registration (usually via decorator)
        ConditionOperatorRegistry.register("before", before_fn)

        # Lookup
        fn = ConditionOperatorRegistry.get("before")
    """

    _operators: Dict[str, OperatorFunc] = {}

    @classmethod
    def register(cls, name: str, func: OperatorFunc) -> None:
        """
        Register an operator.

        Args:
            name: Operator name as written between parentheses
            func: Callable taking (actual, expected_text) and returning bool
        """
        key = name.lower()
        if key in cls._operators:
            logger.warning(f"Overwriting existing condition operator: {key}")
        cls._operators[key] = func
        logger.debug(f"Registered condition operator: {key}")

    @classmethod
    def unregister(cls, name: str) -> None:
        cls._operators.pop(name.lower(), None)

    @classmethod
    def get(cls, name: str) -> Optional[OperatorFunc]:
        return cls._operators.get(name.lower())

    @classmethod
    def list_operators(cls) -> List[str]:
        return list(cls._operators.keys())

    @classmethod
    def is_registered(cls, name: str) -> bool:
        return name.lower() in cls._operators


def register_operator(name: str) -> Callable[[OperatorFunc], OperatorFunc]:
    """
    Decorator to register a condition operator.

    Usage:
        @register_operator("startswith")
        def _startswith(actual, expected):
            return to_text(actual).startswith(expected)
    """

    def decorator(func: OperatorFunc) -> OperatorFunc:
        ConditionOperatorRegistry.register(name, func)
        return func

    return decorator


@register_operator(EQUALITY_OPERATOR)
def _equals(actual: Any, expected: str) -> bool:
    return to_text(actual) == expected


@register_operator("not")
def _not_equals(actual: Any, expected: str) -> bool:
    return to_text(actual) != expected


@register_operator("contains")
def _contains(actual: Any, expected: str) -> bool:
    return expected.lower() in to_text(actual).lower()


@register_operator("after")
def _after(actual: Any, expected: str) -> bool:
    left, right = to_timestamp(actual), to_timestamp(expected)
    if left is None or right is None:
        logger.debug(f"(after) could not compare {actual!r} with {expected!r}")
        return False
    return left > right


@register_operator("before")
def _before(actual: Any, expected: str) -> bool:
    left, right = to_timestamp(actual), to_timestamp(expected)
    if left is None or right is None:
        logger.debug(f"(before) could not compare {actual!r} with {expected!r}")
        return False
    return left < right


@register_operator("matches")
def _matches(actual: Any, expected: str) -> bool:
    try:
        return re.search(expected, to_text(actual)) is not None
    except re.error as e:
        logger.warning(f"Invalid (matches) pattern {expected!r}: {e}")
        return False


@dataclass(frozen=True)
class ConditionExpr:
    """A parsed condition: operator (None for a bare literal) and operand template."""

    raw: str
    operand: str
    operator: Optional[str] = None

    @property
    def operator_name(self) -> str:
        return self.operator or EQUALITY_OPERATOR


def parse_condition(raw: Any) -> ConditionExpr:
    """
    Parse a condition expression.

    Non-string literals (numbers, booleans) are compared by their text form.

    Raises:
        UnknownOperatorError: If the parenthesised operator is not registered
    """
    if not isinstance(raw, str):
        text = to_text(raw)
        return ConditionExpr(raw=text, operand=text)

    match = _OPERATOR_PATTERN.match(raw)
    if not match:
        return ConditionExpr(raw=raw, operand=raw)

    operator, operand = match.group(1).lower(), match.group(2)
    if not ConditionOperatorRegistry.is_registered(operator):
        raise UnknownOperatorError(operator, raw)
    return ConditionExpr(raw=raw, operand=operand, operator=operator)


@dataclass
class ConditionResult:
    """Outcome of evaluating one field condition."""

    field: str
    matched: bool
    operator: str
    expected: str
    actual: Any = None
    found: bool = True


class ConditionEvaluator:
    """
    Evaluate field conditions against a layered context.

    The actual value of a field is ``context.resolve(field)``, so bare event
    fields (``subject``), capture names (``requestTime``) and dotted variable
    paths (``candidate.email``) all work. A field that does not resolve never
    matches, whatever the operator.
    """

    def __init__(self, interpolator: Optional[TemplateInterpolator] = None):
        self.interpolator = interpolator or TemplateInterpolator()

    def evaluate(self, field: str, expression: Any, context: ContextLike) -> ConditionResult:
        expr = expression if isinstance(expression, ConditionExpr) else parse_condition(expression)
        ctx: LayeredContext = as_context(context)

        expected = self.interpolator.render(expr.operand, ctx)
        found, actual = ctx.lookup(field)
        if not found:
            return ConditionResult(
                field=field,
                matched=False,
                operator=expr.operator_name,
                expected=expected,
                found=False,
            )

        func = ConditionOperatorRegistry.get(expr.operator_name)
        if func is None:
            # Operator was unregistered after the template was parsed
            raise UnknownOperatorError(expr.operator_name, expr.raw)

        matched = bool(func(actual, expected))
        return ConditionResult(
            field=field,
            matched=matched,
            operator=expr.operator_name,
            expected=expected,
            actual=actual,
        )

    def evaluate_all(
        self,
        conditions: Mapping[str, Any],
        context: ContextLike,
    ) -> Tuple[bool, List[ConditionResult]]:
        """
        Evaluate conditions conjunctively, stopping at the first failure.

        Returns:
            (all_matched, results evaluated so far)
        """
        ctx = as_context(context)
        results: List[ConditionResult] = []
        for field, expression in conditions.items():
            result = self.evaluate(field, expression, ctx)
            results.append(result)
            if not result.matched:
                logger.debug(
                    f"Condition failed: {field} ({result.operator}) "
                    f"expected={result.expected!r} actual={result.actual!r}"
                )
                return False, results
        return True, results
