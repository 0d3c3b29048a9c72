"""
Rule matching.

Rules are scanned in authored order. Only rules whose match type equals the
event type are evaluated, and the first whose conditions all hold wins.
Rules after the winner are never evaluated, even if the winner's own
transition conditions later fail.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, TYPE_CHECKING

from procflow.rules.conditions import ConditionEvaluator, ConditionResult
from procflow.rules.context import LayeredContext

if TYPE_CHECKING:
    from procflow.models import Event
    from procflow.workflow.schema import MessageRule

logger = logging.getLogger(__name__)


@dataclass
class RuleMatch:
    """The rule selected for an event."""

    rule: "MessageRule"
    index: int
    conditions: List[ConditionResult] = field(default_factory=list)


class RuleMatcher:
    """
    Select the first matching message rule for an event.

    Example:
        ```python
        matcher = RuleMatcher(template.message_rules)
        match = matcher.match(event, build_context(instance, event))
        if match:
            print(f"rule {match.index} fired")
        ```
    """

    def __init__(
        self,
        rules: Sequence["MessageRule"],
        evaluator: Optional[ConditionEvaluator] = None,
    ):
        self.rules = list(rules)
        self.evaluator = evaluator or ConditionEvaluator()

    def candidates(self, event_type: str) -> List[int]:
        """Indexes of the rules listening for ``event_type``."""
        return [i for i, rule in enumerate(self.rules) if rule.match_type == event_type]

    def match(self, event: "Event", context: LayeredContext) -> Optional[RuleMatch]:
        """
        Find the first rule whose match type and conditions hold.

        Returns:
            RuleMatch, or None when no rule applies
        """
        for index in self.candidates(event.type):
            rule = self.rules[index]
            matched, results = self.evaluator.evaluate_all(rule.conditions, context)
            if matched:
                logger.debug(f"Event {event.type} matched rule {index}")
                return RuleMatch(rule=rule, index=index, conditions=results)
            logger.debug(f"Event {event.type} did not match rule {index}")

        return None
