"""
Transition execution.

Given the rule chosen by the matcher, work out everything the rule does to
an instance:

1. Render captures against the context as it was before this rule fired.
2. Render the generated message with those captures visible.
3. Evaluate the transition's own conditions (also with the new captures).
4. Check that the target is a state the state machine knows about.
5. Render the actions requested on entry to the target state.

The executor does not mutate the instance. It returns an ExecutionOutcome
and the runtime commits it under the instance lock.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, TYPE_CHECKING

from procflow.errors import InvalidTransitionTargetError
from procflow.models import ActionRequest, Event, GeneratedMessage, WorkflowInstance
from procflow.rules.conditions import ConditionEvaluator, ConditionResult
from procflow.rules.context import CAPTURES_LAYER, LayeredContext, build_context, captures_layer
from procflow.rules.interpolation import TemplateInterpolator
from procflow.rules.matcher import RuleMatch

if TYPE_CHECKING:
    from procflow.workflow.fsl import StateMachineDefinition
    from procflow.workflow.schema import StateAction

logger = logging.getLogger(__name__)


class TransitionStatus(Enum):
    """What happened to the rule's transition clause."""

    NONE = "none"  # rule has no transition
    CONDITIONS_FAILED = "conditions_failed"
    INVALID_TARGET = "invalid_target"
    APPROVED = "approved"


@dataclass
class ExecutionOutcome:
    """Effects of one rule on one instance, not yet committed."""

    rule_index: int
    from_state: str
    captures: Dict[str, Any] = field(default_factory=dict)
    message: Optional[GeneratedMessage] = None
    status: TransitionStatus = TransitionStatus.NONE
    target: Optional[str] = None
    transition_conditions: List[ConditionResult] = field(default_factory=list)
    actions: List[ActionRequest] = field(default_factory=list)
    error: Optional[InvalidTransitionTargetError] = None

    @property
    def should_transition(self) -> bool:
        return self.status is TransitionStatus.APPROVED


class TransitionExecutor:
    """
    Apply a matched rule to an instance, without mutating it.

    The state machine definition acts only as a guard here: a rule may jump
    to any state the definition knows, whether or not an FSL edge connects
    the two states.
    """

    def __init__(
        self,
        definition: "StateMachineDefinition",
        state_actions: Optional[Mapping[str, Sequence["StateAction"]]] = None,
        interpolator: Optional[TemplateInterpolator] = None,
        evaluator: Optional[ConditionEvaluator] = None,
    ):
        self.definition = definition
        self.state_actions = dict(state_actions or {})
        self.interpolator = interpolator or TemplateInterpolator()
        self.evaluator = evaluator or ConditionEvaluator(self.interpolator)

    def check_target(self, target: str, from_state: str) -> None:
        """
        Raises:
            InvalidTransitionTargetError: If ``target`` is not a known state
        """
        if not self.definition.has_state(target):
            raise InvalidTransitionTargetError(target, from_state, list(self.definition.states))

    def render_actions(self, state: str, context: LayeredContext) -> List[ActionRequest]:
        actions: List[ActionRequest] = []
        for action in self.state_actions.get(state, []):
            actions.append(
                ActionRequest(
                    type=action.type.value,
                    state=state,
                    config=self.interpolator.render_mapping(action.config, context),
                )
            )
        return actions

    def execute(
        self,
        match: RuleMatch,
        instance: WorkflowInstance,
        event: Event,
    ) -> ExecutionOutcome:
        rule = match.rule
        base = build_context(instance, event)

        captures = {
            name: self.interpolator.render(template, base)
            for name, template in rule.captures.items()
        }
        merged = {**instance.captures, **captures}
        context = base.replace_layer(CAPTURES_LAYER, captures_layer(merged))

        outcome = ExecutionOutcome(
            rule_index=match.index,
            from_state=instance.current_state,
            captures=captures,
        )

        if rule.generates is not None:
            outcome.message = GeneratedMessage(
                type=rule.generates.type,
                fields=self.interpolator.render_mapping(rule.generates.template, context),
            )

        if rule.transition is None:
            return outcome

        outcome.target = rule.transition.to
        passed, results = self.evaluator.evaluate_all(rule.transition.conditions, context)
        outcome.transition_conditions = results
        if not passed:
            outcome.status = TransitionStatus.CONDITIONS_FAILED
            logger.debug(
                f"Instance {instance.instance_id}: transition to '{rule.transition.to}' "
                f"skipped, conditions failed"
            )
            return outcome

        try:
            self.check_target(rule.transition.to, instance.current_state)
        except InvalidTransitionTargetError as e:
            outcome.status = TransitionStatus.INVALID_TARGET
            outcome.error = e
            return outcome

        outcome.status = TransitionStatus.APPROVED
        outcome.actions = self.render_actions(rule.transition.to, context)
        return outcome
