"""
Workflow runtime.

Owns live workflow instances and is the only component that mutates them:
- One asyncio lock per instance serialises event processing
- Distinct instances share nothing and can be processed concurrently
- Every committed transition is appended to the instance history
- Processing errors are reported on the ProcessResult, never raised
"""

import asyncio
import logging
import uuid
from contextlib import nullcontext
from datetime import datetime, timezone
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Set,
    Tuple,
    Union,
    TYPE_CHECKING,
)

from procflow.errors import (
    InstanceCreationError,
    InstanceNotFoundError,
    InstanceTerminatedError,
    MissingInitialStateError,
    VariableError,
)
from procflow.identifiers import content_id
from procflow.models import Event, ProcessResult, TransitionRecord, WorkflowInstance
from procflow.protocols import InstanceStore
from procflow.rules.conditions import ConditionEvaluator
from procflow.rules.context import build_context
from procflow.rules.executor import ExecutionOutcome, TransitionExecutor
from procflow.rules.interpolation import TemplateInterpolator
from procflow.rules.matcher import RuleMatcher
from procflow.rules.values import coerce_variable
from procflow.workflow.parser import TemplateRegistry
from procflow.workflow.schema import WorkflowTemplate

if TYPE_CHECKING:
    from procflow.tracing.otel_tracer import WorkflowTracer

logger = logging.getLogger(__name__)

# Replayed instances are anchored here unless told otherwise, so time guards
# such as "(after) {{previousState.time}}" depend only on the replayed events.
REPLAY_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

RECORD_ID_LENGTH = 16

EventLike = Union[Event, Mapping[str, Any]]


class WorkflowRuntime:
    """
    Runtime managing workflow instances.

    Example:
        ```python
        from procflow.workflow import TemplateParser, WorkflowRuntime

        template = TemplateParser.parse_file("interview.yaml")
        runtime = WorkflowRuntime()

        instance = await runtime.create_instance(
            template,
            variables={"candidate": {"email": "ana@example.com", "name": "Ana"}},
        )

        result = await runtime.process_event(
            instance.instance_id,
            Event(type="EMAIL_RECEIVED", data={"subject": "Re: interview"}),
        )
        if result.transitioned:
            print(f"{result.from_state} -> {result.new_state}")
        ```
    """

    def __init__(
        self,
        registry: Optional[TemplateRegistry] = None,
        tracer: Optional["WorkflowTracer"] = None,
        interpolator: Optional[TemplateInterpolator] = None,
        default_initial_state: Optional[str] = None,
        store: Optional[InstanceStore] = None,
    ):
        self.registry = registry or TemplateRegistry()
        self.tracer = tracer
        self.store = store
        self.default_initial_state = default_initial_state
        self._interpolator = interpolator or TemplateInterpolator()
        self._evaluator = ConditionEvaluator(self._interpolator)

        self._instances: Dict[str, WorkflowInstance] = {}
        self._instance_locks: Dict[str, asyncio.Lock] = {}
        self._lock = asyncio.Lock()

        # template_id -> (matcher, executor)
        self._engines: Dict[str, Tuple[RuleMatcher, TransitionExecutor]] = {}

    # ------------------------------------------------------------------
    # Instance lifecycle
    # ------------------------------------------------------------------

    def _resolve_template(self, template: Union[WorkflowTemplate, str]) -> WorkflowTemplate:
        if isinstance(template, WorkflowTemplate):
            try:
                return self.registry.register(template)
            except ValueError as e:
                raise InstanceCreationError(str(e)) from e
        found = self.registry.get(template)
        if found is None:
            raise InstanceCreationError(f"Unknown template: {template}")
        return found

    @staticmethod
    def _prepare_variables(
        template: WorkflowTemplate,
        supplied: Optional[Mapping[str, Mapping[str, Any]]],
    ) -> Dict[str, Dict[str, Any]]:
        """Check required variables and coerce declared ones to their types."""
        result: Dict[str, Dict[str, Any]] = {}
        for namespace, values in (supplied or {}).items():
            if not isinstance(values, Mapping):
                raise VariableError(namespace, "namespace must map keys to values")
            result[namespace] = dict(values)

        for namespace, keys in template.variables.items():
            for key, spec in keys.items():
                path = f"{namespace}.{key}"
                value = result.get(namespace, {}).get(key)
                if value is None:
                    if spec.required:
                        raise VariableError(path, "required variable is missing")
                    continue
                try:
                    result[namespace][key] = coerce_variable(value, spec.type)
                except ValueError as e:
                    raise VariableError(path, str(e)) from e

        return result

    async def create_instance(
        self,
        template: Union[WorkflowTemplate, str],
        variables: Optional[Mapping[str, Mapping[str, Any]]] = None,
        instance_id: Optional[str] = None,
        initial_state: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> WorkflowInstance:
        """
        Create an instance of a template.

        Args:
            template: A template (registered on the fly) or a registered template id
            variables: Instance variables, namespace -> key -> value
            instance_id: Explicit id; a random one is generated otherwise
            initial_state: Overrides the template's initial state
            created_at: Creation time, also the time the initial state was entered

        Raises:
            MissingInitialStateError: Neither the template nor the caller names one
            VariableError: A required variable is missing or mistyped
            InstanceCreationError: Unknown template, unknown state or duplicate id
        """
        resolved = self._resolve_template(template)
        definition = resolved.definition

        initial = initial_state or definition.initial or self.default_initial_state
        if initial is None:
            raise MissingInitialStateError(
                f"Template '{resolved.name}' has no initial state; pass initial_state"
            )
        if not definition.has_state(initial):
            raise InstanceCreationError(f"Unknown initial state: {initial}")

        prepared = self._prepare_variables(resolved, variables)
        created = created_at or datetime.now(timezone.utc)
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)

        instance = WorkflowInstance(
            instance_id=instance_id or uuid.uuid4().hex,
            template_id=resolved.template_id,
            current_state=initial,
            variables=prepared,
            created_at=created,
            last_updated=created,
        )

        async with self._lock:
            if instance.instance_id in self._instances:
                raise InstanceCreationError(f"Instance already exists: {instance.instance_id}")
            self._instances[instance.instance_id] = instance
            self._instance_locks[instance.instance_id] = asyncio.Lock()

        logger.info(
            f"Created instance {instance.instance_id} of '{resolved.name}' "
            f"in state '{initial}'"
        )
        if self.tracer:
            self.tracer.log_event(
                instance.instance_id,
                "instance_created",
                metadata={"template_id": resolved.template_id, "state": initial},
            )
        if self.store is not None:
            await self.store.save_instance(instance.to_dict())
        return instance

    async def adopt_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        """
        Take ownership of an instance loaded by the persistence layer.

        Raises:
            InstanceCreationError: Template not registered or id already live
        """
        if instance.template_id not in self.registry:
            raise InstanceCreationError(f"Unknown template: {instance.template_id}")

        async with self._lock:
            if instance.instance_id in self._instances:
                raise InstanceCreationError(f"Instance already exists: {instance.instance_id}")
            self._instances[instance.instance_id] = instance
            self._instance_locks[instance.instance_id] = asyncio.Lock()

        logger.debug(f"Adopted instance {instance.instance_id} in state '{instance.current_state}'")
        return instance

    async def load_instance(self, instance_id: str) -> Optional[WorkflowInstance]:
        """
        Load an instance from the store and adopt it.

        Returns the live instance if it is already managed, None if the store
        does not know the id.
        """
        live = self._instances.get(instance_id)
        if live is not None:
            return live
        if self.store is None:
            raise InstanceCreationError("No instance store configured")

        snapshot = await self.store.load_instance(instance_id)
        if snapshot is None:
            return None
        return await self.adopt_instance(WorkflowInstance.from_dict(snapshot))

    async def remove_instance(self, instance_id: str) -> Optional[WorkflowInstance]:
        """Stop managing an instance and hand it back (e.g. for archiving)."""
        async with self._lock:
            lock = self._instance_locks.get(instance_id)
        if lock is None:
            return None

        async with lock:
            async with self._lock:
                self._instance_locks.pop(instance_id, None)
                instance = self._instances.pop(instance_id, None)

        if self.tracer:
            self.tracer.end_trace(instance_id)
        logger.debug(f"Removed instance {instance_id}")
        return instance

    async def get_instance(self, instance_id: str) -> Optional[WorkflowInstance]:
        return self._instances.get(instance_id)

    async def snapshot(self, instance_id: str) -> Optional[Dict[str, Any]]:
        """Serialisable copy of an instance, taken under its lock."""
        lock = self._instance_locks.get(instance_id)
        if lock is None:
            return None
        async with lock:
            instance = self._instances.get(instance_id)
            return instance.to_dict() if instance else None

    async def get_history(self, instance_id: str) -> List[TransitionRecord]:
        instance = self._instances.get(instance_id)
        return list(instance.history) if instance else []

    async def list_instances(self) -> List[str]:
        return list(self._instances.keys())

    async def get_instance_count(self) -> int:
        return len(self._instances)

    async def is_terminated(self, instance_id: str) -> bool:
        instance = self._instances.get(instance_id)
        if not instance:
            return False
        template = self.registry.get(instance.template_id)
        return bool(template and template.definition.is_final(instance.current_state))

    async def get_valid_transitions(self, instance_id: str) -> Set[str]:
        """States reachable from the current state through labelled FSL edges."""
        instance = self._instances.get(instance_id)
        if not instance:
            return set()
        template = self.registry.get(instance.template_id)
        return template.definition.next_states(instance.current_state) if template else set()

    # ------------------------------------------------------------------
    # Event processing
    # ------------------------------------------------------------------

    def _trace_block(self, instance_id: str, event: Event):
        if self.tracer is None:
            return nullcontext()
        return self.tracer.trace_block(
            "process_event",
            instance_id,
            attributes={"procflow.event_type": event.type},
            input_data=event.to_dict(),
        )

    def _engine_for(self, template: WorkflowTemplate) -> Tuple[RuleMatcher, TransitionExecutor]:
        engine = self._engines.get(template.template_id)
        if engine is None:
            engine = (
                RuleMatcher(template.message_rules, self._evaluator),
                TransitionExecutor(
                    template.definition,
                    template.state_actions,
                    interpolator=self._interpolator,
                    evaluator=self._evaluator,
                ),
            )
            self._engines[template.template_id] = engine
        return engine

    async def process_event(self, instance_id: str, event: EventLike) -> ProcessResult:
        """
        Process one event for one instance.

        Args:
            instance_id: Target instance
            event: An Event, or a ``{type, data, timestamp?, id?}`` mapping

        Returns:
            ProcessResult. ``error`` is set when the event was rejected or
            only partially applied; the runtime itself never raises here.
        """
        try:
            if not isinstance(event, Event):
                event = Event.from_dict(event)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Instance {instance_id}: malformed event rejected: {e}")
            return ProcessResult(instance_id=instance_id, error=e)

        lock = self._instance_locks.get(instance_id)
        if lock is None:
            return ProcessResult(instance_id=instance_id, error=InstanceNotFoundError(instance_id))

        async with lock:
            instance = self._instances.get(instance_id)
            if instance is None:
                return ProcessResult(
                    instance_id=instance_id, error=InstanceNotFoundError(instance_id)
                )

            try:
                with self._trace_block(instance_id, event):
                    result = self._process_locked(instance, event)
            except Exception as e:
                logger.exception(
                    f"Instance {instance_id}: unexpected error processing {event.type}"
                )
                if self.tracer:
                    self.tracer.log_rejection(instance_id, event.type, e)
                return ProcessResult(
                    instance_id=instance_id,
                    from_state=instance.current_state,
                    to_state=instance.current_state,
                    error=e,
                )

            if self.tracer and result.transitioned:
                template = self.registry.get(instance.template_id)
                if template.definition.is_final(result.to_state):
                    self.tracer.end_trace(instance_id)

            if self.store is not None and result.matched:
                await self._save(instance, result)
            return result

    def _process_locked(self, instance: WorkflowInstance, event: Event) -> ProcessResult:
        template = self.registry.get(instance.template_id)
        if template is None:
            raise InstanceCreationError(f"Template {instance.template_id} is no longer registered")

        result = ProcessResult(
            instance_id=instance.instance_id,
            from_state=instance.current_state,
            to_state=instance.current_state,
        )

        if template.definition.is_final(instance.current_state):
            result.error = InstanceTerminatedError(instance.instance_id, instance.current_state)
            logger.warning(str(result.error))
            if self.tracer:
                self.tracer.log_rejection(instance.instance_id, event.type, result.error)
            return result

        self._check_event_schema(template, event)

        matcher, executor = self._engine_for(template)
        match = matcher.match(event, build_context(instance, event))
        if match is None:
            logger.debug(f"Instance {instance.instance_id}: no rule matched {event.type}")
            return result

        outcome = executor.execute(match, instance, event)
        self._commit(instance, event, outcome, result)
        return result

    async def _save(self, instance: WorkflowInstance, result: ProcessResult) -> None:
        try:
            await self.store.save_instance(instance.to_dict())
        except Exception as e:
            logger.exception(f"Instance {instance.instance_id}: failed to save snapshot")
            if result.error is None:
                result.error = e

    def _check_event_schema(self, template: WorkflowTemplate, event: Event) -> None:
        if not template.event_types:
            return
        spec = template.get_event_type(event.type)
        if spec is None:
            logger.debug(f"Event type {event.type} is not declared by '{template.name}'")
            return
        missing = spec.missing_fields(event.data)
        if missing:
            logger.warning(f"Event {event.type} is missing declared fields: {', '.join(missing)}")

    def _commit(
        self,
        instance: WorkflowInstance,
        event: Event,
        outcome: ExecutionOutcome,
        result: ProcessResult,
    ) -> None:
        """Apply an execution outcome. Only plain assignments happen here."""
        result.matched = True
        result.rule_index = outcome.rule_index
        result.generated_message = outcome.message
        result.captures = dict(outcome.captures)

        instance.captures.update(outcome.captures)
        instance.last_updated = event.timestamp

        if outcome.error is not None:
            result.error = outcome.error
            logger.warning(f"Instance {instance.instance_id}: {outcome.error}")
            if self.tracer:
                self.tracer.log_rejection(instance.instance_id, event.type, outcome.error)
            return

        if not outcome.should_transition:
            return

        from_state = instance.current_state
        record = TransitionRecord(
            record_id=content_id(
                f"{instance.instance_id}:{len(instance.history)}",
                event.timestamp,
                length=RECORD_ID_LENGTH,
            ),
            timestamp=event.timestamp,
            event_ref=event.event_id,
            event_type=event.type,
            from_state=from_state,
            to_state=outcome.target,
            rule_index=outcome.rule_index,
            generated_message=outcome.message,
        )
        instance.history.append(record)
        instance.current_state = outcome.target
        instance.state_entered_at = event.timestamp
        instance.last_event_type = event.type

        result.transitioned = True
        result.to_state = outcome.target
        result.record = record
        result.actions = list(outcome.actions)

        logger.info(
            f"Instance {instance.instance_id}: '{from_state}' -> '{outcome.target}' "
            f"(event={event.type}, rule={outcome.rule_index})"
        )
        if self.tracer:
            self.tracer.log_transition(
                instance.instance_id,
                from_state=from_state,
                to_state=outcome.target,
                event_type=event.type,
                rule_index=outcome.rule_index,
            )

    async def process_many(
        self,
        items: Iterable[Tuple[str, EventLike]],
    ) -> Dict[str, List[ProcessResult]]:
        """
        Process (instance_id, event) pairs.

        Events for the same instance are applied in the given order; different
        instances are processed concurrently.
        """
        grouped: Dict[str, List[EventLike]] = {}
        for instance_id, event in items:
            grouped.setdefault(instance_id, []).append(event)

        async def _run(instance_id: str, events: List[EventLike]) -> List[ProcessResult]:
            return [await self.process_event(instance_id, e) for e in events]

        outputs = await asyncio.gather(*(_run(i, evts) for i, evts in grouped.items()))
        return dict(zip(grouped.keys(), outputs))

    async def replay(
        self,
        template: Union[WorkflowTemplate, str],
        events: Iterable[EventLike],
        variables: Optional[Mapping[str, Mapping[str, Any]]] = None,
        instance_id: Optional[str] = None,
        initial_state: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Tuple[WorkflowInstance, List[ProcessResult]]:
        """
        Replay an event sequence into a fresh instance.

        Given the same template, variables and events the resulting state and
        history are always the same.
        """
        instance = await self.create_instance(
            template,
            variables=variables,
            instance_id=instance_id,
            initial_state=initial_state,
            created_at=created_at or REPLAY_EPOCH,
        )
        results = [await self.process_event(instance.instance_id, e) for e in events]
        return instance, results
