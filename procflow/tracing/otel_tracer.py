"""
OpenTelemetry-based tracer for workflow events.

Uses the OpenTelemetry SDK for vendor-agnostic distributed tracing. Each
workflow instance gets one long-lived parent span; event processing,
transitions and rejections are recorded as child spans beneath it.
"""

import json
import logging
import time
from collections import OrderedDict
from contextlib import contextmanager
from typing import Any, Dict, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
    OTLPSpanExporter as OTLPSpanExporterHTTP,
)
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Status, StatusCode

from procflow import __version__
from procflow.config.settings import OTelConfig

logger = logging.getLogger(__name__)


class WorkflowTracer:
    """
    OpenTelemetry tracer for workflow instances.

    A disabled tracer (``enabled=False`` or ``exporter_type="none"``) accepts
    every call and does nothing.
    """

    DEFAULT_INSTANCE_TTL = 3600      # 1 hour
    DEFAULT_MAX_INSTANCES = 10_000   # hard cap

    def __init__(
        self,
        config: OTelConfig,
        instance_ttl_seconds: Optional[int] = None,
        max_instances: Optional[int] = None,
    ):
        self.config = config
        self._instance_ttl = (
            instance_ttl_seconds if instance_ttl_seconds is not None else self.DEFAULT_INSTANCE_TTL
        )
        self._max_instances = (
            max_instances if max_instances is not None else self.DEFAULT_MAX_INSTANCES
        )
        # Insertion order doubles as least-recently-used order
        self._instance_spans: OrderedDict[str, trace.Span] = OrderedDict()
        self._instance_timestamps: OrderedDict[str, float] = OrderedDict()
        self._enabled = config.enabled
        self._provider: Optional[TracerProvider] = None

        if not self._enabled or config.exporter_type == "none":
            self._enabled = False
            self._tracer = None
            logger.info("WorkflowTracer disabled")
            return

        resource = Resource.create({SERVICE_NAME: config.service_name})
        provider = TracerProvider(resource=resource)

        if config.exporter_type == "console":
            exporter = ConsoleSpanExporter()
        elif config.exporter_type == "otlp-http":
            exporter = OTLPSpanExporterHTTP(endpoint=config.endpoint)
        else:  # otlp (gRPC)
            exporter = OTLPSpanExporter(endpoint=config.endpoint, insecure=config.insecure)

        provider.add_span_processor(BatchSpanProcessor(exporter))
        trace.set_tracer_provider(provider)
        self._tracer = trace.get_tracer("procflow", __version__)
        self._provider = provider

        logger.info(
            f"WorkflowTracer initialized (exporter={config.exporter_type}, "
            f"endpoint={config.endpoint})"
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _evict_stale_instances(self) -> None:
        """End parent spans idle for longer than the TTL, then enforce the cap."""
        now = time.monotonic()
        stale_ids = []
        for instance_id, ts in self._instance_timestamps.items():
            if now - ts > self._instance_ttl:
                stale_ids.append(instance_id)
            else:
                break

        for instance_id in stale_ids:
            self._end_and_remove(instance_id)

        overflow = len(self._instance_spans) - self._max_instances
        if overflow > 0:
            for instance_id in list(self._instance_spans.keys())[:overflow]:
                self._end_and_remove(instance_id)
            logger.debug(f"Evicted {overflow} instance spans (max_instances={self._max_instances})")

    def _end_and_remove(self, instance_id: str) -> None:
        span = self._instance_spans.pop(instance_id, None)
        self._instance_timestamps.pop(instance_id, None)
        if span is not None:
            span.set_status(Status(StatusCode.OK))
            span.end()

    def _get_or_create_instance_span(self, instance_id: str) -> Optional[trace.Span]:
        self._evict_stale_instances()

        if instance_id in self._instance_spans:
            self._instance_timestamps[instance_id] = time.monotonic()
            self._instance_timestamps.move_to_end(instance_id)
            self._instance_spans.move_to_end(instance_id)
            return self._instance_spans[instance_id]

        if self._tracer:
            span = self._tracer.start_span(
                "procflow-instance",
                attributes={
                    "procflow.instance_id": instance_id,
                    "procflow.version": __version__,
                },
            )
            self._instance_spans[instance_id] = span
            self._instance_timestamps[instance_id] = time.monotonic()
            self._evict_stale_instances()

        return self._instance_spans.get(instance_id)

    @staticmethod
    def _safe_json(obj: Any) -> str:
        try:
            return json.dumps(obj, default=str, ensure_ascii=False)
        except (TypeError, ValueError):
            return str(obj)

    def _parent_context(self, instance_id: str):
        parent_span = self._get_or_create_instance_span(instance_id)
        return trace.set_span_in_context(parent_span) if parent_span else None

    @contextmanager
    def trace_block(
        self,
        name: str,
        instance_id: str,
        attributes: Optional[Dict[str, Any]] = None,
        input_data: Optional[Any] = None,
    ):
        """
        Trace a block of code as a child span of the instance span.

        Args:
            name: Span name
            instance_id: Workflow instance the block belongs to
            attributes: Additional span attributes
            input_data: Input to record (JSON serialized)
        """
        if not self._enabled or not self._tracer:
            yield None
            return

        span_attrs = {"procflow.instance_id": instance_id, **(attributes or {})}
        with self._tracer.start_as_current_span(
            name,
            context=self._parent_context(instance_id),
            attributes=span_attrs,
        ) as span:
            if input_data is not None:
                span.set_attribute("input.value", self._safe_json(input_data))
            yield span

    def log_event(
        self,
        instance_id: str,
        name: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Record a named workflow event as a span."""
        if not self._enabled or not self._tracer:
            return

        with self._tracer.start_as_current_span(
            name,
            context=self._parent_context(instance_id),
            attributes={
                "procflow.instance_id": instance_id,
                "procflow.event": name,
            },
        ) as span:
            for key, value in (metadata or {}).items():
                span.set_attribute(f"procflow.metadata.{key}", str(value))

        logger.debug(f"Logged event '{name}' for instance {instance_id}")

    def log_transition(
        self,
        instance_id: str,
        from_state: str,
        to_state: str,
        event_type: str,
        rule_index: Optional[int] = None,
    ) -> None:
        """Record a committed state transition."""
        self.log_event(
            instance_id,
            "state_transition",
            metadata={
                "transition": f"{from_state} -> {to_state}",
                "from_state": from_state,
                "to_state": to_state,
                "event_type": event_type,
                "rule_index": rule_index,
            },
        )

    def log_rejection(self, instance_id: str, event_type: str, error: Exception) -> None:
        """Record an event that could not be fully applied."""
        if not self._enabled or not self._tracer:
            return

        with self._tracer.start_as_current_span(
            "event_rejected",
            context=self._parent_context(instance_id),
            attributes={
                "procflow.instance_id": instance_id,
                "procflow.event_type": event_type,
                "procflow.error.type": type(error).__name__,
            },
        ) as span:
            span.set_status(Status(StatusCode.ERROR, str(error)))

    def end_trace(self, instance_id: str) -> None:
        """End the instance span and free its memory."""
        if instance_id in self._instance_spans:
            self._end_and_remove(instance_id)
            logger.debug(f"Ended trace for instance {instance_id}")

    def flush(self) -> None:
        """Force flush any pending spans."""
        if self._provider:
            self._provider.force_flush()

    def shutdown(self) -> None:
        """End all open instance spans and shut the provider down."""
        for instance_id in list(self._instance_spans.keys()):
            self.end_trace(instance_id)

        if self._provider:
            self._provider.shutdown()

        logger.info("WorkflowTracer shut down")
