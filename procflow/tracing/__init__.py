"""Tracing for workflow instances."""

from procflow.tracing.otel_tracer import WorkflowTracer

__all__ = ["WorkflowTracer"]
