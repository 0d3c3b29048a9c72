
import pytest
from unittest.mock import MagicMock, patch

from procflow.tracing.otel_tracer import WorkflowTracer
from procflow.config.settings import OTelConfig


@pytest.fixture
def mock_otel():
    with patch("procflow.tracing.otel_tracer.trace") as mock_trace, \
         patch("procflow.tracing.otel_tracer.TracerProvider") as mock_provider, \
         patch("procflow.tracing.otel_tracer.OTLPSpanExporter") as mock_exporter, \
         patch("procflow.tracing.otel_tracer.BatchSpanProcessor") as mock_processor, \
         patch("procflow.tracing.otel_tracer.Resource") as mock_resource:

        mock_tracer = MagicMock()
        mock_trace.get_tracer.return_value = mock_tracer

        yield {
            "trace": mock_trace,
            "provider": mock_provider,
            "exporter": mock_exporter,
            "processor": mock_processor,
            "tracer": mock_tracer,
        }


def _otlp_config(**overrides):
    return OTelConfig(enabled=True, exporter_type="otlp", **overrides)


def test_tracer_initialization(mock_otel):
    config = OTelConfig(
        enabled=True,
        service_name="test-service",
        endpoint="localhost:4317",
        exporter_type="otlp",
    )

    tracer = WorkflowTracer(config)

    assert tracer.enabled is True
    mock_otel["trace"].set_tracer_provider.assert_called_once()
    mock_otel["exporter"].assert_called_with(endpoint="localhost:4317", insecure=True)


def test_tracer_disabled(mock_otel):
    tracer = WorkflowTracer(OTelConfig(enabled=False))

    assert tracer.enabled is False
    mock_otel["trace"].set_tracer_provider.assert_not_called()


def test_exporter_none_disables(mock_otel):
    tracer = WorkflowTracer(OTelConfig(enabled=True, exporter_type="none"))
    assert tracer.enabled is False


def test_disabled_tracer_accepts_calls(mock_otel):
    tracer = WorkflowTracer(OTelConfig())

    with tracer.trace_block("process_event", "inst-1") as span:
        assert span is None
    tracer.log_event("inst-1", "instance_created")
    tracer.log_rejection("inst-1", "PING", RuntimeError("x"))
    tracer.end_trace("inst-1")
    tracer.shutdown()

    mock_otel["tracer"].start_as_current_span.assert_not_called()


def test_log_event(mock_otel):
    tracer = WorkflowTracer(_otlp_config())

    mock_span = MagicMock()
    mock_otel["tracer"].start_as_current_span.return_value.__enter__.return_value = mock_span

    tracer.log_event("inst-1", "instance_created", metadata={"state": "idle"})

    call_args = mock_otel["tracer"].start_as_current_span.call_args
    assert call_args[0][0] == "instance_created"
    assert call_args[1]["attributes"]["procflow.instance_id"] == "inst-1"
    mock_span.set_attribute.assert_any_call("procflow.metadata.state", "idle")


def test_log_transition(mock_otel):
    tracer = WorkflowTracer(_otlp_config())

    mock_span = MagicMock()
    mock_otel["tracer"].start_as_current_span.return_value.__enter__.return_value = mock_span

    tracer.log_transition(
        "inst-1", from_state="idle", to_state="review", event_type="SUBMIT", rule_index=0
    )

    assert mock_otel["tracer"].start_as_current_span.call_args[0][0] == "state_transition"
    mock_span.set_attribute.assert_any_call("procflow.metadata.transition", "idle -> review")
    mock_span.set_attribute.assert_any_call("procflow.metadata.rule_index", "0")


def test_log_rejection_sets_error_status(mock_otel):
    tracer = WorkflowTracer(_otlp_config())

    mock_span = MagicMock()
    mock_otel["tracer"].start_as_current_span.return_value.__enter__.return_value = mock_span

    tracer.log_rejection("inst-1", "ESCALATE", RuntimeError("no such state"))

    call_args = mock_otel["tracer"].start_as_current_span.call_args
    assert call_args[0][0] == "event_rejected"
    assert call_args[1]["attributes"]["procflow.error.type"] == "RuntimeError"
    mock_span.set_status.assert_called_once()


def test_trace_block_records_input(mock_otel):
    tracer = WorkflowTracer(_otlp_config())

    mock_span = MagicMock()
    mock_otel["tracer"].start_as_current_span.return_value.__enter__.return_value = mock_span

    with tracer.trace_block(
        "process_event",
        "inst-1",
        attributes={"procflow.event_type": "SUBMIT"},
        input_data={"type": "SUBMIT"},
    ) as span:
        assert span is mock_span

    attrs = mock_otel["tracer"].start_as_current_span.call_args[1]["attributes"]
    assert attrs == {"procflow.instance_id": "inst-1", "procflow.event_type": "SUBMIT"}
    mock_span.set_attribute.assert_any_call("input.value", '{"type": "SUBMIT"}')


def test_instance_span_is_reused(mock_otel):
    tracer = WorkflowTracer(_otlp_config())

    tracer.log_event("inst-1", "a")
    tracer.log_event("inst-1", "b")

    assert mock_otel["tracer"].start_span.call_count == 1
    assert mock_otel["tracer"].start_span.call_args[0][0] == "procflow-instance"


def test_end_trace(mock_otel):
    tracer = WorkflowTracer(_otlp_config())
    parent = MagicMock()
    mock_otel["tracer"].start_span.return_value = parent

    tracer.log_event("inst-1", "instance_created")
    tracer.end_trace("inst-1")

    parent.end.assert_called_once()
    assert "inst-1" not in tracer._instance_spans


def test_shutdown(mock_otel):
    tracer = WorkflowTracer(_otlp_config())

    tracer.shutdown()

    mock_otel["provider"].return_value.shutdown.assert_called_once()


def test_flush(mock_otel):
    tracer = WorkflowTracer(_otlp_config())

    tracer.flush()

    mock_otel["provider"].return_value.force_flush.assert_called_once()


class TestInstanceEviction:
    """Tests for TTL-based and max-cap instance span eviction."""

    def test_stale_instances_evicted_by_ttl(self, mock_otel):
        tracer = WorkflowTracer(_otlp_config(), instance_ttl_seconds=2)

        span_a = MagicMock()
        span_b = MagicMock()
        mock_otel["tracer"].start_span.side_effect = [span_a, span_b]

        tracer._get_or_create_instance_span("inst-a")
        tracer._get_or_create_instance_span("inst-b")
        assert len(tracer._instance_spans) == 2

        for instance_id in tracer._instance_timestamps:
            tracer._instance_timestamps[instance_id] -= 5

        mock_otel["tracer"].start_span.side_effect = [MagicMock()]
        tracer._get_or_create_instance_span("inst-c")

        assert list(tracer._instance_spans) == ["inst-c"]
        span_a.end.assert_called_once()
        span_b.end.assert_called_once()

    def test_max_instances_cap(self, mock_otel):
        tracer = WorkflowTracer(_otlp_config(), max_instances=2)

        spans = [MagicMock() for _ in range(3)]
        mock_otel["tracer"].start_span.side_effect = spans

        for instance_id in ("a", "b", "c"):
            tracer._get_or_create_instance_span(instance_id)

        assert list(tracer._instance_spans) == ["b", "c"]
        spans[0].end.assert_called_once()

    def test_access_refreshes_order(self, mock_otel):
        tracer = WorkflowTracer(_otlp_config(), max_instances=2)
        mock_otel["tracer"].start_span.side_effect = [MagicMock() for _ in range(3)]

        tracer._get_or_create_instance_span("a")
        tracer._get_or_create_instance_span("b")
        tracer._get_or_create_instance_span("a")
        tracer._get_or_create_instance_span("c")

        assert list(tracer._instance_spans) == ["a", "c"]
