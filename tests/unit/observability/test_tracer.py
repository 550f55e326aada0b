"""
Unit tests for tracer implementations and the spans emitted by components.

Tests for:
- NullTracer, MockTracer and OpenTelemetryTracer against the Tracer protocol
- create_tracer() factory function
- Span names emitted by a transfer run
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from msgtransfer import ErrorSink, TransferConfig
from msgtransfer.observability import (
    ATTR_TRANSFERRED,
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    SpanKindEnum,
    Tracer,
    create_tracer,
)
from msgtransfer.transfer import TransferEngine, TransferExecutor
from tests.fixtures import START_TIME, FlakyMessageQueue, ManualClock, make_message


class TestTracerProtocol:
    """Tests for Tracer protocol conformance."""

    def test_null_tracer_implements_protocol(self):
        assert isinstance(NullTracer(), Tracer)

    def test_mock_tracer_implements_protocol(self):
        assert isinstance(MockTracer(), Tracer)

    def test_otel_tracer_implements_protocol(self):
        assert isinstance(OpenTelemetryTracer(__name__), Tracer)


class TestNullTracer:
    """Tests for NullTracer."""

    def test_span_yields_none(self):
        tracer = NullTracer()
        with tracer.span("operation", {"key": "value"}) as span:
            assert span is None
        assert tracer.enabled is False

    def test_span_with_kind_yields_none(self):
        with NullTracer().span_with_kind("operation", SpanKindEnum.CLIENT) as span:
            assert span is None


class TestMockTracer:
    """Tests for MockTracer."""

    def test_records_spans(self):
        tracer = MockTracer()
        with tracer.span("first", {"a": 1}):
            pass
        with tracer.span_with_kind("second", SpanKindEnum.PRODUCER):
            pass

        assert tracer.spans == [("first", {"a": 1}), ("second", None)]
        assert tracer.span_names == ["first", "second"]

    def test_clear(self):
        tracer = MockTracer()
        with tracer.span("first"):
            pass
        tracer.clear()
        assert tracer.spans == []


class TestCreateTracer:
    """Tests for create_tracer()."""

    def test_disabled_returns_null_tracer(self):
        assert isinstance(create_tracer(__name__, enable_tracing=False), NullTracer)

    def test_enabled_returns_otel_tracer(self):
        tracer = create_tracer(__name__, enable_tracing=True)
        assert isinstance(tracer, OpenTelemetryTracer)
        assert tracer.enabled is True


class TestOpenTelemetryTracer:
    """Spans reach an SDK exporter when a provider is configured."""

    def test_exports_span_with_attributes(self, monkeypatch: pytest.MonkeyPatch):
        from opentelemetry import trace

        exporter = InMemorySpanExporter()
        provider = TracerProvider()
        provider.add_span_processor(SimpleSpanProcessor(exporter))
        monkeypatch.setattr(trace, "get_tracer", provider.get_tracer)

        tracer = OpenTelemetryTracer(__name__)
        with tracer.span("msgtransfer.test", {ATTR_TRANSFERRED: 3}) as span:
            assert span is not None
        with tracer.span_with_kind("msgtransfer.client", SpanKindEnum.CLIENT):
            pass

        finished = exporter.get_finished_spans()
        assert [s.name for s in finished] == ["msgtransfer.test", "msgtransfer.client"]
        assert finished[0].attributes[ATTR_TRANSFERRED] == 3
        assert finished[1].kind is trace.SpanKind.CLIENT


class TestTransferSpans:
    """Span names emitted while transferring."""

    @pytest.mark.asyncio
    async def test_transfer_run_spans(self, mock_tracer: MockTracer):
        clock = ManualClock()
        source = FlakyMessageQueue("source", clock=clock, enable_tracing=False)
        destination = FlakyMessageQueue("destination", clock=clock, enable_tracing=False)
        sink = ErrorSink(
            FlakyMessageQueue("poc-dead-letter", clock=clock, enable_tracing=False),
            clock=clock,
            enable_tracing=False,
        )
        executor = TransferExecutor(source, destination, sink, clock=clock, tracer=mock_tracer)
        engine = TransferEngine(
            executor,
            config=TransferConfig(batch_size=5, enable_tracing=False),
            clock=clock,
            tracer=mock_tracer,
        )
        await source.schedule_at(make_message(), START_TIME + timedelta(hours=1))

        await engine.run()

        assert mock_tracer.span_names == [
            "msgtransfer.engine.run",
            "msgtransfer.cursor.peek",
            "msgtransfer.executor.transfer",
        ]
        assert mock_tracer.spans[0][1]["msgtransfer.max_messages"] == 1000
