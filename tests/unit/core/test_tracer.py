"""
Unit tests for tracer implementations.

Tests for:
- Tracer Protocol (runtime_checkable)
- NullTracer, OpenTelemetryTracer and MockTracer
- create_tracer() factory function
- Spans emitted by the services
"""

from __future__ import annotations

from uuid import uuid4

import pytest

from shopcore.observability import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    SpanKindEnum,
    Tracer,
    create_tracer,
)
from shopcore.observability.attributes import ATTR_QUANTITY_DELTA
from shopcore.services import build_in_memory_services


class TestTracerProtocol:
    @pytest.mark.parametrize("tracer", [NullTracer(), MockTracer(), OpenTelemetryTracer(__name__)])
    def test_implementations_match_protocol(self, tracer):
        assert isinstance(tracer, Tracer)


class TestCreateTracer:
    def test_enabled(self):
        tracer = create_tracer(__name__, enable_tracing=True)

        assert isinstance(tracer, OpenTelemetryTracer)
        assert tracer.enabled

    def test_disabled(self):
        tracer = create_tracer(__name__, enable_tracing=False)

        assert isinstance(tracer, NullTracer)
        assert not tracer.enabled

    def test_null_tracer_yields_none(self):
        tracer = NullTracer()

        with tracer.span("x", {"a": 1}) as span:
            assert span is None
        with tracer.span_with_kind("y", SpanKindEnum.SERVER) as span:
            assert span is None

    def test_otel_tracer_without_sdk(self):
        tracer = OpenTelemetryTracer(__name__)

        with tracer.span("shopcore.test", {"key": "value"}) as span:
            assert span is not None


class TestMockTracer:
    def test_records_spans(self):
        tracer = MockTracer()

        with tracer.span("first", {"key": "value"}):
            pass
        with tracer.span_with_kind("second", SpanKindEnum.SERVER):
            pass

        assert tracer.spans == [("first", {"key": "value"}), ("second", None)]
        assert tracer.span_names == ["first", "second"]

        tracer.clear()
        assert tracer.spans == []


class TestServiceSpans:
    @pytest.mark.asyncio
    async def test_inventory_adjust_spans(self, config, seller):
        tracer = MockTracer()
        services = build_in_memory_services(config, tracer=tracer)
        variant_id = uuid4()
        await services.inventory.create(seller, variant_id, seller.id, 5)
        tracer.clear()

        await services.inventory.adjust(variant_id, seller.id, -2)

        assert tracer.span_names[0] == "shopcore.inventory.adjust"
        assert "shopcore.document.find_one_and_update" in tracer.span_names
        _, attributes = tracer.spans[0]
        assert attributes[ATTR_QUANTITY_DELTA] == -2
