"""
Tracers handed to services and repositories.

Nothing in shopcore calls OpenTelemetry directly. Each component holds a
``Tracer`` and opens spans through it, so tests can swap in a
``MockTracer`` and assert on the span names that were produced.

Example:
    >>> tracer = create_tracer("shopcore.discounts", enable_tracing=True)
    >>> with tracer.span("shopcore.coupon.apply", {"shopcore.coupon.code": "SAVE10"}):
    ...     ...
"""

from __future__ import annotations

import contextlib
from collections.abc import Generator
from contextlib import AbstractContextManager
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from opentelemetry import trace
from opentelemetry.trace import Span
from opentelemetry.trace import SpanKind as OtelSpanKind


class SpanKindEnum(Enum):
    """Subset of OpenTelemetry span kinds used by shopcore.

    SERVER marks inbound work such as a provider webhook; CLIENT marks
    calls out to collaborators such as the product catalog.
    """

    INTERNAL = "internal"
    SERVER = "server"
    CLIENT = "client"


_OTEL_KINDS = {
    SpanKindEnum.INTERNAL: OtelSpanKind.INTERNAL,
    SpanKindEnum.SERVER: OtelSpanKind.SERVER,
    SpanKindEnum.CLIENT: OtelSpanKind.CLIENT,
}

SpanAttributes = dict[str, Any] | None


@runtime_checkable
class Tracer(Protocol):
    """Anything that can open a span around a block of code."""

    def span(self, name: str, attributes: SpanAttributes = None) -> AbstractContextManager[Span | None]:
        """
        Open a span named ``name`` for the duration of the ``with`` block.

        The context manager yields the live span when one exists, so
        callers can add attributes discovered mid-operation; it yields
        ``None`` for tracers that record nothing.
        """
        ...

    @property
    def enabled(self) -> bool:
        """Whether spans from this tracer go anywhere."""
        ...

    def span_with_kind(
        self,
        name: str,
        kind: SpanKindEnum = SpanKindEnum.INTERNAL,
        attributes: SpanAttributes = None,
    ) -> AbstractContextManager[Span | None]: ...


class NullTracer:
    """Tracer used when tracing is switched off."""

    @contextlib.contextmanager
    def span(self, name: str, attributes: SpanAttributes = None) -> Generator[None, None, None]:
        yield None

    @property
    def enabled(self) -> bool:
        return False

    @contextlib.contextmanager
    def span_with_kind(
        self,
        name: str,
        kind: SpanKindEnum = SpanKindEnum.INTERNAL,
        attributes: SpanAttributes = None,
    ) -> Generator[None, None, None]:
        yield None


class OpenTelemetryTracer:
    """
    Tracer backed by ``opentelemetry.trace``.

    Only the API package is required. Without an SDK ``TracerProvider``
    installed by the host process the spans are non-recording, which
    keeps the library usable in plain deployments.

    Args:
        tracer_name: Instrumentation scope, normally the module ``__name__``
    """

    def __init__(self, tracer_name: str) -> None:
        self._tracer = trace.get_tracer(tracer_name)

    def span(self, name: str, attributes: SpanAttributes = None) -> AbstractContextManager[Span | None]:
        return self._tracer.start_as_current_span(name, attributes=attributes or {})

    @property
    def enabled(self) -> bool:
        return True

    def span_with_kind(
        self,
        name: str,
        kind: SpanKindEnum = SpanKindEnum.INTERNAL,
        attributes: SpanAttributes = None,
    ) -> AbstractContextManager[Span | None]:
        return self._tracer.start_as_current_span(
            name,
            kind=_OTEL_KINDS.get(kind, OtelSpanKind.INTERNAL),
            attributes=attributes or {},
        )


class MockTracer:
    """
    In-memory tracer for tests.

    Every opened span is appended to ``spans`` as ``(name, attributes)``,
    in the order the spans were entered.
    """

    def __init__(self) -> None:
        self.spans: list[tuple[str, dict[str, Any] | None]] = []

    @contextlib.contextmanager
    def span(self, name: str, attributes: SpanAttributes = None) -> Generator[None, None, None]:
        self.spans.append((name, attributes))
        yield None

    @property
    def enabled(self) -> bool:
        # Report enabled so callers still build their attribute dicts.
        return True

    @property
    def span_names(self) -> list[str]:
        return [recorded for recorded, _ in self.spans]

    def clear(self) -> None:
        self.spans.clear()

    @contextlib.contextmanager
    def span_with_kind(
        self,
        name: str,
        kind: SpanKindEnum = SpanKindEnum.INTERNAL,
        attributes: SpanAttributes = None,
    ) -> Generator[None, None, None]:
        self.spans.append((name, attributes))
        yield None


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """Return an ``OpenTelemetryTracer`` for ``name``, or a ``NullTracer`` when disabled."""
    if enable_tracing:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "MockTracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "SpanKindEnum",
    "Tracer",
    "create_tracer",
]
