"""Process-wide tracer setup for test invocations.

OpenTelemetry accepts a global tracer provider only once per process, so
the provider is installed on first use and later runs just point the
shared exporter at their own trace file.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor

from runtests.tracing.exporters import StreamingFileSpanExporter


TRACER_NAME = "runtests"

_exporter: StreamingFileSpanExporter | None = None


def init_tracing(output_path: Path | str, *, service_name: str = TRACER_NAME) -> StreamingFileSpanExporter:
    """Start writing invocation spans to ``output_path``, truncating it."""
    global _exporter

    if _exporter is not None:
        _exporter.redirect(output_path)
        return _exporter

    exporter = StreamingFileSpanExporter(output_path)
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    _exporter = exporter
    return exporter


def get_tracer() -> trace.Tracer:
    return trace.get_tracer(TRACER_NAME)


@contextmanager
def invocation_span(name: str, attributes: dict[str, Any] | None = None) -> Iterator[trace.Span]:
    """Span named ``test.<name>`` around one invocation.

    Failures are recorded by the caller, which knows the stage they
    happened in.
    """
    with get_tracer().start_as_current_span(
        f"test.{name}",
        attributes=attributes,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        yield span
