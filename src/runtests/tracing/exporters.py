"""JSONL exporter for invocation spans.

Each finished span is appended to the output file as one JSON object, so
a run that dies halfway still leaves the spans of finished invocations.
"""

import json
import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.sdk.trace.export import SpanExporter, SpanExportResult


logger = logging.getLogger(__name__)


def span_record(span: ReadableSpan) -> dict[str, Any]:
    """Flatten a span into the fields a test report needs."""
    start, end = span.start_time, span.end_time
    return {
        "traceId": format(span.context.trace_id, "032x"),
        "spanId": format(span.context.span_id, "016x"),
        "parentSpanId": format(span.parent.span_id, "016x") if span.parent else None,
        "name": span.name,
        "startTimeUnixNano": start,
        "endTimeUnixNano": end,
        "durationMs": (end - start) / 1e6 if start is not None and end is not None else None,
        "status": span.status.status_code.name if span.status else "UNSET",
        "attributes": _plain(span.attributes),
        "events": [{"name": e.name, "attributes": _plain(e.attributes)} for e in span.events],
    }


def _plain(attributes: Mapping[str, Any] | None) -> dict[str, Any]:
    # BoundedAttributes stores sequences as tuples
    return {k: list(v) if isinstance(v, tuple) else v for k, v in (attributes or {}).items()}


class StreamingFileSpanExporter(SpanExporter):
    """Appends spans to a JSONL file as they finish."""

    def __init__(self, output_path: Path | str) -> None:
        self.redirect(output_path)

    def redirect(self, output_path: Path | str) -> None:
        """Send later spans to ``output_path``, starting it empty."""
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("", encoding="utf-8")
        self.output_path = path

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        try:
            with self.output_path.open("a", encoding="utf-8") as f:
                for span in spans:
                    f.write(json.dumps(span_record(span), default=str) + "\n")
        except OSError as e:
            logger.warning("Error exporting spans to %s: %s", self.output_path, e)
            return SpanExportResult.FAILURE
        return SpanExportResult.SUCCESS

    def shutdown(self) -> None:
        """Nothing to release; the file is reopened per export."""
