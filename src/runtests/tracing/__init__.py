from runtests.tracing.lifecycle import get_tracer, init_tracing, invocation_span


__all__ = [
    "get_tracer",
    "init_tracing",
    "invocation_span",
]
