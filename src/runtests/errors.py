"""Exception hierarchy for the test harness."""

from __future__ import annotations

from pathlib import Path
from typing import Any


class RunTestsError(Exception):
    """Base class for harness errors."""


class ArtifactLoadError(RunTestsError):
    """A test artifact or one of the modules it imports could not be loaded.

    Always fatal: the run stops at the first one.
    """

    def __init__(self, message: str, path: Path | str | None = None) -> None:
        super().__init__(message)
        self.path = Path(path) if path is not None else None


class ConfigurationError(RunTestsError):
    """A data-driven method cannot be expanded into invocations."""


class CoercionError(ConfigurationError):
    """A literal value could not be converted to a formal parameter type."""

    def __init__(self, parameter: str, value: Any, target: Any) -> None:
        target_name = getattr(target, "__name__", repr(target))
        super().__init__(f"Cannot convert {value!r} to {target_name} for parameter '{parameter}'")
        self.parameter = parameter
        self.value = value
        self.target = target


class ResolutionError(RunTestsError):
    """The resolver could not build an instance of the requested type."""

    def __init__(self, requested_type: type, reason: str) -> None:
        super().__init__(f"Could not construct {qualified_name(requested_type)}: {reason}")
        self.requested_type = requested_type


class InvocationError(RunTestsError):
    """Wraps an exception raised from inside a test or setup method."""

    def __init__(self, target: str) -> None:
        super().__init__(f"Exception raised by {target}")
        self.target = target


def qualified_name(obj: Any) -> str:
    module = getattr(obj, "__module__", None)
    name = getattr(obj, "__qualname__", None) or getattr(obj, "__name__", None) or repr(obj)
    if module and module != "builtins":
        return f"{module}.{name}"
    return name


# Never caught by the engine; anything else raised by fixture code is a test failure.
PROCESS_EXITS = (KeyboardInterrupt, SystemExit)
