"""Test discovery and parameter expansion.

A fixture class is registered once: its public methods are classified by
marker role and their formal parameters are captured. Discovery then turns
every runnable method into one :class:`Invocation` per parameter set.
"""

from __future__ import annotations

import inspect
import logging
import re
import typing
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from types import ModuleType
from typing import Any

from runtests.coercion import build_converter
from runtests.errors import ConfigurationError, qualified_name
from runtests.markers import Marker, MarkerRegistry, MethodRole, default_registry


logger = logging.getLogger(__name__)

_EMPTY = inspect.Parameter.empty


@dataclass(frozen=True)
class FormalParameter:
    """One formal parameter of a candidate method (``self`` excluded)."""

    name: str
    annotation: Any = Any
    default: Any = _EMPTY

    @property
    def has_default(self) -> bool:
        return self.default is not _EMPTY


@dataclass(frozen=True)
class CandidateMethod:
    """A public method on a fixture class together with its marker roles."""

    name: str
    function: Callable[..., Any]
    parameters: tuple[FormalParameter, ...] = ()
    roles: frozenset[MethodRole] = frozenset()

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self.function)

    @property
    def is_runnable(self) -> bool:
        return any(role.is_runnable for role in self.roles)


@dataclass(frozen=True)
class FixtureType:
    """A registered test fixture class.

    ``methods`` keeps every marked public method in discovery order.
    """

    cls: type
    methods: tuple[CandidateMethod, ...] = ()

    @property
    def name(self) -> str:
        return self.cls.__qualname__

    @property
    def full_name(self) -> str:
        return qualified_name(self.cls)

    @property
    def tests(self) -> list[CandidateMethod]:
        return [m for m in self.methods if m.is_runnable]

    @property
    def setups_once(self) -> list[CandidateMethod]:
        return [m for m in self.methods if MethodRole.SETUP_ONCE in m.roles]

    @property
    def setups_each(self) -> list[CandidateMethod]:
        return [m for m in self.methods if MethodRole.SETUP in m.roles]


@dataclass(frozen=True)
class ParameterSet:
    """Arguments for one invocation plus their display suffix."""

    arguments: tuple[Any, ...] = ()
    suffix: str = ""


@dataclass(frozen=True)
class Invocation:
    """One method run with one parameter set.

    ``error`` is set when the method's parameters could not be expanded; such
    an invocation is reported but never executed.
    """

    fixture: FixtureType
    method: CandidateMethod
    parameters: ParameterSet = field(default_factory=ParameterSet)
    error: ConfigurationError | None = None

    @property
    def display_name(self) -> str:
        return f"{self.method.name}{self.parameters.suffix}"

    @property
    def full_name(self) -> str:
        return f"{self.fixture.full_name}.{self.display_name}"


class NameFilter:
    """Regex name filters; a name must match every pattern (case-insensitive)."""

    def __init__(self, patterns: Iterable[str] = ()) -> None:
        self.patterns = list(patterns)
        self._compiled = [re.compile(p, re.IGNORECASE) for p in self.patterns]

    def __bool__(self) -> bool:
        return bool(self._compiled)

    def __call__(self, name: str) -> bool:
        return all(pattern.search(name) for pattern in self._compiled)


def describe_argument(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, str):
        return f'"{value}"'
    return str(value)


def describe_arguments(values: Sequence[Any]) -> str:
    """Render literal arguments as a suffix, e.g. ``' (1, "abc", null)'``."""
    return f" ({', '.join(describe_argument(v) for v in values)})"


def _formal_parameters(fn: Callable[..., Any]) -> tuple[FormalParameter, ...]:
    try:
        hints = typing.get_type_hints(fn)
    except (NameError, TypeError):
        logger.debug("Could not evaluate annotations of %s", qualified_name(fn))
        hints = {}
    formals = []
    for index, param in enumerate(inspect.signature(fn).parameters.values()):
        if index == 0 and param.name == "self":
            continue
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        formals.append(FormalParameter(param.name, hints.get(param.name, Any), param.default))
    return tuple(formals)


def public_methods(cls: type) -> list[tuple[str, Callable[..., Any]]]:
    """Public instance methods of ``cls``: own ones first, then inherited.

    Each class contributes in definition order; an override is listed once.
    """
    seen: set[str] = set()
    found: list[tuple[str, Callable[..., Any]]] = []
    for klass in cls.__mro__:
        if klass is object:
            continue
        for name, value in vars(klass).items():
            if name in seen:
                continue
            seen.add(name)
            if name.startswith("_") or not inspect.isfunction(value):
                continue
            found.append((name, value))
    return found


def register_fixture(cls: type, registry: MarkerRegistry | None = None) -> FixtureType:
    """Classify the public methods of ``cls`` by marker role."""
    registry = registry or default_registry()
    methods = []
    for name, fn in public_methods(cls):
        roles = registry.roles_for(fn)
        if not roles:
            continue
        methods.append(CandidateMethod(name, fn, _formal_parameters(fn), frozenset(roles)))
    return FixtureType(cls=cls, methods=tuple(methods))


def _inline_rows(cls: type, record: Marker) -> list[tuple[Any, ...]]:
    return [record.args]


def _member_rows(cls: type, record: Marker) -> list[tuple[Any, ...]]:
    if not record.args:
        msg = "member_data needs the name of a member"
        raise ConfigurationError(msg)
    name = record.args[0]
    try:
        source = getattr(cls, name)
    except AttributeError as err:
        msg = f"{qualified_name(cls)} has no data member '{name}'"
        raise ConfigurationError(msg) from err
    try:
        if callable(source):
            source = source()
        return [tuple(row) if isinstance(row, (tuple, list)) else (row,) for row in source]
    except Exception as err:
        msg = f"Data member '{name}' of {qualified_name(cls)} failed to produce rows: {type(err).__name__}: {err}"
        raise ConfigurationError(msg) from err


_ROW_PROVIDERS: dict[str, Callable[[type, Marker], list[tuple[Any, ...]]]] = {
    "member_data": _member_rows,
}


def data_rows(
    cls: type, method: CandidateMethod, registry: MarkerRegistry | None = None
) -> list[tuple[Any, ...]] | None:
    """Concatenate the rows of every data marker on ``method``.

    Returns None when the method has no data markers at all.
    """
    registry = registry or default_registry()
    markers = registry.data_markers(method.function)
    if not markers:
        return None
    rows: list[tuple[Any, ...]] = []
    for record in markers:
        provider = _ROW_PROVIDERS.get(record.tag, _inline_rows)
        rows.extend(provider(cls, record))
    return rows


def _complete(method: CandidateMethod, values: list[Any]) -> tuple[Any, ...]:
    formals = method.parameters
    if len(values) > len(formals):
        msg = f"{method.name} takes {len(formals)} parameter(s) but {len(values)} value(s) were supplied"
        raise ConfigurationError(msg)
    for index in range(len(values), len(formals)):
        if not formals[index].has_default:
            msg = f"Parameter {index} ({formals[index].name}) of {method.name} not specified and has no default value"
            raise ConfigurationError(msg)
        values.append(formals[index].default)
    return tuple(values)


def expand(
    fixture: FixtureType, method: CandidateMethod, registry: MarkerRegistry | None = None
) -> list[ParameterSet]:
    """Return the parameter sets ``method`` runs with.

    Raises ConfigurationError for the whole method if any row is unusable.
    """
    rows = data_rows(fixture.cls, method, registry)
    if rows is None:
        return [ParameterSet(arguments=_complete(method, []))]

    converters = [build_converter(p.annotation, p.name) for p in method.parameters]
    sets = []
    for row in rows:
        if len(row) > len(converters):
            _complete(method, list(row))
        coerced = [converters[i](value) for i, value in enumerate(row)]
        sets.append(ParameterSet(arguments=_complete(method, coerced), suffix=describe_arguments(row)))
    return sets


def discover(
    fixture: FixtureType | type,
    name_filter: Callable[[str], bool] | None = None,
    registry: MarkerRegistry | None = None,
) -> list[Invocation]:
    """Ordered invocations for every runnable method of a fixture.

    Methods whose expansion fails yield a single invocation carrying the
    ConfigurationError.
    """
    if not isinstance(fixture, FixtureType):
        fixture = register_fixture(fixture, registry)

    invocations: list[Invocation] = []
    for method in fixture.tests:
        if name_filter is not None and not name_filter(f"{fixture.full_name}.{method.name}"):
            continue
        try:
            parameter_sets = expand(fixture, method, registry)
        except ConfigurationError as err:
            logger.debug("Expansion of %s.%s failed: %s", fixture.full_name, method.name, err)
            invocations.append(Invocation(fixture, method, ParameterSet(), error=err))
            continue
        invocations.extend(Invocation(fixture, method, params) for params in parameter_sets)
    return invocations


def fixture_types(module: ModuleType) -> list[type]:
    """Public classes defined in ``module``, in definition order."""
    return [
        obj
        for name, obj in vars(module).items()
        if inspect.isclass(obj) and not name.startswith("_") and obj.__module__ == module.__name__
    ]
