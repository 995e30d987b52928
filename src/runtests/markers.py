"""Capability markers for test fixture methods.

Markers are plain records attached to functions by decorators. What a
marker *means* is decided by a :class:`MarkerRegistry`, which maps each
marker tag to one or more method roles. Discovery only ever asks the
registry, so a new vocabulary can be supported by registering its tags.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any


MARKERS_ATTR = "__runtests_markers__"


class MethodRole(Enum):
    """What a marked method is used for."""

    TEST = "test"
    DATA_TEST = "data_test"
    DATA_SOURCE = "data_source"
    SETUP_ONCE = "setup_once"
    SETUP = "setup"

    @property
    def is_runnable(self) -> bool:
        return self in {MethodRole.TEST, MethodRole.DATA_TEST}


@dataclass(frozen=True)
class Marker:
    """A single capability marker attached to a function."""

    tag: str
    args: tuple[Any, ...] = ()


def get_markers(fn: Callable[..., Any]) -> list[Marker]:
    """Return the markers on ``fn`` in declaration order (top decorator first)."""
    return list(getattr(fn, MARKERS_ATTR, ()))


def marker(tag: str, *args: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Attach a marker with the given tag and arguments.

    Decorators apply bottom-up, so each new marker is put in front to keep
    the list in the order the decorators are written.
    """
    record = Marker(tag=tag, args=tuple(args))

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        existing: list[Marker] = list(getattr(fn, MARKERS_ATTR, ()))
        existing.insert(0, record)
        setattr(fn, MARKERS_ATTR, existing)
        return fn

    return decorator


def fact(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Mark a parameterless test."""
    return marker("fact")(fn)


def test(fn: Callable[..., Any]) -> Callable[..., Any]:
    return marker("test")(fn)


test.__test__ = False  # keep pytest from collecting the decorator itself


def retry_skippable_fact(fn: Callable[..., Any]) -> Callable[..., Any]:
    return marker("retry_skippable_fact")(fn)


def theory(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Mark a data-driven test; rows come from data markers."""
    return marker("theory")(fn)


def inline_data(*values: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Contribute one row of literal arguments."""
    return marker("inline_data", *values)


def member_data(name: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Contribute the rows produced by the fixture member called ``name``."""
    return marker("member_data", name)


def test_case(*values: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Mark a data-driven test and contribute one row in a single decorator."""
    return marker("test_case", *values)


test_case.__test__ = False


def setup(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Run before every invocation on the fixture."""
    return marker("setup")(fn)


def one_time_setup(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Run once per fixture type, before its first invocation."""
    return marker("one_time_setup")(fn)


class MarkerRegistry:
    """Maps marker tags to method roles."""

    def __init__(self) -> None:
        self._roles: dict[str, tuple[MethodRole, ...]] = {}

    def register(self, tag: str, *roles: MethodRole) -> None:
        if not roles:
            msg = f"register() needs at least one role for tag '{tag}'"
            raise ValueError(msg)
        self._roles[tag] = tuple(roles)

    def roles(self, tag: str) -> tuple[MethodRole, ...]:
        return self._roles.get(tag, ())

    def roles_for(self, fn: Callable[..., Any]) -> set[MethodRole]:
        """All roles implied by the markers on ``fn``."""
        found: set[MethodRole] = set()
        for record in get_markers(fn):
            found.update(self.roles(record.tag))
        return found

    def has_role(self, fn: Callable[..., Any], role: MethodRole) -> bool:
        return role in self.roles_for(fn)

    def data_markers(self, fn: Callable[..., Any]) -> list[Marker]:
        """Markers on ``fn`` that contribute data rows, in declaration order."""
        return [m for m in get_markers(fn) if MethodRole.DATA_SOURCE in self.roles(m.tag)]

    def __contains__(self, tag: str) -> bool:
        return tag in self._roles


def default_registry() -> MarkerRegistry:
    """Registry for the built-in decorators."""
    registry = MarkerRegistry()
    registry.register("fact", MethodRole.TEST)
    registry.register("test", MethodRole.TEST)
    registry.register("retry_skippable_fact", MethodRole.TEST)
    registry.register("theory", MethodRole.DATA_TEST)
    registry.register("test_case", MethodRole.DATA_TEST, MethodRole.DATA_SOURCE)
    registry.register("inline_data", MethodRole.DATA_SOURCE)
    registry.register("member_data", MethodRole.DATA_SOURCE)
    registry.register("setup", MethodRole.SETUP)
    registry.register("one_time_setup", MethodRole.SETUP_ONCE)
    return registry
