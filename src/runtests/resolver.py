"""Dependency resolver used to build test fixtures.

Instances are built lazily from constructor signatures and memoized per
resolver. Override bindings replace construction for a type entirely (the
runner binds the current output collector this way) and are called on
every request. ``invalidate`` drops a memoized instance so the next
request builds a fresh one.
"""

from __future__ import annotations

import inspect
import logging
import threading
import typing
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from runtests.errors import PROCESS_EXITS, ResolutionError, qualified_name


logger = logging.getLogger(__name__)

T = TypeVar("T")

CONSTRUCTOR_ATTR = "__runtests_constructor__"


def constructor(fn: Any) -> Any:
    """Mark a classmethod as an additional public constructor.

    Apply on top of ``@classmethod``.
    """
    target = fn.__func__ if isinstance(fn, classmethod) else fn
    setattr(target, CONSTRUCTOR_ATTR, True)
    return fn


@dataclass(frozen=True)
class _Constructor:
    call: Callable[..., Any]
    signature: inspect.Signature
    hints: dict[str, Any]


class _Lazy:
    """A value built at most once, even when requested from several threads."""

    def __init__(self, factory: Callable[[], Any]) -> None:
        self._factory = factory
        self._lock = threading.Lock()
        self._built = False
        self._value: Any = None

    def get(self) -> Any:
        if self._built:
            return self._value
        with self._lock:
            if not self._built:
                self._value = self._factory()
                self._built = True
        return self._value


class Resolver:
    """Builds and memoizes instances of requested types."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._overrides: dict[type, Callable[[], Any]] = {}
        self._memo: dict[type, _Lazy] = {}
        self._building = threading.local()

    def override(self, requested: type, factory: Callable[[], Any]) -> None:
        """Bind ``requested`` to ``factory``; its result is never memoized."""
        with self._lock:
            self._overrides[requested] = factory

    def invalidate(self, requested: type) -> None:
        """Forget the memoized instance of ``requested``, if any."""
        with self._lock:
            self._memo.pop(requested, None)

    def is_bound(self, requested: type) -> bool:
        with self._lock:
            return requested in self._overrides or requested in self._memo

    def get(self, requested: type[T]) -> T:
        """Return the instance for ``requested``, building it on first use."""
        with self._lock:
            factory = self._overrides.get(requested)
            if factory is None:
                lazy = self._memo.get(requested)
                if lazy is None:
                    lazy = _Lazy(lambda: self._build(requested))
                    self._memo[requested] = lazy
        if factory is not None:
            return factory()

        stack = self._stack()
        if requested in stack:
            chain = " -> ".join(qualified_name(t) for t in [*stack, requested])
            raise ResolutionError(requested, f"circular dependency ({chain})")
        stack.append(requested)
        try:
            return lazy.get()
        except BaseException:
            with self._lock:
                if self._memo.get(requested) is lazy:
                    del self._memo[requested]
            raise
        finally:
            stack.pop()

    def _stack(self) -> list[type]:
        stack = getattr(self._building, "stack", None)
        if stack is None:
            stack = self._building.stack = []
        return stack

    def _build(self, requested: type) -> Any:
        ctor = self._select_constructor(requested)
        args: list[Any] = []
        kwargs: dict[str, Any] = {}
        for name, param in ctor.signature.parameters.items():
            if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
                continue
            value = self._argument(requested, name, param, ctor.hints)
            if param.kind is inspect.Parameter.POSITIONAL_ONLY:
                args.append(value)
            else:
                kwargs[name] = value
        logger.debug("Constructing %s", qualified_name(requested))
        try:
            return ctor.call(*args, **kwargs)
        except PROCESS_EXITS:
            raise
        except BaseException as err:
            raise ResolutionError(requested, f"{type(err).__name__} raised by constructor") from err

    def _argument(self, owner: type, name: str, param: inspect.Parameter, hints: dict[str, Any]) -> Any:
        annotation = hints.get(name)
        if annotation is not None and self.is_bound(annotation):
            return self.get(annotation)
        if param.default is not inspect.Parameter.empty:
            return param.default
        if annotation is None or not isinstance(annotation, type):
            raise ResolutionError(owner, f"parameter '{name}' has no resolvable type")
        try:
            return self.get(annotation)
        except ResolutionError as err:
            raise ResolutionError(owner, f"could not resolve parameter '{name}'") from err

    def _select_constructor(self, requested: type) -> _Constructor:
        candidates = public_constructors(requested)
        if not candidates:
            raise ResolutionError(requested, "it does not have a public constructor")
        # min() keeps the first of equally short candidates
        return min(candidates, key=lambda c: len(c.signature.parameters))


def _hints(fn: Callable[..., Any]) -> dict[str, Any]:
    try:
        return typing.get_type_hints(fn)
    except (NameError, TypeError):
        return {}


def public_constructors(cls: type) -> list[_Constructor]:
    """Constructors usable by the resolver, in declaration order.

    The class call itself comes first unless the class is abstract or a
    protocol; classmethods marked with :func:`constructor` follow.
    """
    if not inspect.isclass(cls):
        return []
    found: list[_Constructor] = []
    if not inspect.isabstract(cls) and not getattr(cls, "_is_protocol", False):
        init = cls.__init__
        if init is object.__init__:
            signature = inspect.Signature()
        else:
            try:
                signature = inspect.signature(init)
                signature = signature.replace(parameters=list(signature.parameters.values())[1:])
            except (TypeError, ValueError):
                signature = inspect.Signature()
        found.append(_Constructor(cls, signature, _hints(init)))
    for name, value in vars(cls).items():
        if isinstance(value, classmethod) and getattr(value.__func__, CONSTRUCTOR_ATTR, False):
            bound = getattr(cls, name)
            found.append(_Constructor(bound, inspect.signature(bound), _hints(value.__func__)))
    return found
