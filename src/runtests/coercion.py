"""Conversion of literal data-row values to formal parameter types.

Converters are chosen once per parameter when a method's data table is
built. Only a small closed set of conversions exists; anything else is a
:class:`~runtests.errors.CoercionError`.
"""

from __future__ import annotations

import types
import typing
from collections.abc import Callable
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from runtests.errors import CoercionError


Converter = Callable[[Any], Any]

_NUMERIC_TYPES = (int, float, Decimal, bool)


def _passthrough(value: Any) -> Any:
    return value


def unwrap_optional(annotation: Any) -> Any:
    """Return ``X`` for ``X | None`` / ``Optional[X]``, otherwise ``annotation``."""
    origin = typing.get_origin(annotation)
    if origin is typing.Union or origin is types.UnionType:
        members = [arg for arg in typing.get_args(annotation) if arg is not type(None)]
        if len(members) == 1:
            return members[0]
    return annotation


def _to_numeric(target: type, parameter: str) -> Converter:
    def convert(value: Any) -> Any:
        if isinstance(value, target) and not (target is int and isinstance(value, bool)):
            return value
        try:
            if target is bool:
                if isinstance(value, str):
                    lowered = value.strip().lower()
                    if lowered in {"true", "1"}:
                        return True
                    if lowered in {"false", "0"}:
                        return False
                    raise ValueError(value)
                return bool(value)
            if target is int:
                if isinstance(value, float):
                    if not value.is_integer():
                        raise ValueError(value)
                    return int(value)
                if isinstance(value, Decimal):
                    if value != value.to_integral_value():
                        raise ValueError(value)
                    return int(value)
                return int(value)
            if target is Decimal:
                return Decimal(str(value)) if isinstance(value, float) else Decimal(value)
            return target(value)
        except (TypeError, ValueError, InvalidOperation) as err:
            raise CoercionError(parameter, value, target) from err

    return convert


def _to_enum(target: type[Enum], parameter: str) -> Converter:
    def convert(value: Any) -> Any:
        if isinstance(value, target):
            return value
        if isinstance(value, str) and value in target.__members__:
            return target[value]
        try:
            return target(value)
        except ValueError as err:
            raise CoercionError(parameter, value, target) from err

    return convert


def _to_instance(target: type, parameter: str) -> Converter:
    def convert(value: Any) -> Any:
        if isinstance(value, target):
            return value
        raise CoercionError(parameter, value, target)

    return convert


def build_converter(annotation: Any, parameter: str = "") -> Converter:
    """Pick the conversion rule for a formal parameter annotation.

    ``None`` values always bypass conversion.
    """
    target = unwrap_optional(annotation)
    origin = typing.get_origin(target)
    if origin is not None:
        # list[int] and friends are checked against their runtime class only
        target = origin

    if target is Any or target is None or target is typing.Any or not isinstance(target, type):
        # Unannotated parameters, type variables and unresolvable generics
        rule: Converter = _passthrough
    elif issubclass(target, Enum):
        rule = _to_enum(target, parameter)
    elif issubclass(target, _NUMERIC_TYPES):
        rule = _to_numeric(target, parameter)
    elif target is str:
        rule = str
    elif target is object:
        rule = _passthrough
    else:
        rule = _to_instance(target, parameter)

    def converter(value: Any) -> Any:
        if value is None:
            return None
        return rule(value)

    return converter
