"""Typed bind values for statements and queries.

Every positional parameter is one of five kinds: ``Null``, ``Integer``,
``Float``, ``Text`` or ``Blob``. Callers can build these explicitly or pass
plain Python scalars, which are converted by ``bound()``. Anything else is a
programming error and raises ``HardAssertionError``.

Usage:
    params = ParameterList()
    bind(params, ["doc-1", 42, None, b"\\x00\\x01"])
    conn.execute(sql, params.values())
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Protocol, Union

from ..errors import fail, hard_assert

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


class BindTarget(Protocol):
    """Something that accepts positional (1-based) typed bindings."""

    def clear_bindings(self) -> None: ...

    def bind_null(self, index: int) -> None: ...

    def bind_long(self, index: int, value: int) -> None: ...

    def bind_double(self, index: int, value: float) -> None: ...

    def bind_string(self, index: int, value: str) -> None: ...

    def bind_blob(self, index: int, value: bytes) -> None: ...


def _check_payload(kind: str, value: Any, expected: type) -> None:
    # bool is an int subclass but never a valid payload
    hard_assert(
        isinstance(value, expected) and not isinstance(value, bool),
        "%s cannot hold %r of type %s",
        kind,
        value,
        type(value).__name__,
    )


@dataclass(frozen=True)
class Null:
    def bind_to(self, target: BindTarget, index: int) -> None:
        target.bind_null(index)


@dataclass(frozen=True)
class Integer:
    value: int

    def __post_init__(self):
        _check_payload("Integer", self.value, int)
        hard_assert(
            INT64_MIN <= self.value <= INT64_MAX,
            "Integer %d does not fit in 64 bits",
            self.value,
        )

    def bind_to(self, target: BindTarget, index: int) -> None:
        target.bind_long(index, self.value)


@dataclass(frozen=True)
class Float:
    value: float

    def __post_init__(self):
        _check_payload("Float", self.value, float)

    def bind_to(self, target: BindTarget, index: int) -> None:
        target.bind_double(index, self.value)


@dataclass(frozen=True)
class Text:
    value: str

    def __post_init__(self):
        _check_payload("Text", self.value, str)

    def bind_to(self, target: BindTarget, index: int) -> None:
        target.bind_string(index, self.value)


@dataclass(frozen=True)
class Blob:
    value: bytes

    def __post_init__(self):
        _check_payload("Blob", self.value, bytes)

    def bind_to(self, target: BindTarget, index: int) -> None:
        target.bind_blob(index, self.value)


BoundValue = Union[Null, Integer, Float, Text, Blob]

NULL = Null()

_VARIANTS = (Null, Integer, Float, Text, Blob)


def bound(value: Any) -> BoundValue:
    """Convert a plain Python scalar to its ``BoundValue``.

    ``bool`` is rejected rather than silently stored as an integer.
    """
    if isinstance(value, _VARIANTS):
        return value
    if value is None:
        return NULL
    if isinstance(value, bool):
        raise fail("Unknown argument %r of type %s", value, type(value).__name__)
    if isinstance(value, int):
        return Integer(value)
    if isinstance(value, float):
        return Float(value)
    if isinstance(value, str):
        return Text(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return Blob(bytes(value))
    raise fail("Unknown argument %r of type %s", value, type(value).__name__)


def bind(target: BindTarget, values: Iterable[Any]) -> None:
    """Bind ``values`` to ``target`` positionally, replacing earlier bindings."""
    converted = [bound(value) for value in values]
    target.clear_bindings()
    for index, value in enumerate(converted, start=1):
        value.bind_to(target, index)


class ParameterList:
    """Bind target that collects parameters for ``sqlite3`` execution."""

    def __init__(self):
        self._slots: dict[int, Any] = {}

    def clear_bindings(self) -> None:
        self._slots.clear()

    def bind_null(self, index: int) -> None:
        self._slots[index] = None

    def bind_long(self, index: int, value: int) -> None:
        self._slots[index] = value

    def bind_double(self, index: int, value: float) -> None:
        self._slots[index] = value

    def bind_string(self, index: int, value: str) -> None:
        self._slots[index] = value

    def bind_blob(self, index: int, value: bytes) -> None:
        self._slots[index] = value

    def values(self) -> tuple:
        """Return bound parameters in position order.

        Positions must be contiguous from 1.
        """
        count = len(self._slots)
        hard_assert(
            sorted(self._slots) == list(range(1, count + 1)),
            "Bind positions are not contiguous: %s",
            sorted(self._slots),
        )
        return tuple(self._slots[i] for i in range(1, count + 1))

    def __len__(self) -> int:
        return len(self._slots)


def to_parameters(values: Iterable[Any]) -> tuple:
    """Shortcut: bind ``values`` to a fresh ``ParameterList`` and return them."""
    params = ParameterList()
    bind(params, values)
    return params.values()
