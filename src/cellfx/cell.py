"""Value cells — state that tracks its readers.

When a Value is read inside a Derived or Effect evaluation, the dependency
is registered on the graph. When the Value changes, its revision goes up,
every downstream node is marked stale and reached effects are queued for
the end of the cycle.

Thread safety: call graph.set_scheduler() once from the owner thread. After
that, any .set() from a background thread is marshaled. Owner-thread .set()
remains synchronous.
"""

from __future__ import annotations

import itertools
from typing import Callable, Generic, TypeVar

from cellfx._errors import UnsetValueError
from cellfx._graph import Graph, default_equals, get_graph

T = TypeVar("T")

_ids = itertools.count(1)


class _Unset:
    __slots__ = ()

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()


class Value(Generic[T]):
    """A single reactive value with automatic dependency tracking.

    A Value created without an initial value is *unset*: reading it raises
    UnsetValueError until the first set().
    """

    __slots__ = ("_graph", "_value", "_revision", "_observers", "_equals", "label")

    def __init__(
        self,
        initial: T | _Unset = UNSET,
        *,
        equals: Callable[[T, T], bool] | None = None,
        label: str | None = None,
        graph: Graph | None = None,
    ) -> None:
        self._graph = graph or get_graph()
        self._value = initial
        self._revision = 0
        self._observers: set = set()
        self._equals = equals or default_equals
        self.label = label or f"Value#{next(_ids)}"

    @property
    def graph(self) -> Graph:
        return self._graph

    @property
    def revision(self) -> int:
        return self._revision

    def is_set(self) -> bool:
        return self._value is not UNSET

    def get(self) -> T:
        """Read the value. If inside an evaluation, registers the dependency."""
        self._graph._track(self)
        return self.peek()

    def peek(self) -> T:
        """Read the value without registering a dependency."""
        if self._value is UNSET:
            raise UnsetValueError(f"{self.label} has no value")
        return self._value

    def set(self, value: T) -> None:
        """Write a new value. Marshals from background threads."""
        if self._graph._should_marshal():
            self._graph._marshal(lambda v=value: self._write(v))
        else:
            self._write(value)

    def update(self, fn: Callable[[T], T]) -> None:
        """Set the value to fn(current value)."""
        self.set(fn(self.peek()))

    def unset(self) -> None:
        """Return to the unset state. Readers see UnsetValueError."""
        if self._graph._should_marshal():
            self._graph._marshal(lambda: self._write(UNSET))
        else:
            self._write(UNSET)

    def _write(self, value) -> None:
        """Store and invalidate. Always runs on the owner thread."""
        old = self._value
        if old is value:
            return
        if old is not UNSET and value is not UNSET and self._equals(old, value):
            return
        self._value = value
        self._revision += 1
        with self._graph.batch():
            self._graph._invalidate(self._observers)

    def _refresh(self) -> None:
        """Values are always current."""

    def __repr__(self) -> str:
        return f"Value({self._value!r})"
