"""Derived values — memoized computations with automatic dependency tracking.

A Derived wraps a function. When evaluated, it records which values and
derived nodes the function reads, with their revisions, and caches the
outcome. When any dependency changes, the node is only marked stale. On the
next read it refreshes its derived sources and re-evaluates only if one of
them actually moved to a new revision.

Derived values are lazy: they only recompute when read. Failures are
cached exactly like values.
"""

from __future__ import annotations

import itertools
from typing import Callable, Generic, TypeVar, overload

from cellfx._errors import DependencyCycleError, DisposedError
from cellfx._graph import Graph, _Consumer, default_equals, get_graph

T = TypeVar("T")

_ids = itertools.count(1)

_UNSET = object()


class Derived(_Consumer, Generic[T]):
    """A derived value that auto-tracks dependencies and caches the result."""

    __slots__ = (
        "_graph", "_fn", "_equals", "_value", "_error", "_revision",
        "_sources", "_observers", "_stale", "_evaluated", "_forced",
        "_computing", "_disposed", "compute_count", "label",
    )

    def __init__(
        self,
        fn: Callable[[], T],
        *,
        equals: Callable[[T, T], bool] | None = None,
        label: str | None = None,
        graph: Graph | None = None,
    ) -> None:
        self._graph = graph or get_graph()
        self._fn = fn
        self._equals = equals or default_equals
        self._value = _UNSET
        self._error: Exception | None = None
        self._revision = 0
        self._sources: dict = {}
        self._observers: set = set()
        self._stale = False
        self._evaluated = False
        self._forced = False
        self._computing = False
        self._disposed = False
        self.compute_count = 0
        name = getattr(fn, "__name__", "<lambda>")
        self.label = label or (name if name != "<lambda>" else f"Derived#{next(_ids)}")

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def stale(self) -> bool:
        return self._stale or not self._evaluated

    def get(self) -> T:
        """Read the derived value. Recomputes if a dependency changed.

        Re-raises the cached failure when the last evaluation failed.
        """
        if self._disposed:
            raise DisposedError(f"{self.label} is disposed")
        self._refresh()
        self._graph._track(self)
        if self._error is not None:
            raise self._error
        return self._value

    def peek(self) -> T:
        """Read without registering a dependency."""
        with self._graph.isolate():
            return self.get()

    def _refresh(self) -> None:
        if self._disposed:
            return
        if self._computing:
            raise DependencyCycleError(self._graph._active_path(self))
        if self._evaluated and not self._stale and not self._forced:
            return
        if self._evaluated and not self._forced and not self._sources_changed():
            self._stale = False
            return
        self._recompute()

    def _recompute(self) -> None:
        """Re-evaluate the function, tracking dependencies from scratch."""
        self._drop_sources()
        self._stale = False
        self._forced = False
        self._computing = True
        self.compute_count += 1
        try:
            value = self._graph._evaluate(self, self._fn)
        except DependencyCycleError:
            self._evaluated = False
            raise
        except Exception as exc:
            self._error = exc
            self._value = _UNSET
            changed = True
        else:
            changed = (
                not self._evaluated
                or self._error is not None
                or not self._equals(self._value, value)
            )
            self._error = None
            self._value = value
        finally:
            self._computing = False
        self._evaluated = True
        if changed:
            self._revision += 1

    def _on_stale(self) -> list:
        return list(self._observers)

    def invalidate(self) -> None:
        """Force the next read to re-evaluate, and mark dependents stale."""
        if self._disposed:
            return
        self._forced = True
        with self._graph.batch():
            self._graph._invalidate(self._observers)

    def dispose(self) -> None:
        """Disconnect from all dependencies. Later reads raise DisposedError."""
        if self._disposed:
            return
        self._disposed = True
        self._drop_sources()
        self._value = _UNSET
        self._error = None
        self._revision += 1
        observers, self._observers = self._observers, set()
        with self._graph.batch():
            self._graph._invalidate(observers)

    def __repr__(self) -> str:
        if self._disposed:
            state = "disposed"
        elif self.stale:
            state = "stale"
        elif self._error is not None:
            state = f"failed={self._error!r}"
        else:
            state = f"cached={self._value!r}"
        return f"Derived({self.label}, {state})"


@overload
def derived(fn: Callable[[], T]) -> Derived[T]: ...


@overload
def derived(
    fn: None = None,
    *,
    equals: Callable[[T, T], bool] | None = None,
    label: str | None = None,
    graph: Graph | None = None,
) -> Callable[[Callable[[], T]], Derived[T]]: ...


def derived(fn=None, *, equals=None, label=None, graph=None):
    """Decorator/factory to create a Derived from a function.

    Usage:
        counter = Value(0)

        @derived
        def doubled():
            return counter.get() * 2

        doubled.get()  # 0
        counter.set(5)
        doubled.get()  # 10
    """
    if fn is None:
        return lambda f: Derived(f, equals=equals, label=label, graph=graph)
    return Derived(fn, equals=equals, label=label, graph=graph)
