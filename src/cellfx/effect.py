"""Effects — side effects triggered by reactive state changes.

Unlike Derived (which is lazy and only evaluates on read), an Effect runs
eagerly: once when it is created, then once at the end of every update
cycle in which something it read moved to a new revision.

Two flavors:
- effect(fn): runs fn immediately, re-runs when anything it read changes.
- reaction(data_fn, effect_fn): tracks data_fn, calls effect_fn with the new
  value only when data_fn's result changes.
"""

from __future__ import annotations

import itertools
import logging
from typing import Callable, TypeVar

from cellfx._errors import SilentError
from cellfx._graph import Graph, _Consumer, default_equals, get_graph

T = TypeVar("T")

logger = logging.getLogger(__name__)

_ids = itertools.count(1)


class Effect(_Consumer):
    """A reactive side effect that re-runs when its dependencies change.

    Effects run eagerly (unlike Derived which is lazy). Within one flush
    round, higher ``priority`` runs first; ties run in creation order.
    """

    __slots__ = (
        "_graph", "_fn", "_seq", "_sources", "_previous", "_stale", "_ran",
        "_suspended", "_disposed", "priority", "run_count", "error", "label",
    )

    def __init__(
        self,
        fn: Callable[[], None],
        *,
        priority: int = 0,
        label: str | None = None,
        graph: Graph | None = None,
    ) -> None:
        self._graph = graph or get_graph()
        self._fn = fn
        self._seq = next(self._graph._seq)
        self._sources: dict = {}
        self._previous: dict = {}
        self._stale = False
        self._ran = False
        self._suspended = False
        self._disposed = False
        self.priority = priority
        self.run_count = 0
        self.error: Exception | None = None
        name = getattr(fn, "__name__", "<lambda>")
        self.label = label or (name if name != "<lambda>" else f"Effect#{next(_ids)}")
        self._graph._register(self)

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def suspended(self) -> bool:
        return self._suspended

    def _on_stale(self) -> tuple:
        if not self._suspended and not self._disposed:
            self._graph._enqueue(self)
        return ()

    def _run_if_needed(self) -> bool:
        """Called by the flush loop. Returns True if the body ran."""
        if self._disposed or self._suspended or not self._stale:
            return False
        try:
            changed = not self._ran or self._sources_changed()
        except Exception:
            self._stale = False
            raise
        if not changed:
            self._stale = False
            return False
        self._run()
        return True

    def _run(self) -> None:
        """Run the body, re-tracking dependencies."""
        self._evaluate(self._fn)

    def _evaluate(self, fn: Callable[[], T]) -> T:
        self._previous = self._sources
        self._drop_sources()
        self._stale = False
        self._ran = True
        self.run_count += 1
        try:
            result = self._graph._evaluate(self, fn)
        except SilentError:
            self.error = None
            raise
        except Exception as exc:
            self.error = exc
            raise
        finally:
            self._previous = {}
        self.error = None
        return result

    def retain(self) -> None:
        """Keep the previous run's dependencies.

        Call from inside the body when it skips its work, so the effect keeps
        listening to what it read last time. Derived sources are brought up
        to date first: a stale source would stop later invalidations before
        they reach this effect.
        """
        for producer, seen in self._previous.items():
            if producer not in self._sources:
                producer._refresh()
                self._sources[producer] = seen
                producer._observers.add(self)

    def _start(self) -> None:
        """Initial run. Sets made by the body flush after it returns."""
        try:
            with self._graph.batch():
                self._run()
        except SilentError:
            pass

    def suspend(self) -> None:
        """Stop reacting until resume(). Changes meanwhile are remembered."""
        self._suspended = True
        self._graph._pending.discard(self)

    def resume(self) -> None:
        """Resume reacting. Runs now if something changed while suspended."""
        if not self._suspended or self._disposed:
            return
        self._suspended = False
        if self._stale:
            with self._graph.batch():
                self._graph._enqueue(self)

    def dispose(self) -> None:
        """Stop this effect. Disconnects from all dependencies."""
        if self._disposed:
            return
        self._disposed = True
        self._drop_sources()
        self._graph._unregister(self)
        logger.debug("Disposed effect %s", self.label)

    def __repr__(self) -> str:
        if self._disposed:
            state = "disposed"
        elif self._suspended:
            state = "suspended"
        else:
            state = "active"
        return f"Effect({self.label}, {state})"


class Reaction(Effect):
    """reaction(data_fn, effect_fn) implementation.

    Tracks data_fn's dependencies. When they change, re-runs data_fn.
    If the result differs from last time, calls effect_fn with the new value,
    untracked.
    """

    __slots__ = ("_effect_fn", "_equals", "_last_value", "_initialized", "_fire_immediately")

    def __init__(
        self,
        data_fn: Callable[[], T],
        effect_fn: Callable[[T], None],
        *,
        fire_immediately: bool = False,
        equals: Callable[[T, T], bool] | None = None,
        priority: int = 0,
        label: str | None = None,
        graph: Graph | None = None,
    ) -> None:
        super().__init__(data_fn, priority=priority, label=label, graph=graph)
        self._effect_fn = effect_fn
        self._equals = equals or default_equals
        self._last_value = None
        self._initialized = False
        self._fire_immediately = fire_immediately

    def _run(self) -> None:
        new_value = self._evaluate(self._fn)
        if self._initialized and self._equals(self._last_value, new_value):
            return
        first = not self._initialized
        self._last_value = new_value
        self._initialized = True
        if first and not self._fire_immediately:
            return
        try:
            self._graph.untracked(self._effect_fn, new_value)
        except SilentError:
            self.error = None
            raise
        except Exception as exc:
            self.error = exc
            raise

    def __repr__(self) -> str:
        return "Reaction" + super().__repr__()[len("Effect"):]


def effect(
    fn: Callable[[], None] | None = None,
    *,
    priority: int = 0,
    label: str | None = None,
    graph: Graph | None = None,
):
    """Run fn immediately, then re-run whenever anything it reads changes.

    Returns the Effect (call .dispose() to stop). Works as a plain call or a
    decorator, with or without arguments.

    Usage:
        counter = Value(0)
        log = []

        e = effect(lambda: log.append(counter.get()))
        # log == [0]: ran immediately

        counter.set(1)
        # log == [0, 1]: re-ran because counter changed

        e.dispose()
        counter.set(2)
        # log == [0, 1]: stopped
    """

    def _create(f: Callable[[], None]) -> Effect:
        e = Effect(f, priority=priority, label=label, graph=graph)
        e._start()
        return e

    if fn is None:
        return _create
    return _create(fn)


def reaction(
    data_fn: Callable[[], T],
    effect_fn: Callable[[T], None],
    *,
    fire_immediately: bool = False,
    equals: Callable[[T, T], bool] | None = None,
    priority: int = 0,
    label: str | None = None,
    graph: Graph | None = None,
) -> Reaction:
    """Track data_fn's values; call effect_fn when the result changes.

    Unlike effect, effect_fn only fires when data_fn's *return value* changes,
    not on every dependency notification. effect_fn itself is untracked.

    Returns the reaction (call .dispose() to stop).

    Usage:
        first = Value("Alice")
        last = Value("Smith")

        effects = []
        r = reaction(
            lambda: f"{first.get()} {last.get()}",
            lambda name: effects.append(name),
        )
        # effects == []: data_fn ran to establish deps, effect didn't fire yet

        first.set("Bob")
        # effects == ["Bob Smith"]

        r.dispose()
    """
    r = Reaction(
        data_fn,
        effect_fn,
        fire_immediately=fire_immediately,
        equals=equals,
        priority=priority,
        label=label,
        graph=graph,
    )
    r._start()
    return r
