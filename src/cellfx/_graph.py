"""Dependency tracking engine — the heart of cellfx.

A Graph is the evaluation context. It owns the stack of nodes currently
being evaluated: any Value.get() or Derived.get() while a node is on the
stack registers an edge from that node to the producer read.

Batching: every mutation happens inside an update cycle. Mutations inside
graph.batch(), @action or `with transaction()` share one cycle; a bare
Value.set() is a cycle of its own. Stale effects are queued and run once
when the outermost cycle closes.
"""

from __future__ import annotations

import contextvars
import itertools
import logging
import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Callable, Iterable, TypeVar

from cellfx._errors import RunawayCycleError, SilentError
from cellfx.config import GraphConfig

if TYPE_CHECKING:
    from cellfx.effect import Effect

T = TypeVar("T")

logger = logging.getLogger(__name__)

ErrorHandler = Callable[["Effect", Exception], None]


def default_equals(old: object, new: object) -> bool:
    """Identity, then ==. A comparison that raises counts as "different"."""
    if old is new:
        return True
    try:
        return bool(old == new)
    except Exception:
        return False


class _Consumer:
    """Dependency bookkeeping shared by Derived and Effect.

    ``_sources`` maps each producer read during the last evaluation to the
    producer's revision at the time of the read. It is rebuilt from scratch
    on every evaluation.
    """

    __slots__ = ()

    def _add_source(self, producer) -> None:
        if producer not in self._sources:
            self._sources[producer] = producer._revision
            producer._observers.add(self)

    def _drop_sources(self) -> None:
        for producer in self._sources:
            producer._observers.discard(self)
        self._sources = {}

    def _sources_changed(self) -> bool:
        """Bring derived sources up to date, then compare revisions."""
        for producer, seen in list(self._sources.items()):
            producer._refresh()
            if producer._revision != seen:
                return True
        return False


class Graph:
    """Evaluation context: evaluation stack, effect queue and batch depth.

    Args:
        config: Graph configuration. Defaults to ``GraphConfig()``.
        on_error: Called as ``on_error(effect, exc)`` for every effect failure.
            When given, failures are not re-raised at cycle end.

    """

    def __init__(
        self,
        config: GraphConfig | None = None,
        *,
        on_error: ErrorHandler | None = None,
    ) -> None:
        self.config = config or GraphConfig()
        self.on_error = on_error
        self.cycle_count = 0
        # None entries mask the consumer below them (isolated reads).
        self._stack: list[_Consumer | None] = []
        self._batch_depth = 0
        self._flushing = False
        self._pending: set[Effect] = set()
        self._effects: set[Effect] = set()
        self._seq = itertools.count(1)
        self._scheduler: Callable[[Callable[[], None]], Any] | None = None
        self._scheduler_thread: threading.Thread | None = None

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def pending_count(self) -> int:
        """Number of effects waiting for the end of the cycle. Useful for testing."""
        return len(self._pending)

    @property
    def in_batch(self) -> bool:
        return self._batch_depth > 0

    # ─── Tracking ────────────────────────────────────────────────────────

    def _track(self, producer) -> None:
        """Register producer as a source of the currently evaluating node."""
        if self._stack:
            consumer = self._stack[-1]
            if consumer is not None:
                consumer._add_source(producer)

    def _evaluate(self, consumer: _Consumer, fn: Callable[[], T]) -> T:
        self._stack.append(consumer)
        try:
            return fn()
        finally:
            self._stack.pop()

    def _active_path(self, node) -> list[str]:
        active = [n for n in self._stack if n is not None]
        start = active.index(node) if node in active else 0
        return [n.label for n in active[start:]] + [node.label]

    @contextmanager
    def isolate(self):
        """Read values inside the block without registering dependencies."""
        self._stack.append(None)
        try:
            yield
        finally:
            self._stack.pop()

    def untracked(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Call fn without registering dependencies."""
        with self.isolate():
            return fn(*args, **kwargs)

    # ─── Invalidation ────────────────────────────────────────────────────

    def _invalidate(self, observers: Iterable[_Consumer]) -> None:
        """Mark observers stale, transitively, without recomputing anything.

        A node that is already stale stops the walk: its dependents were
        marked when it went stale.
        """
        todo = list(observers)
        while todo:
            node = todo.pop()
            if node._stale:
                continue
            node._stale = True
            todo.extend(node._on_stale())

    def _enqueue(self, effect: Effect) -> None:
        self._pending.add(effect)

    def _register(self, effect: Effect) -> None:
        self._effects.add(effect)

    def _unregister(self, effect: Effect) -> None:
        self._effects.discard(effect)
        self._pending.discard(effect)

    # ─── Update cycle ────────────────────────────────────────────────────

    @contextmanager
    def batch(self):
        """Run the block as one update cycle. Nested batches join the outermost."""
        self._batch_depth += 1
        try:
            yield self
        finally:
            self._end_batch()

    def run_cycle(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Call fn as one update cycle and return its result."""
        with self.batch():
            return fn(*args, **kwargs)

    def _end_batch(self) -> None:
        self._batch_depth -= 1
        if self._batch_depth == 0 and not self._flushing:
            self._flush()

    def _flush(self) -> None:
        """Run every pending effect. Handles effects queued during the flush.

        Sets performed by effects queue into the next round of this same
        cycle instead of recursing into a new one.
        """
        self._flushing = True
        self._batch_depth += 1
        errors: list[Exception] = []
        rounds = 0
        ran = 0
        try:
            while self._pending:
                rounds += 1
                if rounds > self.config.max_rounds:
                    stuck = sorted(e.label for e in self._pending)
                    self._pending.clear()
                    raise RunawayCycleError(
                        f"Effects did not settle after {self.config.max_rounds} rounds: "
                        + ", ".join(stuck)
                    )
                # Snapshot and clear: effects may queue new ones during run.
                batch = sorted(self._pending, key=lambda e: (-e.priority, e._seq))
                self._pending.clear()
                for effect in batch:
                    try:
                        if effect._run_if_needed():
                            ran += 1
                    except SilentError:
                        pass
                    except Exception as exc:
                        errors.append(exc)
                        logger.exception("Effect %s failed on %s", effect.label, self.name)
                        if self.on_error is not None:
                            self._report(effect, exc)
        finally:
            self._batch_depth -= 1
            self._flushing = False

        self.cycle_count += 1
        if ran:
            logger.debug(
                "Cycle %d on %s: %d effect run(s) in %d round(s)",
                self.cycle_count, self.name, ran, rounds,
            )
        if errors and self.on_error is None and self.config.raise_effect_errors:
            raise errors[0]

    def _report(self, effect: Effect, exc: Exception) -> None:
        """Hand a failure to on_error. A failing handler must not end the round."""
        try:
            self.on_error(effect, exc)
        except Exception:
            logger.exception("on_error handler failed for effect %s", effect.label)

    # ─── Threads ─────────────────────────────────────────────────────────

    def set_scheduler(self, scheduler: Callable[[Callable[[], None]], Any] | None) -> None:
        """Set the thread scheduler for cross-thread Value mutations.

        Call once from the owner thread:
            graph.set_scheduler(app.call_from_thread)

        After this, any Value.set() from another thread is handed to the
        scheduler, so cycles only start on the owner thread. Owner-thread
        mutations remain synchronous.
        """
        self._scheduler = scheduler
        self._scheduler_thread = threading.current_thread() if scheduler else None

    def _should_marshal(self) -> bool:
        return (
            self._scheduler is not None
            and threading.current_thread() is not self._scheduler_thread
        )

    def _marshal(self, fn: Callable[[], None]) -> None:
        self._scheduler(fn)

    # ─── Teardown ────────────────────────────────────────────────────────

    def dispose(self) -> None:
        """Tear down the session: dispose every effect and drop pending runs."""
        for effect in list(self._effects):
            effect.dispose()
        self._pending.clear()
        logger.debug("Disposed %s", self.name)

    def __repr__(self) -> str:
        return (
            f"Graph({self.name!r}, effects={len(self._effects)}, "
            f"pending={len(self._pending)})"
        )


# The graph used by nodes created without an explicit ``graph=``.
current_graph: contextvars.ContextVar[Graph | None] = contextvars.ContextVar(
    "current_graph", default=None
)

_default_graph: Graph | None = None


def get_graph() -> Graph:
    """The graph installed by use_graph(), else the process-wide default graph."""
    global _default_graph
    graph = current_graph.get()
    if graph is not None:
        return graph
    if _default_graph is None:
        _default_graph = Graph(GraphConfig(name="default"))
    return _default_graph


@contextmanager
def use_graph(graph: Graph):
    """Install graph as the current graph for the duration of the block."""
    token = current_graph.set(graph)
    try:
        yield graph
    finally:
        current_graph.reset(token)
