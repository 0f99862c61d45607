"""Actions, transactions and reactivity helpers.

Wrapping mutations in an @action or `with transaction()` makes them one
update cycle: effects run once, after the outermost scope exits. This
prevents glitchy intermediate states where some dependents have updated
but others haven't yet.
"""

from __future__ import annotations

import functools
from contextlib import contextmanager
from typing import Callable, ParamSpec, TypeVar

from cellfx._errors import SilentError
from cellfx._graph import Graph, get_graph

P = ParamSpec("P")
R = TypeVar("R")


def action(fn: Callable[P, R] | None = None, *, graph: Graph | None = None):
    """Decorator: run all value mutations inside fn as one update cycle.

    Effects only fire after fn returns, not during.

    Usage:
        counter_a = Value(0)
        counter_b = Value(0)

        @action
        def swap():
            a, b = counter_a.get(), counter_b.get()
            counter_a.set(b)
            counter_b.set(a)
            # effects see both changes at once, not one at a time
    """

    def decorate(f: Callable[P, R]) -> Callable[P, R]:
        @functools.wraps(f)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            with (graph or get_graph()).batch():
                return f(*args, **kwargs)

        return wrapper

    if fn is None:
        return decorate
    return decorate(fn)


@contextmanager
def transaction(graph: Graph | None = None):
    """Context manager for batching mutations into one update cycle.

    Usage:
        with transaction():
            counter_a.set(1)
            counter_b.set(2)
            # effects fire here, after both are set
    """
    with (graph or get_graph()).batch() as g:
        yield g


def isolate(fn: Callable[[], R] | None = None, *, graph: Graph | None = None):
    """Read without registering dependencies.

    With fn, call it untracked and return its result. Without, return a
    context manager:

        with isolate():
            label = name.get()   # no dependency on name
    """
    g = graph or get_graph()
    if fn is None:
        return g.isolate()
    return g.untracked(fn)


def req(*values):
    """Stop the current computation quietly unless every value is truthy.

    Returns the first value, so ``x = req(cell.get())`` reads naturally.
    """
    for value in values:
        if not value:
            raise SilentError("requirement not met")
    return values[0] if values else None
