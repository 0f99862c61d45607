"""ReactiveValues — keyed Value container with effect lifecycle.

A ReactiveValues wraps a schema of named Values and manages the effects
registered against them. reconcile() supports schema evolution: add new
keys and re-register effects without losing existing values.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from cellfx._graph import Graph, get_graph
from cellfx.cell import UNSET, Value

logger = logging.getLogger(__name__)


class ReactiveValues:
    """Key-based Value container with effect lifecycle.

    Keys come from the schema and can be added later through set() or
    reconcile(). Reading a key that does not exist yet creates an unset
    placeholder for it, so the reader re-runs once the key is set. Unset
    placeholders are not reported by ``in`` or keys().
    """

    def __init__(
        self,
        schema: dict[str, object],
        initial: dict | None = None,
        *,
        graph: Graph | None = None,
    ) -> None:
        self._graph = graph or get_graph()
        self._cells: dict[str, Value] = {}
        self._disposers: list = []
        for key, default in schema.items():
            value = initial.get(key, default) if initial else default
            self._add(key, value)

    def _add(self, key: str, value) -> Value:
        cell = Value(value, label=key, graph=self._graph)
        self._cells[key] = cell
        return cell

    def cell(self, key: str) -> Value:
        """The underlying Value for key. Raises KeyError if unknown."""
        return self._cells[key]

    def get(self, key: str, default=None) -> object:
        """Tracked read; default when the key is unknown or unset."""
        cell = self._cells.get(key)
        if cell is None:
            cell = self._add(key, UNSET)
        if not cell.is_set():
            # still a dependency: the reader re-runs once the key is set
            self._graph._track(cell)
            return default
        return cell.get()

    def set(self, key: str, value: object) -> None:
        """Set a key, creating its Value on first use."""
        cell = self._cells.get(key)
        if cell is None:
            self._add(key, value)
        else:
            cell.set(value)

    def update(self, values: dict) -> None:
        """Set several keys as one update cycle."""
        with self._graph.batch():
            for key, value in values.items():
                self.set(key, value)

    def __getitem__(self, key: str) -> object:
        cell = self._cells.get(key)
        if cell is None:
            cell = self._add(key, UNSET)
        if not cell.is_set():
            self._graph._track(cell)
            raise KeyError(key)
        return cell.get()

    def __setitem__(self, key: str, value: object) -> None:
        self.set(key, value)

    def __contains__(self, key: str) -> bool:
        cell = self._cells.get(key)
        return cell is not None and cell.is_set()

    def keys(self) -> list[str]:
        return [k for k, c in self._cells.items() if c.is_set()]

    def snapshot(self) -> dict[str, object]:
        """Untracked copy of every set key."""
        return {k: c.peek() for k, c in self._cells.items() if c.is_set()}

    def reconcile(
        self,
        schema: dict[str, object],
        setup_fn: Callable[[ReactiveValues], Iterable | None],
    ) -> None:
        """Schema evolution: add new keys, re-register effects.

        Existing values are untouched. New keys get defaults. Old effects are
        disposed. setup_fn(values) -> list[disposable] registers new ones. If
        setup_fn raises, the failure is logged and the container keeps its
        values with no effects registered.
        """
        new_keys = [key for key in schema if key not in self]
        with self._graph.batch():
            for key in new_keys:
                self.set(key, schema[key])

        old_count = len(self._disposers)
        self._dispose_effects()

        try:
            self._disposers = list(setup_fn(self) or [])
        except Exception:
            logger.exception("Failed to register effects during reconcile")
            self._disposers = []
            return
        logger.info(
            "Reconciled: %d new keys, %d->%d effects",
            len(new_keys), old_count, len(self._disposers),
        )

    def _dispose_effects(self) -> None:
        for d in self._disposers:
            d.dispose()
        self._disposers.clear()

    def dispose(self) -> None:
        self._dispose_effects()

    def __repr__(self) -> str:
        shown = {k: c._value for k, c in self._cells.items() if c._value is not UNSET}
        return f"ReactiveValues({shown!r})"
