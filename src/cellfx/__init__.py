"""cellfx: a small lazy/eager reactive-evaluation engine for Python."""

from importlib.metadata import version as _version

__version__ = _version("cellfx")

from cellfx._errors import (
    CellfxError,
    ConfigError,
    DependencyCycleError,
    DisposedError,
    RunawayCycleError,
    SilentError,
    UnsetValueError,
)
from cellfx._graph import Graph, get_graph, use_graph
from cellfx.config import GraphConfig
from cellfx.cell import UNSET, Value
from cellfx.derived import Derived, derived
from cellfx.effect import Effect, Reaction, effect, reaction
from cellfx.action import action, transaction, isolate, req
from cellfx.values import ReactiveValues
# textual NOT auto-imported: opt-in only

__all__ = [
    "Graph",
    "GraphConfig",
    "get_graph",
    "use_graph",
    "Value",
    "UNSET",
    "Derived",
    "derived",
    "Effect",
    "Reaction",
    "effect",
    "reaction",
    "action",
    "transaction",
    "isolate",
    "req",
    "ReactiveValues",
    "CellfxError",
    "ConfigError",
    "DependencyCycleError",
    "DisposedError",
    "RunawayCycleError",
    "SilentError",
    "UnsetValueError",
]
