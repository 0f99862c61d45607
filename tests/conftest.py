"""Shared test fixtures for cellfx."""

from __future__ import annotations

import pytest

from cellfx import Graph, GraphConfig
from cellfx._graph import current_graph


@pytest.fixture(autouse=True)
def graph() -> Graph:
    """A fresh graph installed as the current graph for each test."""
    g = Graph(GraphConfig(name="test"))
    token = current_graph.set(g)
    yield g
    current_graph.reset(token)
    g.dispose()
