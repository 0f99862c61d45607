"""Textual integration for cellfx. Opt-in — requires textual.

Guard, NoMatches handling and thread marshaling are enforced here, not at
callsites. Textual coupling stays in this module; the core is agnostic.
Pause state has a single owner (this module): an app id is present in
_paused_apps exactly while inside its pause() block. Work skipped while an
app is unsafe is held per app and replayed once it is safe again.
"""

import threading
from contextlib import contextmanager

from textual.css.query import NoMatches

from cellfx._graph import get_graph
from cellfx.effect import effect as _effect, reaction as _reaction

# Module-owned pause state: keyed by id(app) so multiple apps work in tests.
_paused_apps: set[int] = set()

# id(app) -> {guard: replay callback}. One entry per guard, latest wins.
_held: dict[int, dict] = {}


@contextmanager
def pause(app):
    """Suspend guarded effects during widget replacement.

    Effects and reactions skipped inside the block catch up when it exits.
    """
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)
        replay(app)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


def replay(app) -> int:
    """Run the work held for app while it was unsafe. Returns how many ran.

    pause() calls this on exit. Call it yourself once an app that was not
    running has started.
    """
    if not is_safe(app):
        return 0
    held = _held.pop(id(app), {})
    for callback in held.values():
        callback()
    return len(held)


def _hold(app, guard, callback) -> None:
    _held.setdefault(id(app), {})[guard] = callback


def bind(app, graph=None):
    """Route off-thread Value.set() calls through app.call_from_thread.

    Call from the app's thread, typically in on_mount.
    """
    graph = graph or get_graph()
    graph.set_scheduler(app.call_from_thread)
    return graph


def reaction(app, data_fn, effect_fn, *, fire_immediately=False, graph=None):
    """reaction() that safely bridges to Textual widgets.

    Guards against firing during pause/not-running, catches NoMatches
    from widget queries, and marshals cross-thread calls via call_from_thread.
    A value produced while unsafe is delivered by replay(); only the latest
    one is kept.
    """
    _main = threading.get_ident()
    handle = []

    def _guarded(value):
        if not is_safe(app):
            _hold(app, _guarded, lambda: _deliver(value))
            return
        if threading.get_ident() != _main:
            app.call_from_thread(_safe, value)
        else:
            _safe(value)

    def _deliver(value):
        if handle and not handle[0].disposed:
            _safe(value)

    def _safe(value):
        try:
            effect_fn(value)
        except NoMatches:
            pass

    handle.append(
        _reaction(data_fn, _guarded, fire_immediately=fire_immediately, graph=graph)
    )
    return handle[0]


def effect(app, fn, *, graph=None):
    """effect() that safely bridges to Textual widgets.

    Guards against firing during pause/not-running, catches NoMatches
    from widget queries, and marshals cross-thread calls via call_from_thread.
    Skipped runs keep the dependencies of the last run that reached fn, and
    replay() re-runs the effect if any of them changed meanwhile.
    """
    _main = threading.get_ident()
    handle = []

    def _guarded():
        if not is_safe(app):
            if handle:
                handle[0].retain()
                _hold(app, _guarded, _rerun)
            return
        if threading.get_ident() != _main:
            app.call_from_thread(_safe)
            handle[0].retain()
        else:
            _safe()

    def _rerun():
        e = handle[0]
        if e.disposed:
            return
        with e._graph.batch():
            e._graph._invalidate([e])

    def _safe():
        try:
            fn()
        except NoMatches:
            pass

    _guarded.__name__ = getattr(fn, "__name__", "<lambda>")
    handle.append(_effect(_guarded, graph=graph))
    return handle[0]
