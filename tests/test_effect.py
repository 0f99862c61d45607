"""Tests for Effect, effect, and reaction."""

import pytest

from cellfx import Derived, Effect, GraphConfig, SilentError, Value, effect, reaction, req, transaction


class TestEffect:
    def test_runs_immediately(self):
        v = Value(10)
        log = []
        effect(lambda: log.append(v.get()))
        assert log == [10]

    def test_reruns_on_change(self):
        v = Value(10)
        log = []
        effect(lambda: log.append(v.get()))
        v.set(20)
        assert log == [10, 20]

    def test_ignores_unrelated_values(self):
        watched = Value(1)
        other = Value(1)
        log = []
        effect(lambda: log.append(watched.get()))
        other.set(2)
        assert log == [1]

    def test_runs_once_per_cycle(self):
        a = Value(1)
        b = Derived(lambda: a.get() + 1)
        c = Derived(lambda: a.get() * 2)
        log = []
        effect(lambda: log.append((b.get(), c.get())))
        with transaction():
            a.set(2)
            a.set(3)
        assert log == [(2, 2), (4, 6)]

    def test_skipped_when_derived_result_unchanged(self):
        n = Value(1)
        parity = Derived(lambda: n.get() % 2)
        log = []
        e = effect(lambda: log.append(parity.get()))
        n.set(3)
        assert log == [1]
        assert e.run_count == 1
        n.set(4)
        assert log == [1, 0]

    def test_dispose_stops(self):
        v = Value(10)
        log = []
        e = effect(lambda: log.append(v.get()))
        e.dispose()
        v.set(20)
        assert log == [10]  # no additional run
        assert e.disposed

    def test_decorator_forms(self):
        v = Value(1)
        log = []

        @effect
        def plain():
            log.append(("plain", v.get()))

        @effect(priority=5, label="loud")
        def prioritized():
            log.append(("loud", v.get()))

        assert isinstance(plain, Effect)
        assert prioritized.label == "loud"
        log.clear()
        v.set(2)
        assert log == [("loud", 2), ("plain", 2)]

    def test_priority_then_creation_order(self):
        v = Value(0)
        order = []
        effect(lambda: v.get() and order.append("first"))
        effect(lambda: v.get() and order.append("urgent"), priority=10)
        effect(lambda: v.get() and order.append("second"))
        v.set(1)
        assert order == ["urgent", "first", "second"]

    def test_effect_setting_value_runs_in_same_cycle(self, graph):
        source = Value(1)
        mirror = Value(0)
        log = []
        effect(lambda: mirror.set(source.get() * 10))
        effect(lambda: log.append(mirror.get()))
        cycles = graph.cycle_count
        source.set(2)
        assert log == [10, 20]
        assert graph.cycle_count == cycles + 1

    def test_effect_reading_what_it_writes_settles(self):
        v = Value(0)
        e = effect(lambda: v.set(min(v.get() + 1, 3)))
        assert v.get() == 3
        assert e.run_count == 4

    def test_suspend_and_resume(self):
        v = Value(1)
        log = []
        e = effect(lambda: log.append(v.get()))
        e.suspend()
        assert e.suspended
        v.set(2)
        v.set(3)
        assert log == [1]
        e.resume()
        assert log == [1, 3]
        v.set(4)
        assert log == [1, 3, 4]

    def test_resume_without_changes_does_not_run(self):
        v = Value(1)
        log = []
        e = effect(lambda: log.append(v.get()))
        e.suspend()
        e.resume()
        assert log == [1]

    def test_req_stops_quietly(self):
        name = Value("")
        log = []
        e = effect(lambda: log.append(req(name.get())))
        assert log == []
        assert e.error is None
        name.set("ada")
        assert log == ["ada"]

    def test_retain_keeps_dependencies(self):
        v = Value(1)
        skip = Value(False)
        log = []
        holder = []

        def body():
            if skip.peek():
                holder[0].retain()
                return
            log.append(v.get())

        holder.append(effect(body))
        skip.set(True)
        v.set(2)  # runs body, which skips but keeps listening to v
        skip.set(False)
        v.set(3)
        assert log == [1, 3]

    def test_retain_keeps_derived_dependencies_listening(self):
        x = Value(0)
        y = Value(0)
        dy = Derived(lambda: y.get() * 10)
        skip = Value(False)
        log = []
        holder = []

        def body():
            if skip.peek():
                holder[0].retain()
                return
            log.append((x.get(), dy.get()))

        holder.append(effect(body))
        skip.set(True)
        with transaction():
            x.set(1)
            y.set(1)
        skip.set(False)
        y.set(2)
        assert log == [(0, 0), (1, 20)]


class TestEffectErrors:
    def test_failure_does_not_abort_other_effects(self, graph):
        graph.config = GraphConfig(raise_effect_errors=False)
        v = Value(1)
        log = []

        def broken():
            if v.get() > 1:
                raise ValueError("boom")

        e = effect(broken)
        effect(lambda: log.append(v.get()))
        v.set(2)
        assert log == [1, 2]
        assert isinstance(e.error, ValueError)

    def test_failure_reraised_after_cycle(self):
        v = Value(1)
        log = []

        def broken():
            if v.get() > 1:
                raise ValueError("boom")

        effect(broken, priority=1)
        effect(lambda: log.append(v.get()))
        with pytest.raises(ValueError, match="boom"):
            v.set(2)
        assert log == [1, 2]  # the other effect still ran

    def test_failure_is_logged(self, graph, caplog):
        graph.on_error = lambda eff, exc: None
        v = Value(1)

        def broken():
            if v.get() > 1:
                raise RuntimeError("bad")

        effect(broken)
        with caplog.at_level("ERROR", logger="cellfx._graph"):
            v.set(2)
        assert "Effect broken failed" in caplog.text

    def test_on_error_handler_receives_failures(self, graph):
        seen = []
        graph.on_error = lambda eff, exc: seen.append((eff.label, str(exc)))
        v = Value(1)

        def broken():
            if v.get() > 1:
                raise ValueError("boom")

        effect(broken)
        v.set(2)  # does not raise
        assert seen == [("broken", "boom")]

    def test_failing_on_error_handler_does_not_end_round(self, graph, caplog):
        def handler(eff, exc):
            raise RuntimeError("handler broke")

        graph.on_error = handler
        v = Value(1)
        log = []

        def broken():
            if v.get() > 1:
                raise ValueError("boom")

        effect(broken, priority=1)
        effect(lambda: log.append(v.get()))
        with caplog.at_level("ERROR", logger="cellfx._graph"):
            v.set(2)
        assert log == [1, 2]
        assert "on_error handler failed for effect broken" in caplog.text

    def test_failed_effect_recovers(self):
        v = Value(1)
        log = []

        def picky():
            if v.get() == 2:
                raise ValueError("two")
            log.append(v.get())

        e = effect(picky)
        with pytest.raises(ValueError):
            v.set(2)
        v.set(3)
        assert log == [1, 3]
        assert e.error is None

    def test_initial_failure_propagates(self):
        with pytest.raises(KeyError):
            effect(lambda: {}["missing"])

    def test_silent_error_is_not_reported(self, graph):
        seen = []
        graph.on_error = lambda eff, exc: seen.append(exc)
        v = Value(1)

        def guarded():
            if v.get() > 1:
                raise SilentError("not yet")

        effect(guarded)
        v.set(2)
        assert seen == []


class TestReaction:
    def test_no_initial_effect(self):
        """Without fire_immediately, effect doesn't run on setup."""
        v = Value("a")
        effects = []
        reaction(lambda: v.get(), lambda x: effects.append(x))
        assert effects == []

    def test_fires_on_change(self):
        v = Value("a")
        effects = []
        reaction(lambda: v.get(), lambda x: effects.append(x))
        v.set("b")
        assert effects == ["b"]

    def test_fire_immediately(self):
        v = Value("a")
        effects = []
        reaction(lambda: v.get(), lambda x: effects.append(x), fire_immediately=True)
        assert effects == ["a"]

    def test_dedup_effect(self):
        """Effect only fires when data_fn result actually changes."""
        v = Value(1)
        effects = []
        reaction(
            lambda: "even" if v.get() % 2 == 0 else "odd",
            lambda x: effects.append(x),
        )
        v.set(3)  # still odd
        assert effects == []
        v.set(4)  # now even
        assert effects == ["even"]

    def test_effect_fn_is_untracked(self):
        trigger = Value(0)
        other = Value("x")
        effects = []
        reaction(lambda: trigger.get(), lambda t: effects.append((t, other.get())))
        trigger.set(1)
        other.set("y")
        assert effects == [(1, "x")]

    def test_dispose(self):
        v = Value(1)
        effects = []
        r = reaction(lambda: v.get(), lambda x: effects.append(x))
        v.set(2)
        assert effects == [2]
        r.dispose()
        v.set(3)
        assert effects == [2]  # no more effects
        assert "disposed" in repr(r)
