"""Tests for Derived cells: propagation, laziness and lifecycle."""

import pytest

from cellx import Derived, DerivedOptions, derive, derived, writable


class _ForeignStore:
    """Third-party store exposing only subscribe(), returning an object handle."""

    def __init__(self, cell):
        self._cell = cell

    def subscribe(self, run, invalidate=None):
        return _Handle(self._cell.subscribe(run, invalidate))


class _Handle:
    def __init__(self, cancel):
        self._cancel = cancel

    def unsubscribe(self):
        return self._cancel()


class TestSingleSource:
    def test_scenario(self):
        a = writable(1)
        b = derive(a, lambda x: 2 * x)
        runs = []
        invs = []

        b.subscribe(lambda v, p: runs.append((v, p)), lambda: invs.append(1))
        assert invs == []
        assert runs == [(2, 2)]

        a.invalidate()
        assert len(invs) == 1
        assert len(runs) == 1

        a.set(2)
        assert len(invs) == 1
        assert runs[-1] == (4, 2)

        a.set(3)
        assert len(invs) == 2
        assert runs[-1] == (6, 4)

        calls = []

        def halve(v, previous, previous_deps):
            calls.append((v, previous, previous_deps))
            return v / 2

        c = derive(b, halve)
        assert calls == []

        u = c.subscribe(lambda v, p: None)
        assert calls == [(6, None, 6)]

        a.set(1)
        assert calls[-1] == (2, 3, 6)

        u()  # forgets the current value
        assert len(calls) == 2

        c.subscribe(lambda v, p: None)
        assert calls[-1] == (2, None, 2)


class TestMultipleSources:
    def test_scenario(self):
        calls = []

        def add(values, previous, previous_values):
            calls.append((values, previous, previous_values))
            return values[0] + values[1]

        a = writable(1)
        b = writable(2)
        c = derive([a, b], add)
        assert calls == []

        assert c.get() == 3
        assert calls == [([1, 2], None, [1, 2])]
        assert not c.active

        runs = []
        u = c.subscribe(lambda v, p: runs.append((v, p)))
        assert len(calls) == 2
        assert calls[-1] == ([1, 2], None, [1, 2])
        assert runs == [(3, 3)]

        a.set(4)
        assert len(calls) == 3
        assert calls[-1] == ([4, 2], 3, [1, 2])
        assert runs[-1] == (6, 3)

        u()
        assert len(calls) == 3

    def test_tuple_sources(self):
        a = writable(1)
        b = writable(2)
        c = derive((a, b), lambda v: v[0] * v[1])
        assert c.get() == 2


class TestInitialValue:
    def test_foreign_source_with_initial(self):
        source = writable(0)
        a = _ForeignStore(source)
        b = derive(a, lambda x, prev: prev + x, initial=10)

        assert b.get() == 10

        runs = []
        u = b.subscribe(lambda v, p: runs.append((v, p)))
        assert runs == [(10, 10)]

        source.set(1)
        assert runs[-1] == (11, 10)

        source.set(10)
        assert runs[-1] == (21, 11)
        assert b.get() == 21

        u()
        for value in (1, 2, 3, -20):
            source.set(value)
        assert len(runs) == 3
        assert b.get() == -10  # reset to the initial 10

        source.set(5)
        c = derive([a, b], lambda v, prev: v[0] + v[1] + prev, initial=100)
        assert c.get() == 120

        c.subscribe(lambda v, p: runs.append((v, p)))
        assert c.get() == 120
        assert runs[-1] == (120, 120)

        source.set(10)
        assert b.get() == 25
        assert c.get() == 155


class TestDiamond:
    def test_no_glitch(self):
        s = writable(1)
        a = derive(s, lambda x: x + 1)
        b = derive(s, lambda x: x * 10)
        calls = []

        def combine(values):
            calls.append(tuple(values))
            return values[0] + values[1]

        c = derive([a, b], combine)
        runs = []
        c.subscribe(lambda v, p: runs.append(v))
        assert calls == [(2, 10)]

        s.set(2)
        assert calls == [(2, 10), (3, 20)]
        assert runs == [12, 23]

    def test_subscribers_see_invalidation_before_values(self):
        s = writable(1)
        a = derive(s, lambda x: x + 1)
        b = derive(s, lambda x: x - 1)
        log = []
        a.listen(lambda v, p: log.append(("a", v)), lambda: log.append("inv a"))
        b.listen(lambda v, p: log.append(("b", v)), lambda: log.append("inv b"))
        s.set(5)
        assert log == ["inv a", "inv b", ("a", 6), ("b", 4)]

    def test_three_inputs_wait_for_last(self):
        s = writable(1)
        x = derive(s, lambda v: v)
        y = derive(s, lambda v: v * 2)
        z = derive(s, lambda v: v * 3)
        calls = []
        total = derive([x, y, z], lambda v: calls.append(list(v)) or sum(v))
        total.subscribe(lambda v, p: None)
        s.set(2)
        assert calls == [[1, 2, 3], [2, 4, 6]]
        assert total.get() == 12

    def test_chain_depth(self):
        s = writable(1)
        level = s
        for _ in range(5):
            level = derive(level, lambda v: v + 1)
        log = []
        level.subscribe(lambda v, p: log.append(v))
        s.set(10)
        assert log == [6, 15]


class TestWaitForClean:
    def test_disabled_runs_per_source(self):
        s = writable(1)
        a = derive(s, lambda x: x + 1)
        b = derive(s, lambda x: x * 10)
        calls = []

        def record(values, set, value, previous):
            calls.append(list(values))
            set(values)

        c = derived(DerivedOptions(sources=[a, b], update=record, wait_for_clean=False))
        c.subscribe(lambda v, p: None)
        assert calls == [[2, None], [2, 10]]

        s.set(2)
        assert calls[2:] == [[3, 10], [3, 20]]


class TestSkipWhenUnchanged:
    def test_skips_update_but_settles(self):
        a = writable(1, skip_when_equal="never")
        calls = []
        b = derive(a, lambda x: calls.append(x) or x, skip_when_unchanged="primitive")
        log = []
        b.subscribe(lambda v, p: log.append(("val", v)), lambda: log.append("inv"))
        assert calls == [1]

        a.set(1)
        assert calls == [1]
        assert log == [("val", 1), "inv", ("val", 1)]
        assert not b.is_dirty()

        a.set(2)
        assert calls == [1, 2]

    def test_never_by_default(self):
        a = writable(1, skip_when_equal="never")
        calls = []
        b = derive(a, lambda x: calls.append(x) or x)
        b.subscribe(lambda v, p: None)
        a.set(1)
        assert calls == [1, 1]


class TestUpdateFunction:
    def test_update_without_set_resolves_dirty(self):
        a = writable(1)
        b = derived(DerivedOptions(sources=a, update=lambda v, set, value, prev: None, initial=0))
        log = []
        b.subscribe(lambda v, p: log.append((v, p)), lambda: log.append("inv"))
        a.set(2)
        assert log == [(0, 0), "inv", (0, 0)]
        assert not b.is_dirty()

    def test_set_many_times(self):
        a = writable(1)

        def fan(v, set, value, prev):
            set(v)
            set(v * 100)

        b = derived(DerivedOptions(sources=a, update=fan))
        log = []
        b.listen(lambda v, p: log.append(v))
        a.set(2)
        assert log == [2, 200]

    def test_set_later(self):
        a = writable(1)
        setters = []

        def later(v, set, value, prev):
            setters.append((v, set))

        b = derived(DerivedOptions(sources=a, update=later, initial="pending"))
        log = []
        b.subscribe(lambda v, p: log.append(v))
        v, set_ = setters[-1]
        set_(f"done {v}")
        assert log == ["pending", "done 1"]

    def test_stop_runs_before_next_update_and_on_teardown(self):
        a = writable(1)
        log = []

        def update(v, set, value, prev):
            log.append(f"run {v}")
            set(v)
            return lambda: log.append(f"stop {v}")

        b = derived(DerivedOptions(sources=a, update=update))
        u = b.subscribe(lambda v, p: None)
        a.set(2)
        u()
        assert log == ["run 1", "stop 1", "run 2", "stop 2"]

    def test_idle_get_runs_stop_immediately(self):
        a = writable(1)
        log = []

        def update(v, set, value, prev):
            set(v)
            return lambda: log.append("stop")

        b = derived(DerivedOptions(sources=a, update=update))
        assert b.get() == 1
        assert log == ["stop"]

    def test_teardown_from_inside_update(self):
        a = writable(1)
        log = []
        handles = []

        def update(v, set, value, prev):
            set(v)
            return lambda: log.append(f"stop {v}")

        b = derived(DerivedOptions(sources=a, update=update))

        def run(v, p):
            if v == 2:
                handles[0]()

        handles.append(b.listen(run))
        a.set(2)
        assert log == ["stop 1", "stop 2"]
        assert not b.active


class TestLaziness:
    def test_idle_get_recomputes_every_time(self):
        a = writable(1)
        calls = []
        b = derive(a, lambda x: calls.append(x) or x * 2)
        assert b.get() == 2
        assert b.get() == 2
        assert calls == [1, 1]

    def test_idle_get_reads_cells_directly(self):
        starts = []
        a = writable(1, lambda set, invalidate: starts.append("start"))
        b = derive(a, lambda x: x)
        assert b.get() == 1
        assert starts == []

    def test_idle_get_leaves_no_subscription(self):
        starts = []
        source = writable(1, lambda set, invalidate: starts.append("start") or (lambda: starts.append("stop")))
        b = derive(_ForeignStore(source), lambda x: x)
        assert b.get() == 1
        assert starts == ["start", "stop"]
        assert not b.active

    def test_teardown_reset(self):
        a = writable(1)
        b = derive(a, lambda x: x * 2)
        u = b.subscribe(lambda v, p: None)
        a.set(5)
        assert b.get() == 10
        u()
        a.set(7)
        assert b.get() == 14

    def test_teardown_detaches_sources(self):
        starts = []
        a = writable(1, lambda set, invalidate: starts.append("start") or (lambda: starts.append("stop")))
        b = derive(a, lambda x: x)
        u = b.subscribe(lambda v, p: None)
        assert starts == ["start"]
        u()
        assert starts == ["start", "stop"]


class TestKeepAlive:
    def test_stays_active_without_subscribers(self):
        a = writable(1)
        calls = []
        b = derive(a, lambda x: calls.append(x) or x, keep_alive=True)
        assert b.active
        assert b.get() == 1
        assert b.get() == 1
        assert calls == [1]

        a.set(2)
        assert b.get() == 2

    def test_dispose_releases(self):
        a = writable(1)
        b = derive(a, lambda x: x, keep_alive=True)
        assert b.dispose() is True
        assert not b.active
        assert b.dispose() is False


class TestConstruction:
    def test_builders_share_the_options_type(self):
        a = writable(1)
        assert isinstance(derive(a, lambda x: x), Derived)
        assert isinstance(derived(DerivedOptions(sources=a, update=lambda *args: None)), Derived)

    def test_repr(self):
        a = writable(1)

        def doubled(x):
            return x * 2

        b = derive(a, doubled)
        assert "idle" in repr(b)
        b.subscribe(lambda v, p: None)
        assert "doubled" in repr(b)
        assert "value=2" in repr(b)

    def test_empty_source_list_is_rejected(self):
        with pytest.raises(ValueError):
            derive([], len)
        with pytest.raises(ValueError):
            DerivedOptions(sources=(), update=lambda *args: None)


class TestCombinerArity:
    def test_builtin_combiner_gets_values_only(self):
        a = writable(3)
        assert derive(a, str).get() == "3"

    def test_defaulted_parameters_keep_their_defaults(self):
        def scale(x, factor=2):
            return x * factor

        a = writable(3)
        b = derive(a, scale)
        assert b.get() == 6

        log = []
        b.subscribe(lambda v, p: log.append(v))
        a.set(4)
        assert log == [6, 8]

    def test_required_parameters_receive_previous_value(self):
        a = writable(1)
        b = derive(a, lambda x, prev: (x, prev), initial="start")
        log = []
        b.subscribe(lambda v, p: log.append(v))
        a.set(2)
        assert log == [(1, "start"), (2, (1, "start"))]


class TestUpdateErrors:
    def test_failed_update_leaves_cell_clean(self):
        a = writable(1)

        def double_or_fail(x):
            if x == 2:
                raise RuntimeError("update failed")
            return x * 2

        b = derive(a, double_or_fail)
        log = []
        b.subscribe(lambda v, p: log.append(("val", v)), lambda: log.append("inv"))

        with pytest.raises(RuntimeError):
            a.set(2)
        assert not b.is_dirty()
        assert b.get() == 2

        log.clear()
        a.set(3)
        assert log == ["inv", ("val", 6)]
