import logging
import unittest

import pytest

from graphbind import CandidateNotFoundError, CycleDetectedError, Factory, ManyCandidatesError, Provider, Qualified
from graphbind._registry import Registry, match, select_candidate
from graphbind._signature import analyze_constructor, describe_param


class Foo: ...


class Bar: ...


class Replica: ...


def _candidate(order, **kwargs):
    def make_foo() -> Foo:
        return Foo()

    factory = analyze_constructor(make_foo, **kwargs)
    factory.order = order
    return factory


def test_match_exact_and_structural():
    class SubFoo(Foo): ...

    exact = analyze_constructor(Foo)
    structural = analyze_constructor(SubFoo)
    other = analyze_constructor(Bar)

    assert match(describe_param(Foo), exact) == (True, True)
    assert match(describe_param(Foo), structural) == (True, False)
    assert match(describe_param(Foo), other) == (False, False)


def test_match_qualified_requires_the_qualifier():
    plain = analyze_constructor(Foo)
    replica = analyze_constructor(Foo, qualifiers=[Replica])

    assert match(describe_param(Qualified[Foo, Replica]), plain) == (False, False)
    assert match(describe_param(Qualified[Foo, Replica]), replica) == (True, True)
    # unqualified dependencies accept qualified components too
    assert match(describe_param(Foo), replica) == (True, True)


def test_match_provider_uses_wrapped_type():
    assert match(describe_param(Provider[Foo]), analyze_constructor(Foo)) == (True, True)


def test_side_effect_constructors_are_never_candidates():
    def warm_up() -> None: ...

    assert match(describe_param(type(None)), analyze_constructor(warm_up)) == (False, False)


class TestSelectCandidate(unittest.TestCase):
    def test_no_candidate_raises(self):
        with pytest.raises(CandidateNotFoundError) as exc:
            select_candidate(Foo, [])
        assert exc.value.key is Foo

    def test_single_candidate_wins(self):
        only = _candidate(0)
        assert select_candidate(Foo, [only]) is only

    def test_mock_wins(self):
        primary = _candidate(0, primary=True)
        mock = Factory(key=Foo, constructor=Foo, mock=lambda _: Foo())
        assert select_candidate(Foo, [primary, mock]) is mock

    def test_unique_primary_wins_regardless_of_order(self):
        first = _candidate(0)
        primary = _candidate(1, primary=True)
        last = _candidate(2)
        assert select_candidate(Foo, [first, primary, last]) is primary
        assert select_candidate(Foo, [last, first, primary]) is primary

    def test_many_primaries_narrow_the_pool(self):
        primary_low = _candidate(0, primary=True, priority=1)
        primary_high = _candidate(1, primary=True, priority=2)
        plain = _candidate(2, priority=0)
        assert select_candidate(Foo, [primary_low, primary_high, plain]) is primary_low

    def test_unique_non_alternative_wins(self):
        alternative = _candidate(0, alternative=True, priority=-10)
        regular = _candidate(1)
        assert select_candidate(Foo, [alternative, regular]) is regular

    def test_lowest_priority_wins(self):
        low = _candidate(1, priority=-1)
        high = _candidate(0, priority=5)
        assert select_candidate(Foo, [high, low]) is low

    def test_equal_priority_raises(self):
        first = _candidate(0)
        second = _candidate(1)
        with pytest.raises(ManyCandidatesError) as exc:
            select_candidate(Foo, [second, first])
        assert exc.value.candidates == [first, second]

    def test_tied_alternatives_raise(self):
        first = _candidate(0, alternative=True)
        second = _candidate(1, alternative=True)
        with pytest.raises(ManyCandidatesError):
            select_candidate(Foo, [first, second])


class TestRegistry(unittest.TestCase):
    registry: Registry

    def setUp(self):
        self.registry = Registry()

    def test_register_assigns_orders(self):
        foo = analyze_constructor(Foo)
        bar = analyze_constructor(Bar)
        self.registry.register(foo)
        self.registry.register(bar)

        assert (foo.order, bar.order) == (0, 1)
        assert self.registry.factories() == [foo, bar]
        assert self.registry.factories(Bar) == [bar]

    def test_parameters_index_factories_registered_before_and_after(self):
        def make_bar(foo: Foo) -> Bar:
            return Bar()

        bar = analyze_constructor(make_bar)
        self.registry.register(bar)
        foo = analyze_constructor(Foo)
        self.registry.register(foo)

        assert self.registry.parameter(Foo).factories == [foo]
        assert bar.parameters[0] is self.registry.parameter(Foo)

    def test_exact_matches_shadow_structural_ones(self):
        class SubFoo(Foo): ...

        sub = analyze_constructor(SubFoo)
        foo = analyze_constructor(Foo)
        self.registry.register(sub)
        self.registry.register(foo)

        param = self.registry.parameter(Foo)
        assert param.factories == [foo]
        assert param.candidates == [sub]
        assert param.resolvable() == [foo]

    def test_structural_match_is_logged(self):
        class SubFoo(Foo): ...

        self.registry.parameter(Foo)
        with self.assertLogs("graphbind", level=logging.INFO) as logs:
            self.registry.register(analyze_constructor(SubFoo))
        assert any("is a candidate for" in line for line in logs.output)

    def test_cycle_is_rejected_and_rolled_back(self):
        def make_foo(bar: Bar) -> Foo:
            return Foo()

        def make_bar(foo: Foo) -> Bar:
            return Bar()

        foo = analyze_constructor(make_foo)
        self.registry.register(foo)
        order = self.registry.graph.order

        bar = analyze_constructor(make_bar)
        with pytest.raises(CycleDetectedError) as exc:
            self.registry.register(bar)

        assert exc.value.cycle == [0, 1, 0]
        assert exc.value.factories == [foo, bar, foo]
        assert "make_bar" in str(exc.value)

        assert self.registry.graph.order == order
        assert self.registry.factories(Bar) == []
        assert not self.registry.parameter(Bar).has_candidates()
        assert bar.order == -1
        assert self.registry.graph.is_acyclic() == (True, [])

    def test_self_dependency_is_a_cycle(self):
        def decorate(foo: Foo) -> Foo:
            return foo

        with pytest.raises(CycleDetectedError) as exc:
            self.registry.register(analyze_constructor(decorate))
        assert exc.value.cycle == [0, 0]
        assert self.registry.graph.order == 0

    def test_provider_dependencies_do_not_close_cycles(self):
        def make_foo(bar: Provider[Bar]) -> Foo:
            return Foo()

        def make_bar(foo: Foo) -> Bar:
            return Bar()

        self.registry.register(analyze_constructor(make_foo))
        self.registry.register(analyze_constructor(make_bar))
        assert self.registry.graph.order == 2

    def test_rejected_registration_leaves_no_new_parameters(self):
        class Baz: ...

        def make_foo(bar: Bar) -> Foo:
            return Foo()

        def make_bar(foo: Foo, baz: Baz) -> Bar:
            return Bar()

        self.registry.register(analyze_constructor(make_foo))
        known = set(self.registry._params)

        with pytest.raises(CycleDetectedError):
            self.registry.register(analyze_constructor(make_bar))

        assert set(self.registry._params) == known
        assert Baz not in self.registry._params
