"""Tests for runtests.resolver module."""

import threading
import time
from abc import ABC, abstractmethod
from typing import Protocol

import pytest

from runtests.errors import ResolutionError
from runtests.output import OutputCollector, OutputHelper
from runtests.resolver import Resolver, constructor, public_constructors


class Leaf:
    pass


class Branch:
    def __init__(self, leaf: Leaf):
        self.leaf = leaf


class Root:
    def __init__(self, branch: Branch, leaf: Leaf):
        self.branch = branch
        self.leaf = leaf


class Storage(ABC):
    @abstractmethod
    def save(self): ...


class NeedsStorage:
    def __init__(self, storage: Storage):
        self.storage = storage


class Clock(Protocol):
    def now(self) -> float: ...


class OptionalStorage:
    def __init__(self, storage: Storage | None = None, retries: int = 3):
        self.storage = storage
        self.retries = retries


class Exploding:
    def __init__(self):
        raise ValueError("boom")


class DependsOnExploding:
    def __init__(self, dep: Exploding):
        self.dep = dep


class Untyped:
    def __init__(self, thing):
        self.thing = thing


class SelfLoop:
    def __init__(self, other: "LoopPartner"):
        self.other = other


class LoopPartner:
    def __init__(self, back: SelfLoop):
        self.back = back


class Configured:
    def __init__(self, name: str, leaf: Leaf):
        self.name = name
        self.leaf = leaf

    @constructor
    @classmethod
    def default(cls) -> "Configured":
        return cls("default", Leaf())


class WithOutput:
    def __init__(self, output: OutputHelper):
        self.output = output


class TestGet:
    """Construction and memoization."""

    def test_builds_transitive_dependencies(self):
        root = Resolver().get(Root)

        assert isinstance(root.branch, Branch)
        assert isinstance(root.leaf, Leaf)

    def test_dependencies_are_shared(self):
        root = Resolver().get(Root)
        assert root.branch.leaf is root.leaf

    def test_same_instance_without_invalidation(self):
        resolver = Resolver()
        assert resolver.get(Leaf) is resolver.get(Leaf)

    def test_invalidate_gives_fresh_instance(self):
        resolver = Resolver()
        first = resolver.get(Leaf)
        resolver.invalidate(Leaf)
        assert resolver.get(Leaf) is not first

    def test_invalidate_unknown_type_is_noop(self):
        Resolver().invalidate(Leaf)

    def test_separate_resolvers_do_not_share(self):
        assert Resolver().get(Leaf) is not Resolver().get(Leaf)

    def test_prefers_constructor_with_fewest_parameters(self):
        configured = Resolver().get(Configured)
        assert configured.name == "default"

    def test_public_constructors_in_declaration_order(self):
        ctors = public_constructors(Configured)
        assert [len(c.signature.parameters) for c in ctors] == [2, 0]


class TestOverride:
    def test_override_short_circuits_construction(self):
        resolver = Resolver()
        leaf = Leaf()
        resolver.override(Leaf, lambda: leaf)

        assert resolver.get(Leaf) is leaf
        assert resolver.get(Branch).leaf is leaf

    def test_override_factory_called_every_time(self):
        resolver = Resolver()
        calls = []
        resolver.override(Leaf, lambda: calls.append(1) or Leaf())

        resolver.get(Leaf)
        resolver.get(Leaf)
        assert len(calls) == 2

    def test_rebinding_replaces_factory(self):
        resolver = Resolver()
        first = OutputCollector("Fixture", "one")
        second = OutputCollector("Fixture", "two")

        resolver.override(OutputHelper, lambda: first)
        assert resolver.get(WithOutput).output is first

        resolver.override(OutputHelper, lambda: second)
        resolver.invalidate(WithOutput)
        assert resolver.get(WithOutput).output is second

    def test_override_used_for_protocol_parameter(self):
        resolver = Resolver()
        resolver.override(Clock, lambda: "clock")

        class NeedsClock:
            def __init__(self, clock: Clock):
                self.clock = clock

        assert resolver.get(NeedsClock).clock == "clock"


class TestDefaults:
    def test_default_used_when_type_is_unconstructible(self):
        built = Resolver().get(OptionalStorage)
        assert built.storage is None
        assert built.retries == 3

    def test_binding_preferred_over_default(self):
        resolver = Resolver()
        resolver.override(int, lambda: 9)
        assert resolver.get(OptionalStorage).retries == 9


class TestFailures:
    def test_abstract_type_has_no_public_constructor(self):
        with pytest.raises(ResolutionError, match="does not have a public constructor") as excinfo:
            Resolver().get(Storage)
        assert excinfo.value.requested_type is Storage

    def test_protocol_has_no_public_constructor(self):
        with pytest.raises(ResolutionError):
            Resolver().get(Clock)

    def test_dependency_failure_names_both_types(self):
        with pytest.raises(ResolutionError) as excinfo:
            Resolver().get(NeedsStorage)

        assert excinfo.value.requested_type is NeedsStorage
        assert isinstance(excinfo.value.__cause__, ResolutionError)
        assert excinfo.value.__cause__.requested_type is Storage

    def test_constructor_exception_is_wrapped(self):
        with pytest.raises(ResolutionError) as excinfo:
            Resolver().get(Exploding)

        assert isinstance(excinfo.value.__cause__, ValueError)
        assert "Exploding" in str(excinfo.value)

    def test_failed_construction_is_not_memoized(self):
        resolver = Resolver()
        with pytest.raises(ResolutionError):
            resolver.get(DependsOnExploding)
        assert not resolver.is_bound(DependsOnExploding)
        assert not resolver.is_bound(Exploding)

    def test_untyped_parameter_without_default(self):
        with pytest.raises(ResolutionError, match="thing"):
            Resolver().get(Untyped)

    def test_circular_dependency(self):
        with pytest.raises(ResolutionError) as excinfo:
            Resolver().get(SelfLoop)

        innermost = excinfo.value
        while isinstance(innermost.__cause__, ResolutionError):
            innermost = innermost.__cause__
        assert "circular dependency" in str(innermost)


class TestConcurrency:
    def test_concurrent_get_constructs_once(self):
        calls = []
        lock = threading.Lock()

        class Slow:
            def __init__(self):
                with lock:
                    calls.append(1)
                time.sleep(0.05)

        resolver = Resolver()
        barrier = threading.Barrier(8)
        results = []

        def worker():
            barrier.wait()
            results.append(resolver.get(Slow))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(calls) == 1
        assert len(results) == 8
        assert all(result is results[0] for result in results)
