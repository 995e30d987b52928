"""Tests for runtests.discovery module."""

from enum import Enum

import pytest

from runtests import markers
from runtests.discovery import (
    FormalParameter,
    NameFilter,
    ParameterSet,
    describe_arguments,
    discover,
    expand,
    fixture_types,
    public_methods,
    register_fixture,
)
from runtests.errors import CoercionError, ConfigurationError
from runtests.markers import MethodRole


class Mode(Enum):
    FAST = 1
    SLOW = 2


class Arithmetic:
    @markers.fact
    def adds(self):
        pass

    def helper(self):
        pass

    @markers.theory
    @markers.inline_data(1, 2, 3)
    @markers.inline_data("2", "2", "4")
    def sums(self, a: int, b: int, expected: int):
        pass

    @markers.setup
    def reset(self):
        pass

    @markers.one_time_setup
    def connect(self):
        pass

    @markers.fact
    def _private(self):
        pass


class Defaults:
    @markers.theory
    @markers.inline_data(5)
    @markers.inline_data(5, "x")
    def with_default(self, value: int, label: str = "none", mode: Mode | None = Mode.FAST):
        pass

    @markers.theory
    @markers.inline_data(1)
    @markers.inline_data()
    def missing_required(self, value: int, other: int):
        pass

    @markers.fact
    def fact_with_default(self, retries: int = 3):
        pass


class MemberRows:
    ROWS = [(1, "a"), (2, "b")]

    @staticmethod
    def more_rows():
        yield 3, "c"
        yield [4, None]

    @markers.theory
    @markers.member_data("ROWS")
    @markers.inline_data(0, "zero")
    @markers.member_data("more_rows")
    def rows(self, number: int, name: str | None):
        pass

    @markers.theory
    @markers.member_data("NOPE")
    def broken(self, number: int):
        pass


class NUnitCases:
    """Rows given by test_case markers."""

    @markers.test_case(1, Mode.SLOW)
    @markers.test_case(2, "FAST")
    def cases(self, value: int, mode: Mode):
        pass


class Base:
    @markers.fact
    def inherited(self):
        pass

    @markers.fact
    def overridden(self):
        pass


class Derived(Base):
    @markers.fact
    def overridden(self):
        pass

    @markers.fact
    def own(self):
        pass


class NothingToRun:
    def helper(self):
        pass


class TestSuffix:
    """Suffix rendering of literal arguments."""

    def test_mixed_literals(self):
        assert describe_arguments([1, "abc", None]) == ' (1, "abc", null)'

    def test_other_values_use_str(self):
        assert describe_arguments([1.5, True, Mode.FAST]) == " (1.5, True, Mode.FAST)"

    def test_is_deterministic(self):
        assert describe_arguments((1, "a")) == describe_arguments([1, "a"])


class TestRegisterFixture:
    def test_classifies_marked_methods(self):
        fixture = register_fixture(Arithmetic)

        assert [m.name for m in fixture.tests] == ["adds", "sums"]
        assert [m.name for m in fixture.setups_once] == ["connect"]
        assert [m.name for m in fixture.setups_each] == ["reset"]
        assert fixture.full_name == f"{__name__}.Arithmetic"
        assert fixture.name == "Arithmetic"

    def test_captures_formal_parameters(self):
        fixture = register_fixture(Defaults)
        method = fixture.tests[0]

        assert method.parameters[0] == FormalParameter("value", int)
        assert method.parameters[1].default == "none"
        assert method.parameters[1].has_default
        assert not method.parameters[0].has_default
        assert MethodRole.DATA_TEST in method.roles

    def test_own_methods_before_inherited(self):
        names = [name for name, _ in public_methods(Derived)]
        assert names == ["overridden", "own", "inherited"]

    def test_override_is_listed_once(self):
        fixture = register_fixture(Derived)
        overridden = [m for m in fixture.tests if m.name == "overridden"]
        assert len(overridden) == 1
        assert overridden[0].function is Derived.overridden


class TestExpand:
    def test_plain_test_has_single_empty_set(self):
        fixture = register_fixture(Arithmetic)
        assert expand(fixture, fixture.tests[0]) == [ParameterSet()]

    def test_rows_are_coerced_and_keep_raw_suffix(self):
        fixture = register_fixture(Arithmetic)
        sets = expand(fixture, fixture.tests[1])

        assert sets == [
            ParameterSet((1, 2, 3), " (1, 2, 3)"),
            ParameterSet((2, 2, 4), ' ("2", "2", "4")'),
        ]

    def test_missing_values_backfilled_from_defaults(self):
        fixture = register_fixture(Defaults)
        sets = expand(fixture, fixture.tests[0])

        assert sets[0] == ParameterSet((5, "none", Mode.FAST), " (5)")
        assert sets[1] == ParameterSet((5, "x", Mode.FAST), ' (5, "x")')

    def test_missing_value_without_default_fails_whole_method(self):
        fixture = register_fixture(Defaults)
        with pytest.raises(ConfigurationError, match="Parameter 1 \\(other\\)"):
            expand(fixture, fixture.tests[1])

    def test_plain_test_defaults_are_backfilled(self):
        fixture = register_fixture(Defaults)
        assert expand(fixture, fixture.tests[2]) == [ParameterSet((3,), "")]

    def test_providers_concatenate_in_declaration_order(self):
        fixture = register_fixture(MemberRows)
        sets = expand(fixture, fixture.tests[0])

        assert [s.arguments for s in sets] == [(1, "a"), (2, "b"), (0, "zero"), (3, "c"), (4, None)]
        assert sets[-1].suffix == " (4, null)"

    def test_unknown_member_is_configuration_error(self):
        fixture = register_fixture(MemberRows)
        with pytest.raises(ConfigurationError, match="NOPE"):
            expand(fixture, fixture.tests[1])

    def test_non_iterable_member_is_configuration_error(self):
        class NotRows:
            ROWS = 5

            @markers.theory
            @markers.member_data("ROWS")
            def uses(self, number: int):
                pass

        fixture = register_fixture(NotRows)
        with pytest.raises(ConfigurationError, match="Data member 'ROWS'.*TypeError"):
            expand(fixture, fixture.tests[0])

    def test_raising_member_source_fails_only_its_method(self):
        class Flaky:
            @staticmethod
            def rows():
                raise RuntimeError("no database")

            @markers.theory
            @markers.member_data("rows")
            def uses(self, number: int):
                pass

            @markers.fact
            def plain(self):
                pass

        invocations = discover(Flaky)

        assert [i.method.name for i in invocations] == ["uses", "plain"]
        assert isinstance(invocations[0].error, ConfigurationError)
        assert "no database" in str(invocations[0].error)
        assert invocations[1].error is None

    def test_test_case_rows_with_enum_coercion(self):
        fixture = register_fixture(NUnitCases)
        sets = expand(fixture, fixture.tests[0])

        assert [s.arguments for s in sets] == [(1, Mode.SLOW), (2, Mode.FAST)]

    def test_too_many_values(self):
        class TooMany:
            @markers.theory
            @markers.inline_data(1, 2)
            def one(self, value):
                pass

        fixture = register_fixture(TooMany)
        with pytest.raises(ConfigurationError):
            expand(fixture, fixture.tests[0])

    def test_unconvertible_value(self):
        class BadValue:
            @markers.theory
            @markers.inline_data("many")
            def count(self, value: int):
                pass

        fixture = register_fixture(BadValue)
        with pytest.raises(CoercionError):
            expand(fixture, fixture.tests[0])


class TestDiscover:
    def test_type_without_runnable_methods(self):
        assert discover(NothingToRun) == []

    def test_one_invocation_per_row_in_order(self):
        invocations = discover(Arithmetic)

        assert [i.display_name for i in invocations] == ["adds", "sums (1, 2, 3)", 'sums ("2", "2", "4")']
        assert invocations[1].full_name == f"{__name__}.Arithmetic.sums (1, 2, 3)"

    def test_k_rows_give_k_invocations(self):
        invocations = discover(MemberRows)
        rows = [i for i in invocations if i.method.name == "rows"]
        assert len(rows) == 5

    def test_configuration_error_yields_single_failed_invocation(self):
        invocations = discover(Defaults)
        broken = [i for i in invocations if i.method.name == "missing_required"]

        assert len(broken) == 1
        assert isinstance(broken[0].error, ConfigurationError)
        assert broken[0].parameters == ParameterSet()

    def test_name_filter_selects_methods(self):
        invocations = discover(Arithmetic, NameFilter(["Arithmetic.adds"]))
        assert [i.method.name for i in invocations] == ["adds"]

    def test_name_filters_are_anded(self):
        assert discover(Arithmetic, NameFilter(["arithmetic", "sums"]))
        assert discover(Arithmetic, NameFilter(["arithmetic", "nothing"])) == []

    def test_alternation_within_one_filter(self):
        invocations = discover(Arithmetic, NameFilter(["\\.(adds|sums)$"]))
        assert {i.method.name for i in invocations} == {"adds", "sums"}


class TestNameFilter:
    def test_empty_filter_is_falsy_and_matches(self):
        name_filter = NameFilter()
        assert not name_filter
        assert name_filter("anything")

    def test_case_insensitive(self):
        assert NameFilter(["FOO.BAR"])("pkg.Foo.Bar")


def test_fixture_types_in_definition_order(write_module):
    from runtests.artifacts import load_artifact

    path = write_module(
        "ordering_sample",
        """
        from enum import Enum

        class Zeta:
            pass

        class _Hidden:
            pass

        class Alpha:
            pass
        """,
    )
    module = load_artifact(path).module
    assert [cls.__name__ for cls in fixture_types(module)] == ["Zeta", "Alpha"]
