"""Tests for exception resolution from method bodies."""

import logging
from pathlib import Path

import pytest

from covenant.analysis.symbols import ClassIndex, MethodInfo
from covenant.analysis.throws import ThrowsResolver, find_method_node

HELPERS_MODULE = """
    from shop.errors import IOFailure, ValidationFailure


    class Helper:
        def fail(self):
            raise IOFailure()

        @staticmethod
        def check(value):
            raise ValidationFailure()


    class Other:
        def fail(self):
            raise KeyError()


    class Deep:
        def c(self):
            self.d()

        def d(self):
            raise ValidationFailure()
"""

FLOWS_MODULE = """
    from shop import errors
    from shop.errors import IOFailure, ValidationFailure
    from shop.helpers import Deep, Helper, Other


    def make_error():
        return IOFailure()


    def make_helper():
        return Helper()


    class Direct:
        def call(self):
            raise IOFailure("x")

        def bare_name(self):
            raise ValidationFailure

        def qualified(self):
            raise errors.RuntimeFailure()

        def builtin(self):
            raise ValueError("bad")

        def handler_alias(self):
            try:
                pass
            except (KeyError, IOFailure) as err:
                raise err

        def bare_reraise(self):
            try:
                pass
            except TypeError:
                raise

        def bare_except(self):
            try:
                pass
            except:
                raise

        def chained(self):
            try:
                pass
            except KeyError as e:
                raise ValidationFailure() from e

        def variable(self):
            err = IOFailure()
            raise err

        def factory(self):
            raise make_error()

        def nested_scopes(self):
            def inner():
                raise KeyError

            class Local:
                def go(self):
                    raise TypeError

            return lambda: inner()

        def repeated(self):
            raise ValueError("a")
            raise ValueError("b")


    class Calls:
        def via_self(self):
            self.step()

        def step(self):
            raise errors.RuntimeFailure()

        def via_class(self):
            Helper.check(1)

        def via_construct(self):
            Helper().fail()

        def via_local(self):
            helper = Helper()
            helper.fail()

        def via_reassigned_local(self):
            helper = Helper()
            helper = make_helper()
            helper.fail()

        def via_annotated_local(self):
            helper: Helper = make_helper()
            helper.fail()

        def via_param(self, helper: Helper):
            helper.fail()

        def via_union_param(self, target: Helper | Other):
            target.fail()

        def via_unknown(self, thing):
            thing.fail()


    class Chain:
        def a(self):
            self.b()

        def b(self):
            Deep().c()


    class Loop:
        def ping(self):
            self.pong()
            raise KeyError()

        def pong(self):
            self.ping()
            raise TypeError()

        def again(self):
            self.again()
            raise ValueError()
"""

DISPATCH_MODULE = """
    from shop.errors import IOFailure


    class Base:
        def run(self):
            self.hook()

        def hook(self):
            pass


    class Child(Base):
        def hook(self):
            raise IOFailure()


    class Parent:
        def save(self):
            raise IOFailure()


    class Kid(Parent):
        def save(self):
            super().save()
"""

STAR_MODULE = """
    from shop.errors import *


    class Star:
        def go(self):
            raise IOFailure()
"""


def mesh_module(size: int) -> str:
    """A class whose methods all call each other; method i raises Error<i>."""
    lines = [f"class Error{i}(Exception): ...\n" for i in range(size)]
    lines.append("class Mesh:")
    for i in range(size):
        lines.append(f"    def m{i}(self):")
        lines.extend(f"        self.m{j}()" for j in range(size) if j != i)
        lines.append(f"        raise Error{i}()")
    return "\n".join(lines) + "\n"


@pytest.fixture
def index(build_index, errors_module: str) -> ClassIndex:
    return build_index({
        "errors.py": errors_module,
        "helpers.py": HELPERS_MODULE,
        "flows.py": FLOWS_MODULE,
        "dispatch.py": DISPATCH_MODULE,
        "star.py": STAR_MODULE,
        "mesh.py": mesh_module(12),
    })


def method(index: ClassIndex, class_name: str, name: str) -> MethodInfo:
    return index.get(class_name).methods[name]


def throws(index: ClassIndex, class_name: str, name: str, **kwargs) -> tuple[str, ...]:
    self_class = kwargs.pop("self_class", None)
    resolver = ThrowsResolver(index, **kwargs)
    return resolver.actual_throws(method(index, class_name, name), self_class=self_class)


class TestDirectRaises:
    """Raise statements in the method body."""

    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("call", ("shop.errors.IOFailure",)),
            ("bare_name", ("shop.errors.ValidationFailure",)),
            ("qualified", ("shop.errors.RuntimeFailure",)),
            ("builtin", ("ValueError",)),
            ("handler_alias", ("KeyError", "shop.errors.IOFailure")),
            ("bare_reraise", ("TypeError",)),
            ("bare_except", ("BaseException",)),
            ("chained", ("shop.errors.ValidationFailure",)),
            ("repeated", ("ValueError",)),
        ],
    )
    def test_raise_forms(self, index: ClassIndex, name: str, expected: tuple[str, ...]) -> None:
        assert throws(index, "shop.flows.Direct", name) == expected

    def test_variables_and_factories_are_not_tracked(self, index: ClassIndex) -> None:
        assert throws(index, "shop.flows.Direct", "variable") == ()
        assert throws(index, "shop.flows.Direct", "factory") == ()

    def test_nested_scopes_are_skipped(self, index: ClassIndex) -> None:
        assert throws(index, "shop.flows.Direct", "nested_scopes") == ()

    def test_star_imported_class_name(self, index: ClassIndex) -> None:
        assert throws(index, "shop.star.Star", "go") == ("IOFailure",)


class TestCalls:
    """Raises reached through calls."""

    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("via_self", ("shop.errors.RuntimeFailure",)),
            ("via_class", ("shop.errors.ValidationFailure",)),
            ("via_construct", ("shop.errors.IOFailure",)),
            ("via_local", ("shop.errors.IOFailure",)),
            ("via_annotated_local", ("shop.errors.IOFailure",)),
            ("via_param", ("shop.errors.IOFailure",)),
            ("via_union_param", ("shop.errors.IOFailure", "KeyError")),
        ],
    )
    def test_call_forms(self, index: ClassIndex, name: str, expected: tuple[str, ...]) -> None:
        assert throws(index, "shop.flows.Calls", name) == expected

    def test_unknown_receivers_are_skipped(self, index: ClassIndex, caplog) -> None:
        with caplog.at_level(logging.DEBUG, logger="covenant.analysis.throws"):
            assert throws(index, "shop.flows.Calls", "via_unknown") == ()
        assert "Reduced coverage" in caplog.text

    def test_reassigned_local_loses_its_type(self, index: ClassIndex) -> None:
        assert throws(index, "shop.flows.Calls", "via_reassigned_local") == ()

    def test_follow_calls_disabled(self, index: ClassIndex) -> None:
        assert throws(index, "shop.flows.Calls", "via_self", follow_calls=False) == ()
        assert throws(index, "shop.flows.Direct", "call", follow_calls=False) == ("shop.errors.IOFailure",)


class TestTransitive:
    """Attribution across methods, classes and files."""

    def test_chain_across_files(self, index: ClassIndex) -> None:
        assert throws(index, "shop.flows.Chain", "a") == ("shop.errors.ValidationFailure",)

    def test_depth_ceiling(self, index: ClassIndex, caplog) -> None:
        assert throws(index, "shop.flows.Chain", "a", max_depth=4) == ("shop.errors.ValidationFailure",)
        assert throws(index, "shop.flows.Chain", "a", max_depth=3) == ()
        assert "Call depth ceiling (3)" in caplog.text

    def test_mutual_recursion_terminates(self, index: ClassIndex) -> None:
        assert throws(index, "shop.flows.Loop", "ping") == ("TypeError", "KeyError")
        assert throws(index, "shop.flows.Loop", "pong") == ("KeyError", "TypeError")

    def test_self_recursion_terminates(self, index: ClassIndex) -> None:
        assert throws(index, "shop.flows.Loop", "again") == ("ValueError",)

    def test_self_calls_dispatch_on_the_subject(self, index: ClassIndex) -> None:
        assert throws(index, "shop.dispatch.Base", "run") == ()
        assert throws(index, "shop.dispatch.Base", "run", self_class="shop.dispatch.Child") == (
            "shop.errors.IOFailure",
        )

    def test_super_call(self, index: ClassIndex) -> None:
        assert throws(index, "shop.dispatch.Kid", "save") == ("shop.errors.IOFailure",)

    def test_repeated_requests_are_independent(self, index: ClassIndex) -> None:
        resolver = ThrowsResolver(index)
        ping = method(index, "shop.flows.Loop", "ping")

        assert resolver.actual_throws(ping) == resolver.actual_throws(ping)

    def test_densely_connected_methods(self, index: ClassIndex) -> None:
        result = throws(index, "shop.mesh.Mesh", "m0")

        assert len(result) == 12
        assert set(result) == {f"shop.mesh.Error{i}" for i in range(12)}
        assert result[-1] == "shop.mesh.Error0"

    def test_dense_calls_under_a_low_ceiling(self, index: ClassIndex) -> None:
        result = throws(index, "shop.mesh.Mesh", "m0", max_depth=2)
        assert set(result) == {f"shop.mesh.Error{i}" for i in range(12)}

    def test_files_are_parsed_once(self, index: ClassIndex) -> None:
        reads = index.cache.reads
        resolver = ThrowsResolver(index)
        for name in ("via_self", "via_local", "via_param", "via_union_param"):
            resolver.actual_throws(method(index, "shop.flows.Calls", name))
        assert index.cache.reads == reads


class TestDegradedInput:
    """Missing sources give no evidence."""

    def test_missing_file(self, index: ClassIndex, tmp_path: Path) -> None:
        ghost = MethodInfo(
            name="run",
            owner="gone.Ghost",
            module="gone",
            path=tmp_path / "gone.py",
            lineno=1,
            end_lineno=2,
        )
        assert ThrowsResolver(index).actual_throws(ghost) == ()

    def test_find_method_node(self, index: ClassIndex) -> None:
        info = method(index, "shop.flows.Calls", "step")
        parsed = index.cache.parse(info.path)

        node = find_method_node(parsed, info)

        assert node is not None
        assert node.name == "step"
        assert node.lineno == info.lineno
