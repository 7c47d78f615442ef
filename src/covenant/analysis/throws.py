"""Exceptions a method can actually raise, recovered from its AST.

The walk follows calls across method and class boundaries so that an
exception raised deep in a helper is attributed to the overriding method
that triggers it:

- ``raise Error(...)`` / ``raise Error`` / ``raise errors.Error``
- ``raise err`` or bare ``raise`` inside ``except (A, B) as err``
- ``self.helper()``, ``cls.helper()`` and ``super().helper()``
- ``Helper.run()`` and ``Helper(...).run()``
- ``value.run()`` when ``value`` is an annotated parameter (unions included),
  an annotated local, or was last assigned ``value = Helper(...)``

Exceptions are not tracked through intermediate variables or factory
functions (``err = make_error(); raise err``); those raises contribute
nothing. Calls whose receiver type cannot be determined are skipped and
logged as reduced coverage.
"""

from __future__ import annotations

import ast
import logging
from dataclasses import dataclass, field

from covenant.analysis.annotations import parse_annotation
from covenant.analysis.source import ParsedFile
from covenant.analysis.symbols import ClassIndex, MethodInfo

logger = logging.getLogger(__name__)

__all__ = ["ThrowsResolver", "find_method_node"]

_SELF_NAMES = frozenset({"self", "cls"})

FunctionNode = ast.FunctionDef | ast.AsyncFunctionDef


def find_method_node(parsed: ParsedFile, method: MethodInfo) -> FunctionNode | None:
    """Locate a method's definition by name and line range."""
    return parsed.functions.get((method.name, method.lineno, method.end_lineno))


class ThrowsResolver:
    """Computes the set of exception types a method can raise.

    Each ``actual_throws`` call is one request: the in-progress call chain and
    the methods already walked are passed down the walk rather than stored on
    the resolver, so concurrent requests cannot see each other's state.

    A method body is walked again only when a call reaches it through a
    shorter chain than before, so a request walks each ``(method, self class)``
    pair at most ``max_depth`` times however densely the methods call each
    other.
    """

    def __init__(
        self,
        index: ClassIndex,
        *,
        max_depth: int = 32,
        follow_calls: bool = True,
    ) -> None:
        self.index = index
        self.max_depth = max_depth
        self.follow_calls = follow_calls

    def actual_throws(self, method: MethodInfo, self_class: str | None = None) -> tuple[str, ...]:
        """Exception names ``method`` can raise, deduplicated in discovery order.

        Args:
            method: The method to analyze.
            self_class: Class the method runs on, used to dispatch ``self``
                calls. Defaults to the declaring class.

        Returns:
            Fully-qualified exception names; empty when the source is unavailable.
        """
        found: dict[str, None] = {}
        self._collect(method, self_class or method.owner, (), _Request(found))
        return tuple(found)

    def _collect(
        self,
        method: MethodInfo,
        self_class: str,
        chain: tuple[str, ...],
        request: _Request,
    ) -> None:
        key = method.qualname
        if key in chain:
            logger.debug("Call cycle %s -> %s, not revisiting", " -> ".join(chain), key)
            return
        if len(chain) >= self.max_depth:
            logger.warning(
                "Call depth ceiling (%d) reached at %s; deeper raises are not attributed",
                self.max_depth,
                key,
            )
            return
        seen_at = request.walked.get((key, self_class))
        if seen_at is not None and seen_at <= len(chain):
            return
        request.walked[(key, self_class)] = len(chain)

        parsed = self.index.cache.parse(method.path)
        if parsed is None:
            return
        node = find_method_node(parsed, method)
        if node is None:
            logger.debug("No definition of %s at lines %d-%d", key, method.lineno, method.end_lineno)
            return

        _BodyWalker(self, method, parsed, self_class, (*chain, key), request).run(node)


@dataclass(slots=True)
class _Request:
    found: dict[str, None]
    """Exception names in discovery order."""

    walked: dict[tuple[str, str], int] = field(default_factory=dict)
    """(method, self class) -> shortest chain length it was walked at."""


class _BodyWalker(ast.NodeVisitor):
    """Visits one method body in source order."""

    def __init__(
        self,
        resolver: ThrowsResolver,
        method: MethodInfo,
        parsed: ParsedFile,
        self_class: str,
        chain: tuple[str, ...],
        request: _Request,
    ) -> None:
        self.resolver = resolver
        self.index = resolver.index
        self.method = method
        self.parsed = parsed
        self.self_class = self_class
        self.chain = chain
        self.request = request

        self.handlers: list[tuple[str | None, tuple[str, ...]]] = []
        """Enclosing except clauses, innermost last: (bound name, caught types)."""

        self.params: dict[str, tuple[str, ...]] = {
            p.name: p.annotation.members
            for p in method.parameters
            if p.annotation is not None
        }
        self.locals: dict[str, tuple[str, ...]] = {}
        """Local name -> statically known classes."""

        self.bound: set[str] = set()

    def run(self, node: FunctionNode) -> None:
        for stmt in node.body:
            self.visit(stmt)

    def _add(self, name: str) -> None:
        self.request.found.setdefault(self.index.canonical(name), None)

    # === Scopes that run elsewhere ===

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        pass

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> None:
        pass

    def visit_Lambda(self, node: ast.Lambda) -> None:
        pass

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        pass

    # === Raises ===

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> None:
        self.handlers.append((node.name, self._handler_types(node.type)))
        try:
            for stmt in node.body:
                self.visit(stmt)
        finally:
            self.handlers.pop()

    def _handler_types(self, expr: ast.expr | None) -> tuple[str, ...]:
        if expr is None:
            return ("BaseException",)
        elts = expr.elts if isinstance(expr, ast.Tuple) else [expr]
        return tuple(self.parsed.resolve_expr(elt) or ast.unparse(elt) for elt in elts)

    def visit_Raise(self, node: ast.Raise) -> None:
        if node.exc is None:
            if self.handlers:
                for name in self.handlers[-1][1]:
                    self._add(name)
            return
        self._raised(node.exc)
        self.generic_visit(node)

    def _raised(self, expr: ast.expr) -> None:
        if isinstance(expr, ast.Name):
            for bound_name, types in reversed(self.handlers):
                if bound_name == expr.id:
                    for name in types:
                        self._add(name)
                    return
            if expr.id in self.bound or expr.id in self.params:
                logger.debug("%s raises variable %r; value not tracked", self.method.qualname, expr.id)
                return

        target = expr.func if isinstance(expr, ast.Call) else expr
        if not isinstance(target, ast.Name | ast.Attribute):
            return
        name = self.parsed.resolve_expr(target)
        if name is None:
            if isinstance(target, ast.Name) and target.id[:1].isupper():
                name = target.id  # Star-imported or otherwise unbound class name
            else:
                logger.debug("%s raises %s; not a resolvable class", self.method.qualname, ast.unparse(expr))
                return
        if self._looks_like_class(name):
            self._add(name)
        else:
            logger.debug("%s raises via factory %s; not tracked", self.method.qualname, name)

    def _looks_like_class(self, name: str) -> bool:
        return self.index.knows(name) or name.rpartition(".")[2][:1].isupper()

    # === Local types ===

    def _constructed_class(self, expr: ast.expr | None) -> str | None:
        """Indexed class instantiated by ``expr``, if it is ``Cls(...)``."""
        if not isinstance(expr, ast.Call):
            return None
        name = self.parsed.resolve_expr(expr.func)
        if name is None:
            return None
        info = self.index.get(name)
        return info.fqn if info is not None else None

    def visit_Assign(self, node: ast.Assign) -> None:
        self.generic_visit(node)
        constructed = self._constructed_class(node.value)
        for target in node.targets:
            if not isinstance(target, ast.Name):
                continue
            self.bound.add(target.id)
            if constructed and len(node.targets) == 1:
                self.locals[target.id] = (constructed,)
            else:
                self.locals.pop(target.id, None)

    def visit_AnnAssign(self, node: ast.AnnAssign) -> None:
        self.generic_visit(node)
        if not isinstance(node.target, ast.Name):
            return
        name = node.target.id
        self.bound.add(name)
        constructed = self._constructed_class(node.value)
        if constructed:
            self.locals[name] = (constructed,)
            return
        annotated = tuple(
            info.fqn
            for member in _annotation_members(node.annotation, self.parsed)
            if (info := self.index.get(member)) is not None
        )
        if annotated:
            self.locals[name] = annotated
        else:
            self.locals.pop(name, None)

    # === Calls ===

    def visit_Call(self, node: ast.Call) -> None:
        self.generic_visit(node)
        if not self.resolver.follow_calls or not isinstance(node.func, ast.Attribute):
            return

        attr = node.func.attr
        for callee, callee_self in self._callees(node.func.value, attr):
            self.resolver._collect(callee, callee_self, self.chain, self.request)

    def _callees(self, receiver: ast.expr, attr: str) -> list[tuple[MethodInfo, str]]:
        """Methods a call ``receiver.attr(...)`` can reach, with their ``self`` class."""
        classes = self._receiver_classes(receiver)
        if classes is None:
            logger.debug(
                "Reduced coverage in %s: receiver of .%s() has no static type",
                self.method.qualname,
                attr,
            )
            return []

        callees = []
        for class_name, is_super in classes:
            if is_super:
                callee = self.index.find_method_after(self.self_class, self.method.owner, attr)
                callee_self = self.self_class
            else:
                callee = self.index.find_method(class_name, attr)
                callee_self = class_name
            if callee is None:
                logger.debug("No method %s on %s", attr, class_name)
                continue
            callees.append((callee, callee_self))
        return callees

    def _receiver_classes(self, receiver: ast.expr) -> list[tuple[str, bool]] | None:
        """Classes the receiver is statically known to be; None when unknown."""
        if isinstance(receiver, ast.Name):
            name = receiver.id
            if name in _SELF_NAMES and name not in self.bound:
                return [(self.self_class, False)]
            if name in self.locals:
                return [(c, False) for c in self.locals[name]]
            if name in self.bound:
                return None
            if name in self.params:
                known = [(info.fqn, False) for m in self.params[name] if (info := self.index.get(m))]
                return known or None

        if isinstance(receiver, ast.Call):
            if isinstance(receiver.func, ast.Name) and receiver.func.id == "super":
                return [(self.method.owner, True)]
            constructed = self._constructed_class(receiver)
            return [(constructed, False)] if constructed else None

        if isinstance(receiver, ast.Name | ast.Attribute):
            resolved = self.parsed.resolve_expr(receiver)
            info = self.index.get(resolved) if resolved else None
            if info is not None:
                return [(info.fqn, False)]
        return None


def _annotation_members(node: ast.expr, parsed: ParsedFile) -> tuple[str, ...]:
    parsed_type = parse_annotation(node, parsed)
    return parsed_type.members if parsed_type else ()
