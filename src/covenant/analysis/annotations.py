"""Type annotations as normalized union member sets.

An annotation such as ``Optional["pkg.Path"] | int`` becomes the member tuple
``("pkg.Path", "None", "int")``. Generic arguments are dropped: ``list[int]``
compares as ``list``.
"""

from __future__ import annotations

import ast
import logging
from dataclasses import dataclass
from typing import Protocol

from covenant.analysis.source import ParsedFile

logger = logging.getLogger(__name__)

__all__ = [
    "ANY_TYPES",
    "TOP_TYPES",
    "Hierarchy",
    "TypeExpr",
    "is_subtype",
    "parse_annotation",
]

ANY_TYPES = frozenset({"typing.Any", "typing_extensions.Any"})
TOP_TYPES = ANY_TYPES | {"object"}

_OPTIONAL = frozenset({"typing.Optional", "typing_extensions.Optional"})
_UNION = frozenset({"typing.Union", "typing_extensions.Union"})
_ANNOTATED = frozenset({"typing.Annotated", "typing_extensions.Annotated"})
_LITERAL = frozenset({"typing.Literal", "typing_extensions.Literal"})

_ALIASES = {
    "typing.List": "list",
    "typing.Dict": "dict",
    "typing.Set": "set",
    "typing.FrozenSet": "frozenset",
    "typing.Tuple": "tuple",
    "typing.Type": "type",
    "typing.Text": "str",
    "typing.Sequence": "collections.abc.Sequence",
    "typing.MutableSequence": "collections.abc.MutableSequence",
    "typing.Mapping": "collections.abc.Mapping",
    "typing.MutableMapping": "collections.abc.MutableMapping",
    "typing.Iterable": "collections.abc.Iterable",
    "typing.Iterator": "collections.abc.Iterator",
    "typing.Collection": "collections.abc.Collection",
    "typing.Callable": "collections.abc.Callable",
    "NoneType": "None",
    "types.NoneType": "None",
}

# PEP 484 numeric tower: an int is acceptable where a float is expected
_NUMERIC_PROMOTIONS = {
    "int": frozenset({"float", "complex"}),
    "bool": frozenset({"float", "complex"}),
    "float": frozenset({"complex"}),
}


class Hierarchy(Protocol):
    """Class hierarchy queries needed to compare types."""

    def is_subclass(self, sub: str, sup: str) -> bool: ...

    def knows(self, name: str) -> bool: ...


@dataclass(frozen=True, slots=True)
class TypeExpr:
    """A resolved annotation."""

    members: tuple[str, ...]
    """Fully-qualified union members, deduplicated in source order."""

    text: str
    """The annotation as written, for messages."""

    def __str__(self) -> str:
        return self.text

    @property
    def is_any(self) -> bool:
        return any(member in ANY_TYPES for member in self.members)


def parse_annotation(node: ast.expr | None, parsed: ParsedFile) -> TypeExpr | None:
    """Resolve an annotation node against the file's import scope.

    Returns None when there is no annotation.
    """
    if node is None:
        return None
    members = _members(node, parsed)
    return TypeExpr(members=tuple(dict.fromkeys(members)), text=ast.unparse(node))


def _normalize(name: str) -> str:
    return _ALIASES.get(name, name)


def _members(node: ast.expr, parsed: ParsedFile) -> list[str]:
    if isinstance(node, ast.Constant):
        if node.value is None:
            return ["None"]
        if isinstance(node.value, str):
            # Forward reference
            try:
                inner = ast.parse(node.value.strip(), mode="eval").body
            except SyntaxError:
                return [parsed.resolve_dotted(node.value)]
            return _members(inner, parsed)
        return [type(node.value).__name__]

    if isinstance(node, ast.BinOp) and isinstance(node.op, ast.BitOr):
        return _members(node.left, parsed) + _members(node.right, parsed)

    if isinstance(node, ast.Subscript):
        origin = _normalize(parsed.resolve_expr(node.value) or ast.unparse(node.value))
        args = node.slice.elts if isinstance(node.slice, ast.Tuple) else [node.slice]
        if origin in _OPTIONAL:
            return _members(args[0], parsed) + ["None"]
        if origin in _UNION:
            return [member for arg in args for member in _members(arg, parsed)]
        if origin in _ANNOTATED:
            return _members(args[0], parsed)
        if origin in _LITERAL:
            return [
                "None" if isinstance(arg, ast.Constant) and arg.value is None
                else type(arg.value).__name__ if isinstance(arg, ast.Constant)
                else ast.unparse(arg)
                for arg in args
            ]
        return [origin]

    if isinstance(node, ast.Name | ast.Attribute):
        return [_normalize(parsed.resolve_expr(node) or ast.unparse(node))]

    return [ast.unparse(node)]


def _member_is_subtype(sub: str, sup: str, hierarchy: Hierarchy) -> bool | None:
    """Decide ``sub <: sup`` for single members; None when undecidable."""
    if sub == sup or sup in TOP_TYPES or sub in ANY_TYPES:
        return True
    if sub == "None" or sup == "None":
        return False
    if sup in _NUMERIC_PROMOTIONS.get(sub, ()):
        return True
    if hierarchy.is_subclass(sub, sup):
        return True
    if hierarchy.knows(sub) and hierarchy.knows(sup):
        return False
    return None


def is_subtype(sub: TypeExpr, sup: TypeExpr, hierarchy: Hierarchy) -> bool:
    """Whether every member of ``sub`` is a subtype of some member of ``sup``.

    Members involving classes outside the scan set and the standard library
    cannot be decided and are given the benefit of the doubt.
    """
    for member in sub.members:
        verdicts = [_member_is_subtype(member, target, hierarchy) for target in sup.members]
        if True in verdicts:
            continue
        if None in verdicts:
            logger.debug("Cannot decide whether %s is a subtype of %s", member, sup)
            continue
        return False
    return True
