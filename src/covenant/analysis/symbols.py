"""Static symbol table for the scan set.

Stands in for live reflection: classes, their bases, methods, parameter and
return annotations, docstrings and line ranges are read from parsed sources
so that interface/parent relationships can be reconstructed without
importing the audited code.

Classes outside the scan set are resolved only when they are builtins or
live in the standard library, where importing is side-effect free.
"""

from __future__ import annotations

import ast
import builtins
import functools
import importlib
import logging
import sys
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

from covenant.analysis.annotations import TypeExpr, parse_annotation
from covenant.analysis.source import ParsedFile, SourceCache, get_source_cache
from covenant.foundation.errors import class_ambiguous, class_not_found

logger = logging.getLogger(__name__)

__all__ = [
    "ClassIndex",
    "ClassInfo",
    "MethodInfo",
    "ParameterInfo",
]

_PROTOCOL_BASES = frozenset({"typing.Protocol", "typing_extensions.Protocol"})
_ABC_BASES = frozenset({"abc.ABC"})
_ABC_METACLASSES = frozenset({"abc.ABCMeta"})
_ABSTRACT_DECORATORS = frozenset({"abc.abstractmethod", "abstractmethod"})
_OVERLOAD_DECORATORS = frozenset({"typing.overload", "typing_extensions.overload"})

DEFAULT_EXCLUDE = ("__pycache__", ".git", ".venv", "venv", "node_modules", ".pytest_cache", ".tox")


@dataclass(frozen=True, slots=True)
class ParameterInfo:
    """One declared parameter (``self``/``cls`` excluded)."""

    name: str
    annotation: TypeExpr | None = None
    keyword_only: bool = False


@dataclass(frozen=True, slots=True)
class MethodInfo:
    """A method declaration and where to find its body."""

    name: str
    owner: str
    """Fully-qualified name of the declaring class."""

    module: str
    path: Path
    lineno: int
    end_lineno: int
    docstring: str | None = None
    parameters: tuple[ParameterInfo, ...] = ()
    returns: TypeExpr | None = None
    kind: str = "instance"
    """One of "instance", "class" or "static"."""

    is_abstract: bool = False

    @property
    def qualname(self) -> str:
        return f"{self.owner}.{self.name}"

    @property
    def positional(self) -> tuple[ParameterInfo, ...]:
        return tuple(p for p in self.parameters if not p.keyword_only)

    @property
    def keyword_only(self) -> dict[str, ParameterInfo]:
        return {p.name: p for p in self.parameters if p.keyword_only}


@dataclass(slots=True)
class ClassInfo:
    """A class declaration."""

    fqn: str
    name: str
    module: str
    path: Path
    lineno: int
    end_lineno: int
    bases: tuple[str, ...] = ()
    """Resolved base names, in declaration order."""

    methods: dict[str, MethodInfo] = field(default_factory=dict)
    declares_protocol: bool = False
    declares_abc: bool = False


@functools.lru_cache(maxsize=512)
def _external_class(name: str) -> type | None:
    """Live class object for a builtin or standard-library name."""
    module_name, _, attr = name.rpartition(".")
    if not module_name:
        obj = getattr(builtins, name, None)
        return obj if isinstance(obj, type) else None
    if module_name.split(".")[0] not in sys.stdlib_module_names:
        return None
    try:
        module = importlib.import_module(module_name)
    except ImportError:
        return None
    obj = getattr(module, attr, None)
    return obj if isinstance(obj, type) else None


def _c3_merge(sequences: list[list[str]]) -> list[str] | None:
    """C3 linearization merge; None when the hierarchy is inconsistent."""
    sequences = [list(seq) for seq in sequences if seq]
    result: list[str] = []
    while sequences:
        for seq in sequences:
            head = seq[0]
            if not any(head in other[1:] for other in sequences):
                break
        else:
            return None
        result.append(head)
        for seq in sequences:
            if seq and seq[0] == head:
                del seq[0]
        sequences = [seq for seq in sequences if seq]
    return result


class ClassIndex:
    """Name -> declaration table over the scan set.

    Example:
        >>> index = ClassIndex.build([Path("src")])
        >>> [c.fqn for c in index.contracts("pkg.store.FileStore")]
        ['pkg.store.Store']
    """

    def __init__(self, cache: SourceCache | None = None) -> None:
        self.cache = cache if cache is not None else get_source_cache()
        self._classes: dict[str, ClassInfo] = {}
        self._modules: dict[str, ParsedFile] = {}
        self._mro_cache: dict[str, tuple[str, ...]] = {}

    # === Building ===

    @classmethod
    def build(
        cls,
        paths: Iterable[str | Path],
        *,
        cache: SourceCache | None = None,
        exclude: Iterable[str] = DEFAULT_EXCLUDE,
    ) -> ClassIndex:
        """Index every Python file under the given files and directories."""
        index = cls(cache)
        exclude = tuple(exclude)
        for path in paths:
            path = Path(path)
            if path.is_dir():
                for file_path in sorted(path.rglob("*.py")):
                    if not any(pattern in file_path.parts for pattern in exclude):
                        index.add_file(file_path)
            else:
                index.add_file(path)
        logger.info("Indexed %d classes from %d modules", len(index._classes), len(index._modules))
        return index

    def add_file(self, path: str | Path) -> int:
        """Index one file. Returns the number of classes found."""
        parsed = self.cache.parse(path)
        if parsed is None:
            return 0
        self._modules[parsed.module] = parsed
        self._mro_cache.clear()
        before = len(self._classes)
        for stmt in parsed.tree.body:
            if isinstance(stmt, ast.ClassDef):
                self._index_class(stmt, parsed, parsed.module)
        return len(self._classes) - before

    def _index_class(self, node: ast.ClassDef, parsed: ParsedFile, prefix: str) -> None:
        fqn = f"{prefix}.{node.name}"
        bases = []
        for base in node.bases:
            target = base.value if isinstance(base, ast.Subscript) else base
            bases.append(parsed.resolve_expr(target) or ast.unparse(target))
        metaclass = next(
            (parsed.resolve_expr(kw.value) for kw in node.keywords if kw.arg == "metaclass"),
            None,
        )

        info = ClassInfo(
            fqn=fqn,
            name=node.name,
            module=parsed.module,
            path=parsed.path,
            lineno=node.lineno,
            end_lineno=node.end_lineno or node.lineno,
            bases=tuple(bases),
            declares_protocol=any(b in _PROTOCOL_BASES for b in bases),
            declares_abc=any(b in _ABC_BASES for b in bases) or metaclass in _ABC_METACLASSES,
        )
        self._classes[fqn] = info

        for stmt in node.body:
            if isinstance(stmt, ast.FunctionDef | ast.AsyncFunctionDef):
                method = self._method_info(stmt, parsed, fqn)
                if method is not None:
                    # Later redefinition wins, as at runtime
                    info.methods[method.name] = method
            elif isinstance(stmt, ast.ClassDef):
                self._index_class(stmt, parsed, fqn)

    def _method_info(
        self,
        node: ast.FunctionDef | ast.AsyncFunctionDef,
        parsed: ParsedFile,
        owner: str,
    ) -> MethodInfo | None:
        decorators = []
        for decorator in node.decorator_list:
            target = decorator.func if isinstance(decorator, ast.Call) else decorator
            if isinstance(target, ast.Attribute) and target.attr in ("setter", "deleter"):
                return None  # The property getter carries the signature
            decorators.append(parsed.resolve_expr(target) or ast.unparse(target))

        if any(d in _OVERLOAD_DECORATORS for d in decorators):
            return None

        kind = "instance"
        if "staticmethod" in decorators:
            kind = "static"
        elif "classmethod" in decorators:
            kind = "class"

        args = node.args
        positional = [*args.posonlyargs, *args.args]
        if kind != "static" and positional:
            positional = positional[1:]
        parameters = [
            ParameterInfo(name=a.arg, annotation=parse_annotation(a.annotation, parsed))
            for a in positional
        ]
        parameters.extend(
            ParameterInfo(name=a.arg, annotation=parse_annotation(a.annotation, parsed), keyword_only=True)
            for a in args.kwonlyargs
        )

        return MethodInfo(
            name=node.name,
            owner=owner,
            module=parsed.module,
            path=parsed.path,
            lineno=node.lineno,
            end_lineno=node.end_lineno or node.lineno,
            docstring=ast.get_docstring(node),
            parameters=tuple(parameters),
            returns=parse_annotation(node.returns, parsed),
            kind=kind,
            is_abstract=any(d in _ABSTRACT_DECORATORS for d in decorators),
        )

    # === Lookups ===

    def __len__(self) -> int:
        return len(self._classes)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.canonical(name) in self._classes

    def __iter__(self) -> Iterator[ClassInfo]:
        return iter(self._classes.values())

    def module(self, name: str) -> ParsedFile | None:
        return self._modules.get(name)

    def canonical(self, name: str) -> str:
        """Follow re-exports (``from .errors import IOFailure`` in a package
        ``__init__``) until the defining module is reached."""
        seen: set[str] = set()
        while name not in self._classes and name not in seen:
            seen.add(name)
            module_name, _, attr = name.rpartition(".")
            parsed = self._modules.get(module_name)
            if parsed is None or attr not in parsed.aliases:
                break
            name = parsed.aliases[attr]
        return name

    def get(self, name: str) -> ClassInfo | None:
        return self._classes.get(self.canonical(name))

    def _suffix_matches(self, name: str) -> list[str]:
        return [fqn for fqn in self._classes if fqn.endswith("." + name)]

    def lookup(self, name: str) -> ClassInfo:
        """Find a class by fully-qualified name or unambiguous dotted suffix.

        Raises:
            ClassLoadError: If no class, or more than one, matches.
        """
        info = self.get(name)
        if info is not None:
            return info
        candidates = self._suffix_matches(name)
        if len(candidates) == 1:
            return self._classes[candidates[0]]
        if candidates:
            raise class_ambiguous(name, candidates)
        raise class_not_found(name)

    def resolve_reference(self, module: str, text: str) -> str:
        """Resolve a name written inside ``module`` (e.g. in a docstring).

        Names the module neither imports nor defines fall back to the one
        indexed class they are a dotted suffix of; with no match, or several,
        the text is returned unchanged.
        """
        head = text.partition(".")[0]
        parsed = self._modules.get(module)
        if parsed is not None and parsed.resolve_name(head) is not None:
            return self.canonical(parsed.resolve_dotted(text))
        if parsed is None and hasattr(builtins, head):
            return text
        name = self.canonical(text)
        if name in self._classes:
            return name
        candidates = self._suffix_matches(text)
        return candidates[0] if len(candidates) == 1 else name

    # === Hierarchy ===

    def direct_bases(self, fqn: str) -> list[str]:
        """Indexed direct bases, canonicalized, in declaration order."""
        info = self.get(fqn)
        if info is None:
            return []
        bases = [self.canonical(b) for b in info.bases]
        return list(dict.fromkeys(b for b in bases if b in self._classes))

    def mro(self, fqn: str) -> tuple[str, ...]:
        """C3 linearization restricted to indexed classes."""
        fqn = self.canonical(fqn)
        if fqn in self._mro_cache:
            return self._mro_cache[fqn]
        if fqn not in self._classes:
            return ()
        self._mro_cache[fqn] = (fqn,)  # Guards inheritance cycles in broken code

        bases = self.direct_bases(fqn)
        sequences = [list(self.mro(b)) for b in bases] + [bases]
        merged = _c3_merge(sequences)
        if merged is None:
            logger.debug("Inconsistent MRO for %s, falling back to depth-first order", fqn)
            merged = list(dict.fromkeys(c for seq in sequences for c in seq))

        result = (fqn, *(c for c in merged if c != fqn))
        self._mro_cache[fqn] = result
        return result

    def find_method(self, fqn: str, name: str) -> MethodInfo | None:
        """Method ``name`` as seen on class ``fqn`` (first hit along the MRO)."""
        for class_name in self.mro(fqn):
            method = self._classes[class_name].methods.get(name)
            if method is not None:
                return method
        return None

    def find_method_after(self, fqn: str, owner: str, name: str) -> MethodInfo | None:
        """What ``super().name`` means inside ``owner`` for an instance of ``fqn``."""
        order = self.mro(fqn)
        if owner not in order:
            order = self.mro(owner)
        if owner not in order:
            return None
        for class_name in order[order.index(owner) + 1:]:
            method = self._classes[class_name].methods.get(name)
            if method is not None:
                return method
        return None

    def visible_methods(self, fqn: str) -> list[MethodInfo]:
        """Own and inherited methods of a class, first definition per name."""
        methods: dict[str, MethodInfo] = {}
        for class_name in self.mro(fqn):
            for name, method in self._classes[class_name].methods.items():
                methods.setdefault(name, method)
        return list(methods.values())

    def _is_abc_derived(self, fqn: str) -> bool:
        return any(
            self._classes[c].declares_abc or self._classes[c].declares_protocol
            for c in self.mro(fqn)
        )

    def is_interface(self, fqn: str) -> bool:
        """A Protocol, or an ABC whose own methods are all abstract."""
        info = self.get(fqn)
        if info is None:
            return False
        if info.declares_protocol:
            return True
        if not info.methods:
            return info.declares_abc
        return self._is_abc_derived(info.fqn) and all(m.is_abstract for m in info.methods.values())

    def interfaces(self, fqn: str) -> list[str]:
        """Every interface the class implements, in MRO order."""
        return [c for c in self.mro(fqn)[1:] if self.is_interface(c)]

    def parents(self, fqn: str) -> list[str]:
        """Direct indexed bases that are not interfaces."""
        return [b for b in self.direct_bases(fqn) if not self.is_interface(b)]

    def contracts(self, fqn: str) -> list[ClassInfo]:
        """Interfaces first, then parent classes."""
        names = dict.fromkeys([*self.interfaces(fqn), *self.parents(fqn)])
        return [self._classes[name] for name in names]

    # === Subtyping ===

    def knows(self, name: str) -> bool:
        name = self.canonical(name)
        return name in self._classes or _external_class(name) is not None

    def is_subclass(self, sub: str, sup: str) -> bool:
        """Transitive subclass test across indexed and builtin/stdlib classes."""
        return self._is_subclass(self.canonical(sub), self.canonical(sup), set())

    def _is_subclass(self, sub: str, sup: str, seen: set[str]) -> bool:
        if sub == sup:
            return True
        if sub in seen:
            return False
        seen.add(sub)

        info = self._classes.get(sub)
        if info is not None:
            return any(self._is_subclass(self.canonical(base), sup, seen) for base in info.bases)

        sub_cls, sup_cls = _external_class(sub), _external_class(sup)
        if sub_cls is None or sup_cls is None:
            return False
        try:
            return issubclass(sub_cls, sup_cls)
        except TypeError:
            return False
