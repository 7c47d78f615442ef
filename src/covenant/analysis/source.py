"""Parsed source files and the per-run syntax tree cache.

Every file is read and parsed at most once per run. Parsing also records the
file's import aliases and module-level definitions so that any short or
dotted reference can be turned into a fully-qualified name, regardless of
which alias a particular file happened to use.
"""

from __future__ import annotations

import ast
import builtins
import logging
import threading
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

from covenant.foundation.errors import CovenantError, ErrorCode

logger = logging.getLogger(__name__)

__all__ = [
    "ParsedFile",
    "SourceCache",
    "clear_source_cache",
    "get_source_cache",
    "module_name_for",
]


def module_name_for(path: Path) -> str:
    """Derive the dotted module name of a file from its package directories.

    Walks up while the parent directory holds an ``__init__.py``, so both flat
    and ``src/`` layouts resolve to the importable name.

    Example:
        >>> module_name_for(Path("src/pkg/sub/mod.py"))  # pkg/ and sub/ are packages
        'pkg.sub.mod'
    """
    path = path.resolve()
    parts = [] if path.name == "__init__.py" else [path.stem]
    directory = path.parent
    while (directory / "__init__.py").exists():
        parts.append(directory.name)
        if directory.parent == directory:
            break
        directory = directory.parent
    if not parts:
        parts.append(path.parent.name)
    return ".".join(reversed(parts))


def _module_level_statements(body: list[ast.stmt]) -> Iterator[ast.stmt]:
    """Yield module-level statements, looking inside if/try/with blocks."""
    for stmt in body:
        yield stmt
        if isinstance(stmt, ast.If):
            yield from _module_level_statements(stmt.body)
            yield from _module_level_statements(stmt.orelse)
        elif isinstance(stmt, ast.Try | ast.TryStar):
            yield from _module_level_statements(stmt.body)
            for handler in stmt.handlers:
                yield from _module_level_statements(handler.body)
            yield from _module_level_statements(stmt.orelse)
            yield from _module_level_statements(stmt.finalbody)
        elif isinstance(stmt, ast.With):
            yield from _module_level_statements(stmt.body)


@dataclass(slots=True)
class ParsedFile:
    """An AST together with the name scope needed to resolve it."""

    path: Path
    module: str
    tree: ast.Module
    is_package: bool = False
    aliases: dict[str, str] = field(default_factory=dict)
    """Local name -> fully-qualified target, from import statements."""

    definitions: set[str] = field(default_factory=set)
    """Names bound at module level (classes, functions, assignments)."""

    functions: dict[tuple[str, int, int], ast.FunctionDef | ast.AsyncFunctionDef] = field(
        default_factory=dict
    )
    """(name, first line, last line) -> every function or method definition in the file."""

    @classmethod
    def from_tree(cls, path: Path, module: str, tree: ast.Module) -> ParsedFile:
        parsed = cls(path=path, module=module, tree=tree, is_package=path.name == "__init__.py")
        parsed._collect_scope()
        for node in ast.walk(tree):
            if isinstance(node, ast.FunctionDef | ast.AsyncFunctionDef):
                parsed.functions[(node.name, node.lineno, node.end_lineno or node.lineno)] = node
        return parsed

    def _collect_scope(self) -> None:
        for stmt in _module_level_statements(self.tree.body):
            if isinstance(stmt, ast.Import):
                for alias in stmt.names:
                    if alias.asname:
                        self.aliases[alias.asname] = alias.name
                    else:
                        # `import a.b` binds `a`
                        head = alias.name.split(".")[0]
                        self.aliases[head] = head
            elif isinstance(stmt, ast.ImportFrom):
                base = self._import_base(stmt)
                if base is None:
                    continue
                for alias in stmt.names:
                    if alias.name == "*":
                        continue
                    target = f"{base}.{alias.name}" if base else alias.name
                    self.aliases[alias.asname or alias.name] = target
            elif isinstance(stmt, ast.ClassDef | ast.FunctionDef | ast.AsyncFunctionDef):
                self.definitions.add(stmt.name)
            elif isinstance(stmt, ast.Assign):
                for target in stmt.targets:
                    if isinstance(target, ast.Name):
                        self.definitions.add(target.id)
            elif isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name):
                self.definitions.add(stmt.target.id)
            elif isinstance(stmt, ast.TypeAlias):
                self.definitions.add(stmt.name.id)

    def _import_base(self, stmt: ast.ImportFrom) -> str | None:
        """Absolute module an ImportFrom pulls names out of."""
        if stmt.level == 0:
            return stmt.module or ""
        package_parts = self.module.split(".")
        if not self.is_package:
            package_parts = package_parts[:-1]
        drop = stmt.level - 1
        if drop > len(package_parts):
            logger.debug("Relative import beyond top-level package in %s", self.path)
            return None
        if drop:
            package_parts = package_parts[:-drop]
        if stmt.module:
            package_parts.append(stmt.module)
        return ".".join(package_parts)

    def resolve_name(self, name: str) -> str | None:
        """Resolve a bare identifier to a fully-qualified name.

        Returns None for names that are not imports, module-level definitions
        or builtins (local variables, parameters, star-imported names).
        Builtins stay bare: ``ValueError`` resolves to ``"ValueError"``.
        """
        if name in self.aliases:
            return self.aliases[name]
        if name in self.definitions:
            return f"{self.module}.{name}"
        if hasattr(builtins, name):
            return name
        return None

    def resolve_expr(self, node: ast.expr) -> str | None:
        """Resolve a Name or Attribute chain (``errors.IOFailure``) to a dotted name."""
        if isinstance(node, ast.Name):
            return self.resolve_name(node.id)
        if isinstance(node, ast.Attribute):
            base = self.resolve_expr(node.value)
            return f"{base}.{node.attr}" if base else None
        return None

    def resolve_dotted(self, text: str) -> str:
        """Resolve a dotted name written in text (docstrings, string annotations).

        Unresolvable names are returned unchanged.
        """
        head, _, rest = text.partition(".")
        resolved = self.resolve_name(head)
        if resolved is None:
            return text
        return f"{resolved}.{rest}" if rest else resolved


class SourceCache:
    """Memoized ``path -> ParsedFile`` loader.

    Entries are append-only for the lifetime of the cache: a file is read
    from storage once, and a failed read or parse is remembered as ``None``
    so it is not retried. Each path has its own lock, so concurrent callers
    still parse a given file exactly once.
    """

    def __init__(self) -> None:
        self._entries: dict[Path, ParsedFile | None] = {}
        self._failures: dict[Path, CovenantError] = {}
        self._locks: dict[Path, threading.Lock] = {}
        self._guard = threading.Lock()
        self.reads = 0
        """Number of times a file was read from storage."""

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str | Path) and Path(path).resolve() in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def failures(self) -> dict[Path, CovenantError]:
        """Files that could not be read or parsed, with the reason."""
        return dict(self._failures)

    def parse(self, path: str | Path, module: str | None = None) -> ParsedFile | None:
        """Return the parsed file, or None when it is unavailable.

        Args:
            path: Source file path.
            module: Dotted module name; derived from package layout if omitted.

        Returns:
            The cached ParsedFile, or None if the file cannot be read or parsed.
        """
        key = Path(path).resolve()
        if key in self._entries:
            return self._entries[key]

        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())

        with lock:
            if key in self._entries:
                return self._entries[key]
            parsed = self._load(key, module)
            self._entries[key] = parsed
            return parsed

    def _load(self, path: Path, module: str | None) -> ParsedFile | None:
        self.reads += 1
        try:
            source = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            self._fail(path, CovenantError(ErrorCode.SOURCE_UNREADABLE, {"path": str(path)}, cause=e))
            return None

        try:
            tree = ast.parse(source, filename=str(path))
        except (SyntaxError, ValueError) as e:
            self._fail(
                path,
                CovenantError(ErrorCode.SOURCE_SYNTAX_ERROR, {"path": str(path), "detail": str(e)}, cause=e),
            )
            return None

        return ParsedFile.from_tree(path, module or module_name_for(path), tree)

    def _fail(self, path: Path, error: CovenantError) -> None:
        logger.warning("%s (no code evidence will be collected from it)", error)
        self._failures[path] = error

    def clear(self) -> None:
        """Drop every entry. Only for long-running use between runs."""
        with self._guard:
            self._entries.clear()
            self._failures.clear()
            self._locks.clear()
            self.reads = 0


# Process-wide cache (lazy-loaded, thread-safe)
_cache: SourceCache | None = None
_cache_lock = threading.Lock()


def get_source_cache() -> SourceCache:
    """Get the process-wide source cache, creating it if needed."""
    global _cache
    if _cache is None:
        with _cache_lock:
            if _cache is None:
                _cache = SourceCache()
    return _cache


def clear_source_cache() -> None:
    """Clear the process-wide source cache."""
    with _cache_lock:
        if _cache is not None:
            _cache.clear()
