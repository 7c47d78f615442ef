"""Static analysis: parsing, symbol table, docstrings and raised exceptions."""

from covenant.analysis.annotations import TypeExpr, is_subtype, parse_annotation
from covenant.analysis.docstrings import declared_throws
from covenant.analysis.source import (
    ParsedFile,
    SourceCache,
    clear_source_cache,
    get_source_cache,
)
from covenant.analysis.symbols import ClassIndex, ClassInfo, MethodInfo, ParameterInfo
from covenant.analysis.throws import ThrowsResolver

__all__ = [
    # Source
    "ParsedFile",
    "SourceCache",
    "clear_source_cache",
    "get_source_cache",
    # Symbols
    "ClassIndex",
    "ClassInfo",
    "MethodInfo",
    "ParameterInfo",
    # Types
    "TypeExpr",
    "is_subtype",
    "parse_annotation",
    # Exceptions
    "ThrowsResolver",
    "declared_throws",
]
