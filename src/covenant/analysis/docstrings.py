"""Declared exceptions from method docstrings.

Only tag lines are recognized, never prose: a tag must start its docstring
line (leading whitespace ignored). Supported conventions:

- Sphinx fields: ``:raises ValueError: when the value is bad``
- Tag lines: ``@raises ValueError`` / ``@throws ValueError``
- Google sections::

      Raises:
          ValueError: when the value is bad

- NumPy sections::

      Raises
      ------
      ValueError
          when the value is bad

The argument is the first whitespace-delimited token and may be a ``|``
union; anything after it is description. Malformed tags contribute nothing.
"""

import re
from collections.abc import Iterable, Iterator

from covenant.config import DOCSTRING_STYLES

__all__ = ["declared_throws", "split_type_token"]

_SPHINX_RE = re.compile(r"^\s*:(?:raises?|except|exception)\s+((?::[\w.]+:)*[^\s:]+)")
_TAG_RE = re.compile(r"^\s*@(?:raises?|throws)\s+(\S+)")
_GOOGLE_HEADER_RE = re.compile(r"^(\s*)Raises:\s*$")
_GOOGLE_ENTRY_RE = re.compile(r"^\s*(\S+?):(?:\s|$)")
_NUMPY_HEADER_RE = re.compile(r"^(\s*)Raises\s*$")
_UNDERLINE_RE = re.compile(r"^\s*-{3,}\s*$")
_ROLE_RE = re.compile(r"^(?::[\w.]+)+:")
_NAME_RE = re.compile(r"^[A-Za-z_][\w.]*$")


def _indent(line: str) -> int:
    return len(line) - len(line.lstrip())


def _first_token(line: str) -> str:
    return line.split(maxsplit=1)[0] if line.strip() else ""


def _sphinx(lines: list[str]) -> Iterator[tuple[int, str]]:
    for i, line in enumerate(lines):
        if match := _SPHINX_RE.match(line):
            yield i, match.group(1)


def _tags(lines: list[str]) -> Iterator[tuple[int, str]]:
    for i, line in enumerate(lines):
        if match := _TAG_RE.match(line):
            yield i, match.group(1)


def _google(lines: list[str]) -> Iterator[tuple[int, str]]:
    for i, line in enumerate(lines):
        header = _GOOGLE_HEADER_RE.match(line)
        if not header:
            continue
        header_indent = len(header.group(1))
        entry_indent: int | None = None
        for j in range(i + 1, len(lines)):
            entry = lines[j]
            if not entry.strip():
                continue
            indent = _indent(entry)
            if indent <= header_indent:
                break
            if entry_indent is None:
                entry_indent = indent
            if indent == entry_indent and (match := _GOOGLE_ENTRY_RE.match(entry)):
                yield j, match.group(1)


def _numpy(lines: list[str]) -> Iterator[tuple[int, str]]:
    for i, line in enumerate(lines[:-1]):
        header = _NUMPY_HEADER_RE.match(line)
        if not header or not _UNDERLINE_RE.match(lines[i + 1]):
            continue
        header_indent = len(header.group(1))
        for j in range(i + 2, len(lines)):
            entry = lines[j]
            if not entry.strip():
                continue
            indent = _indent(entry)
            if indent < header_indent:
                break
            if j + 1 < len(lines) and _UNDERLINE_RE.match(lines[j + 1]):
                break  # Next section header
            if indent == header_indent:
                yield j, _first_token(entry)


_EXTRACTORS = {
    "sphinx": _sphinx,
    "tag": _tags,
    "google": _google,
    "numpy": _numpy,
}


def _clean(name: str) -> str:
    """Strip qualifier markers: roles, backticks, ``~``/``!`` and trailing punctuation."""
    name = _ROLE_RE.sub("", name.strip())
    name = name.strip("`").lstrip("~!.").rstrip(":,.;")
    return name.strip("`")


def split_type_token(token: str) -> list[str]:
    """Split a type token into normalized member names.

    Example:
        >>> split_type_token("~pkg.errors.IOFailure|ValueError:")
        ['pkg.errors.IOFailure', 'ValueError']
    """
    members = []
    for part in token.split("|"):
        name = _clean(part)
        if name and _NAME_RE.match(name):
            members.append(name)
    return members


def declared_throws(
    docstring: str | None,
    styles: Iterable[str] = DOCSTRING_STYLES,
) -> tuple[str, ...]:
    """Return the exception names a docstring declares, in textual order.

    Args:
        docstring: Cleaned docstring text (``ast.get_docstring``), or None.
        styles: Docstring conventions to recognize.

    Returns:
        Deduplicated names as written (not yet resolved against imports).
    """
    if not docstring:
        return ()

    lines = docstring.expandtabs().splitlines()
    found: list[tuple[int, str]] = []
    for style in styles:
        extractor = _EXTRACTORS.get(style)
        if extractor is not None:
            found.extend(extractor(lines))

    names: dict[str, None] = {}
    for _, token in sorted(found, key=lambda item: item[0]):
        for name in split_type_token(token):
            names.setdefault(name, None)
    return tuple(names)
