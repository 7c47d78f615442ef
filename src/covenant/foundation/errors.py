"""Structured errors for Covenant.

Every failure the tool reports carries an ``ErrorCode``, a message rendered
from the error context, and optional hints. Violations are not errors: they
are results, see ``covenant.contracts.violation``.
"""

from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Stable numeric codes, shown to users as ``CV-<code>``.

    The thousands digit is the category:
        1xxx - Class loading errors
        2xxx - Source errors
        5xxx - Configuration errors
        6xxx - Runtime errors
    """

    # 1xxx - Class loading
    CLASS_NOT_FOUND = 1001
    CLASS_AMBIGUOUS = 1002

    # 2xxx - Source
    SOURCE_UNREADABLE = 2001
    SOURCE_SYNTAX_ERROR = 2002

    # 5xxx - Configuration
    CONFIG_INVALID = 5002

    # 6xxx - Runtime
    NO_INPUT = 6001

    @property
    def category(self) -> str:
        return _CATEGORIES.get(self.value // 1000, "unknown")

    @property
    def is_recoverable(self) -> bool:
        """Whether the audit can continue past this error."""
        return self not in {ErrorCode.CONFIG_INVALID, ErrorCode.NO_INPUT}


_CATEGORIES = {1: "class", 2: "source", 5: "config", 6: "runtime"}

ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.CLASS_NOT_FOUND: "Class '{class_name}' could not be found in the scanned sources.",
    ErrorCode.CLASS_AMBIGUOUS: "Class name '{class_name}' is ambiguous: {candidates}",
    ErrorCode.SOURCE_UNREADABLE: "Cannot read source file: {path}",
    ErrorCode.SOURCE_SYNTAX_ERROR: "Cannot parse source file {path}: {detail}",
    ErrorCode.CONFIG_INVALID: "Invalid configuration for '{key}': {detail}",
    ErrorCode.NO_INPUT: "No classes to check. {detail}",
}


RECOVERY_HINTS: dict[ErrorCode, list[str]] = {
    ErrorCode.CLASS_NOT_FOUND: [
        "Check that the file defining '{class_name}' is part of the scanned paths",
        "Use the fully-qualified name (package.module.Class)",
    ],
    ErrorCode.CLASS_AMBIGUOUS: [
        "Qualify the name with its module to pick one candidate",
    ],
    ErrorCode.NO_INPUT: [
        "Pass at least one directory or file containing class definitions",
    ],
}


class CovenantError(Exception):
    """Base error type for all Covenant errors.

    Example:
        >>> err = CovenantError(
        ...     code=ErrorCode.CLASS_NOT_FOUND,
        ...     context={"class_name": "pkg.Missing"},
        ... )
        >>> print(err)
        [CV-1001] Class 'pkg.Missing' could not be found in the scanned sources.
    """

    def __init__(
        self,
        code: ErrorCode,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        self.code = code
        self.context = context or {}
        self.cause = cause
        super().__init__(str(self))

    def _render(self, template: str) -> str:
        # Missing context keys leave the template unformatted
        try:
            return template.format(**self.context)
        except KeyError:
            return template

    @property
    def message(self) -> str:
        return self._render(ERROR_MESSAGES.get(self.code, "Unexpected error: {detail}"))

    @property
    def recovery_hints(self) -> list[str]:
        """Hints for the user, formatted with the error context."""
        return [self._render(hint) for hint in RECOVERY_HINTS.get(self.code, [])]

    @property
    def is_recoverable(self) -> bool:
        return self.code.is_recoverable

    @property
    def category(self) -> str:
        return self.code.category

    @property
    def error_id(self) -> str:
        """Get the error ID string (e.g., 'CV-1001')."""
        return f"CV-{self.code.value}"

    def __str__(self) -> str:
        return f"[{self.error_id}] {self.message}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, context={self.context!r})"

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly form used by ``covenant check --json``."""
        return {
            "error_id": self.error_id,
            "code": self.code.value,
            "category": self.category,
            "message": self.message,
            "recoverable": self.is_recoverable,
            "recovery_hints": self.recovery_hints,
            "context": self.context,
        }


class ClassLoadError(CovenantError):
    """The subject class itself could not be located or introspected.

    Reported as "could not be checked", never as a violation.
    """

    @property
    def class_name(self) -> str:
        return str(self.context.get("class_name", ""))


def class_not_found(class_name: str) -> ClassLoadError:
    """The subject class is not in the index."""
    return ClassLoadError(
        code=ErrorCode.CLASS_NOT_FOUND,
        context={"class_name": class_name},
    )


def class_ambiguous(class_name: str, candidates: list[str]) -> ClassLoadError:
    return ClassLoadError(
        code=ErrorCode.CLASS_AMBIGUOUS,
        context={"class_name": class_name, "candidates": ", ".join(candidates)},
    )


def config_error(key: str, detail: str, cause: Exception | None = None) -> CovenantError:
    """A config file, env override or config value is invalid."""
    return CovenantError(
        code=ErrorCode.CONFIG_INVALID,
        context={"key": key, "detail": detail},
        cause=cause,
    )
