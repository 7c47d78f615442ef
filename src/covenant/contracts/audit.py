"""Run checkers over many classes and collect the outcome."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from covenant.analysis.symbols import ClassIndex
from covenant.config import CovenantConfig
from covenant.contracts.checker import Checker, ContractChecker
from covenant.contracts.violation import Violation
from covenant.foundation.errors import ClassLoadError, CovenantError, ErrorCode

logger = logging.getLogger(__name__)

__all__ = ["AuditReport", "LoadFailure", "audit", "build_checkers"]


@dataclass(frozen=True, slots=True)
class LoadFailure:
    """A class that could not be checked at all."""

    class_name: str
    message: str
    error_id: str = ""


@dataclass(slots=True)
class AuditReport:
    """Outcome of one audit run."""

    violations: list[Violation] = field(default_factory=list)
    failures: list[LoadFailure] = field(default_factory=list)
    checked: list[str] = field(default_factory=list)
    """Fully-qualified names of classes that were checked."""

    @property
    def ok(self) -> bool:
        return not self.violations and not self.failures

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "checked": list(self.checked),
            "violations": [v.to_dict() for v in self.violations],
            "failures": [
                {"class_name": f.class_name, "message": f.message, "error_id": f.error_id}
                for f in self.failures
            ],
        }


def build_checkers(index: ClassIndex, config: CovenantConfig | None = None) -> list[Checker]:
    """The closed set of checkers run by an audit."""
    config = config or CovenantConfig()
    return [ContractChecker(index, config.analysis)]


def audit(
    index: ClassIndex,
    class_names: Iterable[str] | None = None,
    checkers: Sequence[Checker] | None = None,
    config: CovenantConfig | None = None,
) -> AuditReport:
    """Check every requested class with every checker.

    A class that cannot be loaded is recorded as a failure and the run
    continues with the next class.

    Args:
        index: Symbol table over the scan set.
        class_names: Classes to check; defaults to every indexed class.
        checkers: Checkers to run; defaults to ``build_checkers``.
        config: Configuration used to build default checkers.

    Returns:
        The report, in class order then checker order.

    Raises:
        CovenantError: If there is no class to check.
    """
    names = list(class_names) if class_names is not None else [info.fqn for info in index]
    if not names:
        raise CovenantError(ErrorCode.NO_INPUT, {"detail": "The scanned paths define no classes."})

    checkers = list(checkers) if checkers is not None else build_checkers(index, config)
    report = AuditReport()

    for name in names:
        try:
            for checker in checkers:
                report.violations.extend(checker.check(name))
        except ClassLoadError as e:
            logger.info("Could not check %s: %s", name, e.message)
            report.failures.append(LoadFailure(class_name=name, message=e.message, error_id=e.error_id))
            continue
        report.checked.append(index.lookup(name).fqn)

    logger.info(
        "Checked %d class(es): %d violation(s), %d failure(s)",
        len(report.checked),
        len(report.violations),
        len(report.failures),
    )
    return report
