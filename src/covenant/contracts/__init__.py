"""Contract conformance: checkers, violations and audit runs."""

from covenant.contracts.audit import AuditReport, LoadFailure, audit, build_checkers
from covenant.contracts.checker import Checker, ContractChecker
from covenant.contracts.violation import Violation

__all__ = [
    "AuditReport",
    "Checker",
    "ContractChecker",
    "LoadFailure",
    "Violation",
    "audit",
    "build_checkers",
]
