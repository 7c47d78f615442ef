"""Covenant - contract conformance auditing for Python class hierarchies.

Finds overriding methods that raise exceptions their contracts do not allow,
return types that are not covariant and parameter types that narrow a
contract's precondition.
"""

from covenant.analysis import ClassIndex, SourceCache, ThrowsResolver
from covenant.config import CovenantConfig, get_config, load_config
from covenant.contracts import AuditReport, ContractChecker, Violation, audit
from covenant.foundation.errors import ClassLoadError, CovenantError, ErrorCode

__version__ = "0.1.0"

__all__ = [
    "AuditReport",
    "ClassIndex",
    "ClassLoadError",
    "ContractChecker",
    "CovenantConfig",
    "CovenantError",
    "ErrorCode",
    "SourceCache",
    "ThrowsResolver",
    "Violation",
    "audit",
    "get_config",
    "load_config",
]
