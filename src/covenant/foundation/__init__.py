"""Foundation layer: errors and logging shared by every Covenant module."""

from covenant.foundation.errors import (
    ClassLoadError,
    CovenantError,
    ErrorCode,
)
from covenant.foundation.logging import configure_logging

__all__ = [
    "ClassLoadError",
    "CovenantError",
    "ErrorCode",
    "configure_logging",
]
