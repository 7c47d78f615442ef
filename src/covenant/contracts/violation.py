"""Contract violation record."""

from dataclasses import asdict, dataclass
from typing import Any

__all__ = ["Violation"]


@dataclass(frozen=True, slots=True)
class Violation:
    """One inconsistency between a method and one of its contracts.

    Equality compares every field. Identical reasons against two different
    contracts are two distinct violations.
    """

    class_name: str
    method_name: str
    contract_name: str
    reason: str

    def __str__(self) -> str:
        return (
            f"{self.class_name}::{self.method_name}() — "
            f"contract {self.contract_name} — {self.reason}"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return asdict(self)
