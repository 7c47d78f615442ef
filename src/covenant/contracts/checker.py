"""Contract conformance checking.

For every contract of a class (each interface it implements, then each parent
class) and every method the class genuinely overrides, the checker compares:

- exceptions declared in the docstring against those the contract declares
- exceptions raised in code against those the contract declares
- the return annotation (must be covariant)
- parameter annotations (must be contravariant)

Python does not enforce signature variance when a class is defined, so the
parameter check is a primary detector here rather than a confirmation.
"""

from __future__ import annotations

import logging
from typing import Protocol

from covenant.analysis.annotations import is_subtype
from covenant.analysis.docstrings import declared_throws
from covenant.analysis.symbols import ClassIndex, ClassInfo, MethodInfo, ParameterInfo
from covenant.analysis.throws import ThrowsResolver
from covenant.config import AnalysisConfig
from covenant.contracts.violation import Violation

logger = logging.getLogger(__name__)

__all__ = ["Checker", "ContractChecker"]


class Checker(Protocol):
    """A rule that audits one class at a time."""

    name: str

    def check(self, class_name: str) -> list[Violation]:
        """Return every violation found on the class.

        Raises:
            ClassLoadError: If the class cannot be found in the symbol table.
        """
        ...


class ContractChecker:
    """Checks overriding methods against the contracts they implement."""

    name = "contracts"

    def __init__(
        self,
        index: ClassIndex,
        config: AnalysisConfig | None = None,
        resolver: ThrowsResolver | None = None,
    ) -> None:
        self.index = index
        self.config = config or AnalysisConfig()
        self.resolver = resolver or ThrowsResolver(
            index,
            max_depth=self.config.max_call_depth,
            follow_calls=self.config.follow_calls,
        )

    def check(self, class_name: str) -> list[Violation]:
        return self.compare_class_to_contracts(class_name)

    def compare_class_to_contracts(self, class_name: str) -> list[Violation]:
        """Compare a class against all of its contracts.

        Args:
            class_name: Fully-qualified name or unambiguous dotted suffix.

        Returns:
            Violations in contract order, then method order.

        Raises:
            ClassLoadError: If the class cannot be found in the symbol table.
        """
        subject = self.index.lookup(class_name)
        contracts = self.index.contracts(subject.fqn)
        logger.debug("Checking %s against %d contract(s)", subject.fqn, len(contracts))

        violations: list[Violation] = []
        for contract in contracts:
            violations.extend(self._check_against_contract(subject, contract))
        return violations

    def declared_throws(self, method: MethodInfo) -> tuple[str, ...]:
        """Docstring-declared exceptions, resolved in the method's module."""
        names = declared_throws(method.docstring, self.config.docstring_styles)
        return tuple(dict.fromkeys(self.index.resolve_reference(method.module, name) for name in names))

    def _skipped(self, name: str) -> bool:
        if name in self.config.skip_methods:
            return True
        # Name-mangled private methods are never overridden
        return name.startswith("__") and not name.endswith("__")

    def _check_against_contract(self, subject: ClassInfo, contract: ClassInfo) -> list[Violation]:
        violations: list[Violation] = []

        for contract_method in self.index.visible_methods(contract.fqn):
            if self._skipped(contract_method.name):
                continue

            method = self.index.find_method(subject.fqn, contract_method.name)
            # Inherited as-is: nothing was overridden
            if method is None or method.owner in (contract.fqn, contract_method.owner):
                continue

            violations.extend(self._check_throws(subject, method, contract, contract_method))
            violations.extend(self._check_return(subject, method, contract, contract_method))
            violations.extend(self._check_parameters(subject, method, contract, contract_method))

        return violations

    def _allowed(self, name: str, permitted: tuple[str, ...]) -> bool:
        return any(self.index.is_subclass(name, allowed) for allowed in permitted)

    def _check_throws(
        self,
        subject: ClassInfo,
        method: MethodInfo,
        contract: ClassInfo,
        contract_method: MethodInfo,
    ) -> list[Violation]:
        """Declared and raised exceptions are reported separately, even when
        they name the same type: each has to be fixed in its own place."""
        permitted = self.declared_throws(contract_method)
        declared = self.declared_throws(method)
        actual = self.resolver.actual_throws(method, self_class=subject.fqn)

        violations = [
            Violation(
                class_name=subject.fqn,
                method_name=method.name,
                contract_name=contract.fqn,
                reason=f"raises {name} declared in docstring but not allowed by the contract",
            )
            for name in declared
            if not self._allowed(name, permitted)
        ]
        violations.extend(
            Violation(
                class_name=subject.fqn,
                method_name=method.name,
                contract_name=contract.fqn,
                reason=f"raises {name} in code (detected via AST) but not allowed by the contract",
            )
            for name in actual
            if not self._allowed(name, permitted)
        )
        return violations

    def _check_return(
        self,
        subject: ClassInfo,
        method: MethodInfo,
        contract: ClassInfo,
        contract_method: MethodInfo,
    ) -> list[Violation]:
        expected, returned = contract_method.returns, method.returns
        if expected is None or returned is None:
            return []
        if is_subtype(returned, expected, self.index):
            return []
        return [
            Violation(
                class_name=subject.fqn,
                method_name=method.name,
                contract_name=contract.fqn,
                reason=(
                    "return type is not covariant with the contract "
                    f"({returned} is not a subtype of {expected})"
                ),
            )
        ]

    def _check_parameters(
        self,
        subject: ClassInfo,
        method: MethodInfo,
        contract: ClassInfo,
        contract_method: MethodInfo,
    ) -> list[Violation]:
        pairs: list[tuple[ParameterInfo, ParameterInfo]] = list(
            zip(contract_method.positional, method.positional)
        )
        overriding_keywords = method.keyword_only
        pairs.extend(
            (param, overriding_keywords[name])
            for name, param in contract_method.keyword_only.items()
            if name in overriding_keywords
        )

        violations = []
        for expected, accepted in pairs:
            if expected.annotation is None or accepted.annotation is None:
                continue
            if is_subtype(expected.annotation, accepted.annotation, self.index):
                continue
            violations.append(
                Violation(
                    class_name=subject.fqn,
                    method_name=method.name,
                    contract_name=contract.fqn,
                    reason=(
                        "parameter type narrows the contract's precondition "
                        f"('{accepted.name}': {accepted.annotation} does not accept "
                        f"{expected.annotation})"
                    ),
                )
            )
        return violations
