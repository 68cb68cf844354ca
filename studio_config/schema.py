"""
Studio configuration set schema.

Defines the human-authored, reviewable source artifact for payroll
configuration.  YAML files are parsed into these types by the loader;
runtime components (rate provider, authorizer, ``PayrollConfig``) are
built from them by the payroll module.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any


@dataclass(frozen=True)
class RateScheduleDef:
    """Disciplinary deduction amounts, versioned for audit snapshots."""

    late_rate_per_occurrence: Decimal
    absent_rate_per_day: Decimal
    missed_duty_rate_per_occurrence: Decimal
    version: str = "1"

    def __post_init__(self) -> None:
        for name in (
            "late_rate_per_occurrence",
            "absent_rate_per_day",
            "missed_duty_rate_per_occurrence",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")


@dataclass(frozen=True)
class AuthorizationDef:
    """Which roles and positions hold elevated (senior HR) privilege."""

    privileged_roles: frozenset[str] = frozenset({"ADMIN"})
    privileged_positions: frozenset[str] = frozenset()


@dataclass(frozen=True)
class PayrollRulesDef:
    """Raw payroll rule overrides; validated by ``PayrollConfig.from_dict``."""

    values: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ConfigurationSet:
    """A complete, checksummed configuration set."""

    config_id: str
    version: int
    rates: RateScheduleDef
    authorization: AuthorizationDef
    payroll_rules: PayrollRulesDef
    checksum: str
