"""
Payroll Configuration Schema.

Defines the structure and defaults for the calculation and runtime
settings of the payroll cycle engine.  Actual values are loaded from the
``payroll`` section of the active configuration set at runtime.
"""

from dataclasses import dataclass
from datetime import time
from decimal import Decimal
from typing import Any, Self
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from studio_kernel.logging_config import get_logger

logger = get_logger("modules.payroll.config")


def _parse_time(value: Any) -> time:
    if isinstance(value, time):
        return value
    try:
        hours, minutes = str(value).split(":")
        return time(int(hours), int(minutes))
    except ValueError as exc:
        raise ValueError(f"late_threshold must be HH:MM, got {value!r}") from exc


@dataclass
class PayrollConfig:
    """
    Configuration schema for the payroll module.

    Override at instantiation with studio-specific values:

        config = PayrollConfig.from_dict(config_set.payroll_rules.values)
    """

    # Social security: rate on base salary, capped per slip
    social_security_rate: Decimal = Decimal("0.05")
    social_security_cap: Decimal = Decimal("750")

    # Withholding tax for the WHT_3 scheme
    withholding_tax_rate: Decimal = Decimal("0.03")

    # Check-ins strictly after this local time-of-day are late
    late_threshold: time = time(10, 0)
    local_timezone: str = "Asia/Bangkok"

    # Collaborator calls
    feed_timeout_seconds: float = 10.0
    max_delivery_attempts: int = 5

    # Ledger
    expense_category: str = "SALARY"

    def __post_init__(self):
        if not (Decimal("0") <= self.social_security_rate <= Decimal("1")):
            raise ValueError("social_security_rate must be between 0 and 1")
        if self.social_security_cap < 0:
            raise ValueError("social_security_cap cannot be negative")
        if not (Decimal("0") <= self.withholding_tax_rate <= Decimal("1")):
            raise ValueError("withholding_tax_rate must be between 0 and 1")
        if self.feed_timeout_seconds <= 0:
            raise ValueError("feed_timeout_seconds must be positive")
        if self.max_delivery_attempts < 1:
            raise ValueError("max_delivery_attempts must be at least 1")
        if not self.expense_category:
            raise ValueError("expense_category cannot be empty")
        try:
            ZoneInfo(self.local_timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown local_timezone '{self.local_timezone}'") from exc

        logger.info(
            "payroll_config_initialized",
            extra={
                "social_security_rate": str(self.social_security_rate),
                "social_security_cap": str(self.social_security_cap),
                "withholding_tax_rate": str(self.withholding_tax_rate),
                "late_threshold": self.late_threshold.isoformat(timespec="minutes"),
                "local_timezone": self.local_timezone,
                "max_delivery_attempts": self.max_delivery_attempts,
            },
        )

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.local_timezone)

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with the studio's standard defaults."""
        logger.info("payroll_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create config from a dictionary (e.g. the YAML ``payroll`` section)."""
        logger.info(
            "payroll_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        values = dict(data)
        for key in ("social_security_rate", "social_security_cap", "withholding_tax_rate"):
            if key in values:
                values[key] = Decimal(str(values[key]))
        if "late_threshold" in values:
            values["late_threshold"] = _parse_time(values["late_threshold"])
        if "feed_timeout_seconds" in values:
            values["feed_timeout_seconds"] = float(values["feed_timeout_seconds"])
        if "max_delivery_attempts" in values:
            values["max_delivery_attempts"] = int(values["max_delivery_attempts"])
        return cls(**values)
