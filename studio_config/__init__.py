"""
studio_config -- single public entrypoint for payroll configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``ConfigurationSet`` holding
    the deduction rate schedule, the privileged role/position lists and the
    payroll rule overrides.

Architecture position:
    Configuration -- sits above ``studio_kernel`` and below
    ``studio_modules``.  The kernel never imports from this package.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``STUDIO_CONFIG_TRACE`` log entry with the config id, version,
    checksum and rate schedule version.
"""

from __future__ import annotations

from pathlib import Path

from studio_config.loader import load_yaml_file, parse_configuration_set
from studio_config.schema import (
    AuthorizationDef,
    ConfigurationSet,
    PayrollRulesDef,
    RateScheduleDef,
)
from studio_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "payroll.yaml"


def get_active_config(config_path: Path | None = None) -> ConfigurationSet:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Override path to a YAML configuration file.
            Defaults to studio_config/sets/payroll.yaml.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        KeyError / ValueError: If the document is incomplete or invalid.
    """
    path = config_path or _DEFAULT_CONFIG_PATH
    config_set = parse_configuration_set(load_yaml_file(path))

    _logger.info(
        "STUDIO_CONFIG_TRACE",
        extra={
            "trace_type": "STUDIO_CONFIG_TRACE",
            "config_set_id": config_set.config_id,
            "config_version": config_set.version,
            "checksum": config_set.checksum,
            "rate_schedule_version": config_set.rates.version,
            "source_path": str(path),
        },
    )
    return config_set


__all__ = [
    "AuthorizationDef",
    "ConfigurationSet",
    "PayrollRulesDef",
    "RateScheduleDef",
    "get_active_config",
]
