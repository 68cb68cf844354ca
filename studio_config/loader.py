"""
Configuration Loader (``studio_config.loader``).

Responsibility
--------------
Loads YAML configuration files and parses them into the typed
``studio_config.schema`` dataclasses.  The single public entry point for
runtime config is ``studio_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; required sections have no silent defaults.
* Monetary values are parsed through ``str`` into ``Decimal``, never float.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from studio_config.schema import (
    AuthorizationDef,
    ConfigurationSet,
    PayrollRulesDef,
    RateScheduleDef,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top-level document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping at the top of {path}, got {type(data).__name__}")
    return data


def _parse_decimal(value: Any, field_name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"{field_name} must be a number, got {value!r}") from exc


def parse_rate_schedule(data: dict[str, Any]) -> RateScheduleDef:
    """Parse the ``rates`` section."""
    return RateScheduleDef(
        late_rate_per_occurrence=_parse_decimal(
            data["late_rate_per_occurrence"], "late_rate_per_occurrence"
        ),
        absent_rate_per_day=_parse_decimal(
            data["absent_rate_per_day"], "absent_rate_per_day"
        ),
        missed_duty_rate_per_occurrence=_parse_decimal(
            data["missed_duty_rate_per_occurrence"], "missed_duty_rate_per_occurrence"
        ),
        version=str(data.get("version", "1")),
    )


def parse_authorization(data: dict[str, Any]) -> AuthorizationDef:
    """Parse the ``authorization`` section."""
    return AuthorizationDef(
        privileged_roles=frozenset(data.get("privileged_roles", ["ADMIN"])),
        privileged_positions=frozenset(data.get("privileged_positions", [])),
    )


def parse_configuration_set(data: dict[str, Any]) -> ConfigurationSet:
    """
    Parse a full configuration document.

    Required keys: ``config_id``, ``rates``.  ``authorization`` and
    ``payroll`` fall back to defaults when absent.
    """
    return ConfigurationSet(
        config_id=str(data["config_id"]),
        version=int(data.get("version", 1)),
        rates=parse_rate_schedule(data["rates"]),
        authorization=parse_authorization(data.get("authorization") or {}),
        payroll_rules=PayrollRulesDef(values=dict(data.get("payroll") or {})),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
