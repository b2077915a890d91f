"""
Configuration Loader (``incentive_config.loader``).

Responsibility
--------------
Loads a YAML settings file and parses it into the frozen
``IncentiveSettings`` dataclass.  The public runtime entry point is
``incentive_config.get_active_config()``; this module is the tooling it
delegates to.

Invariants enforced
-------------------
* Unknown keys are rejected rather than silently ignored.
* Every parsed object is a frozen dataclass from ``schema.py``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key or invalid value  -> ``ValueError``.
"""

from __future__ import annotations

from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from incentive_config.schema import IncentiveSettings


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def parse_settings(data: dict[str, Any], overrides: dict[str, Any] | None = None) -> IncentiveSettings:
    """
    Build ``IncentiveSettings`` from a parsed YAML mapping.

    The document may nest its keys under an ``incentives:`` section.
    ``overrides`` (already-typed values, e.g. from the environment) win
    over file values.
    """
    section = data.get("incentives", data)
    if not isinstance(section, dict):
        raise ValueError("incentives section must be a mapping")

    known = {f.name for f in fields(IncentiveSettings)}
    unknown = set(section) - known
    if unknown:
        raise ValueError(f"Unknown settings keys: {sorted(unknown)}")

    values = dict(section)
    if overrides:
        values.update({k: v for k, v in overrides.items() if v is not None})

    if "counted_order_statuses" in values:
        values["counted_order_statuses"] = tuple(values["counted_order_statuses"])
    if "log_level" in values:
        values["log_level"] = str(values["log_level"]).upper()

    return IncentiveSettings(**values)
