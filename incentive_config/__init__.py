"""
incentive_config -- single public entrypoint for engine settings.

Responsibility:
    Provides the ONLY way to obtain settings at runtime through
    ``get_active_config()``.  No other component reads configuration
    files or environment variables directly.

Architecture position:
    Configuration -- sits beside ``incentive_kernel`` and below
    ``incentive_programs``.  The kernel MUST NEVER import from
    ``incentive_config``.

Failure modes:
    - ``FileNotFoundError`` -- the configured settings file is missing.
    - ``ValueError`` -- unknown keys or invalid values.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from incentive_config.loader import load_yaml_file, parse_settings
from incentive_config.schema import IncentiveSettings

_logger = logging.getLogger("incentive_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"

CONFIG_PATH_ENV = "INCENTIVE_CONFIG_PATH"
DATABASE_URL_ENV = "INCENTIVE_DATABASE_URL"


def get_active_config(config_path: Path | None = None) -> IncentiveSettings:
    """The ONLY public configuration entrypoint.

    Resolution order for the settings file: explicit ``config_path``, then
    ``INCENTIVE_CONFIG_PATH``, then the packaged ``defaults.yaml``.
    ``INCENTIVE_DATABASE_URL`` overrides ``database_url`` from any file.

    Returns:
        A frozen ``IncentiveSettings``.  Not cached; callers hold it for
        the lifetime of their service objects.
    """
    env_path = os.environ.get(CONFIG_PATH_ENV)
    path = config_path or (Path(env_path) if env_path else _DEFAULT_CONFIG_PATH)

    settings = parse_settings(
        load_yaml_file(path),
        overrides={"database_url": os.environ.get(DATABASE_URL_ENV)},
    )

    _logger.info(
        "incentive_config_loaded",
        extra={
            "config_path": str(path),
            "money_decimal_places": settings.money_decimal_places,
            "default_period_type": settings.default_period_type,
            "mark_claim_paid_on_schedule": settings.mark_claim_paid_on_schedule,
        },
    )
    return settings


__all__ = [
    "IncentiveSettings",
    "get_active_config",
]
