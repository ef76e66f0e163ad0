"""
program_config -- single public entrypoint for runtime settings.

Responsibility:
    Provides ``get_settings()``, the one way services obtain configuration.
    The optional YAML document named by ``PROGRAM_FINANCE_CONFIG`` is parsed
    by ``program_config.loader``; without it the schema defaults apply.

Failure modes:
    - ``FileNotFoundError`` -- ``PROGRAM_FINANCE_CONFIG`` names a missing file.
    - ``ValueError`` -- unknown keys or invalid values in the document.
"""

from __future__ import annotations

import os
from pathlib import Path

from program_config.loader import compute_checksum, load_settings, parse_settings
from program_config.schema import (
    AppSettings,
    FinanceSettings,
    ImportSettings,
    RequestSettings,
)
from program_kernel.logging_config import get_logger

logger = get_logger("config")

CONFIG_ENV_VAR = "PROGRAM_FINANCE_CONFIG"


def get_settings(path: Path | None = None) -> AppSettings:
    """Load settings from ``path``, the environment variable, or defaults."""
    if path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        path = Path(env_path) if env_path else None
    settings = load_settings(path) if path is not None else AppSettings()
    logger.info(
        "settings_loaded",
        extra={
            "source": str(path) if path is not None else "defaults",
            "checksum": compute_checksum(settings),
        },
    )
    return settings


__all__ = [
    "AppSettings",
    "CONFIG_ENV_VAR",
    "FinanceSettings",
    "ImportSettings",
    "RequestSettings",
    "compute_checksum",
    "get_settings",
    "load_settings",
    "parse_settings",
]
