"""
Settings Loader (``program_config.loader``).

Responsibility
--------------
Loads a YAML settings document and parses it into the frozen
``program_config.schema`` dataclasses.

Invariants enforced
-------------------
* Unknown sections or keys raise ``ValueError`` -- a misspelled key never
  silently falls back to a default.
* Monetary and rate values are parsed to ``Decimal`` via ``str`` -- never float.
* ``compute_checksum`` produces a deterministic SHA-256 hash for settings
  identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid value  -> ``ValueError``.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from program_config.schema import (
    AppSettings,
    FinanceSettings,
    ImportSettings,
    RequestSettings,
)

_SECTIONS: dict[str, type] = {
    "finance": FinanceSettings,
    "request": RequestSettings,
    "imports": ImportSettings,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings document must be a mapping, got {type(data).__name__}")
    return data


def parse_decimal(key: str, value: Any) -> Decimal:
    """Parse a YAML scalar into Decimal, rejecting non-numeric input."""
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{key}: expected a number, got {value!r}") from None


def _parse_section(name: str, cls: type, data: dict[str, Any]) -> Any:
    if not isinstance(data, dict):
        raise ValueError(f"Section {name!r} must be a mapping")
    fields = {f.name: f for f in dataclasses.fields(cls)}
    unknown = sorted(set(data) - set(fields))
    if unknown:
        raise ValueError(f"Unknown keys in {name!r}: {', '.join(unknown)}")

    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        default = fields[key].default
        label = f"{name}.{key}"
        if isinstance(default, Decimal):
            kwargs[key] = parse_decimal(label, value)
        elif isinstance(default, bool):
            kwargs[key] = bool(value)
        elif isinstance(default, int):
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValueError(f"{label}: expected a positive integer, got {value!r}")
            kwargs[key] = value
        elif isinstance(default, float):
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ValueError(f"{label}: expected a positive number, got {value!r}")
            kwargs[key] = float(value)
        else:
            kwargs[key] = str(value)
    return cls(**kwargs)


def parse_settings(data: dict[str, Any]) -> AppSettings:
    """
    Parse an ``AppSettings`` from a dict.

    Missing sections and keys take schema defaults.
    """
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ValueError(f"Unknown settings sections: {', '.join(unknown)}")
    sections = {
        name: _parse_section(name, cls, data[name])
        for name, cls in _SECTIONS.items()
        if data.get(name) is not None
    }
    return AppSettings(**sections)


def load_settings(path: Path) -> AppSettings:
    """Load and parse a YAML settings document."""
    return parse_settings(load_yaml_file(Path(path)))


def compute_checksum(settings: AppSettings) -> str:
    """
    Compute SHA-256 checksum of the canonical JSON serialization.

    Identical settings always produce identical checksums.
    """
    canonical = json.dumps(dataclasses.asdict(settings), sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
