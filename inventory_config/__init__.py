"""
inventory_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_settings()`` and ``get_reference_data()``.  No other
    component reads configuration files directly.

Architecture position:
    Configuration -- YAML-driven.  Sits above ``inventory_kernel`` and
    below ``inventory_services``.  The kernel MUST NEVER import from
    ``inventory_config``.

Invariants enforced:
    - Single entrypoint: runtime settings flow through ``get_active_settings()``.
    - Deterministic identity: the same YAML always produces the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the configuration set does not exist.
    - ``ValueError`` -- schema or cross-reference validation failures.

Audit relevance:
    Every successful load emits an ``INVENTORY_CONFIG_TRACE`` log entry
    with the set name and checksum, tying ledger activity to the exact
    configuration that governed it.
"""

from __future__ import annotations

from pathlib import Path

from inventory_config.loader import (
    compute_checksum,
    load_reference_data,
    load_settings,
    load_yaml_file,
)
from inventory_config.schema import (
    EngineSettings,
    OpeningStockDef,
    ReferenceData,
    ThresholdDef,
)
from inventory_kernel.logging_config import get_logger

_logger = get_logger("config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
DEFAULT_SET = "default"

SETTINGS_FILE = "settings.yaml"
REFERENCE_DATA_FILE = "reference_data.yaml"


def _set_dir(config_dir: Path | str | None, set_name: str) -> Path:
    base = Path(config_dir) if config_dir is not None else _DEFAULT_CONFIG_DIR
    candidate = base / set_name
    if candidate.is_dir():
        return candidate
    # Allow pointing directly at a set directory.
    if (base / SETTINGS_FILE).is_file():
        return base
    raise FileNotFoundError(f"No configuration set '{set_name}' under {base}")


def get_active_settings(
    config_dir: Path | str | None = None,
    set_name: str = DEFAULT_SET,
) -> EngineSettings:
    """The ONLY public settings entrypoint.

    Args:
        config_dir: Override path to the configuration sets directory, or
            to a single set directory.  Defaults to inventory_config/sets/.
        set_name: Configuration set to load.

    Raises:
        FileNotFoundError: If the set or its settings file is missing.
        ValueError: If validation fails.
    """
    set_dir = _set_dir(config_dir, set_name)
    settings = load_settings(set_dir / SETTINGS_FILE)
    _logger.info(
        "INVENTORY_CONFIG_TRACE",
        extra={
            "trace_type": "INVENTORY_CONFIG_TRACE",
            "artifact": "settings",
            "config_set": set_dir.name,
            "checksum": settings.checksum,
            "persistent": settings.database_url is not None,
        },
    )
    return settings


def get_reference_data(
    config_dir: Path | str | None = None,
    set_name: str = DEFAULT_SET,
) -> ReferenceData:
    """Catalog seed of a configuration set; empty when the set has none."""
    set_dir = _set_dir(config_dir, set_name)
    path = set_dir / REFERENCE_DATA_FILE
    if not path.is_file():
        return ReferenceData()
    reference = load_reference_data(path)
    _logger.info(
        "INVENTORY_CONFIG_TRACE",
        extra={
            "trace_type": "INVENTORY_CONFIG_TRACE",
            "artifact": "reference_data",
            "config_set": set_dir.name,
            "checksum": reference.checksum,
            "hospital_count": len(reference.hospitals),
            "item_count": len(reference.items),
            "user_count": len(reference.users),
        },
    )
    return reference


__all__ = [
    "EngineSettings",
    "OpeningStockDef",
    "ReferenceData",
    "ThresholdDef",
    "compute_checksum",
    "get_active_settings",
    "get_reference_data",
    "load_reference_data",
    "load_settings",
    "load_yaml_file",
]
