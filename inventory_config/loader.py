"""
Configuration Loader (``inventory_config.loader``).

Responsibility
--------------
Loads the YAML files of a configuration set and parses them into typed
``inventory_config.schema`` instances.  The single public entry point for
runtime config is ``inventory_config.get_active_settings()``; the parse
functions here are exposed for build/test tooling.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  May import kernel domain
value objects; the kernel never imports from ``inventory_config``.

Invariants enforced
-------------------
* All structural errors raise ``ValueError`` with a message naming the
  file section and offending entry; no silent defaults for required keys.
* Every parsed object is a frozen dataclass.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing or invalid values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from inventory_config.schema import (
    EngineSettings,
    OpeningStockDef,
    ReferenceData,
    ThresholdDef,
)
from inventory_kernel.domain.values import (
    AccessLevel,
    Department,
    Hospital,
    Item,
    Subdepartment,
    User,
)

_COLLECTIONS = ("items", "transactions", "transfers")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _require(data: dict[str, Any], key: str, where: str) -> Any:
    if key not in data or data[key] is None:
        raise ValueError(f"{where}: missing required key '{key}'")
    return data[key]


def _non_negative_int(value: Any, where: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{where}: expected a non-negative integer, got {value!r}")
    return value


# ---------------------------------------------------------------------------
# Engine settings
# ---------------------------------------------------------------------------


def parse_settings(data: dict[str, Any]) -> EngineSettings:
    """
    Parse ``EngineSettings`` from the ``settings`` mapping.

    Unknown keys are rejected so that a typo cannot silently fall back to
    a default.
    """
    section = data.get("settings", data)
    known = {
        "critical_fraction", "lock_timeout_seconds", "recent_window_hours",
        "default_page_limit", "max_page_limit", "database_url", "log_level",
        "search_fields",
    }
    unknown = sorted(set(section) - known)
    if unknown:
        raise ValueError(f"settings: unknown keys {', '.join(unknown)}")

    defaults = EngineSettings()
    critical_fraction = float(section.get("critical_fraction", defaults.critical_fraction))
    if not 0 < critical_fraction <= 1:
        raise ValueError(f"settings.critical_fraction must be in (0, 1], got {critical_fraction}")

    lock_timeout = float(section.get("lock_timeout_seconds", defaults.lock_timeout_seconds))
    if lock_timeout <= 0:
        raise ValueError(f"settings.lock_timeout_seconds must be > 0, got {lock_timeout}")

    recent_window = float(section.get("recent_window_hours", defaults.recent_window_hours))
    if recent_window <= 0:
        raise ValueError(f"settings.recent_window_hours must be > 0, got {recent_window}")

    default_limit = section.get("default_page_limit", defaults.default_page_limit)
    max_limit = section.get("max_page_limit", defaults.max_page_limit)
    for name, value in (("default_page_limit", default_limit), ("max_page_limit", max_limit)):
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValueError(f"settings.{name} must be a positive integer, got {value!r}")
    if default_limit > max_limit:
        raise ValueError(
            f"settings.default_page_limit ({default_limit}) exceeds max_page_limit ({max_limit})"
        )

    log_level = str(section.get("log_level", defaults.log_level)).upper()
    if log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ValueError(f"settings.log_level is not a logging level: {log_level}")

    search_fields = []
    for collection, names in sorted((section.get("search_fields") or {}).items()):
        if collection not in _COLLECTIONS:
            raise ValueError(f"settings.search_fields: unknown collection '{collection}'")
        if not names:
            raise ValueError(f"settings.search_fields.{collection} must not be empty")
        search_fields.append((collection, tuple(str(n) for n in names)))

    return EngineSettings(
        critical_fraction=critical_fraction,
        lock_timeout_seconds=lock_timeout,
        recent_window_hours=recent_window,
        default_page_limit=default_limit,
        max_page_limit=max_limit,
        database_url=section.get("database_url"),
        log_level=log_level,
        search_fields=tuple(search_fields),
        checksum=compute_checksum(section),
    )


def load_settings(path: Path) -> EngineSettings:
    return parse_settings(load_yaml_file(path))


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------


def parse_hospital(data: dict[str, Any]) -> Hospital:
    hospital_id = str(_require(data, "id", "hospitals[]"))
    where = f"hospitals[{hospital_id}]"
    departments = []
    for dept in data.get("departments") or ():
        department_id = str(_require(dept, "id", f"{where}.departments[]"))
        dept_where = f"{where}.departments[{department_id}]"
        subdepartments = tuple(
            Subdepartment(
                subdepartment_id=str(_require(sub, "id", f"{dept_where}.subdepartments[]")),
                name=_require(sub, "name", f"{dept_where}.subdepartments[]"),
                staff_count=_non_negative_int(
                    sub.get("staff_count", 0), f"{dept_where}.subdepartments[].staff_count"
                ),
            )
            for sub in dept.get("subdepartments") or ()
        )
        departments.append(
            Department(
                department_id=department_id,
                name=_require(dept, "name", dept_where),
                hospital_id=hospital_id,
                department_type=dept.get("type", "clinical"),
                staff_count=_non_negative_int(dept.get("staff_count", 0), f"{dept_where}.staff_count"),
                subdepartments=subdepartments,
            )
        )
    return Hospital(
        hospital_id=hospital_id,
        name=_require(data, "name", where),
        location=data.get("location", ""),
        hospital_type=data.get("type", "general"),
        departments=tuple(departments),
    )


def parse_item(data: dict[str, Any]) -> Item:
    item_id = str(_require(data, "id", "items[]"))
    where = f"items[{item_id}]"
    return Item(
        item_id=item_id,
        name=_require(data, "name", where),
        category=_require(data, "category", where),
        unit=data.get("unit", "units"),
        default_min_threshold=_non_negative_int(
            data.get("min_threshold", 0), f"{where}.min_threshold"
        ),
        is_active=bool(data.get("active", True)),
    )


def parse_user(data: dict[str, Any]) -> User:
    user_id = str(_require(data, "id", "users[]"))
    where = f"users[{user_id}]"
    raw_level = _require(data, "access_level", where)
    try:
        access_level = AccessLevel(raw_level)
    except ValueError as exc:
        raise ValueError(f"{where}.access_level: unknown access level '{raw_level}'") from exc
    return User(
        user_id=user_id,
        name=_require(data, "name", where),
        department_id=data.get("department"),
        access_level=access_level,
        hospital_id=data.get("hospital"),
        email=data.get("email"),
        role=data.get("role"),
    )


def parse_reference_data(data: dict[str, Any]) -> ReferenceData:
    """
    Parse ``ReferenceData`` and check cross references.

    Raises:
        ValueError: on missing keys, duplicate ids, or thresholds, opening
            stock and users that reference unknown items or departments.
    """
    hospitals = tuple(parse_hospital(h) for h in data.get("hospitals") or ())
    items = tuple(parse_item(i) for i in data.get("items") or ())
    users = tuple(parse_user(u) for u in data.get("users") or ())

    department_ids = [d.department_id for h in hospitals for d in h.departments]
    for label, ids in (
        ("hospital", [h.hospital_id for h in hospitals]),
        ("department", department_ids),
        ("item", [i.item_id for i in items]),
        ("user", [u.user_id for u in users]),
    ):
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"Duplicate {label} ids: {', '.join(duplicates)}")

    known_departments = set(department_ids)
    known_items = {i.item_id for i in items}
    for user in users:
        if user.department_id is not None and user.department_id not in known_departments:
            raise ValueError(f"users[{user.user_id}]: unknown department '{user.department_id}'")

    def stock_ref(entry: dict[str, Any], section: str) -> tuple[str, str]:
        item_id = str(_require(entry, "item", section))
        department_id = str(_require(entry, "department", section))
        if item_id not in known_items:
            raise ValueError(f"{section}: unknown item '{item_id}'")
        if department_id not in known_departments:
            raise ValueError(f"{section}: unknown department '{department_id}'")
        return item_id, department_id

    thresholds = []
    for entry in data.get("thresholds") or ():
        item_id, department_id = stock_ref(entry, "thresholds[]")
        thresholds.append(
            ThresholdDef(
                item_id=item_id,
                department_id=department_id,
                min_threshold=_non_negative_int(
                    _require(entry, "min_threshold", "thresholds[]"),
                    f"thresholds[{item_id}@{department_id}]",
                ),
            )
        )

    opening_stock = []
    for entry in data.get("opening_stock") or ():
        item_id, department_id = stock_ref(entry, "opening_stock[]")
        quantity = _non_negative_int(
            _require(entry, "quantity", "opening_stock[]"),
            f"opening_stock[{item_id}@{department_id}]",
        )
        if quantity > 0:
            opening_stock.append(OpeningStockDef(item_id, department_id, quantity))

    opening_actor_id = data.get("opening_actor")
    if opening_stock and opening_actor_id is None:
        raise ValueError("opening_stock requires an 'opening_actor' user id")
    if opening_actor_id is not None and opening_actor_id not in {u.user_id for u in users}:
        raise ValueError(f"opening_actor: unknown user '{opening_actor_id}'")

    return ReferenceData(
        hospitals=hospitals,
        items=items,
        users=users,
        thresholds=tuple(thresholds),
        opening_stock=tuple(opening_stock),
        opening_actor_id=opening_actor_id,
        checksum=compute_checksum(data),
    )


def load_reference_data(path: Path) -> ReferenceData:
    return parse_reference_data(load_yaml_file(path))
