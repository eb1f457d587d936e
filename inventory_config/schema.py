"""
Inventory configuration schema.

Defines the two human-authored artifacts of a configuration set:

  EngineSettings = runtime policy knobs (thresholds, timeouts, paging)
  ReferenceData  = catalog seed (hospitals, items, users, thresholds,
                   opening stock)

YAML files are parsed into these types by the loader.  Catalog entities
are the kernel's own frozen value objects, so the facade can hand them to
``CatalogService`` without a translation step.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from inventory_kernel.domain.alerts import DEFAULT_CRITICAL_FRACTION
from inventory_kernel.domain.values import Hospital, Item, User

# ---------------------------------------------------------------------------
# Engine settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineSettings:
    """Policy constants for one deployment."""

    critical_fraction: float = DEFAULT_CRITICAL_FRACTION
    lock_timeout_seconds: float = 5.0
    recent_window_hours: float = 24
    default_page_limit: int = 50
    max_page_limit: int = 500
    database_url: str | None = None  # None = in-memory repository
    log_level: str = "INFO"
    # collection name -> searchable field names
    search_fields: tuple[tuple[str, tuple[str, ...]], ...] = ()
    checksum: str = ""

    def search_fields_map(self) -> dict[str, tuple[str, ...]]:
        return dict(self.search_fields)


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ThresholdDef:
    """Per-department minimum threshold override for one item."""

    item_id: str
    department_id: str
    min_threshold: int


@dataclass(frozen=True)
class OpeningStockDef:
    """Quantity booked in once, the first time a ledger is opened."""

    item_id: str
    department_id: str
    quantity: int


@dataclass(frozen=True)
class ReferenceData:
    hospitals: tuple[Hospital, ...] = ()
    items: tuple[Item, ...] = ()
    users: tuple[User, ...] = ()
    thresholds: tuple[ThresholdDef, ...] = ()
    opening_stock: tuple[OpeningStockDef, ...] = ()
    # user_id that books opening stock
    opening_actor_id: str | None = None
    checksum: str = field(default="", compare=False)
