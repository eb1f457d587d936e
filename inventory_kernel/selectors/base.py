"""
Module: inventory_kernel.selectors.base
Responsibility: Abstract base class for read-only selectors over the ledger.
Architecture position: Kernel > Selectors.  May import from domain/ and read
    from services.LedgerStore / services.CatalogService.  Selectors NEVER write.

Invariants enforced:
    - Read-only access: selectors call only the read methods of the store
      and catalog.
    - DTO return convention: selectors return frozen dataclasses.
"""

from abc import ABC

from inventory_kernel.services.catalog_service import CatalogService
from inventory_kernel.services.ledger_store import LedgerStore


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors read the store and catalog and return DTOs or computed
        results.  They MUST NOT mutate any data.
    """

    def __init__(self, store: LedgerStore, catalog: CatalogService):
        self.store = store
        self.catalog = catalog
