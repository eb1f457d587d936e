"""
inventory_services -- Package init and public API.

Responsibility:
    The outer service layer.  Composes kernel services with configuration
    into the ``InventoryLedgerService`` facade.

Architecture position:
    Services -- top of the stack.

        inventory_services/ -> inventory_config/  (allowed)
        inventory_services/ -> inventory_kernel/  (allowed)
        inventory_kernel/   -> inventory_services/ (FORBIDDEN)
        inventory_kernel/   -> inventory_config/   (FORBIDDEN)
"""

from inventory_config import get_active_settings, get_reference_data
from inventory_services.ledger_service import InventoryLedgerService


def open_default_ledger(config_dir=None, set_name: str = "default", **kwargs) -> InventoryLedgerService:
    """Open a ledger from a configuration set (the shipped default unless overridden)."""
    settings = get_active_settings(config_dir, set_name)
    reference = get_reference_data(config_dir, set_name)
    return InventoryLedgerService(settings=settings, reference=reference, **kwargs).open()


__all__ = [
    "InventoryLedgerService",
    "open_default_ledger",
]
