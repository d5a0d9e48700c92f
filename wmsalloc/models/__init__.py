# wmsalloc/models/__init__.py
"""ORM model exports."""

from importlib import import_module


def _export(module_name: str, class_name: str) -> None:
    module = import_module(module_name)
    globals()[class_name] = getattr(module, class_name)


MODEL_SPECS = [
    ("wmsalloc.models.warehouse", "Warehouse"),
    ("wmsalloc.models.inventory_lot", "InventoryLot"),
    ("wmsalloc.models.lot_ledger", "LotLedger"),
    ("wmsalloc.models.order", "Order"),
    ("wmsalloc.models.order_item", "OrderItem"),
    ("wmsalloc.models.allocation_batch", "AllocationBatch"),
    ("wmsalloc.models.inventory_allocation", "InventoryAllocation"),
    ("wmsalloc.models.audit_event", "AuditEvent"),
]

for _module, _cls in MODEL_SPECS:
    _export(_module, _cls)

__all__ = [cls for _, cls in MODEL_SPECS]
