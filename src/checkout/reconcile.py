# retries stock deduction for orders whose checkout stopped after the order was saved
from dataclasses import dataclass, field
from typing import List

from checkout.coordinator import deduct_order_stock
from db import crud
from db.models import StockSync
from db.store import DocumentStore
from utils.errors import DataShapeError, StockSyncError, StoreError
from utils.logger import get_logger

_logger = get_logger(__name__)


@dataclass
class ReconcileReport:
    synced: List[str] = field(default_factory=list)
    still_pending: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


async def reconcile_pending_stock(store: DocumentStore) -> ReconcileReport:
    """
    Finish stock deduction for every order still marked stockSync=pending.

    Lines already deducted are skipped by the store (decrements are keyed by
    order and product), so this can run any number of times.
    """
    report = ReconcileReport()
    raw_orders = await store.children(crud.ORDERS)
    for key, raw in raw_orders.items():
        try:
            order = crud.normalize_order(key, raw)
        except DataShapeError as exc:
            _logger.warning(f"Skipping order {key}: {exc}")
            report.skipped.append(key)
            continue
        if order.stock_sync != StockSync.PENDING:
            continue

        try:
            await deduct_order_stock(store, order)
            await crud.update_order_fields(
                store, order.order_id, {"stockSync": StockSync.SYNCED.value}
            )
        except (StockSyncError, StoreError) as exc:
            _logger.error(f"Order {order.order_id} still pending stock sync: {exc}")
            report.still_pending.append(order.order_id)
            continue
        report.synced.append(order.order_id)

    if report.synced or report.still_pending:
        _logger.info(
            f"Stock reconciliation: {len(report.synced)} synced, "
            f"{len(report.still_pending)} still pending"
        )
    return report
