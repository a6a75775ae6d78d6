"""Read-only reporting queries over the ledger and the transaction log.

Nothing in this module writes to the store; callers receive plain
dictionaries they are free to render or mutate.
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from typing import Dict, List

from . import core_logic, log, stock_ledger
from .constants import MovementType, PaymentMethod
from .core_logic import RuntimeContext


def sales_summary(context: RuntimeContext) -> Dict[str, object]:
    """Aggregate the transaction log.

    Returns:
        dict[str, object]: ``transaction_count``, ``subtotal``, ``tax``,
            ``total``, ``by_payment_method`` (method value -> total) and
            ``by_rider`` (rider id -> total).
    """
    subtotal = Decimal("0.00")
    tax = Decimal("0.00")
    total = Decimal("0.00")
    by_payment_method: Dict[str, Decimal] = {method.value: Decimal("0.00") for method in PaymentMethod}
    by_rider: Dict[str, Decimal] = defaultdict(lambda: Decimal("0.00"))

    records = context.store.transactions.list()
    for record in records:
        subtotal += record.subtotal
        tax += record.tax
        total += record.total
        by_payment_method[record.payment_method.value] += record.total
        by_rider[record.rider_id] += record.total

    log.debug("Calculated sales summary over %d transactions: total=%s", len(records), total)
    return {
        "transaction_count": len(records),
        "subtotal": subtotal,
        "tax": tax,
        "total": total,
        "by_payment_method": by_payment_method,
        "by_rider": dict(by_rider),
    }


def stock_overview(context: RuntimeContext) -> Dict[str, Dict[str, int]]:
    """Per-product view of where stock sits.

    Returns:
        dict[str, dict[str, int]]: For every catalog product, ``warehouse``,
            ``riders`` (sum over all riders) and ``on_hand`` (their sum).
    """
    rider_totals: Dict[str, int] = defaultdict(int)
    for (_, product_id), quantity in stock_ledger.rider_stock_snapshot(context).items():
        rider_totals[product_id] += quantity

    overview: Dict[str, Dict[str, int]] = {}
    for product in core_logic.list_products(context):
        warehouse = stock_ledger.get_warehouse_stock(context, product.product_id)
        riders = rider_totals.get(product.product_id, 0)
        overview[product.product_id] = {
            "warehouse": warehouse,
            "riders": riders,
            "on_hand": warehouse + riders,
        }
    return overview


def verify_conservation(context: RuntimeContext) -> List[Dict[str, object]]:
    """Check that on-hand stock equals received minus sold for every product.

    Returns:
        list[dict[str, object]]: One entry per violating product with
            ``product_id``, ``received``, ``sold`` and ``on_hand``. Empty when
            the ledger is consistent.
    """
    received: Dict[str, int] = defaultdict(int)
    sold: Dict[str, int] = defaultdict(int)
    for movement in core_logic.list_movements(context):
        if movement.movement_type is MovementType.RECEIVE:
            received[movement.product_id] += movement.quantity
        elif movement.movement_type is MovementType.SALE:
            sold[movement.product_id] += movement.quantity

    violations: List[Dict[str, object]] = []
    for product_id, levels in stock_overview(context).items():
        expected = received[product_id] - sold[product_id]
        if levels["on_hand"] != expected:
            violations.append(
                {
                    "product_id": product_id,
                    "received": received[product_id],
                    "sold": sold[product_id],
                    "on_hand": levels["on_hand"],
                }
            )
    if violations:
        log.error("Stock conservation violated for %d product(s)", len(violations))
    return violations
