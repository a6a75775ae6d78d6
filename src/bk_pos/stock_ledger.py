"""Stock ledger: warehouse and per-rider quantities.

Stock enters through :func:`receive_stock`, moves to riders through
:func:`distribute`, and leaves through :func:`deduct` when a sale is
committed. Every call validates first and writes last, so a failure leaves
both stock tables and the movement journal untouched.
"""

from __future__ import annotations

from datetime import datetime
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from . import core_logic, log
from .constants import MovementType
from .core_logic import InsufficientRiderStock, InsufficientWarehouseStock, RuntimeContext


def receive_stock(
    context: RuntimeContext,
    product_id: str,
    quantity: int,
    *,
    timestamp: Optional[datetime] = None,
) -> int:
    """Add ``quantity`` units of a product to the warehouse.

    Returns:
        int: The new warehouse quantity.

    Raises:
        MissingReferenceError: If the product is unknown.
        ValueError: If ``quantity`` is not a positive whole number.
    """
    core_logic.get_product(context, product_id)
    core_logic.require_positive_quantity(quantity)

    new_quantity = core_logic.warehouse_quantity(context, product_id) + quantity
    core_logic.write_warehouse_quantity(context, product_id, new_quantity)
    core_logic.record_movement(
        context,
        MovementType.RECEIVE,
        product_id=product_id,
        quantity=quantity,
        timestamp=timestamp,
    )
    log.info("Received %d of '%s' into warehouse (now %d)", quantity, product_id, new_quantity)
    return new_quantity


def distribute(
    context: RuntimeContext,
    product_id: str,
    rider_id: str,
    quantity: int,
    *,
    timestamp: Optional[datetime] = None,
) -> Tuple[int, int]:
    """Transfer ``quantity`` units of a product from the warehouse to a rider.

    The warehouse must hold at least ``quantity`` units. On success the
    warehouse decreases and the rider increases by exactly the same amount.

    Args:
        context (RuntimeContext): Active runtime context.
        product_id (str): Product to move.
        rider_id (str): Receiving rider.
        quantity (int): Units to move; must be positive.
        timestamp (datetime | None): Movement time, defaults to now (UTC).

    Returns:
        tuple[int, int]: New warehouse and rider quantities.

    Raises:
        ValueError: If ``quantity`` is not a positive whole number.
        MissingReferenceError: If the product or rider is unknown.
        BusinessRuleViolation: If ``rider_id`` is not a rider.
        InsufficientWarehouseStock: If the warehouse holds fewer than
            ``quantity`` units.
    """
    core_logic.require_positive_quantity(quantity)
    core_logic.get_product(context, product_id)
    core_logic.get_rider(context, rider_id)

    available = core_logic.warehouse_quantity(context, product_id)
    if available < quantity:
        log.warning(
            "Rejected distribution of %d '%s' to '%s': warehouse holds %d",
            quantity,
            product_id,
            rider_id,
            available,
        )
        raise InsufficientWarehouseStock(product_id, quantity, available)

    warehouse_after = available - quantity
    rider_after = core_logic.rider_quantity(context, rider_id, product_id) + quantity
    core_logic.write_warehouse_quantity(context, product_id, warehouse_after)
    core_logic.write_rider_quantity(context, rider_id, product_id, rider_after)
    core_logic.record_movement(
        context,
        MovementType.DISTRIBUTE,
        product_id=product_id,
        quantity=quantity,
        rider_id=rider_id,
        timestamp=timestamp,
    )
    log.info(
        "Distributed %d of '%s' to rider '%s' (warehouse=%d, rider=%d)",
        quantity,
        product_id,
        rider_id,
        warehouse_after,
        rider_after,
    )
    return warehouse_after, rider_after


def get_rider_stock(context: RuntimeContext, rider_id: str, product_id: str) -> int:
    """Return the rider's quantity of a product, zero when none was ever allocated."""
    return core_logic.rider_quantity(context, rider_id, product_id)


def get_warehouse_stock(context: RuntimeContext, product_id: str) -> int:
    """Return the warehouse quantity of a product, zero when absent."""
    return core_logic.warehouse_quantity(context, product_id)


def deduct(
    context: RuntimeContext,
    rider_id: str,
    product_id: str,
    quantity: int,
    *,
    reference_id: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> int:
    """Remove sold units from a rider's stock.

    Args:
        reference_id (str | None): Transaction that consumed the stock, kept
            on the ``SALE`` movement.

    Returns:
        int: The rider's remaining quantity.

    Raises:
        ValueError: If ``quantity`` is not a positive whole number.
        InsufficientRiderStock: If the rider holds fewer than ``quantity``
            units.
    """
    core_logic.require_positive_quantity(quantity)
    available = core_logic.rider_quantity(context, rider_id, product_id)
    if available < quantity:
        log.warning(
            "Rejected deduction of %d '%s' from rider '%s': rider holds %d",
            quantity,
            product_id,
            rider_id,
            available,
        )
        raise InsufficientRiderStock(rider_id, product_id, quantity, available)

    remaining = available - quantity
    core_logic.write_rider_quantity(context, rider_id, product_id, remaining)
    core_logic.record_movement(
        context,
        MovementType.SALE,
        product_id=product_id,
        quantity=quantity,
        rider_id=rider_id,
        reference_id=reference_id,
        timestamp=timestamp,
    )
    log.debug("Deducted %d of '%s' from rider '%s' (now %d)", quantity, product_id, rider_id, remaining)
    return remaining


def warehouse_snapshot(context: RuntimeContext) -> Mapping[str, int]:
    """Read-only view of warehouse quantities keyed by product id."""
    return MappingProxyType(dict(context.store.warehouse_stock.items()))


def rider_stock_snapshot(
    context: RuntimeContext,
    rider_id: Optional[str] = None,
) -> Mapping[Tuple[str, str], int]:
    """Read-only view of rider quantities keyed by ``(rider_id, product_id)``.

    When ``rider_id`` is given only that rider's rows are included.
    """
    rows: Dict[Tuple[str, str], int] = {}
    for key, quantity in context.store.rider_stock.items():
        if rider_id is None or key[0] == rider_id:
            rows[key] = quantity
    return MappingProxyType(rows)
