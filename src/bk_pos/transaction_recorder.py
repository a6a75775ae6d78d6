"""Transaction recorder: turns a rider's cart into an immutable sale.

A sale runs in two explicit steps. :func:`check_sale` validates the cart
against the rider's stock, prices it and checks the payment, returning a
:class:`SaleQuote` without touching stock or the log. :func:`commit_sale`
deducts the stock and appends the :class:`~bk_pos.data_manager.TransactionRecord`.
:func:`record_sale` chains both.

The store keeps every issued quote until it is committed. Only a quote equal
to the one :func:`check_sale` issued is accepted, and only once. Committing
re-checks availability so a quote that went stale (another sale consumed the
stock in between) fails with
:class:`~bk_pos.core_logic.InsufficientStock` before any deduction.
"""

from __future__ import annotations

import uuid
from collections import OrderedDict
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from . import core_logic, data_manager, log, stock_ledger
from .constants import PaymentMethod
from .core_logic import (
    BusinessRuleViolation,
    InsufficientPayment,
    InsufficientStock,
    MissingReferenceError,
    RuntimeContext,
    StockShortage,
)


CartLine = data_manager.LineItem
SaleQuote = data_manager.SaleQuote


def _find_shortages(context: RuntimeContext, rider_id: str, lines: Sequence[CartLine]) -> Tuple[StockShortage, ...]:
    """Compare per-product cart quantities with the rider's stock.

    Lines for the same product are summed first, so a cart cannot split one
    product across several lines to pass the check.
    """
    requested: "OrderedDict[str, int]" = OrderedDict()
    for line in lines:
        requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

    shortages = []
    for product_id, quantity in requested.items():
        available = stock_ledger.get_rider_stock(context, rider_id, product_id)
        if available < quantity:
            shortages.append(StockShortage(product_id=product_id, requested=quantity, available=available))
    return tuple(shortages)


def calculate_totals(lines: Sequence[CartLine], tax_rate: Decimal) -> Tuple[Decimal, Decimal, Decimal]:
    """Return ``(subtotal, tax, total)`` for ``lines`` at ``tax_rate``.

    Subtotal and tax are each rounded half-up to the currency's minor unit;
    the total is their sum.
    """
    subtotal = core_logic.quantize_money(sum((line.line_total for line in lines), Decimal("0")))
    tax = core_logic.quantize_money(subtotal * tax_rate)
    return subtotal, tax, subtotal + tax


def check_sale(
    context: RuntimeContext,
    rider_id: str,
    cart_lines: Sequence[CartLine],
    payment_method: PaymentMethod,
    amount_tendered: Optional[Decimal] = None,
) -> SaleQuote:
    """Validate and price a cart without touching stock or the log.

    The returned quote is registered as pending so :func:`commit_sale` can
    tell it apart from a hand-built or altered copy.

    Checks run in this order: seller and cart shape, stock availability for
    every line, then payment. When a cart is both short on stock and
    under-paid the stock failure is reported.

    Args:
        context (RuntimeContext): Active runtime context.
        rider_id (str): Selling rider.
        cart_lines (Sequence[CartLine]): Lines priced at the time of sale.
        payment_method (PaymentMethod): ``CASH`` or ``QRIS``.
        amount_tendered (Decimal | None): Cash handed over. Required for cash,
            ignored for QRIS.

    Returns:
        SaleQuote: Priced cart ready for :func:`commit_sale`.

    Raises:
        MissingReferenceError: If the rider or a product is unknown.
        BusinessRuleViolation: If the seller is not a rider or the payment
            method is unsupported.
        ValueError: If the cart is empty, a quantity is not positive, a price
            is negative, or cash is paid without an amount tendered.
        InsufficientStock: If any product exceeds the rider's stock.
        InsufficientPayment: If cash tendered is below the total.
    """
    core_logic.get_rider(context, rider_id)
    if not isinstance(payment_method, PaymentMethod):
        log.error("Unsupported payment method provided: %s", payment_method)
        raise BusinessRuleViolation(f"Unsupported payment method: {payment_method}")
    lines = tuple(cart_lines)
    if not lines:
        raise ValueError("Cart must contain at least one line")
    for line in lines:
        core_logic.get_product(context, line.product_id)
        core_logic.require_positive_quantity(line.quantity)
        core_logic.require_nonnegative_money(line.unit_price)

    shortages = _find_shortages(context, rider_id, lines)
    if shortages:
        log.warning("Rejected sale for rider '%s': %d short product(s)", rider_id, len(shortages))
        raise InsufficientStock(rider_id, shortages)

    subtotal, tax, total = calculate_totals(lines, context.settings.tax_rate)

    tendered: Optional[Decimal] = None
    change = Decimal("0.00")
    if payment_method is PaymentMethod.CASH:
        if amount_tendered is None:
            raise ValueError("Cash payments require an amount tendered")
        core_logic.require_nonnegative_money(amount_tendered)
        if amount_tendered < total:
            log.warning("Rejected cash sale for rider '%s': tendered %s < total %s", rider_id, amount_tendered, total)
            raise InsufficientPayment(total, amount_tendered)
        tendered = amount_tendered
        change = amount_tendered - total
    elif amount_tendered is not None:
        log.debug("Ignoring amount tendered for %s payment", payment_method.value)

    quote = SaleQuote(
        quote_id=uuid.uuid4().hex,
        rider_id=rider_id,
        lines=lines,
        payment_method=payment_method,
        amount_tendered=tendered,
        subtotal=subtotal,
        tax=tax,
        total=total,
        change=change,
    )
    context.store.pending_quotes[quote.quote_id] = quote
    return quote


def commit_sale(
    context: RuntimeContext,
    quote: SaleQuote,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.TransactionRecord:
    """Deduct a quote's stock and append its transaction record.

    Raises:
        BusinessRuleViolation: If the quote was already committed, or if it
            is not the exact quote :func:`check_sale` issued.
        InsufficientStock: If the rider's stock no longer covers the quote.
    """
    store = context.store
    if quote.quote_id in store.committed_quotes:
        log.error("Refusing to commit sale quote '%s' twice", quote.quote_id)
        raise BusinessRuleViolation(f"Sale quote '{quote.quote_id}' was already committed")
    if store.pending_quotes.get(quote.quote_id) != quote:
        log.error("Refusing to commit sale quote '%s': not issued by check_sale", quote.quote_id)
        raise BusinessRuleViolation(f"Sale quote '{quote.quote_id}' was not issued by check_sale")

    shortages = _find_shortages(context, quote.rider_id, quote.lines)
    if shortages:
        log.warning("Sale quote '%s' is stale: %d short product(s)", quote.quote_id, len(shortages))
        raise InsufficientStock(quote.rider_id, shortages)

    moment = core_logic._resolve_timestamp(timestamp)
    transaction_id = core_logic.generate_transaction_id(when=moment, sequence=len(store.transactions) + 1)
    for line in quote.lines:
        stock_ledger.deduct(
            context,
            quote.rider_id,
            line.product_id,
            line.quantity,
            reference_id=transaction_id,
            timestamp=moment,
        )

    record = data_manager.TransactionRecord(
        transaction_id=transaction_id,
        rider_id=quote.rider_id,
        timestamp_iso=moment.isoformat(),
        lines=quote.lines,
        payment_method=quote.payment_method,
        amount_tendered=quote.amount_tendered,
        subtotal=quote.subtotal,
        tax=quote.tax,
        total=quote.total,
        change=quote.change,
    )
    store.transactions.append(record)
    del store.pending_quotes[quote.quote_id]
    store.committed_quotes.add(quote.quote_id)
    log.info(
        "Recorded sale '%s' for rider '%s' (%d line(s), total=%s, %s)",
        transaction_id,
        quote.rider_id,
        len(quote.lines),
        quote.total,
        quote.payment_method.value,
    )
    return record


def record_sale(
    context: RuntimeContext,
    rider_id: str,
    cart_lines: Sequence[CartLine],
    payment_method: PaymentMethod,
    amount_tendered: Optional[Decimal] = None,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.TransactionRecord:
    """Check then commit a sale in one call; see :func:`check_sale`."""
    quote = check_sale(context, rider_id, cart_lines, payment_method, amount_tendered)
    return commit_sale(context, quote, timestamp=timestamp)


def cart_from_catalog(context: RuntimeContext, items: Sequence[Tuple[str, int]]) -> List[CartLine]:
    """Build cart lines for ``(product_id, quantity)`` pairs at current catalog prices."""
    return [
        CartLine(product_id=product_id, quantity=quantity, unit_price=core_logic.get_product(context, product_id).unit_price)
        for product_id, quantity in items
    ]


def list_transactions(context: RuntimeContext) -> List[data_manager.TransactionRecord]:
    """Snapshot of the transaction log in the order sales were recorded."""
    return context.store.transactions.list()


def list_transactions_for_rider(context: RuntimeContext, rider_id: str) -> List[data_manager.TransactionRecord]:
    return [record for record in context.store.transactions.list() if record.rider_id == rider_id]


def get_transaction(context: RuntimeContext, transaction_id: str) -> data_manager.TransactionRecord:
    """Retrieve a transaction by its identifier.

    Raises:
        MissingReferenceError: If the log lacks ``transaction_id``.
    """
    record = context.store.transactions.get(transaction_id)
    if record is None:
        log.warning("Transaction lookup failed for id '%s'", transaction_id)
        raise MissingReferenceError(f"Unknown transaction id: {transaction_id}")
    return record
