"""Tests for the read-only reporting queries."""

from __future__ import annotations

from decimal import Decimal

from bk_pos import core_logic, reporting, stock_ledger, transaction_recorder
from bk_pos.constants import PaymentMethod
from bk_pos.transaction_recorder import CartLine


def test_sales_summary_on_empty_log(ledger_context):
    summary = reporting.sales_summary(ledger_context)

    assert summary["transaction_count"] == 0
    assert summary["total"] == Decimal("0.00")
    assert summary["by_payment_method"] == {"cash": Decimal("0.00"), "qris": Decimal("0.00")}
    assert summary["by_rider"] == {}


def test_sales_summary_aggregates_by_method_and_rider(ledger_context):
    stock_ledger.distribute(ledger_context, "P", "rider1", 10)
    stock_ledger.distribute(ledger_context, "Q", "rider2", 10)
    transaction_recorder.record_sale(
        ledger_context, "rider1", [CartLine("P", 2, Decimal("10.00"))], PaymentMethod.CASH, Decimal("20")
    )
    transaction_recorder.record_sale(ledger_context, "rider2", [CartLine("Q", 3, Decimal("4.00"))], PaymentMethod.QRIS)

    summary = reporting.sales_summary(ledger_context)

    assert summary["transaction_count"] == 2
    assert summary["subtotal"] == Decimal("32.00")
    assert summary["total"] == Decimal("32.00")
    assert summary["by_payment_method"] == {"cash": Decimal("20.00"), "qris": Decimal("12.00")}
    assert summary["by_rider"] == {"rider1": Decimal("20.00"), "rider2": Decimal("12.00")}


def test_stock_overview_tracks_warehouse_and_riders(ledger_context):
    stock_ledger.distribute(ledger_context, "P", "rider1", 10)
    stock_ledger.distribute(ledger_context, "P", "rider2", 5)

    overview = reporting.stock_overview(ledger_context)

    assert overview["P"] == {"warehouse": 85, "riders": 15, "on_hand": 100}
    assert overview["Q"] == {"warehouse": 50, "riders": 0, "on_hand": 50}


def test_verify_conservation_holds_through_sales(ledger_context):
    stock_ledger.distribute(ledger_context, "P", "rider1", 10)
    transaction_recorder.record_sale(ledger_context, "rider1", [CartLine("P", 4, Decimal("10.00"))], PaymentMethod.QRIS)

    assert reporting.verify_conservation(ledger_context) == []
    assert reporting.stock_overview(ledger_context)["P"]["on_hand"] == 96


def test_verify_conservation_flags_unjournaled_writes(ledger_context, caplog):
    core_logic.write_warehouse_quantity(ledger_context, "Q", 49)

    violations = reporting.verify_conservation(ledger_context)

    assert violations == [{"product_id": "Q", "received": 50, "sold": 0, "on_hand": 49}]
    assert "conservation violated" in caplog.text
