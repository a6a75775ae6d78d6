"""Enumerations shared across BK POS modules.

Centralises domain constants so that the data access layer (DAL), the ledger
and recorder, and any presentation layer rely on a single source of truth
for roles, payment methods, and seed workbook sheet names.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Seed workbook layout version expected by all layers.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_TAX_RATE = Decimal("0")
MONEY_QUANTUM = Decimal("0.01")


class Role(str, Enum):
    """Closed set of user roles recognised at the access-control boundary."""

    ADMIN = "admin"
    RIDER = "rider"


class PaymentMethod(str, Enum):
    """Enumerate supported payment mechanisms for sales."""

    CASH = "cash"
    QRIS = "qris"


class MovementType(str, Enum):
    """Kinds of stock movement recorded in the movement journal."""

    RECEIVE = "RECEIVE"
    DISTRIBUTE = "DISTRIBUTE"
    SALE = "SALE"


class Permission(str, Enum):
    """Capabilities granted to roles, one per area of the application."""

    VIEW_DASHBOARD = "view_dashboard"
    RECORD_SALE = "record_sale"
    MANAGE_PRODUCTS = "manage_products"
    MANAGE_CATEGORIES = "manage_categories"
    MANAGE_WAREHOUSE = "manage_warehouse"
    DISTRIBUTE_STOCK = "distribute_stock"
    VIEW_REPORTS = "view_reports"


class SheetName(str, Enum):
    """Enumerate the seed workbook sheet names read by the DAL."""

    CATEGORIES = "Categories"
    PRODUCTS = "Products"
    USERS = "Users"
    WAREHOUSE_STOCK = "WarehouseStock"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_TAX_RATE",
    "MONEY_QUANTUM",
    "Role",
    "PaymentMethod",
    "MovementType",
    "Permission",
    "SheetName",
]
