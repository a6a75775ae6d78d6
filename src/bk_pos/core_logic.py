"""Business logic foundations for BK POS.

This module holds what the stock ledger and the transaction recorder share:
the runtime context, the error hierarchy, catalog and user management, and
the low-level helpers that write stock quantities and movement entries. All
storage goes through the repositories exposed by :mod:`bk_pos.data_manager`.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import List, Optional, Tuple

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, MONEY_QUANTUM, MovementType, Permission, Role


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint.

    ``code`` is a stable identifier presentation layers use to look up a
    localized message.
    """

    code = "business_rule_violation"


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product, category, user, or transaction is unknown."""

    code = "missing_reference"


class AccessDenied(BusinessRuleViolation):
    """Raised when a user's role does not grant the requested permission."""

    code = "access_denied"

    def __init__(self, user_id: str, permission: Permission) -> None:
        self.user_id = user_id
        self.permission = permission
        super().__init__(f"User '{user_id}' is not allowed to {permission.value.replace('_', ' ')}")


class InsufficientWarehouseStock(BusinessRuleViolation):
    code = "insufficient_warehouse_stock"

    def __init__(self, product_id: str, requested: int, available: int) -> None:
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient warehouse stock for '{product_id}': "
            f"requested {requested}, available {available}"
        )


class InsufficientRiderStock(BusinessRuleViolation):
    code = "insufficient_rider_stock"

    def __init__(self, rider_id: str, product_id: str, requested: int, available: int) -> None:
        self.rider_id = rider_id
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for rider '{rider_id}' and product '{product_id}': "
            f"requested {requested}, available {available}"
        )


@dataclass(frozen=True)
class StockShortage:
    """One cart product the rider cannot cover."""

    product_id: str
    requested: int
    available: int


class InsufficientStock(BusinessRuleViolation):
    """Aggregate failure covering every short line of a cart."""

    code = "insufficient_stock"

    def __init__(self, rider_id: str, shortages: Tuple[StockShortage, ...]) -> None:
        self.rider_id = rider_id
        self.shortages = shortages
        details = ", ".join(
            f"{shortage.product_id} (requested {shortage.requested}, available {shortage.available})"
            for shortage in shortages
        )
        super().__init__(f"Insufficient stock for rider '{rider_id}': {details}")


class InsufficientPayment(BusinessRuleViolation):
    code = "insufficient_payment"

    def __init__(self, total: Decimal, tendered: Decimal) -> None:
        self.total = total
        self.tendered = tendered
        super().__init__(f"Amount tendered {tendered} does not cover total {total}")


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and the data store used by the ledger."""

    settings: data_manager.ConfigSettings
    store: data_manager.DataStore


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or, when ``None``, the current UTC time."""

    return candidate if candidate is not None else datetime.now(UTC)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration and seed a fresh in-memory store.

    The helper resolves ``config.ini``, parses settings, and reads the seed
    workbook named by ``SeedFile`` into a new :class:`~bk_pos.data_manager.DataStore`.
    Opening warehouse quantities are applied as ``RECEIVE`` movements so the
    movement journal accounts for every unit on hand.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upward from the current
            working directory.

    Returns:
        RuntimeContext: Context ready for ledger and recorder calls.

    Raises:
        FileNotFoundError: If the configuration file or seed workbook cannot
            be located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    context = RuntimeContext(settings=settings, store=data_manager.create_memory_store())
    workbook = data_manager.open_workbook(settings.seed_file)
    try:
        seed_context(context, workbook)
    finally:
        workbook.close()
    log.info("Loaded runtime context from seed workbook '%s'", settings.seed_file)
    return context


def seed_context(context: RuntimeContext, workbook: Workbook) -> None:
    """Populate ``context`` from the sheets of an open seed workbook."""

    for category in data_manager.iter_categories(workbook):
        add_category(context, category_id=category.category_id, category_name=category.category_name)
    for product in data_manager.iter_products(workbook):
        add_product(
            context,
            product_id=product.product_id,
            product_name=product.product_name,
            category_id=product.category_id,
            unit_price=product.unit_price,
            unit=product.unit,
        )
    for user in data_manager.iter_users(workbook):
        add_user(
            context,
            user_id=user.user_id,
            user_name=user.user_name,
            role=user.role,
            credential=user.credential,
        )
    for row in data_manager.iter_warehouse_stock(workbook):
        if row.quantity == 0:
            continue
        get_product(context, row.product_id)
        current = warehouse_quantity(context, row.product_id)
        write_warehouse_quantity(context, row.product_id, current + row.quantity)
        record_movement(context, MovementType.RECEIVE, product_id=row.product_id, quantity=row.quantity)
    log.debug(
        "Seeded %d categories, %d products, %d users",
        len(context.store.categories.list()),
        len(context.store.products.list()),
        len(context.store.users.list()),
    )


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate seed compatibility before operating on the store.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Seed schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Seed schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


# ---------------------------------------------------------------------------
# Catalog and users
# ---------------------------------------------------------------------------


def add_category(context: RuntimeContext, *, category_id: str, category_name: str) -> data_manager.CategoryRow:
    """Register a new category.

    Raises:
        BusinessRuleViolation: If ``category_id`` already exists.
        ValueError: If the name is blank.
    """
    if not category_name.strip():
        raise ValueError("Category name must not be blank")
    if context.store.categories.get(category_id) is not None:
        log.warning("Duplicate category id '%s'", category_id)
        raise BusinessRuleViolation(f"Category '{category_id}' already exists")
    category = data_manager.CategoryRow(category_id=category_id, category_name=category_name.strip())
    context.store.categories.add(category_id, category)
    log.info("Added category '%s' (%s)", category_id, category.category_name)
    return category


def add_product(
    context: RuntimeContext,
    *,
    product_id: str,
    product_name: str,
    category_id: str,
    unit_price: Decimal,
    unit: str = "pcs",
) -> data_manager.ProductRow:
    """Register a new product under an existing category.

    Args:
        context (RuntimeContext): Active runtime context.
        product_id (str): Unique product identifier.
        product_name (str): Display name.
        category_id (str): Identifier of an existing category.
        unit_price (Decimal): Non-negative selling price per unit.
        unit (str): Unit of measure, ``"pcs"`` by default.

    Returns:
        data_manager.ProductRow: The stored product.

    Raises:
        BusinessRuleViolation: If ``product_id`` already exists.
        MissingReferenceError: If the category is unknown.
        ValueError: If the name is blank or the price is negative.
    """
    if not product_name.strip():
        raise ValueError("Product name must not be blank")
    require_nonnegative_money(unit_price)
    get_category(context, category_id)
    if context.store.products.get(product_id) is not None:
        log.warning("Duplicate product id '%s'", product_id)
        raise BusinessRuleViolation(f"Product '{product_id}' already exists")

    product = data_manager.ProductRow(
        product_id=product_id,
        product_name=product_name.strip(),
        category_id=category_id,
        unit_price=unit_price,
        unit=unit,
    )
    context.store.products.add(product_id, product)
    log.info("Added product '%s' (%s) at %s per %s", product_id, product.product_name, unit_price, unit)
    return product


def update_product(
    context: RuntimeContext,
    product_id: str,
    *,
    product_name: Optional[str] = None,
    unit_price: Optional[Decimal] = None,
) -> data_manager.ProductRow:
    """Edit a product's name and/or price.

    Identifier, category and unit are fixed once created. Transactions that
    were already recorded keep the price captured at the time of sale.

    Raises:
        MissingReferenceError: If the product is unknown.
        ValueError: If nothing is changed, the name is blank, or the price is
            negative.
    """
    product = get_product(context, product_id)
    if product_name is None and unit_price is None:
        raise ValueError("Nothing to update: supply a name and/or a price")
    changes = {}
    if product_name is not None:
        if not product_name.strip():
            raise ValueError("Product name must not be blank")
        changes["product_name"] = product_name.strip()
    if unit_price is not None:
        require_nonnegative_money(unit_price)
        changes["unit_price"] = unit_price

    updated = replace(product, **changes)
    context.store.products.update(product_id, updated)
    log.info("Updated product '%s': %s", product_id, ", ".join(f"{k}={v}" for k, v in changes.items()))
    return updated


def add_user(
    context: RuntimeContext,
    *,
    user_id: str,
    user_name: str,
    role: Role,
    credential: Optional[str] = None,
) -> data_manager.UserRow:
    """Register a user with one of the closed set of roles.

    Raises:
        BusinessRuleViolation: If ``user_id`` already exists.
        ValueError: If ``role`` is not a :class:`Role`.
    """
    if not isinstance(role, Role):
        raise ValueError(f"Unsupported role: {role!r}")
    if context.store.users.get(user_id) is not None:
        log.warning("Duplicate user id '%s'", user_id)
        raise BusinessRuleViolation(f"User '{user_id}' already exists")
    user = data_manager.UserRow(user_id=user_id, user_name=user_name, role=role, credential=credential)
    context.store.users.add(user_id, user)
    log.info("Added %s user '%s' (%s)", role.value, user_id, user_name)
    return user


def get_category(context: RuntimeContext, category_id: str) -> data_manager.CategoryRow:
    category = context.store.categories.get(category_id)
    if category is None:
        log.warning("Category lookup failed for id '%s'", category_id)
        raise MissingReferenceError(f"Unknown category id: {category_id}")
    return category


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Resolve a product record by its identifier.

    Raises:
        MissingReferenceError: If ``product_id`` is unknown.
    """
    product = context.store.products.get(product_id)
    if product is None:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}")
    return product


def get_user(context: RuntimeContext, user_id: str) -> data_manager.UserRow:
    """Resolve a user record by its identifier.

    Raises:
        MissingReferenceError: If ``user_id`` is unknown.
    """
    user = context.store.users.get(user_id)
    if user is None:
        log.warning("User lookup failed for id '%s'", user_id)
        raise MissingReferenceError(f"Unknown user id: {user_id}")
    return user


def get_rider(context: RuntimeContext, rider_id: str) -> data_manager.UserRow:
    """Resolve a user and require the rider role.

    Raises:
        MissingReferenceError: If ``rider_id`` is unknown.
        BusinessRuleViolation: If the user is not a rider.
    """
    user = get_user(context, rider_id)
    if user.role is not Role.RIDER:
        log.warning("User '%s' has role '%s', expected rider", rider_id, user.role.value)
        raise BusinessRuleViolation(f"User '{rider_id}' is not a rider")
    return user


def list_categories(context: RuntimeContext) -> List[data_manager.CategoryRow]:
    return context.store.categories.list()


def list_products(context: RuntimeContext, *, category_id: Optional[str] = None) -> List[data_manager.ProductRow]:
    """Return products in insertion order, optionally limited to one category."""
    products = context.store.products.list()
    if category_id is None:
        return products
    return [product for product in products if product.category_id == category_id]


def list_users(context: RuntimeContext, *, role: Optional[Role] = None) -> List[data_manager.UserRow]:
    users = context.store.users.list()
    if role is None:
        return users
    return [user for user in users if user.role is role]


# ---------------------------------------------------------------------------
# Stock tables and movement journal
# ---------------------------------------------------------------------------


def warehouse_quantity(context: RuntimeContext, product_id: str) -> int:
    return context.store.warehouse_stock.get(product_id) or 0


def rider_quantity(context: RuntimeContext, rider_id: str, product_id: str) -> int:
    return context.store.rider_stock.get((rider_id, product_id)) or 0


def write_warehouse_quantity(context: RuntimeContext, product_id: str, quantity: int) -> None:
    _write_quantity(context.store.warehouse_stock, product_id, quantity)


def write_rider_quantity(context: RuntimeContext, rider_id: str, product_id: str, quantity: int) -> None:
    _write_quantity(context.store.rider_stock, (rider_id, product_id), quantity)


def _write_quantity(repository: data_manager.Repository, key: object, quantity: int) -> None:
    """Store ``quantity`` under ``key``, adding the row on first write.

    Raises:
        ValueError: If ``quantity`` is negative.
    """
    if quantity < 0:
        raise ValueError(f"Stock quantity cannot be negative: {key} -> {quantity}")
    if repository.get(key) is None:
        repository.add(key, quantity)
    else:
        repository.update(key, quantity)


def record_movement(
    context: RuntimeContext,
    movement_type: MovementType,
    *,
    product_id: str,
    quantity: int,
    rider_id: Optional[str] = None,
    reference_id: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> data_manager.StockMovement:
    """Append an entry to the stock movement journal."""
    movements = context.store.movements
    movement = data_manager.StockMovement(
        movement_id=f"M{len(movements) + 1:06d}",
        timestamp_iso=_resolve_timestamp(timestamp).isoformat(),
        movement_type=movement_type,
        product_id=product_id,
        quantity=quantity,
        rider_id=rider_id,
        reference_id=reference_id,
    )
    movements.append(movement)
    log.debug("Journaled %s movement '%s' for '%s' (%d)", movement_type.value, movement.movement_id, product_id, quantity)
    return movement


def list_movements(context: RuntimeContext) -> List[data_manager.StockMovement]:
    return context.store.movements.list()


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def generate_transaction_id(*, prefix: str = "T", when: Optional[datetime] = None, sequence: int = 1) -> str:
    """Generate a sortable transaction identifier.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}-{sequence:04d}``.

    The timestamp keeps identifiers chronological; the sequence number (the
    position in the log) keeps them unique when two sales share a timestamp,
    which happens with fixed clocks in tests and migrations.
    """
    when = when or _resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}-{sequence:04d}"


def require_positive_quantity(quantity: int) -> None:
    """Validate that a quantity is a strictly positive whole number.

    Raises:
        ValueError: If ``quantity`` is not an ``int`` or is zero or negative.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        log.error("Quantity validation failed: %r is not a whole number", quantity)
        raise ValueError("Quantity must be a whole number")
    if quantity <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be greater than zero")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is a finite, nonnegative ``Decimal``.

    Raises:
        ValueError: If ``amount`` is not a finite ``Decimal`` or is less than
            zero.
    """
    if not isinstance(amount, Decimal) or not amount.is_finite():
        log.error("Monetary value validation failed: %r is not a finite Decimal", amount)
        raise ValueError("Amount must be a finite Decimal")
    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


def quantize_money(amount: Decimal) -> Decimal:
    """Round ``amount`` half-up to the currency's minor unit."""
    return amount.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)
