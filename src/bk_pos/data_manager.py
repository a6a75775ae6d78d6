"""Data access layer for BK POS.

This module owns every record type and every storage primitive used by the
ledger. Business rules belong elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Storage: the :class:`Repository` interface, its in-memory implementation,
   and the append-only logs holding transactions and stock movements.
3. Seed workbook: reading the catalog, users and opening warehouse stock from
   the ``openpyxl`` workbook that stands in for master data.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import (
    Callable,
    Dict,
    Generic,
    Iterable,
    List,
    Optional,
    Protocol,
    Sequence,
    Set,
    Tuple,
    TypeVar,
)

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    DEFAULT_TAX_RATE,
    MovementType,
    PaymentMethod,
    Role,
    SheetName,
)


CONFIG_FILE_NAME = "config.ini"
CATEGORIES_SHEET = SheetName.CATEGORIES.value
PRODUCTS_SHEET = SheetName.PRODUCTS.value
USERS_SHEET = SheetName.USERS.value
WAREHOUSE_STOCK_SHEET = SheetName.WAREHOUSE_STOCK.value

K = TypeVar("K")
V = TypeVar("V")


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    seed_file: Path
    store_name: str
    schema_version: str
    tax_rate: Decimal = DEFAULT_TAX_RATE
    currency: str = "IDR"


@dataclass(frozen=True)
class CategoryRow:
    """A product category."""

    category_id: str
    category_name: str


@dataclass(frozen=True)
class ProductRow:
    """A sellable product. Only name and price are ever replaced."""

    product_id: str
    product_name: str
    category_id: str
    unit_price: Decimal
    unit: str


@dataclass(frozen=True)
class UserRow:
    """A user of the system; ``credential`` is an opaque placeholder."""

    user_id: str
    user_name: str
    role: Role
    credential: Optional[str] = None


@dataclass(frozen=True)
class WarehouseStockRow:
    """Opening warehouse quantity for one product, as found in the seed."""

    product_id: str
    quantity: int


@dataclass(frozen=True)
class LineItem:
    """One cart line, priced at the moment of sale."""

    product_id: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class TransactionRecord:
    """An immutable, completed sale."""

    transaction_id: str
    rider_id: str
    timestamp_iso: str
    lines: Tuple[LineItem, ...]
    payment_method: PaymentMethod
    amount_tendered: Optional[Decimal]
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    change: Decimal


@dataclass(frozen=True)
class SaleQuote:
    """A validated, priced cart that has not been committed yet."""

    quote_id: str
    rider_id: str
    lines: Tuple[LineItem, ...]
    payment_method: PaymentMethod
    amount_tendered: Optional[Decimal]
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    change: Decimal


@dataclass(frozen=True)
class StockMovement:
    """A single signed entry in the stock movement journal."""

    movement_id: str
    timestamp_iso: str
    movement_type: MovementType
    product_id: str
    quantity: int
    rider_id: Optional[str] = None
    reference_id: Optional[str] = None


class Repository(Protocol[K, V]):
    """Storage capability set consumed by the ledger: read, append, update."""

    def get(self, key: K) -> Optional[V]:
        ...

    def list(self) -> List[V]:
        ...

    def items(self) -> List[Tuple[K, V]]:
        ...

    def add(self, key: K, value: V) -> None:
        ...

    def update(self, key: K, value: V) -> None:
        ...


class InMemoryRepository(Generic[K, V]):
    """Dictionary-backed :class:`Repository` preserving insertion order."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._rows: Dict[K, V] = {}

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, key: object) -> bool:
        return key in self._rows

    def get(self, key: K) -> Optional[V]:
        return self._rows.get(key)

    def list(self) -> List[V]:
        return [value for value in self._rows.values()]

    def items(self) -> List[Tuple[K, V]]:
        return [(key, value) for key, value in self._rows.items()]

    def add(self, key: K, value: V) -> None:
        """Insert a new row.

        Raises:
            KeyError: If ``key`` is already present.
        """
        if key in self._rows:
            raise KeyError(f"Duplicate {self.name} key: {key}")
        self._rows[key] = value

    def update(self, key: K, value: V) -> None:
        """Replace an existing row.

        Raises:
            KeyError: If ``key`` is unknown.
        """
        if key not in self._rows:
            raise KeyError(f"Unknown {self.name} key: {key}")
        self._rows[key] = value


class AppendOnlyLog(Generic[V]):
    """Ordered log that only supports reads and appends.

    Entries are keyed by ``key_of`` so individual records can be resolved,
    and a key may only ever be written once.
    """

    def __init__(self, name: str, key_of: Callable[[V], str]) -> None:
        self.name = name
        self._key_of = key_of
        self._entries: List[V] = []
        self._by_key: Dict[str, V] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[V]:
        return self._by_key.get(key)

    def list(self) -> List[V]:
        return self._entries.copy()

    def append(self, entry: V) -> None:
        """Append ``entry`` to the end of the log.

        Raises:
            KeyError: If an entry with the same key was already appended.
        """
        key = self._key_of(entry)
        if key in self._by_key:
            raise KeyError(f"Duplicate {self.name} entry: {key}")
        self._entries.append(entry)
        self._by_key[key] = entry


@dataclass
class DataStore:
    """Bundle of every repository the ledger and recorder operate on."""

    categories: Repository[str, CategoryRow]
    products: Repository[str, ProductRow]
    users: Repository[str, UserRow]
    warehouse_stock: Repository[str, int]
    rider_stock: Repository[Tuple[str, str], int]
    transactions: AppendOnlyLog[TransactionRecord]
    movements: AppendOnlyLog[StockMovement]
    pending_quotes: Dict[str, SaleQuote] = field(default_factory=dict)
    committed_quotes: Set[str] = field(default_factory=set)


def create_memory_store() -> DataStore:
    """Return an empty, fully in-memory :class:`DataStore`."""

    return DataStore(
        categories=InMemoryRepository("category"),
        products=InMemoryRepository("product"),
        users=InMemoryRepository("user"),
        warehouse_stock=InMemoryRepository("warehouse stock"),
        rider_stock=InMemoryRepository("rider stock"),
        transactions=AppendOnlyLog("transaction", lambda record: record.transaction_id),
        movements=AppendOnlyLog("movement", lambda movement: movement.movement_id),
    )


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the system behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match wins.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no ``CONFIG_FILE_NAME`` exists in any parent
            directory.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of individual entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. The ``[Sales]`` section is optional and
    falls back to a zero tax rate. A relative ``SeedFile`` is anchored to
    ``base_path`` (or the working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to resolve a relative
            ``SeedFile`` entry.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If ``TaxRate`` is not a decimal in ``[0, 1)``.
    """

    try:
        seed_file_raw = parser.get("System", "SeedFile")
        store_name = parser.get("System", "StoreName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    tax_rate_raw = parser.get("Sales", "TaxRate", fallback=str(DEFAULT_TAX_RATE))
    currency = parser.get("Sales", "Currency", fallback="IDR")
    try:
        tax_rate = Decimal(tax_rate_raw.strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid tax rate: {tax_rate_raw!r}") from exc
    if not Decimal("0") <= tax_rate < Decimal("1"):
        raise ValueError(f"Tax rate must be within [0, 1): {tax_rate}")

    seed_file_path = Path(seed_file_raw)
    if not seed_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        seed_file_path = (base_path / seed_file_path).resolve()

    return ConfigSettings(
        seed_file=seed_file_path,
        store_name=store_name,
        schema_version=schema_version,
        tax_rate=tax_rate,
        currency=currency,
    )


def open_workbook(seed_file: Path) -> Workbook:
    """Open the seed workbook read-only.

    Callers must ``close()`` the returned workbook once the rows have been
    consumed.

    Raises:
        FileNotFoundError: If ``seed_file`` does not exist.
    """

    seed_file = Path(seed_file).expanduser().resolve()
    if not seed_file.exists():
        raise FileNotFoundError(f"Seed workbook not found: {seed_file}")

    log.debug("Opening seed workbook '%s'", seed_file)
    return openpyxl.load_workbook(seed_file, read_only=True, data_only=True)


def _iter_sheet(workbook: Workbook, sheet_name: str, width: int) -> Iterable[Sequence[object]]:
    """Yield raw data rows of ``sheet_name``, skipping the header and blanks.

    Read-only worksheets may return short rows when trailing cells are empty,
    so every row is padded with ``None`` up to ``width`` columns.
    """

    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield tuple(raw) + (None,) * (width - len(raw))


def iter_categories(workbook: Workbook) -> Iterable[CategoryRow]:
    """Yield the rows of the ``Categories`` sheet as :class:`CategoryRow`."""

    for raw in _iter_sheet(workbook, CATEGORIES_SHEET, 2):
        yield deserialize_category(raw)


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Yield the rows of the ``Products`` sheet as :class:`ProductRow`."""

    for raw in _iter_sheet(workbook, PRODUCTS_SHEET, 5):
        yield deserialize_product(raw)


def iter_users(workbook: Workbook) -> Iterable[UserRow]:
    """Yield the rows of the ``Users`` sheet as :class:`UserRow`."""

    for raw in _iter_sheet(workbook, USERS_SHEET, 4):
        yield deserialize_user(raw)


def iter_warehouse_stock(workbook: Workbook) -> Iterable[WarehouseStockRow]:
    """Yield opening quantities from the ``WarehouseStock`` sheet."""

    for raw in _iter_sheet(workbook, WAREHOUSE_STOCK_SHEET, 2):
        yield deserialize_warehouse_stock(raw)


def serialize_category(record: CategoryRow) -> list[object]:
    return [record.category_id, record.category_name]


def serialize_product(record: ProductRow) -> list[object]:
    """Return ``[ProductID, ProductName, CategoryID, UnitPrice, Unit]``.

    The price is written as a string so the workbook does not round it
    through a float.
    """

    return [
        record.product_id,
        record.product_name,
        record.category_id,
        str(record.unit_price),
        record.unit,
    ]


def serialize_user(record: UserRow) -> list[object]:
    return [record.user_id, record.user_name, record.role.value, record.credential]


def serialize_warehouse_stock(record: WarehouseStockRow) -> list[object]:
    return [record.product_id, record.quantity]


def deserialize_category(raw_row: Sequence[object]) -> CategoryRow:
    category_id, category_name = raw_row[0], raw_row[1]
    return CategoryRow(category_id=str(category_id), category_name=str(category_name))


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record.

    Identifiers are coerced to ``str`` because Excel happily turns numeric
    looking ids into numbers. Prices become :class:`~decimal.Decimal` via
    ``str`` to avoid float artefacts; a blank price reads as zero and a blank
    unit as ``"pcs"``.
    """

    product_id, product_name, category_id, price_raw, unit = raw_row[:5]
    unit_price = Decimal(str(price_raw)) if price_raw is not None else Decimal("0.00")
    return ProductRow(
        product_id=str(product_id),
        product_name=str(product_name),
        category_id=str(category_id),
        unit_price=unit_price,
        unit=str(unit) if unit is not None else "pcs",
    )


def deserialize_user(raw_row: Sequence[object]) -> UserRow:
    """Convert a raw worksheet row into a :class:`UserRow`.

    Raises:
        ValueError: If the role column is not one of the known roles.
    """

    user_id, user_name, role_raw = raw_row[0], raw_row[1], raw_row[2]
    credential = raw_row[3]
    role = Role(str(role_raw).strip().lower())
    return UserRow(
        user_id=str(user_id),
        user_name=str(user_name),
        role=role,
        credential=(str(credential) if credential is not None else None),
    )


def deserialize_warehouse_stock(raw_row: Sequence[object]) -> WarehouseStockRow:
    """Convert a raw worksheet row into a :class:`WarehouseStockRow`.

    Raises:
        ValueError: If the quantity is negative or not a whole number.
    """

    product_id, quantity_raw = raw_row[0], raw_row[1]
    quantity_decimal = Decimal(str(quantity_raw)) if quantity_raw is not None else Decimal("0")
    if quantity_decimal != quantity_decimal.to_integral_value() or quantity_decimal < 0:
        raise ValueError(f"Invalid opening quantity for '{product_id}': {quantity_raw}")
    return WarehouseStockRow(product_id=str(product_id), quantity=int(quantity_decimal))
