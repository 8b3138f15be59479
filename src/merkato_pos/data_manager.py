"""Backend layer for MobiShop.

This module provides the storage collaborator the rest of the package talks
to. Products, sales, and user accounts live in an ``openpyxl`` workbook with
one sheet per collection. Business rules belong elsewhere.

The public API is designed around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records and appending, updating, or
   deleting individual rows.
4. The :class:`Backend` protocol and its :class:`WorkbookBackend`
   implementation, which is what the business layer receives by injection.
"""


from __future__ import annotations

import configparser
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Protocol, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import STORE_NAME, SheetName
from .errors import BackendError, InsufficientStock, NotFoundError


CONFIG_FILE_NAME = "config.ini"
DEFAULT_EXPORT_DIR = "exports"
DEFAULT_PREFERENCES_FILE = "preferences.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
SALES_SHEET = SheetName.SALES.value
USERS_SHEET = SheetName.USERS.value

CENT = Decimal("0.01")

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    PRODUCTS_SHEET: [
        "ProductID",
        "Name",
        "Category",
        "PurchasePrice",
        "InterestPercent",
        "Price",
        "Stock",
        "CreatedAt",
        "UpdatedAt",
    ],
    SALES_SHEET: [
        "SaleID",
        "BatchID",
        "Timestamp",
        "Date",
        "ProductID",
        "ProductName",
        "Category",
        "Quantity",
        "UnitPrice",
        "TotalPrice",
        "BuyerName",
        "SellerID",
        "SellerName",
        "PaymentMethod",
    ],
    USERS_SHEET: [
        "UserID",
        "Email",
        "Name",
        "Role",
        "CreatedAt",
    ],
}

# Dataclass attribute -> worksheet header, used by partial updates.
PRODUCT_FIELD_COLUMNS: Mapping[str, str] = {
    "name": "Name",
    "category": "Category",
    "purchase_price": "PurchasePrice",
    "interest_percent": "InterestPercent",
    "price": "Price",
    "stock": "Stock",
    "updated_at": "UpdatedAt",
}

USER_FIELD_COLUMNS: Mapping[str, str] = {
    "email": "Email",
    "name": "Name",
    "role": "Role",
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    store_name: str
    schema_version: str
    export_dir: Path
    preferences_file: Path


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    name: str
    category: str
    purchase_price: Decimal
    interest_percent: Decimal
    price: Decimal
    stock: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class SaleRow:
    """In-memory view of a row from the ``Sales`` sheet.

    Rows are written once at sale time and never updated afterwards.
    ``category`` may be ``None`` for records written before the category
    was denormalized onto sales.
    """

    sale_id: str
    batch_id: str
    timestamp: datetime
    date: str
    product_id: str
    product_name: str
    category: Optional[str]
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    buyer_name: str
    seller_id: Optional[str]
    seller_name: Optional[str]
    payment_method: str


@dataclass(frozen=True)
class UserRow:
    """In-memory view of a row from the ``Users`` sheet."""

    user_id: str
    email: str
    name: str
    role: str
    created_at: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class Backend(Protocol):
    """Operations the business layer needs from the document store."""

    def list_products(self) -> List[ProductRow]: ...

    def get_product(self, product_id: str) -> ProductRow: ...

    def create_product(self, record: ProductRow) -> ProductRow: ...

    def update_product(self, product_id: str, fields: Mapping[str, Any]) -> ProductRow: ...

    def delete_product(self, product_id: str) -> None: ...

    def decrement_stock(self, product_id: str, quantity: int) -> ProductRow: ...

    def increment_stock(self, product_id: str, quantity: int) -> ProductRow: ...

    def list_sales(self) -> List[SaleRow]: ...

    def append_sale(self, record: SaleRow) -> SaleRow: ...

    def list_users(self) -> List[UserRow]: ...

    def get_user(self, user_id: str) -> UserRow: ...

    def create_user(self, record: UserRow) -> UserRow: ...

    def update_user(self, user_id: str, fields: Mapping[str, Any]) -> UserRow: ...

    def delete_user(self, user_id: str) -> None: ...


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the backend behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
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

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

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


def _anchor(raw: str, base_path: Path) -> Path:
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = (base_path / path).resolve()
    return path


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System] DataFile`` and ``[System] SchemaVersion`` are mandatory. The
    store name, export directory, and preferences file fall back to defaults.
    Relative paths are expanded against ``base_path`` when provided, or
    against the current working directory as a fallback.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used as the anchor for relative
            paths. Defaults to :func:`Path.cwd` when omitted.

    Returns:
        ConfigSettings: Immutable settings container with resolved paths.

    Raises:
        KeyError: If one of the required sections or options is missing from the
            configuration.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    if base_path is None:
        base_path = Path.cwd()

    store_name = parser.get("System", "StoreName", fallback=STORE_NAME)
    export_raw = parser.get("Exports", "OutputDir", fallback=DEFAULT_EXPORT_DIR)
    preferences_raw = parser.get("Preferences", "SettingsFile", fallback=DEFAULT_PREFERENCES_FILE)

    return ConfigSettings(
        data_file=_anchor(data_file_raw, base_path),
        store_name=store_name,
        schema_version=schema_version,
        export_dir=_anchor(export_raw, base_path),
        preferences_file=_anchor(preferences_raw, base_path),
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the store workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the workbook file.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk at an explicitly provided destination.

    Parent directories are created on demand.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def _iter_sheet(workbook: Workbook, sheet_name: str) -> Iterator[tuple]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over product records stored on the ``Products`` worksheet."""

    for raw in _iter_sheet(workbook, PRODUCTS_SHEET):
        yield deserialize_product(raw)


def iter_sales(workbook: Workbook) -> Iterable[SaleRow]:
    """Stream sale records from the ``Sales`` worksheet in sheet order.

    The sheet is append-only, so sheet order is commit order.
    """

    for raw in _iter_sheet(workbook, SALES_SHEET):
        yield deserialize_sale(raw)


def iter_users(workbook: Workbook) -> Iterable[UserRow]:
    """Iterate over the ``Users`` worksheet and yield typed records."""

    for raw in _iter_sheet(workbook, USERS_SHEET):
        yield deserialize_user(raw)


def append_product(workbook: Workbook, record: ProductRow) -> None:
    """Append a product record to the ``Products`` worksheet."""

    workbook[PRODUCTS_SHEET].append(serialize_product(record))


def append_sale(workbook: Workbook, record: SaleRow) -> None:
    """Append a sale record to the ``Sales`` worksheet."""

    workbook[SALES_SHEET].append(serialize_sale(record))


def append_user(workbook: Workbook, record: UserRow) -> None:
    """Append a user record to the ``Users`` worksheet."""

    workbook[USERS_SHEET].append(serialize_user(record))


def _header_map(workbook: Workbook, sheet_name: str) -> dict[str, int]:
    sheet = workbook[sheet_name]
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def update_row(
    workbook: Workbook,
    sheet_name: str,
    key_column: str,
    key_value: str,
    *,
    column_values: Mapping[str, Any],
) -> None:
    """Update selected columns of the row whose ``key_column`` matches.

    Only the specified columns are modified, leaving others untouched.

    Raises:
        KeyError: If the row or any referenced column cannot be found.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{sheet_name} row not found: {key_value}")

    sheet = workbook[sheet_name]
    header_map = _header_map(workbook, sheet_name)

    for column, value in column_values.items():
        if column not in header_map:
            raise KeyError(f"Unknown {sheet_name} column: {column}")
        sheet.cell(row=row_index, column=header_map[column], value=value)


def delete_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> None:
    """Remove the row whose ``key_column`` equals ``key_value``.

    Raises:
        KeyError: If no row matches.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{sheet_name} row not found: {key_value}")
    workbook[sheet_name].delete_rows(row_index)


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the column that stores the
            lookup key.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    header_map = _header_map(workbook, sheet_name)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]
    sheet = workbook[sheet_name]
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if row[key_col_index - 1] == key_value:
            return row_idx

    return None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def serialize_product(record: ProductRow) -> list[object]:
    """Convert a product dataclass into the worksheet column ordering."""

    return [
        record.product_id,
        record.name,
        record.category,
        record.purchase_price,
        record.interest_percent,
        record.price,
        record.stock,
        _iso(record.created_at),
        _iso(record.updated_at),
    ]


def serialize_sale(record: SaleRow) -> list[object]:
    """Convert a sale dataclass into the ``Sales`` column ordering."""

    return [
        record.sale_id,
        record.batch_id,
        record.timestamp.isoformat(),
        record.date,
        record.product_id,
        record.product_name,
        record.category,
        record.quantity,
        record.unit_price,
        record.total_price,
        record.buyer_name,
        record.seller_id,
        record.seller_name,
        record.payment_method,
    ]


def serialize_user(record: UserRow) -> list[object]:
    """Convert a user dataclass into the ``Users`` column ordering."""

    return [record.user_id, record.email, record.name, record.role, _iso(record.created_at)]


def to_money(raw: object) -> Decimal:
    """Normalize a cell value into a two-place :class:`Decimal`.

    Blank cells become ``0.00``. Values that cannot be parsed raise
    ``ValueError``.
    """

    if raw is None or raw == "":
        return Decimal("0.00")
    try:
        return Decimal(str(raw)).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValueError(f"Not a monetary value: {raw!r}") from exc


def _to_decimal(raw: object) -> Decimal:
    if raw is None or raw == "":
        return Decimal("0")
    return Decimal(str(raw))


def _to_int(raw: object) -> int:
    if raw is None or raw == "":
        return 0
    return int(Decimal(str(raw)))


def to_datetime(raw: object) -> Optional[datetime]:
    """Parse a stored timestamp, treating naive values as UTC."""

    if raw is None or raw == "":
        return None
    value = raw if isinstance(raw, datetime) else datetime.fromisoformat(str(raw))
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value


def _optional_text(raw: object) -> Optional[str]:
    if raw is None:
        return None
    text = str(raw)
    return text if text else None


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record."""

    (
        product_id,
        name,
        category,
        purchase_raw,
        interest_raw,
        price_raw,
        stock_raw,
        created_raw,
        updated_raw,
    ) = raw_row

    return ProductRow(
        product_id=str(product_id),
        name=str(name) if name is not None else "",
        category=str(category) if category is not None else "",
        purchase_price=to_money(purchase_raw),
        interest_percent=_to_decimal(interest_raw),
        price=to_money(price_raw),
        stock=_to_int(stock_raw),
        created_at=to_datetime(created_raw),
        updated_at=to_datetime(updated_raw),
    )


def deserialize_sale(raw_row: Sequence[object]) -> SaleRow:
    """Convert a raw worksheet row into a strongly typed sale record.

    Optional text columns stay ``None`` when blank so the aggregation layer
    can apply its own fallback labels.
    """

    (
        sale_id,
        batch_id,
        timestamp_raw,
        date_raw,
        product_id,
        product_name,
        category,
        quantity_raw,
        unit_price_raw,
        total_price_raw,
        buyer_name,
        seller_id,
        seller_name,
        payment_method,
    ) = raw_row

    timestamp = to_datetime(timestamp_raw)
    if timestamp is None:
        raise ValueError(f"Sale '{sale_id}' has no timestamp")

    return SaleRow(
        sale_id=str(sale_id),
        batch_id=str(batch_id) if batch_id is not None else str(sale_id),
        timestamp=timestamp,
        date=str(date_raw) if date_raw is not None else timestamp.date().isoformat(),
        product_id=str(product_id) if product_id is not None else "",
        product_name=str(product_name) if product_name is not None else "",
        category=_optional_text(category),
        quantity=_to_int(quantity_raw),
        unit_price=to_money(unit_price_raw),
        total_price=to_money(total_price_raw),
        buyer_name=str(buyer_name) if buyer_name is not None else "",
        seller_id=_optional_text(seller_id),
        seller_name=_optional_text(seller_name),
        payment_method=str(payment_method) if payment_method is not None else "",
    )


def deserialize_user(raw_row: Sequence[object]) -> UserRow:
    """Convert a raw worksheet row into a strongly typed user record."""

    user_id, email, name, role, created_raw = raw_row
    return UserRow(
        user_id=str(user_id),
        email=str(email) if email is not None else "",
        name=str(name) if name is not None else "",
        role=str(role) if role is not None else "",
        created_at=to_datetime(created_raw),
    )


def generate_id(prefix: str) -> str:
    """Return an opaque identifier such as ``P3F9A1C0D7B2E``."""

    return f"{prefix}{uuid.uuid4().hex[:12].upper()}"


class WorkbookBackend:
    """:class:`Backend` implementation over an ``openpyxl`` workbook.

    Every public method holds an instance lock, which makes the conditional
    stock decrement atomic for all callers sharing this object. Mutations stay
    in memory until :meth:`save` is called.
    """

    def __init__(self, workbook: Workbook, data_file: Optional[Path] = None) -> None:
        self.workbook = workbook
        self.data_file = data_file
        self._lock = threading.RLock()

    @classmethod
    def open(cls, data_file: Path) -> "WorkbookBackend":
        """Open ``data_file`` and wrap it in a backend."""

        return cls(open_workbook(data_file), data_file=Path(data_file))

    def save(self, destination: Optional[Path] = None) -> None:
        """Persist the workbook to ``destination`` or the file it came from."""

        target = destination or self.data_file
        if target is None:
            raise BackendError("No destination known for workbook save")
        with self._guard("save workbook"):
            save_workbook(self.workbook, target)
        log.info("Persisted workbook '%s'", target)

    @contextmanager
    def _guard(self, action: str) -> Iterator[None]:
        with self._lock:
            try:
                yield
            except (InsufficientStock, BackendError):
                raise
            except KeyError as exc:
                log.error("Backend lookup failed during %s: %s", action, exc)
                raise NotFoundError(f"{action}: {exc.args[0] if exc.args else exc}") from exc
            except (OSError, ValueError, TypeError) as exc:
                log.error("Backend failure during %s: %s", action, exc)
                raise BackendError(f"{action} failed: {exc}") from exc

    # -- products ---------------------------------------------------------

    def list_products(self) -> List[ProductRow]:
        with self._guard("list products"):
            return list(iter_products(self.workbook))

    def get_product(self, product_id: str) -> ProductRow:
        with self._guard("get product"):
            for product in iter_products(self.workbook):
                if product.product_id == product_id:
                    return product
            raise KeyError(f"Unknown product id: {product_id}")

    def create_product(self, record: ProductRow) -> ProductRow:
        with self._guard("create product"):
            if not record.product_id:
                record = replace(record, product_id=generate_id("P"))
            append_product(self.workbook, record)
            return record

    def update_product(self, product_id: str, fields: Mapping[str, Any]) -> ProductRow:
        with self._guard("update product"):
            columns = {}
            for field_name, value in fields.items():
                if field_name not in PRODUCT_FIELD_COLUMNS:
                    raise KeyError(f"Unknown product field: {field_name}")
                if isinstance(value, datetime):
                    value = value.isoformat()
                columns[PRODUCT_FIELD_COLUMNS[field_name]] = value
            update_row(self.workbook, PRODUCTS_SHEET, "ProductID", product_id, column_values=columns)
            return self.get_product(product_id)

    def delete_product(self, product_id: str) -> None:
        with self._guard("delete product"):
            delete_row(self.workbook, PRODUCTS_SHEET, "ProductID", product_id)

    def decrement_stock(self, product_id: str, quantity: int) -> ProductRow:
        """Atomically subtract ``quantity`` if at least that much is on hand."""

        with self._guard("decrement stock"):
            product = self.get_product(product_id)
            if product.stock < quantity:
                raise InsufficientStock(product_id, quantity, product.stock)
            return self.update_product(
                product_id,
                {"stock": product.stock - quantity, "updated_at": datetime.now(UTC)},
            )

    def increment_stock(self, product_id: str, quantity: int) -> ProductRow:
        with self._guard("increment stock"):
            product = self.get_product(product_id)
            return self.update_product(
                product_id,
                {"stock": product.stock + quantity, "updated_at": datetime.now(UTC)},
            )

    # -- sales ------------------------------------------------------------

    def list_sales(self) -> List[SaleRow]:
        """Return every sale ordered by timestamp, newest first."""

        with self._guard("list sales"):
            return sorted(iter_sales(self.workbook), key=lambda sale: sale.timestamp, reverse=True)

    def append_sale(self, record: SaleRow) -> SaleRow:
        with self._guard("append sale"):
            if locate_row(self.workbook, SALES_SHEET, "SaleID", record.sale_id) is not None:
                raise BackendError(f"Sale '{record.sale_id}' already recorded")
            append_sale(self.workbook, record)
            return record

    # -- users ------------------------------------------------------------

    def list_users(self) -> List[UserRow]:
        with self._guard("list users"):
            return list(iter_users(self.workbook))

    def get_user(self, user_id: str) -> UserRow:
        with self._guard("get user"):
            for user in iter_users(self.workbook):
                if user.user_id == user_id:
                    return user
            raise KeyError(f"Unknown user id: {user_id}")

    def create_user(self, record: UserRow) -> UserRow:
        with self._guard("create user"):
            if not record.user_id:
                record = replace(record, user_id=generate_id("U"))
            append_user(self.workbook, record)
            return record

    def update_user(self, user_id: str, fields: Mapping[str, Any]) -> UserRow:
        with self._guard("update user"):
            columns = {}
            for field_name, value in fields.items():
                if field_name not in USER_FIELD_COLUMNS:
                    raise KeyError(f"Unknown user field: {field_name}")
                columns[USER_FIELD_COLUMNS[field_name]] = value
            update_row(self.workbook, USERS_SHEET, "UserID", user_id, column_values=columns)
            return self.get_user(user_id)

    def delete_user(self, user_id: str) -> None:
        with self._guard("delete user"):
            delete_row(self.workbook, USERS_SHEET, "UserID", user_id)
