"""Shared pytest fixtures and utilities for MobiShop tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from merkato_pos import cli, constants, core_logic, data_manager  # noqa: E402
from merkato_pos.errors import BackendError, InsufficientStock, NotFoundError  # noqa: E402
from merkato_pos.settings import SettingsStore  # noqa: E402
from merkato_pos.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "StoreName = {store_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Exports]\n"
    "OutputDir = {export_dir}\n\n"
    "[Preferences]\n"
    "SettingsFile = preferences.ini\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    export_dir: Path
    schema_version: str
    store_name: str


class FakeBackend:
    """In-memory stand-in for :class:`~merkato_pos.data_manager.WorkbookBackend`.

    ``fail_append_on`` makes :meth:`append_sale` raise for the given sale ids,
    which lets tests stop a checkout part-way.
    """

    def __init__(self) -> None:
        self.products: Dict[str, data_manager.ProductRow] = {}
        self.sales: List[data_manager.SaleRow] = []
        self.users: Dict[str, data_manager.UserRow] = {}
        self.fail_append_on: set = set()
        self.calls: List[str] = []

    def _product(self, product_id: str) -> data_manager.ProductRow:
        if product_id not in self.products:
            raise NotFoundError(f"Unknown product id: {product_id}")
        return self.products[product_id]

    def list_products(self) -> List[data_manager.ProductRow]:
        self.calls.append("list_products")
        return list(self.products.values())

    def get_product(self, product_id: str) -> data_manager.ProductRow:
        return self._product(product_id)

    def create_product(self, record: data_manager.ProductRow) -> data_manager.ProductRow:
        if not record.product_id:
            record = replace(record, product_id=f"P{len(self.products) + 1:03d}")
        self.products[record.product_id] = record
        return record

    def update_product(self, product_id: str, fields: Mapping[str, Any]) -> data_manager.ProductRow:
        updated = replace(self._product(product_id), **fields)
        self.products[product_id] = updated
        return updated

    def delete_product(self, product_id: str) -> None:
        self._product(product_id)
        del self.products[product_id]

    def decrement_stock(self, product_id: str, quantity: int) -> data_manager.ProductRow:
        self.calls.append(f"decrement:{product_id}")
        product = self._product(product_id)
        if product.stock < quantity:
            raise InsufficientStock(product_id, quantity, product.stock)
        return self.update_product(product_id, {"stock": product.stock - quantity})

    def increment_stock(self, product_id: str, quantity: int) -> data_manager.ProductRow:
        self.calls.append(f"increment:{product_id}")
        product = self._product(product_id)
        return self.update_product(product_id, {"stock": product.stock + quantity})

    def list_sales(self) -> List[data_manager.SaleRow]:
        self.calls.append("list_sales")
        return sorted(self.sales, key=lambda sale: sale.timestamp, reverse=True)

    def append_sale(self, record: data_manager.SaleRow) -> data_manager.SaleRow:
        self.calls.append(f"append:{record.sale_id}")
        if record.sale_id in self.fail_append_on:
            raise BackendError(f"write rejected for {record.sale_id}")
        if any(sale.sale_id == record.sale_id for sale in self.sales):
            raise BackendError(f"Sale '{record.sale_id}' already recorded")
        self.sales.append(record)
        return record

    def list_users(self) -> List[data_manager.UserRow]:
        return list(self.users.values())

    def get_user(self, user_id: str) -> data_manager.UserRow:
        if user_id not in self.users:
            raise NotFoundError(f"Unknown user id: {user_id}")
        return self.users[user_id]

    def create_user(self, record: data_manager.UserRow) -> data_manager.UserRow:
        if not record.user_id:
            record = replace(record, user_id=f"U{len(self.users) + 1:03d}")
        self.users[record.user_id] = record
        return record

    def update_user(self, user_id: str, fields: Mapping[str, Any]) -> data_manager.UserRow:
        updated = replace(self.get_user(user_id), **fields)
        self.users[user_id] = updated
        return updated

    def delete_user(self, user_id: str) -> None:
        self.get_user(user_id)
        del self.users[user_id]


def make_product(
    product_id: str = "p1",
    name: str = "Phone",
    *,
    category: str = "Mobiles",
    price: str = "100.00",
    stock: int = 10,
    purchase_price: Optional[str] = None,
    interest_percent: str = "0",
) -> data_manager.ProductRow:
    """Build a product row with sensible defaults."""

    return data_manager.ProductRow(
        product_id=product_id,
        name=name,
        category=category,
        purchase_price=Decimal(purchase_price or price),
        interest_percent=Decimal(interest_percent),
        price=Decimal(price),
        stock=stock,
    )


def make_sale(
    sale_id: str = "S1-01",
    *,
    product_id: str = "p1",
    product_name: str = "Phone",
    category: Optional[str] = "Mobiles",
    quantity: int = 1,
    unit_price: str = "100.00",
    total_price: Optional[str] = None,
    timestamp: datetime = datetime(2026, 10, 19, 12, 0, tzinfo=UTC),
    buyer_name: str = "Alice",
    seller_id: Optional[str] = "U1",
    seller_name: Optional[str] = "Abebe",
    payment_method: str = "Cash",
    batch_id: Optional[str] = None,
) -> data_manager.SaleRow:
    """Build a sale row; ``total_price`` defaults to quantity times unit price."""

    unit = Decimal(unit_price)
    total = Decimal(total_price) if total_price is not None else (unit * quantity).quantize(Decimal("0.01"))
    return data_manager.SaleRow(
        sale_id=sale_id,
        batch_id=batch_id or sale_id.rsplit("-", 1)[0],
        timestamp=timestamp,
        date=timestamp.date().isoformat(),
        product_id=product_id,
        product_name=product_name,
        category=category,
        quantity=quantity,
        unit_price=unit,
        total_price=total,
        buyer_name=buyer_name,
        seller_id=seller_id,
        seller_name=seller_name,
        payment_method=payment_method,
    )


ADMIN = data_manager.UserRow(user_id="ADMIN", email="admin@example.com", name="Store Admin", role="admin")
SELLER = data_manager.UserRow(user_id="U1", email="abebe@example.com", name="Abebe", role="seller")


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized store workbook in a temp folder."""

    def _create_workbook(*, subdir: str | None = None, filename: str = "store.xlsx") -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh store workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        store_name: str = "Test Store",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
    ) -> ConfigBundle:
        bundle_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_name
        workbook_path = workbook_factory(subdir=bundle_name)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                store_name=store_name,
                schema_version=schema_version,
                export_dir="exports",
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            export_dir=bundle_dir / "exports",
            schema_version=schema_version,
            store_name=store_name,
        )

    return _create_config


@pytest.fixture
def config_bundle(config_factory: Callable[..., ConfigBundle]) -> ConfigBundle:
    return config_factory()


@pytest.fixture
def config_file(config_bundle: ConfigBundle) -> Path:
    """Convenience fixture returning only the config path."""

    return config_bundle.config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# In-memory context fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "store.xlsx",
        store_name="Test Store",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        export_dir=tmp_path / "exports",
        preferences_file=tmp_path / "preferences.ini",
    )


@pytest.fixture
def backend() -> FakeBackend:
    fake = FakeBackend()
    fake.users[ADMIN.user_id] = ADMIN
    fake.users[SELLER.user_id] = SELLER
    return fake


@pytest.fixture
def context(settings: data_manager.ConfigSettings, backend: FakeBackend) -> core_logic.RuntimeContext:
    """Assemble a runtime context around the in-memory backend."""

    return core_logic.RuntimeContext(settings=settings, backend=backend, preferences=SettingsStore())


@pytest.fixture
def admin() -> data_manager.UserRow:
    return ADMIN


@pytest.fixture
def seller() -> data_manager.UserRow:
    return SELLER


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="merkato-cli", description="Merkato CLI")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
