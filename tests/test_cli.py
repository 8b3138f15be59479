"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
from datetime import date
from pathlib import Path
from unittest.mock import Mock

import pytest

from merkato_pos import cli, data_manager
from merkato_pos.errors import (
    AccessDenied,
    BackendError,
    InsufficientStock,
    NotFoundError,
    SaleCommitError,
    ValidationError,
)


WRITE_COMMANDS = {
    "add-product",
    "edit-product",
    "delete-product",
    "add-user",
    "edit-user",
    "delete-user",
    "sale",
    "settings",
}

READ_COMMANDS = {
    "products",
    "users",
    "sales",
    "report",
    "seller-report",
    "dashboard",
}


def _add_phone(config_path: Path, *, stock: str = "10") -> str:
    exit_code = cli.main(
        [
            "--config", str(config_path),
            "add-product",
            "--name", "Phone",
            "--category", "Mobiles",
            "--purchase-price", "100",
            "--interest-percent", "0",
            "--stock", stock,
        ]
    )
    assert exit_code == 0
    backend = data_manager.WorkbookBackend.open(_workbook_of(config_path))
    return backend.list_products()[-1].product_id


def _workbook_of(config_path: Path) -> Path:
    return config_path.parent / "store.xlsx"


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    """build_parser should set user-facing program metadata."""

    parser = cli.build_parser()
    assert parser.prog == "merkato-cli"
    assert "EthioMerkato" in (parser.description or "")


def test_build_parser_defaults_actor_to_admin():
    parser = cli.build_parser()
    cli.configure_subcommands(parser)
    args = parser.parse_args(["dashboard"])
    assert args.user_id == cli.DEFAULT_ACTOR_ID
    assert args.config is None


def test_configure_subcommands_registers_every_command(cli_parser):
    """configure_subcommands should wire read and write sub-commands."""

    command_table = cli.configure_subcommands(cli_parser)
    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS


def test_build_command_table_indexes_specs(command_spec_iterable):
    table = cli.build_command_table(command_spec_iterable)
    assert list(table) == ["alpha", "beta", "gamma"]


def test_build_command_table_rejects_duplicates(command_spec_iterable):
    with pytest.raises(ValueError):
        cli.build_command_table([*command_spec_iterable, command_spec_iterable[0]])


def test_dispatch_command_routes_to_executor(command_spec_iterable):
    execute = Mock(return_value=0)
    spec = cli.CommandSpec("alpha", "help", command_spec_iterable[0].register, execute)
    args = argparse.Namespace(command="alpha")

    assert cli.dispatch_command("ctx", args, {"alpha": spec}) == 0
    execute.assert_called_once_with("ctx", args)


def test_dispatch_command_unknown_raises():
    with pytest.raises(KeyError):
        cli.dispatch_command("ctx", argparse.Namespace(command="nope"), {})


# ---------------------------------------------------------------------------
# Argument types
# ---------------------------------------------------------------------------


def test_parse_item_splits_on_last_colon():
    assert cli.parse_item("P:1:3") == ("P:1", 3)


@pytest.mark.parametrize("text", ["P1", ":3", "P1:x"])
def test_parse_item_rejects_malformed_values(text):
    with pytest.raises(argparse.ArgumentTypeError):
        cli.parse_item(text)


def test_parse_day_and_switch():
    assert cli.parse_day("2026-10-19") == date(2026, 10, 19)
    assert cli.parse_switch("ON") is True
    assert cli.parse_switch("off") is False
    with pytest.raises(argparse.ArgumentTypeError):
        cli.parse_switch("maybe")


def test_sale_parser_collects_repeated_items():
    parser = cli.build_parser()
    cli.configure_subcommands(parser)
    args = parser.parse_args(["sale", "--item", "P1:2", "--item", "P2:1", "--payment-method", "Card"])
    assert args.items == [("P1", 2), ("P2", 1)]
    assert args.payment_method == "Card"


def test_format_table_pads_columns():
    text = cli.format_table(("ID", "Name"), [("P1", "Phone"), ("P22", "X")])
    assert text.splitlines() == ["ID   Name ", "---  -----", "P1   Phone", "P22  X    "]


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (ValidationError("bad"), 2),
        (InsufficientStock("p1", 3, 1), 2),
        (AccessDenied("add product", "seller"), 2),
        (FileNotFoundError("config.ini"), 3),
        (BackendError("down"), 4),
        (NotFoundError("missing"), 4),
        (SaleCommitError("B1", 0, [], BackendError("down")), 4),
        (RuntimeError("boom"), 1),
    ],
)
def test_handle_cli_error_maps_exit_codes(error, expected):
    assert cli.handle_cli_error(error) == expected


def test_main_missing_config_returns_three(tmp_path):
    assert cli.main(["--config", str(tmp_path / "missing.ini"), "dashboard"]) == 3


def test_main_rejects_schema_mismatch(config_factory):
    bundle = config_factory(schema_version="0.1.0")
    assert cli.main(["--config", str(bundle.config_path), "dashboard"]) == 1


# ---------------------------------------------------------------------------
# End-to-end commands against a workbook
# ---------------------------------------------------------------------------


def test_main_sale_persists_and_writes_receipt(config_bundle, capsys):
    """A successful sale is saved to the workbook and produces a receipt."""

    product_id = _add_phone(config_bundle.config_path)
    exit_code = cli.main(
        ["--config", str(config_bundle.config_path), "sale", "--item", f"{product_id}:3", "--buyer", "Alice"]
    )

    assert exit_code == 0
    backend = data_manager.WorkbookBackend.open(config_bundle.workbook_path)
    assert backend.get_product(product_id).stock == 7
    (sale,) = backend.list_sales()
    assert sale.buyer_name == "Alice"
    assert sale.seller_id == "ADMIN"
    assert list(config_bundle.export_dir.glob("receipt_*.pdf"))
    assert "total Br300.00" in capsys.readouterr().out


def test_main_failed_sale_is_not_saved(config_bundle):
    """Exceeding stock exits with 2 and leaves the workbook untouched."""

    product_id = _add_phone(config_bundle.config_path, stock="2")
    exit_code = cli.main(["--config", str(config_bundle.config_path), "sale", "--item", f"{product_id}:5"])

    assert exit_code == 2
    backend = data_manager.WorkbookBackend.open(config_bundle.workbook_path)
    assert backend.get_product(product_id).stock == 2
    assert backend.list_sales() == []


def test_main_sale_without_saved_workbook_writes_no_receipt(config_bundle, monkeypatch):
    """A workbook that cannot be saved leaves neither a sale nor a receipt."""

    product_id = _add_phone(config_bundle.config_path)

    def _locked(self, destination=None):
        raise BackendError("workbook is locked")

    monkeypatch.setattr(data_manager.WorkbookBackend, "save", _locked)
    exit_code = cli.main(
        ["--config", str(config_bundle.config_path), "sale", "--item", f"{product_id}:3", "--buyer", "Alice"]
    )
    monkeypatch.undo()

    assert exit_code == 4
    assert not list(config_bundle.export_dir.glob("receipt_*.pdf"))
    backend = data_manager.WorkbookBackend.open(config_bundle.workbook_path)
    assert backend.list_sales() == []
    assert backend.get_product(product_id).stock == 10


def test_main_seller_cannot_add_products(config_bundle):
    path = str(config_bundle.config_path)
    assert cli.main(["--config", path, "add-user", "--email", "s@example.com", "--name", "Sara", "--id", "U9"]) == 0
    exit_code = cli.main(
        [
            "--config", path, "--user-id", "U9",
            "add-product", "--name", "Cable", "--category", "Chargers",
            "--purchase-price", "5", "--stock", "3",
        ]
    )
    assert exit_code == 2


def test_main_unknown_product_returns_four(config_bundle):
    exit_code = cli.main(["--config", str(config_bundle.config_path), "sale", "--item", "NOPE:1"])
    assert exit_code == 4


def test_main_report_writes_csv(config_bundle, capsys, monkeypatch):
    product_id = _add_phone(config_bundle.config_path)
    path = str(config_bundle.config_path)
    assert cli.main(["--config", path, "sale", "--item", f"{product_id}:2", "--no-receipt"]) == 0
    capsys.readouterr()

    assert cli.main(["--config", path, "report", "--category", "Mobiles", "--csv"]) == 0

    out = capsys.readouterr().out
    assert "Total revenue: Br200.00" in out
    (csv_path,) = config_bundle.export_dir.glob("sales_report_*.csv")
    assert csv_path.read_text(encoding="utf-8").count("\n") == 1


def test_main_seller_report_print_opens_browser(config_bundle, capsys, monkeypatch):
    opened = Mock(return_value=True)
    monkeypatch.setattr(cli.document_export.webbrowser, "open", opened)
    product_id = _add_phone(config_bundle.config_path)
    path = str(config_bundle.config_path)
    assert cli.main(["--config", path, "sale", "--item", f"{product_id}:1", "--no-receipt"]) == 0

    exit_code = cli.main(["--config", path, "seller-report", "--seller", "Store Admin", "--print", "--csv"])

    assert exit_code == 0
    opened.assert_called_once()
    assert list(config_bundle.export_dir.glob("daily_sales_Store_Admin_*.csv"))
    assert list(config_bundle.export_dir.glob("daily_sales_Store_Admin_*.html"))


def test_main_seller_report_requires_seller_for_exports(config_bundle):
    assert cli.main(["--config", str(config_bundle.config_path), "seller-report", "--csv"]) == 2


def test_main_settings_persists_preferences(config_bundle, capsys):
    path = str(config_bundle.config_path)
    assert cli.main(["--config", path, "settings", "--currency", "$", "--dark-mode", "on"]) == 0
    capsys.readouterr()

    assert cli.main(["--config", path, "settings"]) == 0
    out = capsys.readouterr().out
    assert "Currency: $" in out
    assert "Dark mode: on" in out
    assert (config_bundle.directory / "preferences.ini").exists()


def test_main_dashboard_prints_stats(config_bundle, capsys):
    assert cli.main(["--config", str(config_bundle.config_path), "dashboard"]) == 0
    out = capsys.readouterr().out
    assert "Active users: 1" in out
    assert "Receipts generated: 0" in out
