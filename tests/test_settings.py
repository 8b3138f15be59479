"""Tests for currency formatting and the preferences store."""

from __future__ import annotations

from decimal import Decimal

import pytest

from merkato_pos.errors import ValidationError
from merkato_pos.settings import Preferences, SettingsStore, format_currency


# ---------------------------------------------------------------------------
# format_currency
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("amount", "symbol", "expected"),
    [
        (Decimal("300"), "Br", "Br300.00"),
        (Decimal("1234.5"), "$", "$1234.50"),
        (Decimal("0.005"), "Br", "Br0.01"),
        (12, "ETB ", "ETB 12.00"),
        ("7.499", "Br", "Br7.50"),
    ],
)
def test_format_currency_rounds_to_two_places(amount, symbol, expected):
    """Amounts are prefixed with the symbol and rounded half-up to cents."""

    assert format_currency(amount, symbol) == expected


def test_format_currency_passes_through_non_finite_values():
    """Formatting never fails, even for values that cannot be rounded."""

    assert format_currency(Decimal("NaN"), "Br") == "BrNaN"


# ---------------------------------------------------------------------------
# SettingsStore
# ---------------------------------------------------------------------------


def test_settings_store_defaults_without_file():
    store = SettingsStore()
    assert store.preferences == Preferences(currency="Br", dark_mode=False)


def test_settings_store_notifies_subscribers_on_change():
    """Every subscriber receives the new preferences once per change."""

    store = SettingsStore()
    seen = []
    store.subscribe(seen.append)

    store.set_currency("$")
    store.set_currency("$")
    store.toggle_dark_mode()

    assert seen == [
        Preferences(currency="$", dark_mode=False),
        Preferences(currency="$", dark_mode=True),
    ]


def test_settings_store_unsubscribe_stops_notifications():
    store = SettingsStore()
    seen = []
    unsubscribe = store.subscribe(seen.append)
    unsubscribe()
    store.set_currency("$")
    assert seen == []


def test_settings_store_rejects_blank_currency():
    store = SettingsStore()
    with pytest.raises(ValidationError):
        store.set_currency("   ")
    assert store.currency == "Br"


def test_settings_store_persists_between_instances(tmp_path):
    """Changes survive a restart when the store is file-backed."""

    path = tmp_path / "prefs" / "preferences.ini"
    first = SettingsStore(path)
    first.set_currency("USD ")
    first.set_dark_mode(True)

    second = SettingsStore(path)
    assert second.currency == "USD"
    assert second.dark_mode is True


def test_settings_store_format_uses_current_symbol():
    store = SettingsStore()
    assert store.format_currency(Decimal("5")) == "Br5.00"
    store.set_currency("€")
    assert store.format_currency(Decimal("5")) == "€5.00"


def test_settings_store_keeps_old_value_when_write_fails(tmp_path):
    """A failed write leaves memory, disk, and subscribers on the old value."""

    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    store = SettingsStore(blocker / "preferences.ini")
    seen = []
    store.subscribe(seen.append)

    with pytest.raises(OSError):
        store.set_currency("$")

    assert store.currency == "Br"
    assert store.format_currency(Decimal("1")) == "Br1.00"
    assert seen == []
