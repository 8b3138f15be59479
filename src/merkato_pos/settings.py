"""Display preferences shared by every view: currency symbol and theme.

Preferences are stored in a small ``configparser`` file so they survive
restarts. Components that render amounts or depend on the theme subscribe to
a :class:`SettingsStore` they are handed explicitly, and are called back with
the new :class:`Preferences` each time a value changes.
"""

from __future__ import annotations

import configparser
from dataclasses import dataclass, replace
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Callable, List, Optional, Union

from . import log
from .constants import DEFAULT_CURRENCY
from .errors import ValidationError


PREFERENCES_SECTION = "Preferences"
CENT = Decimal("0.01")

Amount = Union[Decimal, int, float, str]


def format_currency(amount: Amount, symbol: str) -> str:
    """Render ``amount`` as ``symbol`` followed by a two-decimal figure.

    >>> format_currency(Decimal("1234.5"), "Br")
    'Br1234.50'
    """

    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    if not value.is_finite():
        return f"{symbol}{value}"
    return f"{symbol}{value.quantize(CENT, rounding=ROUND_HALF_UP)}"


@dataclass(frozen=True)
class Preferences:
    """Snapshot of the user-facing display settings."""

    currency: str = DEFAULT_CURRENCY
    dark_mode: bool = False


Listener = Callable[[Preferences], None]


class SettingsStore:
    """Durable preferences with publish-subscribe change notification.

    When ``path`` is ``None`` the store keeps values in memory only, which is
    what tests and throwaway sessions use.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path).expanduser().resolve() if path is not None else None
        self._listeners: List[Listener] = []
        self._preferences = self._load()

    def _load(self) -> Preferences:
        if self.path is None or not self.path.exists():
            return Preferences()
        parser = configparser.ConfigParser()
        parser.read(self.path, encoding="utf-8")
        currency = parser.get(PREFERENCES_SECTION, "Currency", fallback=DEFAULT_CURRENCY)
        dark_mode = parser.getboolean(PREFERENCES_SECTION, "DarkMode", fallback=False)
        log.debug("Loaded preferences from '%s'", self.path)
        return Preferences(currency=currency or DEFAULT_CURRENCY, dark_mode=dark_mode)

    def _persist(self, preferences: Preferences) -> None:
        if self.path is None:
            return
        parser = configparser.ConfigParser()
        parser[PREFERENCES_SECTION] = {
            "Currency": preferences.currency,
            "DarkMode": str(preferences.dark_mode).lower(),
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as handle:
            parser.write(handle)

    @property
    def preferences(self) -> Preferences:
        return self._preferences

    @property
    def currency(self) -> str:
        return self._preferences.currency

    @property
    def dark_mode(self) -> bool:
        return self._preferences.dark_mode

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` and return a callable that unregisters it."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _update(self, preferences: Preferences) -> None:
        if preferences == self._preferences:
            return
        self._persist(preferences)
        self._preferences = preferences
        log.info(
            "Preferences changed: currency=%s dark_mode=%s",
            preferences.currency,
            preferences.dark_mode,
        )
        for listener in list(self._listeners):
            listener(preferences)

    def set_currency(self, symbol: str) -> None:
        """Change the currency symbol used by every subscribed view."""

        cleaned = (symbol or "").strip()
        if not cleaned:
            log.warning("Rejected empty currency symbol")
            raise ValidationError("Currency symbol must not be empty")
        self._update(replace(self._preferences, currency=cleaned))

    def set_dark_mode(self, enabled: bool) -> None:
        self._update(replace(self._preferences, dark_mode=bool(enabled)))

    def toggle_dark_mode(self) -> bool:
        self.set_dark_mode(not self._preferences.dark_mode)
        return self._preferences.dark_mode

    def format_currency(self, amount: Amount) -> str:
        """Format ``amount`` with the currently configured symbol."""

        return format_currency(amount, self._preferences.currency)
