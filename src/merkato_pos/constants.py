"""Enumerations and fixed labels shared across the MobiShop modules.

Centralises domain constants so that the backend layer, the business logic
layer, and the export and CLI front-ends rely on a single source of truth for
categories, payment methods, roles, and the labels used when a sale record is
missing a piece of information.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

STORE_NAME = "EthioMerkato Store"
STORE_TAGLINE = "Sales Management System"
DEFAULT_CURRENCY = "Br"

WALK_IN_CUSTOMER = "Walk-in Customer"
UNCATEGORIZED = "Uncategorized"
UNKNOWN_SELLER = "Unknown Seller"


class Category(str, Enum):
    """Enumerate the product categories offered by the store."""

    MOBILES = "Mobiles"
    SMART_PHONES = "Smart Phones"
    NON_SMART_PHONES = "Non-Smart Phones"
    LAPTOPS = "Laptops"
    COMPUTERS_DESKTOPS = "Computers & Desktops"
    MOBILE_ACCESSORIES = "Mobile Accessories"
    GLASSES = "Glasses"
    COVERS = "Covers"
    CHARGERS = "Chargers"
    ELECTRICAL_TOOLS = "Electrical Tools"


class PaymentMethod(str, Enum):
    """Enumerate supported payment methods for sales."""

    CASH = "Cash"
    CARD = "Card"
    BANK_TRANSFER = "Bank Transfer"
    MOBILE_MONEY = "Mobile Money"


class Role(str, Enum):
    """Enumerate the account roles recognised by the role gate."""

    ADMIN = "admin"
    SELLER = "seller"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the backend layer."""

    PRODUCTS = "Products"
    SALES = "Sales"
    USERS = "Users"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "STORE_NAME",
    "STORE_TAGLINE",
    "DEFAULT_CURRENCY",
    "WALK_IN_CUSTOMER",
    "UNCATEGORIZED",
    "UNKNOWN_SELLER",
    "Category",
    "PaymentMethod",
    "Role",
    "SheetName",
]
