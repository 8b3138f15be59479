"""Business logic layer for MobiShop.

This module holds the rules around the product catalog and the user
accounts, plus the :class:`RuntimeContext` that carries the injected backend
and preferences into every other business module. All I/O goes through the
:class:`~merkato_pos.data_manager.Backend` found on the context, so the same
functions run against the workbook store or an in-memory fake.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Iterable, List, Optional, Union

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, Category, Role
from .errors import AccessDenied, ValidationError
from .settings import SettingsStore


CENT = Decimal("0.01")

Number = Union[Decimal, int, float, str]


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and collaborators used by the BLL."""

    settings: data_manager.ConfigSettings
    backend: data_manager.Backend
    preferences: SettingsStore


@dataclass(frozen=True)
class ProductCommand:
    """Form input for creating or editing a product.

    The selling price is deliberately absent: it is always derived from
    ``purchase_price`` and ``interest_percent``.
    """

    name: str
    category: str
    purchase_price: Number
    interest_percent: Number
    stock: Number


@dataclass(frozen=True)
class UserCommand:
    """Form input for registering a user account."""

    email: str
    name: str
    role: str = Role.SELLER.value
    user_id: Optional[str] = None


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration, the store workbook, and display preferences.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Context whose backend is a
            :class:`~merkato_pos.data_manager.WorkbookBackend`.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    backend = data_manager.WorkbookBackend.open(settings.data_file)
    preferences = SettingsStore(settings.preferences_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, backend=backend, preferences=preferences)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist pending backend changes when the backend supports saving."""

    save = getattr(context.backend, "save", None)
    if save is None:
        log.debug("Backend %r has nothing to persist", context.backend)
        return
    save()


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def to_decimal(value: Number, field_name: str) -> Decimal:
    """Parse ``value`` into a :class:`Decimal` or raise :class:`ValidationError`."""

    try:
        parsed = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field_name} must be a number, got {value!r}") from exc
    if not parsed.is_finite():
        raise ValidationError(f"{field_name} must be a finite number")
    return parsed


def to_whole_number(value: Number, field_name: str) -> int:
    """Parse ``value`` into an ``int``, rejecting fractional input."""

    parsed = to_decimal(value, field_name)
    if parsed != parsed.to_integral_value():
        raise ValidationError(f"{field_name} must be a whole number, got {value!r}")
    return int(parsed)


def require_positive_quantity(quantity: int) -> None:
    """Validate that a quantity is strictly positive.

    Raises:
        ValidationError: If ``quantity`` is zero or negative.
    """
    if quantity <= 0:
        log.warning("Quantity validation failed: %s", quantity)
        raise ValidationError("Quantity must be greater than zero")


def compute_selling_price(purchase_price: Number, interest_percent: Number) -> Decimal:
    """Return ``purchase_price * (1 + interest_percent / 100)`` to the cent.

    >>> compute_selling_price(Decimal("100"), Decimal("20"))
    Decimal('120.00')
    """

    purchase = to_decimal(purchase_price, "Purchase price")
    interest = to_decimal(interest_percent, "Interest percent")
    price = purchase * (Decimal("1") + interest / Decimal("100"))
    return price.quantize(CENT, rounding=ROUND_HALF_UP)


def validate_product_command(command: ProductCommand) -> dict:
    """Check a product form and return normalized column values.

    Raises:
        ValidationError: On an empty name, an unknown category, a purchase
            price that is not positive, a negative interest percent, or a
            negative or fractional stock count.
    """

    name = (command.name or "").strip()
    if not name:
        raise ValidationError("Product name is required")

    valid_categories = {member.value for member in Category}
    category = command.category.value if isinstance(command.category, Category) else command.category
    if category not in valid_categories:
        raise ValidationError(f"Please select a valid category, got {command.category!r}")

    purchase_price = to_decimal(command.purchase_price, "Purchase price")
    if purchase_price <= 0:
        raise ValidationError("Purchase price must be greater than 0")

    interest_percent = to_decimal(command.interest_percent, "Interest percent")
    if interest_percent < 0:
        raise ValidationError("Interest percent must be zero or positive")

    stock = to_whole_number(command.stock, "Stock")
    if stock < 0:
        raise ValidationError("Stock must be zero or positive")

    return {
        "name": name,
        "category": category,
        "purchase_price": purchase_price.quantize(CENT, rounding=ROUND_HALF_UP),
        "interest_percent": interest_percent,
        "price": compute_selling_price(purchase_price, interest_percent),
        "stock": stock,
    }


# ---------------------------------------------------------------------------
# Role gate
# ---------------------------------------------------------------------------


def require_admin(actor: Optional[data_manager.UserRow], action: str) -> None:
    """Allow ``action`` only when ``actor`` holds the admin role.

    Raises:
        AccessDenied: If there is no actor or the actor is not an admin.
    """

    if actor is None or actor.role != Role.ADMIN.value:
        role = actor.role if actor is not None else None
        log.warning("Access denied for '%s' (role=%s)", action, role)
        raise AccessDenied(action, role)


def resolve_actor(context: RuntimeContext, user_id: str) -> data_manager.UserRow:
    """Look up the account that is acting on the system."""

    return context.backend.get_user(user_id)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def list_products(context: RuntimeContext) -> List[data_manager.ProductRow]:
    """Fetch the full product catalog from the backend."""

    return context.backend.list_products()


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    return context.backend.get_product(product_id)


def search_products(
    products: Iterable[data_manager.ProductRow],
    *,
    name: Optional[str] = None,
    category: Optional[str] = None,
    in_stock_only: bool = False,
) -> List[data_manager.ProductRow]:
    """Filter products by name substring (case-insensitive) and exact category."""

    needle = (name or "").strip().lower()
    results = []
    for product in products:
        if in_stock_only and product.stock <= 0:
            continue
        if needle and needle not in product.name.lower():
            continue
        if category and product.category != category:
            continue
        results.append(product)
    return results


def products_for_sale(
    context: RuntimeContext,
    *,
    name: Optional[str] = None,
    category: Optional[str] = None,
) -> List[data_manager.ProductRow]:
    """Return the in-stock products a seller can pick from at checkout."""

    return search_products(list_products(context), name=name, category=category, in_stock_only=True)


def add_product(
    context: RuntimeContext,
    actor: Optional[data_manager.UserRow],
    command: ProductCommand,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.ProductRow:
    """Validate and create a catalog entry.

    Raises:
        AccessDenied: If ``actor`` is not an admin.
        ValidationError: If the form fails :func:`validate_product_command`.
        BackendError: If the store rejects the write.
    """

    require_admin(actor, "add product")
    values = validate_product_command(command)
    moment = _resolve_timestamp(timestamp)
    record = data_manager.ProductRow(
        product_id="",
        created_at=moment,
        updated_at=None,
        **values,
    )
    created = context.backend.create_product(record)
    log.info(
        "Added product '%s' (%s) price=%s stock=%s",
        created.product_id,
        created.name,
        created.price,
        created.stock,
    )
    return created


def edit_product(
    context: RuntimeContext,
    actor: Optional[data_manager.UserRow],
    product_id: str,
    command: ProductCommand,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.ProductRow:
    """Overwrite every editable field of a product, recomputing its price."""

    require_admin(actor, "edit product")
    values = validate_product_command(command)
    values["updated_at"] = _resolve_timestamp(timestamp)
    updated = context.backend.update_product(product_id, values)
    log.info("Updated product '%s' price=%s stock=%s", product_id, updated.price, updated.stock)
    return updated


def delete_product(
    context: RuntimeContext,
    actor: Optional[data_manager.UserRow],
    product_id: str,
) -> None:
    """Remove a product from the catalog. Past sales keep their copies."""

    require_admin(actor, "delete product")
    context.backend.delete_product(product_id)
    log.info("Deleted product '%s'", product_id)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def _validate_role(role: str) -> str:
    value = role.value if isinstance(role, Role) else (role or "").strip().lower()
    if value not in {member.value for member in Role}:
        raise ValidationError(f"Role must be one of admin, seller; got {role!r}")
    return value


def list_users(context: RuntimeContext, actor: Optional[data_manager.UserRow]) -> List[data_manager.UserRow]:
    require_admin(actor, "list users")
    return context.backend.list_users()


def add_user(
    context: RuntimeContext,
    actor: Optional[data_manager.UserRow],
    command: UserCommand,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.UserRow:
    """Register a user account record.

    Credentials live with the external auth provider; only the profile and
    role are stored here.
    """

    require_admin(actor, "add user")
    email = (command.email or "").strip()
    if "@" not in email:
        raise ValidationError(f"A valid email address is required, got {command.email!r}")
    name = (command.name or "").strip()
    if not name:
        raise ValidationError("User name is required")
    role = _validate_role(command.role)

    record = data_manager.UserRow(
        user_id=command.user_id or "",
        email=email,
        name=name,
        role=role,
        created_at=_resolve_timestamp(timestamp),
    )
    created = context.backend.create_user(record)
    log.info("Added user '%s' (%s, role=%s)", created.user_id, created.email, created.role)
    return created


def update_user(
    context: RuntimeContext,
    actor: Optional[data_manager.UserRow],
    user_id: str,
    *,
    name: Optional[str] = None,
    role: Optional[str] = None,
) -> data_manager.UserRow:
    """Change the display name and/or role of an account."""

    require_admin(actor, "edit user")
    fields = {}
    if name is not None:
        cleaned = name.strip()
        if not cleaned:
            raise ValidationError("User name is required")
        fields["name"] = cleaned
    if role is not None:
        fields["role"] = _validate_role(role)
    if not fields:
        return context.backend.get_user(user_id)
    updated = context.backend.update_user(user_id, fields)
    log.info("Updated user '%s' (%s)", user_id, ", ".join(sorted(fields)))
    return updated


def delete_user(
    context: RuntimeContext,
    actor: Optional[data_manager.UserRow],
    user_id: str,
) -> None:
    """Delete an account. Admins may not delete themselves."""

    require_admin(actor, "delete user")
    if actor is not None and actor.user_id == user_id:
        log.warning("User '%s' attempted to delete their own account", user_id)
        raise ValidationError("You cannot delete yourself")
    context.backend.delete_user(user_id)
    log.info("Deleted user '%s'", user_id)
