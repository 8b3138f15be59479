"""Checkout: turning a cart into sale records, stock changes, and a receipt.

Cart lines are committed one at a time. For each line the stock is taken
first with the backend's conditional decrement, then the sale record is
appended. If the append fails the stock is handed back, so a line is either
fully recorded or leaves no trace.

Every line of a checkout shares one batch id and gets the deterministic
sale id ``<batch id>-<line number>``. When a checkout fails part-way the
:class:`~merkato_pos.errors.SaleCommitError` carries the batch id; calling
:func:`commit_sale` again with that id skips the lines already on record and
commits the rest.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import List, Optional, Tuple, Union

from . import log
from .cart import Cart, CartLine
from .constants import WALK_IN_CUSTOMER, PaymentMethod
from .core_logic import RuntimeContext, _resolve_timestamp, list_products
from .data_manager import Backend, ProductRow, SaleRow, UserRow
from .document_export import Receipt, save_receipt_pdf
from .errors import BackendError, InsufficientStock, SaleCommitError, ValidationError


@dataclass(frozen=True)
class SaleResult:
    """Outcome of a committed checkout.

    ``receipt_error`` is set when the sale went through but the receipt file
    could not be written.
    """

    batch_id: str
    records: Tuple[SaleRow, ...]
    total: Decimal
    receipt: Receipt
    receipt_path: Optional[Path]
    receipt_error: Optional[str]
    products: Tuple[ProductRow, ...]


def generate_batch_id(when: datetime) -> str:
    """Return a client-side batch id such as ``B20261019140322-3FA9C1``."""

    return f"B{when:%Y%m%d%H%M%S}-{uuid.uuid4().hex[:6].upper()}"


def sale_line_id(batch_id: str, index: int) -> str:
    """Sale id of the zero-based cart line ``index`` within ``batch_id``."""

    return f"{batch_id}-{index + 1:02d}"


def validate_payment_method(method: Union[PaymentMethod, str]) -> str:
    """Return the stored label for ``method``.

    Raises:
        ValidationError: If ``method`` is not one of :class:`PaymentMethod`.
    """

    if isinstance(method, PaymentMethod):
        return method.value
    for member in PaymentMethod:
        if (method or "").strip().lower() in (member.value.lower(), member.name.lower()):
            return member.value
    raise ValidationError(
        f"Payment method must be one of {', '.join(m.value for m in PaymentMethod)}; got {method!r}"
    )


def build_sale_record(
    line: CartLine,
    *,
    sale_id: str,
    batch_id: str,
    seller: UserRow,
    buyer_name: str,
    payment_method: str,
    timestamp: datetime,
) -> SaleRow:
    """Freeze a cart line into the sale record that will be written."""

    return SaleRow(
        sale_id=sale_id,
        batch_id=batch_id,
        timestamp=timestamp,
        date=timestamp.astimezone(UTC).date().isoformat(),
        product_id=line.product_id,
        product_name=line.product_name,
        category=line.category,
        quantity=line.quantity,
        unit_price=line.unit_price,
        total_price=line.line_total,
        buyer_name=buyer_name,
        seller_id=seller.user_id,
        seller_name=seller.name,
        payment_method=payment_method,
    )


def _commit_line(backend: Backend, record: SaleRow) -> None:
    backend.decrement_stock(record.product_id, record.quantity)
    try:
        backend.append_sale(record)
    except BackendError as append_error:
        log.warning(
            "Recording sale '%s' failed; returning %s unit(s) of '%s' to stock",
            record.sale_id,
            record.quantity,
            record.product_id,
        )
        try:
            backend.increment_stock(record.product_id, record.quantity)
        except BackendError as restore_error:
            log.error(
                "Could not return %s unit(s) of '%s' to stock after sale '%s' failed (%s): %s",
                record.quantity,
                record.product_id,
                record.sale_id,
                append_error,
                restore_error,
            )
        raise


def _committed_lines(backend: Backend, batch_id: str) -> dict:
    return {record.sale_id: record for record in backend.list_sales() if record.batch_id == batch_id}


def _write_receipt(context: RuntimeContext, receipt: Receipt) -> Tuple[Optional[Path], Optional[str]]:
    try:
        path = save_receipt_pdf(
            receipt,
            context.settings.export_dir,
            currency=context.preferences.currency,
            store_name=context.settings.store_name,
        )
    except OSError as exc:
        log.error("Sale recorded but the receipt could not be saved: %s", exc)
        return None, str(exc)
    return path, None


def commit_sale(
    context: RuntimeContext,
    cart: Cart,
    seller: Optional[UserRow],
    *,
    buyer_name: Optional[str] = None,
    payment_method: Union[PaymentMethod, str] = PaymentMethod.CASH,
    batch_id: Optional[str] = None,
    timestamp: Optional[datetime] = None,
    write_receipt: bool = True,
) -> Optional[SaleResult]:
    """Record every line of ``cart`` as a sale made by ``seller``.

    Args:
        context (RuntimeContext): Provides the backend, preferences, and the
            export directory receipts are written to.
        cart (Cart): Lines to sell. Cleared once every line is recorded.
        seller (UserRow | None): Acting account stamped on each record.
        buyer_name (str | None): Customer name, ``Walk-in Customer`` when
            blank.
        payment_method (PaymentMethod | str): Defaults to cash.
        batch_id (str | None): Id shared by the lines of this checkout. Pass
            the id from a previous :class:`SaleCommitError` to resume it.
        timestamp (datetime | None): Sale instant, now by default.
        write_receipt (bool): Whether to save a PDF receipt.

    Returns:
        SaleResult | None: ``None`` when the cart is empty or no seller is
            given; nothing is written in that case.

    Raises:
        ValidationError: If ``payment_method`` is unknown, or a resumed
            ``batch_id`` already holds a different product or quantity at
            the same line.
        SaleCommitError: If a line could not be committed. Earlier lines
            stay recorded and the cart is left untouched.
    """

    if cart.is_empty:
        log.warning("Checkout requested with an empty cart; nothing to do")
        return None
    if seller is None:
        log.warning("Checkout requested without a seller; nothing to do")
        return None

    method = validate_payment_method(payment_method)
    moment = _resolve_timestamp(timestamp)
    resuming = batch_id is not None
    batch_id = batch_id or generate_batch_id(moment)
    buyer = (buyer_name or "").strip() or WALK_IN_CUSTOMER
    existing = _committed_lines(context.backend, batch_id) if resuming else {}

    records: List[SaleRow] = []
    for index, line in enumerate(cart.lines):
        sale_id = sale_line_id(batch_id, index)
        if sale_id in existing:
            recorded = existing[sale_id]
            if (recorded.product_id, recorded.quantity) != (line.product_id, line.quantity):
                log.error(
                    "Sale line '%s' is on record as %s x '%s', not %s x '%s'",
                    sale_id,
                    recorded.quantity,
                    recorded.product_id,
                    line.quantity,
                    line.product_id,
                )
                raise ValidationError(
                    f"Cart line {index + 1} does not match sale '{sale_id}' already recorded in batch '{batch_id}'"
                )
            log.info("Sale line '%s' already recorded; skipping", sale_id)
            records.append(recorded)
            continue
        record = build_sale_record(
            line,
            sale_id=sale_id,
            batch_id=batch_id,
            seller=seller,
            buyer_name=buyer,
            payment_method=method,
            timestamp=moment,
        )
        try:
            _commit_line(context.backend, record)
        except (InsufficientStock, BackendError) as exc:
            log.error("Sale batch '%s' stopped at line %d: %s", batch_id, index + 1, exc)
            raise SaleCommitError(batch_id, index, records, exc) from exc
        records.append(record)
        log.info(
            "Recorded sale '%s': %s x '%s' = %s",
            sale_id,
            record.quantity,
            record.product_id,
            record.total_price,
        )

    total = sum((record.total_price for record in records), Decimal("0.00"))
    cart.clear()

    receipt = Receipt.from_sales(records, total_override=total)
    receipt_path, receipt_error = _write_receipt(context, receipt) if write_receipt else (None, None)
    products = tuple(list_products(context))

    log.info("Committed sale batch '%s': %d line(s), total=%s", batch_id, len(records), total)
    return SaleResult(
        batch_id=batch_id,
        records=tuple(records),
        total=total,
        receipt=receipt,
        receipt_path=receipt_path,
        receipt_error=receipt_error,
        products=products,
    )


def attach_receipt(context: RuntimeContext, result: SaleResult) -> SaleResult:
    """Write the receipt of an already committed sale.

    Callers that persist the sale separately use this once the sale is safely
    stored, so a receipt never exists for a sale that was lost.
    """

    receipt_path, receipt_error = _write_receipt(context, result.receipt)
    return replace(result, receipt_path=receipt_path, receipt_error=receipt_error)


def quick_sale(
    context: RuntimeContext,
    product_id: str,
    quantity: int,
    seller: Optional[UserRow],
    **options,
) -> Optional[SaleResult]:
    """Sell a single product without building a cart by hand.

    The product is fetched fresh, so the stock check runs against the
    current catalog. ``options`` are passed through to :func:`commit_sale`.
    """

    cart = Cart()
    cart.add_or_increment(context.backend.get_product(product_id), quantity)
    return commit_sale(context, cart, seller, **options)
