"""Sales aggregation and reporting.

Everything here works on plain lists of :class:`~merkato_pos.data_manager.SaleRow`
already fetched from the backend. A report is always rebuilt from scratch:
the same records and the same :class:`SalesFilter` give the same
:class:`SalesReport`, and filters are independent predicates combined with
AND, so the order in which they are applied does not matter.

Calendar days are UTC days, matching the ``date`` column written on every
sale.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, time
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from . import log
from .constants import UNCATEGORIZED, UNKNOWN_SELLER
from .core_logic import RuntimeContext
from .data_manager import ProductRow, SaleRow

DateBound = Union[date, datetime]


@dataclass(frozen=True)
class SalesFilter:
    """Optional predicates applied to the sale list.

    ``start`` and ``end`` accept either a calendar day or an exact instant.
    A day given as ``start`` begins at 00:00 UTC; a day given as ``end``
    runs through the last microsecond of that UTC day. Instants are compared
    as-is, with naive values taken to be UTC.
    """

    start: Optional[DateBound] = None
    end: Optional[DateBound] = None
    name: Optional[str] = None
    category: Optional[str] = None

    def with_changes(self, **changes) -> "SalesFilter":
        return replace(self, **changes)


@dataclass(frozen=True)
class CategorySummary:
    category: str
    total_revenue: Decimal
    total_quantity: int
    record_count: int


@dataclass(frozen=True)
class SellerSummary:
    seller_name: str
    total_revenue: Decimal
    total_quantity: int
    record_count: int
    records: Tuple[SaleRow, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SalesReport:
    """Filtered records together with their summaries and totals."""

    sales_filter: SalesFilter
    records: Tuple[SaleRow, ...]
    category_summaries: Tuple[CategorySummary, ...]
    seller_summaries: Tuple[SellerSummary, ...]
    total_revenue: Decimal
    total_quantity: int

    @property
    def record_count(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class DashboardStats:
    total_revenue: Decimal
    products_sold: int
    active_users: int
    receipts_generated: int


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


def start_bound(value: Optional[DateBound]) -> Optional[datetime]:
    """Turn a filter ``start`` into the earliest instant it admits."""

    if value is None:
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    return datetime.combine(value, time.min, tzinfo=UTC)


def end_bound(value: Optional[DateBound]) -> Optional[datetime]:
    """Turn a filter ``end`` into the latest instant it admits."""

    if value is None:
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    return datetime.combine(value, time.max, tzinfo=UTC)


def backfill_categories(records: Iterable[SaleRow], products: Iterable[ProductRow]) -> List[SaleRow]:
    """Fill in the category of records that were written without one.

    The product is looked up by id first and by name second. Records that
    still cannot be resolved are labelled ``Uncategorized``.
    """

    by_id: Dict[str, ProductRow] = {}
    by_name: Dict[str, ProductRow] = {}
    for product in products:
        by_id.setdefault(product.product_id, product)
        by_name.setdefault(product.name, product)

    resolved = []
    unresolved = 0
    for record in records:
        if record.category:
            resolved.append(record)
            continue
        product = by_id.get(record.product_id) or by_name.get(record.product_name)
        category = product.category if product is not None and product.category else None
        if category is None:
            unresolved += 1
            category = UNCATEGORIZED
        resolved.append(replace(record, category=category))
    if unresolved:
        log.debug("%d sale record(s) left uncategorized", unresolved)
    return resolved


def matches_date_range(record: SaleRow, start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start is not None and record.timestamp < start:
        return False
    if end is not None and record.timestamp > end:
        return False
    return True


def matches_name(record: SaleRow, needle: Optional[str]) -> bool:
    if not needle or not needle.strip():
        return True
    return needle.strip().lower() in record.product_name.lower()


def matches_category(record: SaleRow, category: Optional[str]) -> bool:
    if not category:
        return True
    return record.category == category


def filter_sales(records: Iterable[SaleRow], sales_filter: Optional[SalesFilter] = None) -> List[SaleRow]:
    """Return the records matching every predicate set on ``sales_filter``.

    Input order is preserved.
    """

    sales_filter = sales_filter or SalesFilter()
    start = start_bound(sales_filter.start)
    end = end_bound(sales_filter.end)
    return [
        record
        for record in records
        if matches_date_range(record, start, end)
        and matches_name(record, sales_filter.name)
        and matches_category(record, sales_filter.category)
    ]


def summarize_by_category(records: Iterable[SaleRow]) -> List[CategorySummary]:
    """Group records by category, highest revenue first.

    Categories with equal revenue keep the order in which they were first
    seen.
    """

    groups: Dict[str, List[Decimal]] = {}
    quantities: Dict[str, int] = {}
    counts: Dict[str, int] = {}
    for record in records:
        key = record.category or UNCATEGORIZED
        groups.setdefault(key, []).append(record.total_price)
        quantities[key] = quantities.get(key, 0) + record.quantity
        counts[key] = counts.get(key, 0) + 1

    summaries = [
        CategorySummary(
            category=key,
            total_revenue=sum(totals, Decimal("0.00")),
            total_quantity=quantities[key],
            record_count=counts[key],
        )
        for key, totals in groups.items()
    ]
    return sorted(summaries, key=lambda summary: summary.total_revenue, reverse=True)


def summarize_by_seller(records: Iterable[SaleRow]) -> List[SellerSummary]:
    """Group records by seller display name, highest revenue first."""

    members: Dict[str, List[SaleRow]] = {}
    for record in records:
        members.setdefault(record.seller_name or UNKNOWN_SELLER, []).append(record)

    summaries = [
        SellerSummary(
            seller_name=seller,
            total_revenue=sum((sale.total_price for sale in sales), Decimal("0.00")),
            total_quantity=sum(sale.quantity for sale in sales),
            record_count=len(sales),
            records=tuple(sales),
        )
        for seller, sales in members.items()
    ]
    return sorted(summaries, key=lambda summary: summary.total_revenue, reverse=True)


def build_report(
    records: Sequence[SaleRow],
    products: Sequence[ProductRow],
    sales_filter: Optional[SalesFilter] = None,
) -> SalesReport:
    """Backfill, filter, and summarize ``records`` in one pass."""

    sales_filter = sales_filter or SalesFilter()
    filtered = filter_sales(backfill_categories(records, products), sales_filter)
    report = SalesReport(
        sales_filter=sales_filter,
        records=tuple(filtered),
        category_summaries=tuple(summarize_by_category(filtered)),
        seller_summaries=tuple(summarize_by_seller(filtered)),
        total_revenue=sum((record.total_price for record in filtered), Decimal("0.00")),
        total_quantity=sum(record.quantity for record in filtered),
    )
    log.debug(
        "Built sales report: %d of %d record(s), revenue=%s",
        report.record_count,
        len(records),
        report.total_revenue,
    )
    return report


def generate_sales_report(context: RuntimeContext, sales_filter: Optional[SalesFilter] = None) -> SalesReport:
    """Fetch products and sales from the backend and build a report."""

    products = context.backend.list_products()
    records = context.backend.list_sales()
    return build_report(records, products, sales_filter)


def sales_on_day(records: Iterable[SaleRow], day: date) -> List[SaleRow]:
    """Records whose timestamp falls on the UTC calendar ``day``."""

    return filter_sales(records, SalesFilter(start=day, end=day))


def daily_seller_report(context: RuntimeContext, day: Optional[date] = None) -> List[SellerSummary]:
    """Per-seller summaries for one UTC day, today by default."""

    day = day or datetime.now(UTC).date()
    products = context.backend.list_products()
    records = backfill_categories(context.backend.list_sales(), products)
    summaries = summarize_by_seller(sales_on_day(records, day))
    log.info("Built seller report for %s: %d seller(s)", day.isoformat(), len(summaries))
    return summaries


def find_seller(summaries: Iterable[SellerSummary], seller_name: str) -> Optional[SellerSummary]:
    for summary in summaries:
        if summary.seller_name == seller_name:
            return summary
    return None


def dashboard_stats(context: RuntimeContext) -> DashboardStats:
    """Headline figures for the dashboard, computed from live data."""

    records = context.backend.list_sales()
    users = context.backend.list_users()
    return DashboardStats(
        total_revenue=sum((record.total_price for record in records), Decimal("0.00")),
        products_sold=sum(record.quantity for record in records),
        active_users=len(users),
        receipts_generated=len({record.batch_id for record in records}),
    )


class ReportSession:
    """Holds the source data and filter behind a report view.

    Any change to either rebuilds the whole report.
    """

    def __init__(self, context: RuntimeContext, sales_filter: Optional[SalesFilter] = None) -> None:
        self.context = context
        self.sales_filter = sales_filter or SalesFilter()
        self._records: List[SaleRow] = []
        self._products: List[ProductRow] = []
        self.report = build_report([], [], self.sales_filter)

    def reload(self) -> SalesReport:
        """Fetch fresh data from the backend and rebuild."""

        self._products = self.context.backend.list_products()
        self._records = self.context.backend.list_sales()
        return self._rebuild()

    def update_filter(self, **changes) -> SalesReport:
        """Change one or more filter fields and rebuild."""

        self.sales_filter = self.sales_filter.with_changes(**changes)
        return self._rebuild()

    def clear_filter(self) -> SalesReport:
        self.sales_filter = SalesFilter()
        return self._rebuild()

    def _rebuild(self) -> SalesReport:
        self.report = build_report(self._records, self._products, self.sales_filter)
        return self.report
