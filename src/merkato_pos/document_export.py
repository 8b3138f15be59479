"""Rendering of receipts, CSV exports, and printable report views.

Nothing in this module decides *what* goes into a document. Callers hand in
already filtered records or summaries and get back text, bytes, or the path
of the file that was written. Failures of the underlying file system are
logged and propagated so the caller can notify the user.
"""

from __future__ import annotations

import csv
import html
import io
import re
import webbrowser
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterable, List, Mapping, Optional, Sequence, Tuple

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from . import log
from .constants import STORE_NAME, STORE_TAGLINE, UNCATEGORIZED, UNKNOWN_SELLER, WALK_IN_CUSTOMER
from .data_manager import SaleRow
from .settings import format_currency


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------

ColumnGetter = Callable[[SaleRow], object]

CSV_COLUMN_GETTERS: Mapping[str, ColumnGetter] = {
    "Date": lambda record: record.date,
    "Product": lambda record: record.product_name,
    "Category": lambda record: record.category or UNCATEGORIZED,
    "Quantity": lambda record: record.quantity,
    "Unit Price": lambda record: record.unit_price,
    "Total Price": lambda record: record.total_price,
    "Customer": lambda record: record.buyer_name or WALK_IN_CUSTOMER,
    "Seller": lambda record: record.seller_name or UNKNOWN_SELLER,
    "Payment Method": lambda record: record.payment_method,
}

SALES_REPORT_COLUMNS: Tuple[str, ...] = (
    "Date",
    "Product",
    "Category",
    "Quantity",
    "Unit Price",
    "Total Price",
    "Customer",
    "Seller",
    "Payment Method",
)
DAILY_RECORDS_COLUMNS: Tuple[str, ...] = (
    "Date",
    "Product",
    "Quantity",
    "Unit Price",
    "Total Price",
    "Customer",
    "Seller",
)
SELLER_COLUMNS: Tuple[str, ...] = (
    "Date",
    "Product",
    "Category",
    "Quantity",
    "Unit Price",
    "Total Price",
    "Customer",
)


def record_cells(record: SaleRow, columns: Sequence[str]) -> List[str]:
    """Return the display values of ``record`` for ``columns``, as text."""

    return [str(CSV_COLUMN_GETTERS[column](record)) for column in columns]


def render_csv(
    records: Iterable[SaleRow],
    columns: Sequence[str] = SALES_REPORT_COLUMNS,
    *,
    preamble: Sequence[str] = (),
) -> str:
    """Render ``records`` as CSV text.

    Every cell, header included, is wrapped in double quotes and rows are
    separated by ``\\n``. ``preamble`` lines are written verbatim before the
    header.

    Raises:
        KeyError: If ``columns`` names a column this module does not know.
    """

    unknown = [column for column in columns if column not in CSV_COLUMN_GETTERS]
    if unknown:
        raise KeyError(f"Unknown CSV column(s): {', '.join(unknown)}")

    buffer = io.StringIO()
    for line in preamble:
        buffer.write(f"{line}\n")
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(columns)
    for record in records:
        writer.writerow(record_cells(record, columns))
    return buffer.getvalue().rstrip("\n")


def slugify(name: str) -> str:
    """Replace every run of whitespace with a single underscore."""

    return re.sub(r"\s+", "_", name.strip())


def export_filename(kind: str, day: Optional[date] = None, *, seller_name: Optional[str] = None) -> str:
    """Build ``<kind>_<ISO-date>.csv`` or ``<kind>_<Seller_Name>_<ISO-date>.csv``."""

    day = day or datetime.now(UTC).date()
    if seller_name:
        return f"{kind}_{slugify(seller_name)}_{day.isoformat()}.csv"
    return f"{kind}_{day.isoformat()}.csv"


def write_export(content: str, directory: Path, filename: str) -> Path:
    """Write ``content`` to ``directory / filename`` and return the path."""

    target = Path(directory).expanduser() / filename
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    except OSError as exc:
        log.error("Could not write export '%s': %s", target, exc)
        raise
    log.info("Wrote export '%s'", target)
    return target


def export_sales_report_csv(records: Sequence[SaleRow], directory: Path, *, day: Optional[date] = None) -> Path:
    return write_export(render_csv(records, SALES_REPORT_COLUMNS), directory, export_filename("sales_report", day))


def export_daily_records_csv(records: Sequence[SaleRow], directory: Path, *, day: Optional[date] = None) -> Path:
    return write_export(
        render_csv(records, DAILY_RECORDS_COLUMNS),
        directory,
        export_filename("daily_sales_records", day),
    )


def seller_preamble(summary, currency: str, day: date) -> List[str]:
    """Title, date, and totals lines that head a per-seller CSV."""

    return [
        f"Daily Sales Report - {summary.seller_name}",
        f"Generated on: {day.isoformat()}",
        (
            f"Total Sales: {summary.record_count}, Items Sold: {summary.total_quantity}, "
            f"Revenue: {format_currency(summary.total_revenue, currency)}"
        ),
        "",
    ]


def export_seller_csv(
    summary,
    directory: Path,
    *,
    currency: str,
    day: Optional[date] = None,
    with_summary: bool = False,
) -> Path:
    """Write one seller's records, optionally headed by a summary preamble.

    ``summary`` is a :class:`~merkato_pos.aggregation.SellerSummary`.
    """

    day = day or datetime.now(UTC).date()
    preamble = seller_preamble(summary, currency, day) if with_summary else ()
    content = render_csv(summary.records, SELLER_COLUMNS, preamble=preamble)
    return write_export(content, directory, export_filename("daily_sales", day, seller_name=summary.seller_name))


# ---------------------------------------------------------------------------
# Receipt PDF
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReceiptItem:
    product_name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


@dataclass(frozen=True)
class Receipt:
    """Everything printed on a receipt.

    ``total_override`` replaces the summed line totals when the caller has
    already computed the amount charged.
    """

    items: Tuple[ReceiptItem, ...]
    buyer_name: str
    seller_name: str
    timestamp: datetime
    total_override: Optional[Decimal] = None

    @property
    def grand_total(self) -> Decimal:
        if self.total_override is not None:
            return self.total_override
        return sum((item.total_price for item in self.items), Decimal("0.00"))

    @classmethod
    def single(
        cls,
        product_name: str,
        quantity: int,
        unit_price: Decimal,
        total_price: Decimal,
        *,
        buyer_name: str,
        seller_name: str,
        timestamp: datetime,
    ) -> "Receipt":
        item = ReceiptItem(product_name, quantity, unit_price, total_price)
        return cls(items=(item,), buyer_name=buyer_name, seller_name=seller_name, timestamp=timestamp)

    @classmethod
    def from_sales(cls, records: Sequence[SaleRow], *, total_override: Optional[Decimal] = None) -> "Receipt":
        """Build a receipt from the sale rows of one batch.

        Raises:
            ValueError: If ``records`` is empty.
        """

        if not records:
            raise ValueError("A receipt needs at least one sale record")
        first = records[0]
        items = tuple(
            ReceiptItem(record.product_name, record.quantity, record.unit_price, record.total_price)
            for record in records
        )
        return cls(
            items=items,
            buyer_name=first.buyer_name or WALK_IN_CUSTOMER,
            seller_name=first.seller_name or "N/A",
            timestamp=first.timestamp,
            total_override=total_override,
        )


PAGE_WIDTH, PAGE_HEIGHT = A4
CENTER_X = PAGE_WIDTH / 2
LEFT_MARGIN = 20 * mm
BOTTOM_LIMIT = 40 * mm
ROW_HEIGHT = 10 * mm
# x offsets of the item table columns: product, qty, unit price, total
ITEM_COLUMNS = (20 * mm, 80 * mm, 110 * mm, 150 * mm)


def _from_top(offset_mm: float) -> float:
    return PAGE_HEIGHT - offset_mm * mm


def render_receipt_pdf(
    receipt: Receipt,
    *,
    currency: str,
    store_name: str = STORE_NAME,
    tagline: str = STORE_TAGLINE,
) -> bytes:
    """Draw ``receipt`` on an A4 page and return the PDF bytes.

    Page streams are written uncompressed.
    """

    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4, pageCompression=0, invariant=1)
    pdf.setTitle(f"{store_name} receipt")

    pdf.setFont("Helvetica-Bold", 20)
    pdf.drawCentredString(CENTER_X, _from_top(20), "SALES RECEIPT")

    pdf.setFont("Helvetica", 12)
    pdf.drawString(LEFT_MARGIN, _from_top(40), store_name)
    pdf.drawString(LEFT_MARGIN, _from_top(50), tagline)
    pdf.drawString(LEFT_MARGIN, _from_top(70), f"Receipt Date: {receipt.timestamp:%Y-%m-%d}")
    pdf.drawString(LEFT_MARGIN, _from_top(80), f"Receipt Time: {receipt.timestamp:%H:%M:%S}")
    pdf.drawString(LEFT_MARGIN, _from_top(90), f"Seller: {receipt.seller_name or 'N/A'}")
    pdf.drawString(LEFT_MARGIN, _from_top(100), f"Customer: {receipt.buyer_name or WALK_IN_CUSTOMER}")

    pdf.line(LEFT_MARGIN, _from_top(110), PAGE_WIDTH - LEFT_MARGIN, _from_top(110))
    pdf.setFont("Helvetica-Bold", 14)
    pdf.drawString(LEFT_MARGIN, _from_top(125), "PRODUCT DETAILS")

    pdf.setFont("Helvetica-Bold", 12)
    for x, title in zip(ITEM_COLUMNS, ("Product", "Qty", "Unit Price", "Total")):
        pdf.drawString(x, _from_top(140), title)

    pdf.setFont("Helvetica", 12)
    y = _from_top(155)
    for item in receipt.items:
        if y < BOTTOM_LIMIT:
            pdf.showPage()
            pdf.setFont("Helvetica", 12)
            y = _from_top(20)
        cells = (
            item.product_name,
            str(item.quantity),
            format_currency(item.unit_price, currency),
            format_currency(item.total_price, currency),
        )
        for x, text in zip(ITEM_COLUMNS, cells):
            pdf.drawString(x, y, text)
        y -= ROW_HEIGHT

    if y < BOTTOM_LIMIT:
        pdf.showPage()
        y = _from_top(20)
    y -= 5 * mm
    pdf.line(LEFT_MARGIN, y + 8 * mm, PAGE_WIDTH - LEFT_MARGIN, y + 8 * mm)
    pdf.setFont("Helvetica-Bold", 16)
    pdf.drawCentredString(CENTER_X, y, f"TOTAL AMOUNT: {format_currency(receipt.grand_total, currency)}")

    pdf.setFont("Helvetica", 12)
    pdf.drawCentredString(CENTER_X, y - 20 * mm, "Thank you for your Purchase!")
    pdf.drawCentredString(CENTER_X, y - 30 * mm, "Visit us again soon!")

    pdf.showPage()
    pdf.save()
    return buffer.getvalue()


def receipt_filename(generated_at: Optional[datetime] = None) -> str:
    """``receipt_<epoch-millis>.pdf`` for the given moment."""

    generated_at = generated_at or datetime.now(UTC)
    return f"receipt_{int(generated_at.timestamp() * 1000)}.pdf"


def save_receipt_pdf(
    receipt: Receipt,
    directory: Path,
    *,
    currency: str,
    store_name: str = STORE_NAME,
    generated_at: Optional[datetime] = None,
) -> Path:
    """Render ``receipt`` and write it into ``directory``."""

    content = render_receipt_pdf(receipt, currency=currency, store_name=store_name)
    target = Path(directory).expanduser() / receipt_filename(generated_at)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
    except OSError as exc:
        log.error("Could not write receipt '%s': %s", target, exc)
        raise
    log.info("Wrote receipt '%s' total=%s", target, receipt.grand_total)
    return target


# ---------------------------------------------------------------------------
# Print views
# ---------------------------------------------------------------------------

PRINT_STYLE = """
body { font-family: Arial, sans-serif; margin: 20px; }
.header { text-align: center; margin-bottom: 20px; }
.print-date { text-align: right; margin-bottom: 10px; }
.summary { margin-bottom: 16px; }
table { width: 100%; border-collapse: collapse; margin-bottom: 20px; }
th, td { border: 1px solid #ddd; padding: 8px; text-align: left; }
th { background-color: #f2f2f2; }
""".strip()


def _html_table(columns: Sequence[str], rows: Iterable[Sequence[object]]) -> str:
    head = "".join(f"<th>{html.escape(str(column))}</th>" for column in columns)
    body = "\n".join(
        "<tr>" + "".join(f"<td>{html.escape(str(cell))}</td>" for cell in row) + "</tr>"
        for row in rows
    )
    return f"<table>\n<thead><tr>{head}</tr></thead>\n<tbody>\n{body}\n</tbody>\n</table>"


def render_print_view(
    title: str,
    sections: Sequence[Tuple[Sequence[str], Iterable[Sequence[object]]]],
    *,
    store_name: str = STORE_NAME,
    generated_at: Optional[datetime] = None,
    summary_lines: Sequence[str] = (),
) -> str:
    """Return a standalone HTML page with a dated header and one table per section."""

    generated_at = generated_at or datetime.now(UTC)
    summary = "".join(f"<p>{html.escape(line)}</p>" for line in summary_lines)
    tables = "\n".join(_html_table(columns, rows) for columns, rows in sections)
    return (
        "<!DOCTYPE html>\n"
        "<html>\n<head>\n"
        f"<meta charset=\"utf-8\">\n<title>{html.escape(title)}</title>\n"
        f"<style>\n{PRINT_STYLE}\n</style>\n"
        "</head>\n<body>\n"
        f"<div class=\"header\"><h1>{html.escape(store_name)}</h1><h2>{html.escape(title)}</h2></div>\n"
        f"<div class=\"print-date\"><p>Generated on: {generated_at:%Y-%m-%d} at {generated_at:%H:%M:%S}</p></div>\n"
        f"<div class=\"summary\">{summary}</div>\n"
        f"{tables}\n"
        "</body>\n</html>\n"
    )


def _money_rows(records: Iterable[SaleRow], columns: Sequence[str], currency: str) -> List[List[str]]:
    rows = []
    for record in records:
        cells = record_cells(record, columns)
        for index, column in enumerate(columns):
            if column in ("Unit Price", "Total Price"):
                cells[index] = format_currency(CSV_COLUMN_GETTERS[column](record), currency)
        rows.append(cells)
    return rows


def sales_report_print_view(report, *, currency: str, store_name: str = STORE_NAME, generated_at=None) -> str:
    """Printable rendition of a :class:`~merkato_pos.aggregation.SalesReport`."""

    category_rows = [
        (
            summary.category,
            summary.record_count,
            summary.total_quantity,
            format_currency(summary.total_revenue, currency),
        )
        for summary in report.category_summaries
    ]
    return render_print_view(
        "Sales Report",
        [
            (("Category", "Sales", "Items Sold", "Revenue"), category_rows),
            (SALES_REPORT_COLUMNS, _money_rows(report.records, SALES_REPORT_COLUMNS, currency)),
        ],
        store_name=store_name,
        generated_at=generated_at,
        summary_lines=[
            f"Total Revenue: {format_currency(report.total_revenue, currency)}",
            f"Items Sold: {report.total_quantity}",
            f"Transactions: {report.record_count}",
        ],
    )


def daily_records_print_view(
    records: Sequence[SaleRow], *, currency: str, store_name: str = STORE_NAME, generated_at=None
) -> str:
    return render_print_view(
        "Daily Sales Records",
        [(DAILY_RECORDS_COLUMNS, _money_rows(records, DAILY_RECORDS_COLUMNS, currency))],
        store_name=store_name,
        generated_at=generated_at,
    )


def seller_print_view(summary, *, currency: str, store_name: str = STORE_NAME, generated_at=None) -> str:
    return render_print_view(
        f"Daily Sales Report - {summary.seller_name}",
        [(SELLER_COLUMNS, _money_rows(summary.records, SELLER_COLUMNS, currency))],
        store_name=store_name,
        generated_at=generated_at,
        summary_lines=[
            f"Total Sales: {summary.record_count}",
            f"Items Sold: {summary.total_quantity}",
            f"Revenue: {format_currency(summary.total_revenue, currency)}",
        ],
    )


def open_print_view(path: Path) -> bool:
    """Hand ``path`` to the system browser so it can be printed.

    Returns ``False`` when no browser could be launched.
    """

    opened = webbrowser.open(Path(path).resolve().as_uri())
    if not opened:
        log.warning("No browser available to print '%s'", path)
    return opened
