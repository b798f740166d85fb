"""
Report presenters: tables, HTML, spreadsheets and PDF.

Money is rounded to two decimals for display here.
"""
import html
import io
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Sequence, Tuple

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from i18n import Locale
from pricing import CENT
from schemas import AnnualReport, RevenueReport

logger = logging.getLogger(__name__)

Table = Tuple[List[str], List[list]]


def money(value) -> Decimal:
    if value is None:
        value = Decimal("0")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def revenue_table(report: RevenueReport, view: str, locale: Locale) -> Table:
    """Headers and rows of a revenue report, followed by a totals row."""
    totals = report.totals
    if view == "operator":
        headers = [
            locale.t("report.operator"),
            locale.t("report.visits"),
            locale.t("report.service_revenue"),
            locale.t("report.material_revenue"),
            locale.t("report.total"),
        ]
        rows = [
            [r.operator_name, r.visit_count, money(r.service_revenue), money(r.material_revenue), money(r.total_revenue)]
            for r in report.operator_rows
        ]
        rows.append([
            locale.t("report.totals"), totals.visit_count, money(totals.service_revenue),
            money(totals.material_revenue), money(totals.total_revenue),
        ])
        return headers, rows

    headers = [
        locale.t("report.customer"),
        locale.t("report.branch"),
        locale.t("report.pricing_type"),
        locale.t("report.visits"),
        locale.t("report.service_revenue"),
        locale.t("report.material_revenue"),
        locale.t("report.total"),
    ]
    rows = [
        [
            r.customer_name,
            r.branch_name or "-",
            locale.t(f"pricing.{r.pricing_type.value}"),
            r.visit_count,
            money(r.service_revenue),
            money(r.material_revenue),
            money(r.total_revenue),
        ]
        for r in report.customer_rows
    ]
    rows.append([
        locale.t("report.totals"), "", "", totals.visit_count, money(totals.service_revenue),
        money(totals.material_revenue), money(totals.total_revenue),
    ])
    return headers, rows


def annual_table(report: AnnualReport, locale: Locale) -> Table:
    """Flatten the branch x month matrix into one spreadsheet row per branch."""
    headers = [
        locale.t("annual.customer_no"),
        locale.t("annual.branch_id"),
        locale.t("annual.customer"),
        locale.t("annual.branch"),
    ]
    for month in range(1, 13):
        name = locale.month_name(month)
        headers.extend([
            f"{name} ({locale.t('annual.visits')})",
            f"{name} ({locale.t('annual.visit_confirmed')})",
            f"{name} ({locale.t('annual.materials')})",
            f"{name} ({locale.t('annual.material_invoiced')})",
        ])

    rows = []
    for row in report.rows:
        flat = [row.customer_no, row.branch_code, row.customer_name, row.branch_name]
        for cell in row.months:
            flat.extend([
                cell.visit_count,
                locale.t(f"annual.status.{cell.visit_status}"),
                cell.total_material_count if cell.material_sale_ids else "-",
                locale.t(f"annual.status.{cell.invoice_status}"),
            ])
        rows.append(flat)
    return headers, rows


def render_html_table(title: str, headers: Sequence[str], rows: Sequence[Sequence]) -> str:
    """Standalone HTML document with one escaped table."""
    head = "".join(f"<th>{html.escape(str(h))}</th>" for h in headers)
    body = "".join(
        "<tr>" + "".join(f"<td>{html.escape(str(v))}</td>" for v in row) + "</tr>"
        for row in rows
    )
    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{html.escape(title)}</title>
<style>
    body {{ font-family: Arial, sans-serif; font-size: 12px; color: #333; }}
    h1 {{ font-size: 18px; }}
    table {{ border-collapse: collapse; width: 100%; }}
    th {{ background: #f2f2f2; text-align: left; }}
    th, td {{ border: 1px solid #ddd; padding: 6px 8px; }}
    tr:last-child td {{ font-weight: bold; }}
</style>
</head>
<body>
<h1>{html.escape(title)}</h1>
<table>
<thead><tr>{head}</tr></thead>
<tbody>{body}</tbody>
</table>
</body>
</html>"""


def _auto_adjust_column_width(ws):
    for column in ws.columns:
        max_length = max((len(str(c.value)) for c in column if c.value is not None), default=0)
        ws.column_dimensions[get_column_letter(column[0].column)].width = min(max_length + 2, 50)


def render_workbook(sheet_name: str, headers: Sequence[str], rows: Sequence[Sequence]) -> bytes:
    """Single-sheet .xlsx with a bold header row."""
    wb = Workbook()
    ws = wb.active
    # Excel limits sheet titles to 31 characters
    ws.title = sheet_name[:31]

    for col_idx, header in enumerate(headers, 1):
        cell = ws.cell(row=1, column=col_idx, value=header)
        cell.font = Font(bold=True)
        cell.fill = PatternFill(start_color="F2F2F2", end_color="F2F2F2", fill_type="solid")
        cell.alignment = Alignment(horizontal="center", vertical="center")

    for row_idx, row in enumerate(rows, 2):
        for col_idx, value in enumerate(row, 1):
            ws.cell(row=row_idx, column=col_idx, value=value)

    _auto_adjust_column_width(ws)

    output = io.BytesIO()
    wb.save(output)
    return output.getvalue()


def render_pdf(html_content: str) -> bytes:
    """Convert an HTML document to PDF with WeasyPrint."""
    from weasyprint import HTML
    try:
        pdf_buffer = io.BytesIO()
        HTML(string=html_content).write_pdf(pdf_buffer)
        pdf_bytes = pdf_buffer.getvalue()
        logger.info(f"Generated PDF report ({len(pdf_bytes)} bytes)")
        return pdf_bytes
    except Exception as e:
        logger.error(f"Failed to generate PDF report: {str(e)}")
        raise


def revenue_title(report: RevenueReport, locale: Locale) -> str:
    return f"{locale.t('report.revenue_title')} - {locale.month_name(report.month)} {report.year}"
