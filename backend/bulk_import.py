"""
Customer onboarding from a spreadsheet.

The whole batch is checked against the customer limit before anything is
submitted. After that each row is sent on its own, in order, and row
failures are collected into the summary instead of stopping the import.
"""
import io
import logging
import zipfile
from typing import Annotated, List, Literal, Optional, Union

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from pydantic import BaseModel, Field, field_validator

from errors import FunctionGatewayError, LimitExceededError, ValidationError
from function_gateway import FunctionGateway
from i18n import Locale, all_labels, get_locale_for
from limits import ResourceType, ensure_capacity
from report_export import render_workbook
from table_gateway import TableGateway
from tenancy import CompanyRef

logger = logging.getLogger(__name__)

FIELDS = ("full_name", "company_name", "email", "phone", "password")
REQUIRED_FIELDS = ("full_name", "company_name", "email", "password")
MAX_SAMPLE_ERRORS = 5

TEMPLATE_ROWS = [
    ["Ahmet Yılmaz", "Yılmaz Gıda Ltd.", "ahmet@example.com", "05551234567", "sifre123"],
    ["Ayşe Demir", "Demir Otel A.Ş.", "ayse@example.com", "05559876543", "sifre456"],
]


class ImportRow(BaseModel):
    """One spreadsheet row; every field may be missing"""
    row_number: int
    full_name: Optional[str] = None
    company_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    password: Optional[str] = None

    @field_validator(*FIELDS, mode="before")
    @classmethod
    def normalize(cls, value):
        if value is None:
            return None
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        value = str(value).strip()
        return value or None

    @property
    def missing_fields(self) -> List[str]:
        return [f for f in REQUIRED_FIELDS if not getattr(self, f)]


class RowAccepted(BaseModel):
    status: Literal["accepted"] = "accepted"
    row_number: int
    email: str
    user_id: str


class RowRejected(BaseModel):
    status: Literal["rejected"] = "rejected"
    row_number: int
    email: Optional[str] = None
    error: str


RowResult = Annotated[Union[RowAccepted, RowRejected], Field(discriminator="status")]


class ImportSummary(BaseModel):
    total: int
    success_count: int = 0
    error_count: int = 0
    errors: List[str] = []
    remaining_errors: int = 0
    results: List[RowResult] = []

    def add(self, result: Union[RowAccepted, RowRejected]):
        self.results.append(result)
        if result.status == "accepted":
            self.success_count += 1
            return
        self.error_count += 1
        if len(self.errors) < MAX_SAMPLE_ERRORS:
            self.errors.append(result.error)
        else:
            self.remaining_errors += 1

    def message(self, locale: Locale) -> str:
        lines = [locale.t("import.summary", success=self.success_count, errors=self.error_count)]
        lines.extend(self.errors)
        if self.remaining_errors:
            lines.append(locale.t("import.more_errors", count=self.remaining_errors))
        return "\n".join(lines)


def _header_map() -> dict:
    aliases = {}
    for field in FIELDS:
        for label in all_labels(f"import.{field}"):
            aliases[label.casefold()] = field
    return aliases


HEADER_ALIASES = _header_map()


def parse_workbook(content: bytes, locale: Optional[Locale] = None) -> List[ImportRow]:
    """Read the first sheet; the first row holds the (localized) headers."""
    locale = locale or get_locale_for(None)
    try:
        wb = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError, OSError) as e:
        raise ValidationError(locale.t("import.unreadable", error=str(e) or e.__class__.__name__))

    try:
        sheet_rows = wb.worksheets[0].iter_rows(values_only=True)
        header = next(sheet_rows, None)
        if header is None:
            raise ValidationError(locale.t("import.empty_file"))

        columns = {}
        for idx, label in enumerate(header):
            field = HEADER_ALIASES.get(str(label).strip().casefold()) if label is not None else None
            if field and field not in columns:
                columns[field] = idx

        rows = []
        for row_number, values in enumerate(sheet_rows, start=2):
            if all(v is None or str(v).strip() == "" for v in values):
                continue
            data = {
                field: values[idx] if idx < len(values) else None
                for field, idx in columns.items()
            }
            rows.append(ImportRow(row_number=row_number, **data))
    finally:
        wb.close()

    if not rows:
        raise ValidationError(locale.t("import.empty_file"))
    return rows


def build_template(locale: Locale) -> bytes:
    headers = [locale.t(f"import.{field}") for field in FIELDS]
    return render_workbook(locale.t("import.sheet"), headers, TEMPLATE_ROWS)


async def import_customers(
    gateway: TableGateway,
    company: CompanyRef,
    rows: List[ImportRow],
    functions: FunctionGateway,
    access_token: str,
    locale: Locale,
) -> ImportSummary:
    if not rows:
        raise ValidationError(locale.t("import.empty_file"))

    try:
        await ensure_capacity(gateway, company, ResourceType.CUSTOMERS, len(rows))
    except LimitExceededError as e:
        raise LimitExceededError(
            e.resource, e.limit, e.current, e.requested,
            message=locale.t(
                "import.limit_exceeded",
                current=e.current, requested=e.requested, limit=e.limit, remaining=e.remaining,
            ),
        )

    summary = ImportSummary(total=len(rows))
    for row in rows:
        if row.missing_fields:
            summary.add(RowRejected(
                row_number=row.row_number,
                email=row.email,
                error=locale.t("import.missing_fields", email=row.email or locale.t("import.unknown")),
            ))
            continue

        try:
            user_id = await functions.create_customer(
                access_token,
                email=row.email,
                password=row.password,
                full_name=row.full_name,
                company_name=row.company_name,
                created_by_company_id=company.company_id,
                phone=row.phone,
            )
        except FunctionGatewayError as e:
            summary.add(RowRejected(row_number=row.row_number, email=row.email, error=f"{row.email}: {e.message}"))
            continue

        summary.add(RowAccepted(row_number=row.row_number, email=row.email, user_id=user_id))

    logger.info(
        f"Customer import for company {company.company_id}: {summary.success_count} created, "
        f"{summary.error_count} failed of {summary.total}"
    )
    return summary
