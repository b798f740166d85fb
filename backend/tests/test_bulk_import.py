"""Tests for spreadsheet customer import."""

import io
import json

import httpx
import pytest
from openpyxl import Workbook, load_workbook

from bulk_import import ImportRow, build_template, import_customers, parse_workbook
from errors import LimitExceededError, ValidationError
from function_gateway import FunctionGateway
from i18n import get_locale_for

TR = get_locale_for("tr")
EN = get_locale_for("en")


def workbook_bytes(headers, rows) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.append(headers)
    for row in rows:
        ws.append(row)
    output = io.BytesIO()
    wb.save(output)
    return output.getvalue()


def rows_for(count: int, prefix: str = "user"):
    return [
        ImportRow(row_number=i + 2, full_name=f"User {i}", company_name=f"Company {i}",
                  email=f"{prefix}{i}@example.com", password="secret1")
        for i in range(count)
    ]


class RecordingFunctions:
    """MockTransport-backed FunctionGateway that records every call."""

    def __init__(self, fail_prefix: str = "bad"):
        self.calls = []
        self.fail_prefix = fail_prefix

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            self.calls.append(body)
            if body["email"].startswith(self.fail_prefix):
                return httpx.Response(400, json={"error": "A user with this e-mail already exists"})
            return httpx.Response(200, json={"success": True, "user_id": f"id-{len(self.calls)}"})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        self.gateway = FunctionGateway(base_url="http://functions.test", client=client)


def test_parse_workbook_accepts_localized_headers():
    content = workbook_bytes(
        ["Ad Soyad", "Şirket Adı", "E-posta", "Telefon", "Şifre"],
        [
            ["Ahmet Yılmaz", "Yılmaz Gıda", " ahmet@example.com ", 5551234567, "sifre123"],
            [None, None, None, None, None],
            ["Ayşe Demir", None, "ayse@example.com", None, "sifre456"],
        ],
    )
    rows = parse_workbook(content, TR)

    assert len(rows) == 2
    assert rows[0].row_number == 2
    assert rows[0].email == "ahmet@example.com"
    assert rows[0].phone == "5551234567"
    assert rows[0].missing_fields == []
    assert rows[1].missing_fields == ["company_name"]


def test_parse_workbook_accepts_english_headers_in_any_order():
    content = workbook_bytes(
        ["Email", "Password", "Full Name", "Company Name"],
        [["jane@example.com", "secret1", "Jane Doe", "Doe Ltd"]],
    )
    rows = parse_workbook(content, EN)
    assert rows[0].full_name == "Jane Doe"
    assert rows[0].company_name == "Doe Ltd"
    assert rows[0].phone is None


def test_parse_workbook_rejects_garbage_and_empty_files():
    with pytest.raises(ValidationError):
        parse_workbook(b"not a spreadsheet", EN)
    with pytest.raises(ValidationError) as exc_info:
        parse_workbook(workbook_bytes(["Email"], []), EN)
    assert exc_info.value.message == EN.t("import.empty_file")


def test_template_round_trips_through_the_parser():
    content = build_template(TR)
    ws = load_workbook(io.BytesIO(content)).active
    assert [c.value for c in ws[1]] == ["Ad Soyad", "Şirket Adı", "E-posta", "Telefon", "Şifre"]
    assert len(parse_workbook(content, TR)) == 2


async def test_batch_over_limit_is_rejected_before_any_call(gateway, seed):
    plan = await seed.plan(max_customers=10)
    company = await seed.tenant(status="active", plan=plan)
    await seed.customers(company, 8)
    functions = RecordingFunctions()

    with pytest.raises(LimitExceededError) as exc_info:
        await import_customers(gateway, company, rows_for(12), functions.gateway, "token", EN)

    assert functions.calls == []
    assert exc_info.value.remaining == 2
    assert exc_info.value.message == EN.t(
        "import.limit_exceeded", current=8, requested=12, limit=10, remaining=2)


async def test_rows_are_imported_independently(gateway, seed):
    plan = await seed.plan(max_customers=50)
    company = await seed.tenant(status="active", plan=plan)
    functions = RecordingFunctions()

    rows = rows_for(3) + rows_for(2, prefix="bad")
    rows.append(ImportRow(row_number=99, full_name="No Mail", company_name="X", password="secret1"))
    summary = await import_customers(gateway, company, rows, functions.gateway, "token", EN)

    assert summary.total == 6
    assert summary.success_count == 3
    assert summary.error_count == 3
    # Rows with missing fields never reach the function
    assert len(functions.calls) == 5
    assert all(c["created_by_company_id"] == company.company_id for c in functions.calls)
    assert summary.errors[0] == "bad0@example.com: A user with this e-mail already exists"
    assert summary.errors[2] == "Row skipped: missing info - unknown"
    assert [r.status for r in summary.results] == ["accepted"] * 3 + ["rejected"] * 3


async def test_error_sample_is_capped(gateway, seed):
    plan = await seed.plan(max_customers=50)
    company = await seed.tenant(status="active", plan=plan)
    functions = RecordingFunctions()

    summary = await import_customers(gateway, company, rows_for(7, prefix="bad"), functions.gateway, "token", EN)

    assert summary.error_count == 7
    assert len(summary.errors) == 5
    assert summary.remaining_errors == 2
    message = summary.message(EN)
    assert message.splitlines()[0] == "0 customers imported, 7 failed"
    assert message.endswith("... and 2 more")


async def test_empty_batch_is_rejected(gateway, tenant):
    with pytest.raises(ValidationError):
        await import_customers(gateway, tenant, [], RecordingFunctions().gateway, "token", EN)
