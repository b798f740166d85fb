"""Tests for the privileged function client."""

import json

import httpx
import pytest

from errors import FunctionGatewayError
from function_gateway import FunctionGateway


def make_gateway(handler) -> FunctionGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return FunctionGateway(base_url="http://functions.test/functions/v1/", client=client)


async def test_create_customer_posts_payload_with_bearer_token():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "user_id": "profile-1"})

    functions = make_gateway(handler)
    user_id = await functions.create_customer(
        "token-123", email="a@example.com", password="secret1", full_name="A",
        company_name="A Ltd", created_by_company_id="company-1", phone="0555",
    )

    assert user_id == "profile-1"
    assert seen["url"] == "http://functions.test/functions/v1/create-customer"
    assert seen["auth"] == "Bearer token-123"
    assert seen["body"]["created_by_company_id"] == "company-1"
    assert seen["body"]["phone"] == "0555"


async def test_error_field_becomes_the_message():
    def handler(request):
        return httpx.Response(400, json={"error": "Customer limit reached. Your plan allows 3 customers."})

    with pytest.raises(FunctionGatewayError) as exc_info:
        await make_gateway(handler).invoke("create-customer", {}, "token")

    assert exc_info.value.message == "Customer limit reached. Your plan allows 3 customers."
    assert exc_info.value.status == 400


async def test_non_json_error_uses_response_text():
    def handler(request):
        return httpx.Response(502, text="Bad Gateway")

    with pytest.raises(FunctionGatewayError) as exc_info:
        await make_gateway(handler).invoke("create-customer", {}, "token")
    assert exc_info.value.message == "Bad Gateway"


async def test_transport_failure_is_wrapped():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(FunctionGatewayError) as exc_info:
        await make_gateway(handler).invoke("create-customer", {}, "token")
    assert "connection refused" in exc_info.value.message
    assert exc_info.value.status is None


async def test_missing_user_id_is_an_error():
    def handler(request):
        return httpx.Response(200, json={"success": True})

    with pytest.raises(FunctionGatewayError):
        await make_gateway(handler).create_customer(
            "token", email="a@example.com", password="secret1", full_name="A",
            company_name="A Ltd", created_by_company_id="company-1",
        )


async def test_create_operator_and_branch_use_their_functions():
    calls = []

    def handler(request):
        calls.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"success": True, "user_id": f"profile-{len(calls)}"})

    functions = make_gateway(handler)
    operator_id = await functions.create_operator(
        "token", email="op@example.com", password="secret1", full_name="Op", company_id="company-1")
    branch_id = await functions.create_branch(
        "token", email="br@example.com", password="secret1", full_name="Br", branch_name="Merkez",
        address="Moda", customer_id="customer-1", created_by_company_id="company-1")

    assert (operator_id, branch_id) == ("profile-1", "profile-2")
    assert calls[0][0] == "/functions/v1/create-operator"
    assert calls[0][1]["company_id"] == "company-1"
    assert calls[1][0] == "/functions/v1/create-branch"
    assert calls[1][1]["customer_id"] == "customer-1"
