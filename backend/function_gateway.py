"""
Privileged Function Gateway Client

Calls the server-side functions that create identities, which a company
owner's table access cannot do directly.
"""

import httpx
import logging
from typing import Any, Dict, Optional
from config import settings
from errors import FunctionGatewayError

logger = logging.getLogger(__name__)


class FunctionGateway:
    """Client for the /functions/v1 endpoints. Calls are never retried."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None, client: Optional[httpx.AsyncClient] = None):
        self.base_url = (base_url or settings.FUNCTIONS_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.FUNCTIONS_TIMEOUT_SECONDS
        self._client = client

    async def _post(self, client: httpx.AsyncClient, url: str, payload: Dict[str, Any], headers: Dict[str, str]) -> httpx.Response:
        return await client.post(url, json=payload, headers=headers, timeout=self.timeout)

    async def invoke(self, name: str, payload: Dict[str, Any], access_token: str) -> Dict[str, Any]:
        """
        POST a JSON payload to a named function.

        Raises FunctionGatewayError with the function's own error text on a
        non-2xx response, or the transport message when the call failed.
        """
        url = f"{self.base_url}/{name}"
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

        try:
            if self._client is not None:
                response = await self._post(self._client, url, payload, headers)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._post(client, url, payload, headers)
        except httpx.HTTPError as e:
            logger.error(f"❌ Function '{name}' unreachable: {e}")
            raise FunctionGatewayError(str(e) or e.__class__.__name__) from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.is_success:
            return data if isinstance(data, dict) else {"data": data}

        message = data.get("error") if isinstance(data, dict) else None
        message = message or response.text or f"Function error: {response.status_code}"
        logger.error(f"❌ Function '{name}' failed ({response.status_code}): {message}")
        raise FunctionGatewayError(message, status=response.status_code)

    async def _create(self, name: str, payload: Dict[str, Any], access_token: str) -> str:
        data = await self.invoke(name, payload, access_token)
        user_id = data.get("user_id")
        if not user_id:
            raise FunctionGatewayError(data.get("error") or f"{name} returned no user id")
        return user_id

    async def create_customer(
        self,
        access_token: str,
        email: str,
        password: str,
        full_name: str,
        company_name: str,
        created_by_company_id: str,
        phone: Optional[str] = None,
    ) -> str:
        """Create a customer and its login identity; returns the new profile id."""
        return await self._create("create-customer", {
            "email": email,
            "password": password,
            "full_name": full_name,
            "company_name": company_name,
            "phone": phone,
            "created_by_company_id": created_by_company_id,
        }, access_token)

    async def create_operator(
        self,
        access_token: str,
        email: str,
        password: str,
        full_name: str,
        company_id: str,
        phone: Optional[str] = None,
    ) -> str:
        return await self._create("create-operator", {
            "email": email,
            "password": password,
            "full_name": full_name,
            "phone": phone,
            "company_id": company_id,
        }, access_token)

    async def create_branch(
        self,
        access_token: str,
        email: str,
        password: str,
        full_name: str,
        branch_name: str,
        address: str,
        customer_id: str,
        created_by_company_id: str,
        phone: Optional[str] = None,
    ) -> str:
        return await self._create("create-branch", {
            "email": email,
            "password": password,
            "full_name": full_name,
            "phone": phone,
            "branch_name": branch_name,
            "address": address,
            "customer_id": customer_id,
            "created_by_company_id": created_by_company_id,
        }, access_token)
