"""HTTP client for a WooCommerce-style commerce backend.

Implements the checkout backend and inventory ports over REST. Errors
are classified, never retried here:

- HTTP status >= 400 -> ``ApiError`` carrying the status
- ``httpx.TimeoutException`` -> ``CheckoutTimeoutError``
- any other ``httpx.RequestError`` -> ``ApiError`` with status 503
"""

from decimal import Decimal
from typing import Any

import httpx
import structlog

from checkoutflow.application.ports import (
    CheckoutBackend,
    InventoryGateway,
    InventoryUpdateRequest,
    PaymentInitRequest,
    ShippingRateRequest,
)
from checkoutflow.domain.exceptions import ApiError, CheckoutTimeoutError
from checkoutflow.infrastructure.config import Settings, settings

logger = structlog.get_logger()

API_PREFIX = "/wp-json/wc/v3"


class HttpCheckoutBackend(CheckoutBackend, InventoryGateway):
    """REST adapter for orders, rates, payment gateways and inventory."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 30.0,
        request_id: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize backend client.

        Args:
            base_url: Backend root URL.
            api_key: Bearer token sent with every request.
            timeout: Request timeout in seconds.
            request_id: Optional request ID for correlation.
            transport: Custom httpx transport (tests use ``httpx.MockTransport``).
        """
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self.request_id = request_id
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "HttpCheckoutBackend":
        config = config or settings
        return cls(
            base_url=config.backend_url,
            api_key=config.backend_api_key,
            timeout=config.backend_timeout_seconds,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            if self.request_id:
                headers["X-Request-ID"] = self.request_id
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpCheckoutBackend":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Send a request and return the decoded JSON body.

        Raises:
            ApiError: On an error status or a transport failure.
            CheckoutTimeoutError: When the request timed out.
        """
        url = f"{API_PREFIX}{path}"
        try:
            client = await self._get_client()
            response = await client.request(method, url, json=json, params=params)
        except httpx.TimeoutException as e:
            logger.warning("Backend request timed out", method=method, path=url)
            raise CheckoutTimeoutError(
                f"Backend request timed out: {method} {url}",
                details={"path": url},
            ) from e
        except httpx.RequestError as e:
            logger.error("Backend request failed", method=method, path=url, error=str(e))
            raise ApiError(
                f"Backend request failed: {str(e)}",
                status_code=503,
                details={"path": url},
            ) from e

        if response.status_code >= 400:
            logger.warning(
                "Backend returned error",
                method=method,
                path=url,
                status_code=response.status_code,
            )
            raise ApiError(
                _error_message(response),
                status_code=response.status_code,
                details={"path": url},
            )

        if not response.content:
            return {}
        return response.json()

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    async def create_order(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/orders", json=payload)

    async def get_order(self, order_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/orders/{order_id}")

    async def update_order(self, order_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        return await self._request("PUT", f"/orders/{order_id}", json=changes)

    # -------------------------------------------------------------------------
    # Shipping and Payment
    # -------------------------------------------------------------------------

    async def get_shipping_rates(self, request: ShippingRateRequest) -> dict[str, Any]:
        destination = request.destination
        body = {
            "destination": {
                "country": destination.country,
                "state": destination.state,
                "postcode": destination.postcode,
                "city": destination.city,
            },
            "items": [
                {
                    "product_id": item.product_id,
                    "variation_id": item.variation_id,
                    "quantity": item.quantity,
                    "weight": str(item.weight) if item.weight is not None else None,
                }
                for item in request.items
            ],
            "cart_total": str(request.cart_total),
            "currency": request.currency,
        }
        return await self._request("POST", "/shipping/rates", json=body)

    async def get_payment_methods(
        self,
        amount: Decimal,
        currency: str,
        country: str | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"amount": str(amount), "currency": currency}
        if country:
            params["country"] = country
        return await self._request("GET", "/payment_gateways", params=params)

    async def initialize_payment(self, request: PaymentInitRequest) -> dict[str, Any]:
        body = {
            "payment_method": request.payment_method_id,
            "order_id": request.order_id,
            "amount": str(request.amount),
            "currency": request.currency,
            "return_url": request.return_url,
            "cancel_url": request.cancel_url,
            "metadata": request.metadata,
        }
        return await self._request("POST", "/payments/initialize", json=body)

    # -------------------------------------------------------------------------
    # Inventory
    # -------------------------------------------------------------------------

    async def update_inventory(self, request: InventoryUpdateRequest) -> None:
        if request.operation is None:
            return
        body = {
            "reference": request.reference,
            "order_id": request.order_id or None,
            "items": [
                {
                    "product_id": line.product_id,
                    "variation_id": line.variation_id,
                    "quantity": line.quantity,
                }
                for line in request.lines
            ],
        }
        await self._request("POST", f"/inventory/{request.operation.value}", json=body)
        logger.debug(
            "Inventory updated",
            operation=request.operation.value,
            reference=request.reference,
            line_count=len(request.lines),
        )


def _error_message(response: httpx.Response) -> str:
    """Best-effort error message from a backend error response."""
    try:
        data = response.json()
    except ValueError:
        return f"Backend error {response.status_code}: {response.text[:200]}"
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return f"Backend error {response.status_code}"
