"""
Remote Cart Gateway

Thin typed wrapper around the remote cart endpoints:
- Requires an identified auth signal, fails fast with NotAuthenticated otherwise
- Normalizes every response into canonical CartLine objects
- Classifies failures as retryable (network, timeout, 408/429/5xx) or terminal
- Never retries on its own; retry policy belongs to the caller
"""
from typing import Optional, Sequence
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from cartsync import config
from cartsync.errors import (
    ERROR_MALFORMED_RESPONSE,
    ERROR_REMOTE_UNAVAILABLE,
    CartValidationError,
    NotAuthenticated,
    RetryableGatewayError,
    TerminalGatewayError,
    is_retryable_status,
)
from cartsync.identity import AuthSignal, Identity
from cartsync.logging import get_logger, sanitize_id_for_logging, sanitize_string_for_logging
from .models import CartLine, validate_quantity
from .schemas import ServerCartResponse, line_to_wire

logger = get_logger(__name__)


class RemoteCartGateway:
    """Remote cart operations for the identity currently held by ``auth``."""

    def __init__(
        self,
        auth: AuthSignal,
        base_url: str = config.CART_API_URL,
        timeout: float = config.CART_REQUEST_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.auth = auth
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def fetch(self) -> list[CartLine]:
        """Current server cart, no side effects."""
        return await self._request("GET", "/cart")

    async def fetch_or_merge(self, local_lines: Sequence[CartLine]) -> list[CartLine]:
        """Merge ``local_lines`` into the user's server cart and return the result."""
        body = {"localCartItems": [line_to_wire(line) for line in local_lines]}
        return await self._request("POST", "/cart/sync", json=body)

    async def add_line(self, product_id: str, quantity: int) -> list[CartLine]:
        try:
            quantity = validate_quantity(quantity)
        except CartValidationError as e:
            raise TerminalGatewayError(str(e)) from e
        return await self._request("POST", "/cart/add", json={"productId": product_id, "quantity": quantity})

    async def update_line(self, product_id: str, quantity: int) -> list[CartLine]:
        """Set an absolute quantity; zero or less removes the line."""
        if quantity <= 0:
            return await self.remove_line(product_id)
        return await self._request("PUT", "/cart/update", json={"productId": product_id, "quantity": quantity})

    async def remove_line(self, product_id: str) -> list[CartLine]:
        return await self._request("DELETE", f"/cart/remove/{quote(product_id, safe='')}")

    async def clear(self) -> list[CartLine]:
        return await self._request("DELETE", "/cart/clear")

    def _headers(self, identity: Identity) -> dict:
        headers = {"Accept": "application/json", "X-User-Id": identity.user_id}
        if identity.token:
            headers["Authorization"] = f"Bearer {identity.token}"
        return headers

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> list[CartLine]:
        identity = self.auth.current
        if not identity.is_identified:
            raise NotAuthenticated()

        url = f"{self.base_url}{path}"
        try:
            response = await self.client.request(
                method, url, json=json, headers=self._headers(identity), timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            logger.warning(f"Timeout calling {method} {path} for {identity}")
            raise RetryableGatewayError(f"Timeout: {e}") from e
        except httpx.TransportError as e:
            logger.warning(f"Network error calling {method} {path}: {e}")
            raise RetryableGatewayError(f"{ERROR_REMOTE_UNAVAILABLE}: {e}") from e
        except httpx.HTTPError as e:
            # Undecodable bodies, redirect loops and the like
            logger.warning(f"HTTP error calling {method} {path}: {type(e).__name__}: {e}")
            raise RetryableGatewayError(f"{ERROR_REMOTE_UNAVAILABLE}: {e}") from e

        payload = self._parse(response)

        if not response.is_success:
            message = (payload.message if payload else "") or f"HTTP {response.status_code}"
            logger.warning(
                f"Remote cart {method} {path} failed: status={response.status_code}, "
                f"message={sanitize_string_for_logging(message)}"
            )
            if is_retryable_status(response.status_code):
                raise RetryableGatewayError(message, status_code=response.status_code)
            raise TerminalGatewayError(message, status_code=response.status_code)

        if payload is None:
            raise TerminalGatewayError(ERROR_MALFORMED_RESPONSE, status_code=response.status_code)

        if not payload.success:
            message = payload.message or ERROR_MALFORMED_RESPONSE
            logger.warning(f"Remote cart {method} {path} rejected: {sanitize_string_for_logging(message)}")
            raise TerminalGatewayError(message, status_code=response.status_code)

        lines = payload.data.to_lines() if payload.data else []
        logger.debug(
            f"Remote cart {method} {path} ok for user {sanitize_id_for_logging(identity.user_id)}: "
            f"{len(lines)} lines"
        )
        return lines

    @staticmethod
    def _parse(response: httpx.Response) -> Optional[ServerCartResponse]:
        try:
            return ServerCartResponse.model_validate(response.json())
        except (ValueError, ValidationError):
            # ValueError covers non-JSON bodies
            return None
