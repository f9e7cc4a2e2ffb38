"""Payment provider client for dividend transfers"""
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional, Protocol

import httpx
import structlog

from dividend_ledger.config import get_settings
from dividend_ledger.services.errors import PaymentProviderError

logger = structlog.get_logger()
settings = get_settings()

# Provider transfer states, grouped by what they mean for a dividend
SUCCEEDED_TRANSFER_STATES = frozenset({"succeeded", "outgoing_payment_sent"})
FAILED_TRANSFER_STATES = frozenset({"failed", "cancelled", "funds_refunded", "bounced_back"})


@dataclass
class TransferResult:
    """Provider response to a transfer request"""
    transfer_id: str
    status: str
    fee_cents: Optional[int] = None


@dataclass
class TransferState:
    """Current state of a transfer as reported by the provider"""
    transfer_id: str
    status: str
    amount_cents: int
    currency: str

    @property
    def succeeded(self) -> bool:
        return self.status in SUCCEEDED_TRANSFER_STATES

    @property
    def failed(self) -> bool:
        return self.status in FAILED_TRANSFER_STATES


class PaymentProvider(Protocol):
    async def initiate_transfer(
        self,
        recipient_id: int,
        amount_cents: int,
        currency: str,
        reference: str,
    ) -> TransferResult:
        ...

    async def get_transfer_status(self, transfer_id: str) -> TransferState:
        ...

    async def get_delivery_estimate(self, transfer_id: str) -> Optional[date]:
        ...


class HttpPaymentProvider:
    """Async HTTP client for the payment provider's transfer API"""

    name = "provider"

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = base_url or settings.payment_provider_url
        self.api_key = api_key if api_key is not None else settings.payment_provider_api_key
        self.timeout = timeout or settings.payment_provider_timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def connect(self) -> None:
        """Open the HTTP connection pool"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            logger.info("Connected to payment provider", url=self.base_url)

    async def disconnect(self) -> None:
        """Close the HTTP connection pool"""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Disconnected from payment provider")

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, raise if not connected"""
        if self._client is None:
            raise RuntimeError("Payment provider not connected. Call connect() first.")
        return self._client

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = await self.client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "Payment provider rejected request",
                path=path,
                status_code=e.response.status_code,
                body=e.response.text[:500],
            )
            raise PaymentProviderError(
                f"Provider returned {e.response.status_code} for {method} {path}"
            ) from e
        except httpx.HTTPError as e:
            logger.error("Payment provider request failed", path=path, error=str(e))
            raise PaymentProviderError(f"Provider request failed: {e}") from e
        try:
            data = response.json()
        except ValueError as e:
            logger.error("Payment provider returned invalid JSON", path=path, body=response.text[:500])
            raise PaymentProviderError(f"Provider returned invalid JSON for {method} {path}") from e
        if not isinstance(data, dict):
            raise PaymentProviderError(f"Provider returned unexpected body for {method} {path}")
        return data

    async def initiate_transfer(
        self,
        recipient_id: int,
        amount_cents: int,
        currency: str,
        reference: str,
    ) -> TransferResult:
        data = await self._request(
            "POST",
            "/transfers",
            json={
                "recipient_id": recipient_id,
                "amount_cents": amount_cents,
                "currency": currency,
                "reference": reference,
            },
        )
        try:
            return TransferResult(
                transfer_id=str(data["id"]),
                status=data.get("status", "pending"),
                fee_cents=int(data["fee_cents"]) if data.get("fee_cents") is not None else None,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise PaymentProviderError(f"Provider transfer response is malformed: {e!r}") from e

    async def get_transfer_status(self, transfer_id: str) -> TransferState:
        data = await self._request("GET", f"/transfers/{transfer_id}")
        try:
            return TransferState(
                transfer_id=transfer_id,
                status=data["status"],
                amount_cents=int(data.get("amount_cents", 0)),
                currency=data.get("currency", settings.currency),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise PaymentProviderError(f"Provider status response is malformed: {e!r}") from e

    async def get_delivery_estimate(self, transfer_id: str) -> Optional[date]:
        data = await self._request("GET", f"/transfers/{transfer_id}/delivery-estimate")
        estimate = data.get("estimated_delivery_date")
        return date.fromisoformat(estimate) if estimate else None


# Singleton instance
_payment_provider: Optional[HttpPaymentProvider] = None


async def get_payment_provider() -> HttpPaymentProvider:
    """Get or create payment provider singleton"""
    global _payment_provider
    if _payment_provider is None:
        _payment_provider = HttpPaymentProvider()
        await _payment_provider.connect()
    return _payment_provider


async def close_payment_provider() -> None:
    """Close payment provider singleton"""
    global _payment_provider
    if _payment_provider is not None:
        await _payment_provider.disconnect()
        _payment_provider = None
