from __future__ import annotations

import asyncio
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

import httpx
from pydantic import ValidationError

from app.core.logging import get_logger
from app.models.pricing import Quote, QuoteCurrency, QuoteRequest
from app.models.provider import GpuType, PricingModel, Provider


class ProviderErrorCode(StrEnum):
    unavailable = "unavailable"
    rate_limit = "rate_limit"
    invalid_request = "invalid_request"
    timeout = "timeout"
    auth_error = "auth_error"
    unknown = "unknown"


class ProviderError(Exception):
    def __init__(self, provider_id: str, code: ProviderErrorCode, message: str) -> None:
        super().__init__(f"{provider_id}: {code}: {message}")
        self.provider_id = provider_id
        self.code = code
        self.message = message


@runtime_checkable
class ProviderAdapter(Protocol):
    provider_id: str

    async def get_quotes(self, request: QuoteRequest) -> list[Quote]: ...


class StaticQuoteAdapter:
    """
    Price-list adapter for seeded and test providers.

    Quotes a fixed price for the requested GPU and, when the provider supports
    spot capacity and the request allows it, an extra discounted spot quote.
    ``latency_sec`` simulates a slow upstream; ``error`` makes every call fail.
    """

    def __init__(
        self,
        provider: Provider,
        prices: dict[GpuType, float],
        spot_discount: float = 0.0,
        token_symbol: str | None = None,
        latency_sec: float = 0.0,
        error: ProviderError | None = None,
    ) -> None:
        self.provider = provider
        self.provider_id = provider.id
        self.prices = dict(prices)
        self.spot_discount = spot_discount
        self.token_symbol = token_symbol
        self.latency_sec = latency_sec
        self.error = error
        self.calls = 0

    async def get_quotes(self, request: QuoteRequest) -> list[Quote]:
        self.calls += 1
        if self.latency_sec > 0:
            await asyncio.sleep(self.latency_sec)
        if self.error is not None:
            raise self.error

        price = self.prices.get(request.gpu_type)
        if price is None or request.gpu_type not in self.provider.capabilities.gpu_types:
            return []

        regions = self.provider.capabilities.regions
        region = request.region if request.region in regions else self.provider.primary_region
        currency = QuoteCurrency.token if self.token_symbol else QuoteCurrency.usd
        quotes = [
            Quote(
                provider_id=self.provider_id,
                gpu_type=request.gpu_type,
                price_per_gpu_hour=price,
                currency=currency,
                token_symbol=self.token_symbol,
                region=region,
                pricing_model=self.provider.pricing_model,
            )
        ]
        if request.allow_spot and self.provider.capabilities.supports_spot and self.spot_discount > 0:
            quotes.append(
                Quote(
                    provider_id=self.provider_id,
                    gpu_type=request.gpu_type,
                    price_per_gpu_hour=price,
                    currency=currency,
                    token_symbol=self.token_symbol,
                    region=region,
                    is_spot=True,
                    spot_discount=self.spot_discount,
                    pricing_model=PricingModel.spot,
                )
            )
        return quotes


class HttpQuoteAdapter:
    """Quotes from a provider that exposes ``POST {base_url}/quotes`` returning ``{"quotes": [...]}``."""

    def __init__(
        self,
        provider_id: str,
        base_url: str,
        api_token: str = "",
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.provider_id = provider_id
        self._base_url = base_url.rstrip("/")
        self._logger = get_logger("computerouter.adapters.http")
        headers = {}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        self._client = client or httpx.AsyncClient(base_url=self._base_url, timeout=timeout, headers=headers)
        self._owns_client = client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get_quotes(self, request: QuoteRequest) -> list[Quote]:
        try:
            response = await self._client.post(f"{self._base_url}/quotes", json=request.model_dump(mode="json"))
        except httpx.TimeoutException as exc:
            raise ProviderError(self.provider_id, ProviderErrorCode.timeout, str(exc) or "request timed out") from exc
        except httpx.RequestError as exc:
            raise ProviderError(self.provider_id, ProviderErrorCode.unavailable, self._format_error(exc)) from exc

        if response.status_code >= 400:
            raise ProviderError(self.provider_id, self._error_code(response.status_code), self._format_response(response))

        try:
            body: dict[str, Any] = response.json()
        except ValueError as exc:
            raise ProviderError(self.provider_id, ProviderErrorCode.unknown, "response is not JSON") from exc

        quotes: list[Quote] = []
        for item in body.get("quotes", []):
            try:
                quotes.append(Quote.model_validate({**item, "provider_id": self.provider_id}))
            except ValidationError as exc:
                self._logger.warning(
                    "quote_discarded",
                    extra={"provider_id": self.provider_id, "error": str(exc), "event": "quotes.discarded"},
                )
        return quotes

    @staticmethod
    def _error_code(status_code: int) -> ProviderErrorCode:
        if status_code in {401, 403}:
            return ProviderErrorCode.auth_error
        if status_code == 429:
            return ProviderErrorCode.rate_limit
        if status_code in {408, 504}:
            return ProviderErrorCode.timeout
        if 400 <= status_code < 500:
            return ProviderErrorCode.invalid_request
        if status_code >= 500:
            return ProviderErrorCode.unavailable
        return ProviderErrorCode.unknown

    @staticmethod
    def _format_response(response: httpx.Response) -> str:
        detail = (response.text or "").strip().replace("\n", " ")
        if len(detail) > 220:
            detail = f"{detail[:220]}..."
        return f"status={response.status_code} detail={detail}"

    @staticmethod
    def _format_error(exc: httpx.RequestError) -> str:
        return f"{exc.__class__.__name__} url={exc.request.url} detail={exc}"
