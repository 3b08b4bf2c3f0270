from __future__ import annotations

from datetime import datetime, timezone
import math
from typing import Protocol

from app.core.logging import get_logger
from app.models.job import JobRequest
from app.models.pricing import HiddenCosts, NormalizedPrice, Quote, QuoteCurrency
from app.models.provider import GpuType, Region
from app.services.token_prices import TokenPriceSource

# Throughput relative to one A100 80GB.
GPU_PERFORMANCE_RATIOS: dict[GpuType, float] = {
    GpuType.a100_80gb: 1.0,
    GpuType.a100_40gb: 0.9,
    GpuType.h100: 1.5,
    GpuType.h200: 2.0,
    GpuType.rtx4090: 0.6,
    GpuType.rtx3090: 0.5,
    GpuType.a10g: 0.4,
    GpuType.v100: 0.3,
    GpuType.t4: 0.15,
}

# (bandwidth USD/GB, storage USD/GB-month)
REGION_COST_RATES: dict[Region, tuple[float, float]] = {
    Region.us_east: (0.09, 0.023),
    Region.us_west: (0.09, 0.023),
    Region.us_central: (0.09, 0.023),
    Region.eu_west: (0.09, 0.024),
    Region.eu_central: (0.09, 0.0245),
    Region.eu_north: (0.09, 0.024),
    Region.ap_south: (0.1093, 0.025),
    Region.ap_northeast: (0.114, 0.025),
    Region.ap_southeast: (0.12, 0.025),
    Region.sa_east: (0.138, 0.0405),
}

API_CALL_USD_PER_1000 = 0.003
ML_BANDWIDTH_GB_PER_HOUR = 1.5
ML_STORAGE_GB = 75.0
ML_API_CALLS_PER_HOUR = 10.0
HOURS_PER_MONTH = 730.0


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_price(value: float | None) -> str:
    if value is None or not math.isfinite(value):
        return "n/a"
    return f"${value:.2f}/hr"


def estimate_hidden_costs(region: Region) -> HiddenCosts:
    bandwidth_rate, storage_rate = REGION_COST_RATES.get(region, REGION_COST_RATES[Region.us_east])
    return HiddenCosts(
        bandwidth_usd_per_hour=ML_BANDWIDTH_GB_PER_HOUR * bandwidth_rate,
        storage_usd_per_hour=ML_STORAGE_GB * storage_rate / HOURS_PER_MONTH,
        api_calls_usd_per_hour=ML_API_CALLS_PER_HOUR * API_CALL_USD_PER_1000 / 1000,
    )


class PriceNormalizer(Protocol):
    async def normalize(self, quote: Quote, request: JobRequest) -> NormalizedPrice: ...


class DefaultPriceNormalizer:
    """
    Turns a raw quote into USD per A100-equivalent GPU-hour.

    Steps: token to USD conversion, spot discount, hidden costs, then division
    by the GPU performance ratio. Any failure yields an error-flagged price
    instead of an exception.
    """

    def __init__(
        self,
        token_prices: TokenPriceSource,
        max_token_price_age_sec: float = 600,
        include_hidden_costs: bool = True,
        apply_spot_discount: bool = True,
    ) -> None:
        self.token_prices = token_prices
        self.max_token_price_age_sec = max_token_price_age_sec
        self.include_hidden_costs = include_hidden_costs
        self.apply_spot_discount = apply_spot_discount
        self.logger = get_logger("computerouter.normalizer")

    async def normalize(self, quote: Quote, request: JobRequest) -> NormalizedPrice:
        try:
            return await self._normalize(quote)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning(
                "normalization_failed",
                extra={"job_id": request.id, "provider_id": quote.provider_id, "error": str(exc), "event": "normalize.failed"},
            )
            return NormalizedPrice.failed(quote, f"normalization error: {exc}")

    async def _normalize(self, quote: Quote) -> NormalizedPrice:
        price = quote.price_per_gpu_hour
        if not math.isfinite(price) or price <= 0:
            return NormalizedPrice.failed(quote, "quoted price must be positive")

        usd = await self._to_usd(quote)
        if isinstance(usd, str):
            return NormalizedPrice.failed(quote, usd)

        if quote.is_spot and self.apply_spot_discount:
            usd *= 1.0 - quote.spot_discount

        hidden = estimate_hidden_costs(quote.region) if self.include_hidden_costs else HiddenCosts()
        ratio = GPU_PERFORMANCE_RATIOS.get(quote.gpu_type)
        if not ratio:
            return NormalizedPrice.failed(quote, f"no performance ratio for {quote.gpu_type}")

        effective = (usd + hidden.total_usd_per_hour) / ratio
        if not math.isfinite(effective) or effective <= 0:
            return NormalizedPrice.failed(quote, "effective price is not a positive number")

        return NormalizedPrice(
            provider_id=quote.provider_id,
            gpu_type=quote.gpu_type,
            raw_price=price,
            raw_currency=quote.currency,
            usd_price_per_gpu_hour=round(usd, 6),
            hidden_costs=hidden,
            effective_usd_per_a100_hour=round(effective, 6),
        )

    async def _to_usd(self, quote: Quote) -> float | str:
        """USD price per GPU-hour, or the reason the quote cannot be converted."""
        if quote.currency == QuoteCurrency.usd:
            return quote.price_per_gpu_hour
        symbol = (quote.token_symbol or "").upper()
        token_price = await self.token_prices.get_price(symbol)
        if token_price is None:
            return f"unknown token {symbol}"
        age_sec = (utc_now() - token_price.as_of).total_seconds()
        if age_sec > self.max_token_price_age_sec:
            return f"token price for {symbol} is stale ({int(age_sec)}s old)"
        if token_price.usd <= 0:
            return f"token price for {symbol} is not positive"
        return quote.price_per_gpu_hour * token_price.usd
