"""
Price feed adapters: supply the latest price sample to the sentinel.

HttpPriceFeed reads either a plain JSON document ({"price": ...}) or the
CoinGecko simple-price endpoint. StaticPriceFeed holds a price set in
process, for demo mode and tests. Neither invents a fallback price: any
failure is raised as PriceUnavailable and the caller skips the analysis.
"""

from __future__ import annotations

import time
from typing import Optional, Protocol

import httpx
import structlog

from .errors import PriceUnavailable
from .models import PriceSample

logger = structlog.get_logger(__name__)

COINGECKO_BASE = "https://api.coingecko.com/api/v3"


class PriceSampler(Protocol):
    def latest(self) -> PriceSample: ...


class HttpPriceFeed:
    """Fetches the current price over HTTP."""

    def __init__(
        self,
        url: str,
        fmt: str = "json",
        asset_id: str = "ethereum",
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if fmt not in ("json", "coingecko"):
            raise ValueError(f"unsupported price feed format {fmt!r}")
        self._url = url or COINGECKO_BASE
        self._fmt = fmt
        self._asset_id = asset_id
        self._client = client or httpx.Client(timeout=timeout)
        self.last_sample: Optional[PriceSample] = None

    def latest(self) -> PriceSample:
        try:
            if self._fmt == "coingecko":
                sample = self._fetch_coingecko()
            else:
                sample = self._fetch_json()
        except httpx.HTTPError as e:
            logger.warning("price_fetch_failed", url=self._url, error=str(e))
            raise PriceUnavailable(f"price source unreachable: {e}") from e
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning("price_parse_failed", url=self._url, error=str(e))
            raise PriceUnavailable(f"malformed price document: {e}") from e

        if sample.price <= 0:
            logger.warning("price_non_positive", url=self._url, price=sample.price)
            raise PriceUnavailable(f"non-positive price {sample.price}")

        self.last_sample = sample
        logger.debug("price_sampled", price=sample.price, source=sample.source)
        return sample

    def _fetch_json(self) -> PriceSample:
        resp = self._client.get(self._url)
        resp.raise_for_status()
        data = resp.json()
        updated_at = data.get("updatedAt") or data.get("updated_at") or time.time()
        return PriceSample(
            price=float(data["price"]),
            updated_at=float(updated_at),
            source=self._url,
        )

    def _fetch_coingecko(self) -> PriceSample:
        resp = self._client.get(
            f"{self._url}/simple/price",
            params={
                "ids": self._asset_id,
                "vs_currencies": "usd",
                "include_last_updated_at": "true",
            },
        )
        resp.raise_for_status()
        entry = resp.json()[self._asset_id]
        return PriceSample(
            price=float(entry["usd"]),
            updated_at=float(entry.get("last_updated_at") or time.time()),
            source="coingecko",
        )

    def close(self) -> None:
        self._client.close()


class StaticPriceFeed:
    """In-process price source whose value is set by hand."""

    def __init__(self, price: float, clock=time.time) -> None:
        self._clock = clock
        self._sample: Optional[PriceSample] = None
        self._outage: Optional[str] = None
        self.set_price(price)

    def set_price(self, price: float, updated_at: Optional[float] = None) -> None:
        self._sample = PriceSample(
            price=price,
            updated_at=self._clock() if updated_at is None else updated_at,
            source="static",
        )
        self._outage = None

    def set_unavailable(self, reason: str = "feed offline") -> None:
        self._outage = reason

    def latest(self) -> PriceSample:
        if self._outage is not None:
            raise PriceUnavailable(self._outage)
        return self._sample

    def close(self) -> None:
        pass


def build_price_feed(settings) -> HttpPriceFeed | StaticPriceFeed:
    """Pick the feed described by settings."""
    if not settings.price_feed_url and settings.price_feed_format != "coingecko":
        logger.info("static_price_feed", price=settings.initial_price)
        return StaticPriceFeed(settings.initial_price)
    return HttpPriceFeed(
        url=settings.price_feed_url,
        fmt=settings.price_feed_format,
        asset_id=settings.price_asset_id,
        timeout=settings.price_feed_timeout_seconds,
    )
