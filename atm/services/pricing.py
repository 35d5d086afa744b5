"""ETH to USD quotes from a public price endpoint."""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation

import httpx

from ..defaults import DEFAULT_PRICE_URL, PRICE_ASSET_ID, PRICE_CURRENCY

logger = logging.getLogger(__name__)


class PriceUnavailable(RuntimeError):
    """The price collaborator could not produce a rate."""


class PriceClient:
    """Fetch the ether/fiat rate with a single unauthenticated GET."""

    def __init__(
        self,
        url: str = DEFAULT_PRICE_URL,
        *,
        asset: str = PRICE_ASSET_ID,
        currency: str = PRICE_CURRENCY,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.asset = asset
        self.currency = currency
        self.timeout = timeout
        self._transport = transport

    async def fetch_rate(self) -> Decimal:
        params = {"ids": self.asset, "vs_currencies": self.currency}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(self.url, params=params)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            raise PriceUnavailable(f"Price request failed: {exc}") from exc
        except ValueError as exc:
            raise PriceUnavailable("Price response was not valid JSON.") from exc

        try:
            raw = data[self.asset][self.currency]
            rate = Decimal(str(raw))
        except (KeyError, TypeError, InvalidOperation) as exc:
            raise PriceUnavailable(
                f"Price response has no {self.asset}/{self.currency} quote."
            ) from exc
        if not rate.is_finite() or rate < 0:
            raise PriceUnavailable(f"Price response carried an invalid rate: {raw!r}")
        logger.debug("Fetched %s/%s rate %s", self.asset, self.currency, rate)
        return rate
