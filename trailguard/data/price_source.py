"""
Token price lookup over HTTP.

Talks to a Jupiter-style price API:

    GET {base_url}?ids=<mint>  ->  {"data": {"<mint>": {"price": "1.23", ...}}}

Every failure mode (timeout, non-200, malformed body, unknown token,
non-positive price) collapses to None. The tracker treats None as a
transient miss and retries on the next cycle.
"""
import asyncio
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import aiohttp

from trailguard.monitoring.logger import get_logger

logger = get_logger(__name__)


def parse_price(payload: Any, token_ref: str) -> Optional[Decimal]:
    """Extract a positive price for token_ref from an API response body."""
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    if not isinstance(data, dict):
        return None
    entry = data.get(token_ref)
    if not isinstance(entry, dict):
        return None
    raw = entry.get("price")
    if raw is None or isinstance(raw, bool):
        return None
    try:
        price = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        return None
    if not price.is_finite() or price <= 0:
        return None
    return price


class JupiterPriceSource:
    """
    PriceSource backed by the Jupiter price API.

    One aiohttp session is reused across calls; call close() on shutdown.
    """

    def __init__(self, base_url: str = "https://api.jup.ag/price/v2", timeout_seconds: float = 8.0):
        self.base_url = base_url
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def get_price(self, token_ref: str) -> Optional[Decimal]:
        try:
            session = self._get_session()
            async with session.get(self.base_url, params={"ids": token_ref}) as resp:
                if resp.status != 200:
                    logger.warning("Price API non-200", token=token_ref, status=resp.status)
                    return None
                payload = await resp.json(content_type=None)
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning("Price fetch failed", token=token_ref, error=str(e) or type(e).__name__)
            return None

        price = parse_price(payload, token_ref)
        if price is None:
            logger.warning("Price missing from response", token=token_ref)
        return price

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
