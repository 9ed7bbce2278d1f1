"""
Execution services: hand a sell request to the signer.

trailguard never builds or signs transactions. Sells go to a separate
signer service (wallet app or local signer) over HTTP:

    POST {signer_url}/sell
    {"user": ..., "wallet": ..., "token": ..., "quantity": "<raw units>"}
    -> {"success": true, "tx": "<signature>", "message": "..."}

Transport errors are reported as a failed CloseResult so that the
tracker keeps the position open and keeps monitoring it.
"""
import asyncio
from decimal import Decimal
from typing import Any, Optional

import aiohttp

from trailguard.domain.models import CloseResult
from trailguard.monitoring.logger import get_logger

logger = get_logger(__name__)


def parse_close_response(payload: Any) -> CloseResult:
    """Map a signer response body onto a CloseResult."""
    if not isinstance(payload, dict):
        return CloseResult(success=False, message="Malformed signer response")
    success = payload.get("success") is True
    settlement_ref = payload.get("tx") or payload.get("settlement_ref")
    message = str(payload.get("message") or ("ok" if success else "sell rejected"))
    return CloseResult(
        success=success,
        settlement_ref=str(settlement_ref) if settlement_ref else None,
        message=message,
    )


class UnconfiguredTradeEngine:
    """
    Used when no signer is deployed.

    Every request fails, so triggered positions stay open and keep being
    tracked (and re-triggered) until a signer is configured.
    """

    async def request_close(self, owner: str, wallet_ref: str, token_ref: str, quantity: Decimal) -> CloseResult:
        logger.warning("Sell requested but no signer configured", owner=owner, token=token_ref)
        return CloseResult(success=False, message="sell execution not configured (set SIGNER_URL)")


class HttpTradeEngine:
    """ExecutionService that POSTs sell requests to the signer service."""

    def __init__(self, signer_url: str, timeout_seconds: float = 30.0):
        self.signer_url = signer_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def request_close(self, owner: str, wallet_ref: str, token_ref: str, quantity: Decimal) -> CloseResult:
        payload = {
            "user": owner,
            "wallet": wallet_ref,
            "token": token_ref,
            "quantity": str(quantity),
        }
        try:
            session = self._get_session()
            async with session.post(f"{self.signer_url}/sell", json=payload) as resp:
                if resp.status >= 500:
                    body = await resp.text()
                    logger.warning("Signer error", status=resp.status, body=body[:200], token=token_ref)
                    return CloseResult(success=False, message=f"signer HTTP {resp.status}")
                body = await resp.json(content_type=None)
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning("Signer request failed", token=token_ref, error=str(e) or type(e).__name__)
            return CloseResult(success=False, message=f"signer unreachable: {str(e) or type(e).__name__}")

        result = parse_close_response(body)
        logger.info(
            "Signer response",
            token=token_ref,
            success=result.success,
            settlement_ref=result.settlement_ref,
        )
        return result

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()


def build_trade_engine(signer_url: Optional[str], timeout_seconds: float = 30.0):
    """Pick the execution service for the configured signer."""
    if signer_url:
        return HttpTradeEngine(signer_url, timeout_seconds=timeout_seconds)
    return UnconfiguredTradeEngine()
