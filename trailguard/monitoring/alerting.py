"""
Notification delivery to position owners.

TelegramNotifier sends through the Bot API (sendMessage) with optional
inline keyboards. LogNotifier is used when Telegram is disabled.

Delivery is fire-and-forget: failures are logged and never raised, so
a dead chat never stalls or crashes position tracking.
"""
import asyncio
from typing import Optional

import aiohttp

from trailguard.domain.protocols import ActionRows
from trailguard.monitoring.logger import get_logger

logger = get_logger(__name__)


def build_inline_keyboard(actions: ActionRows) -> dict:
    """[(label, callback_data), ...] rows -> Telegram reply_markup."""
    rows = []
    for row in actions:
        buttons = []
        for label, data in row:
            if data.startswith("http://") or data.startswith("https://"):
                buttons.append({"text": label, "url": data})
            else:
                buttons.append({"text": label, "callback_data": data})
        rows.append(buttons)
    return {"inline_keyboard": rows}


class LogNotifier:
    """Notifier that only logs. Used in dry setups and tests."""

    async def send(self, owner: str, text: str, actions: Optional[ActionRows] = None) -> None:
        logger.info("Notification", owner=owner, text=text)


class TelegramNotifier:
    """Notifier backed by the Telegram Bot API."""

    def __init__(self, bot_token: str, api_base: str = "https://api.telegram.org", timeout_seconds: float = 10.0):
        self._url = f"{api_base.rstrip('/')}/bot{bot_token}/sendMessage"
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def send(self, owner: str, text: str, actions: Optional[ActionRows] = None) -> None:
        payload = {"chat_id": owner, "text": text}
        if actions:
            payload["reply_markup"] = build_inline_keyboard(actions)

        try:
            session = self._get_session()
            async with session.post(self._url, json=payload) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    logger.warning("Telegram send failed", owner=owner, status=resp.status, body=body[:200])
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Notification failures must never reach the tracker
            logger.warning("Telegram send failed (non-fatal)", owner=owner, error=str(e) or type(e).__name__)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()


def build_notifier(telegram_config):
    if telegram_config.enabled and telegram_config.bot_token:
        return TelegramNotifier(
            telegram_config.bot_token,
            api_base=telegram_config.api_base,
            timeout_seconds=telegram_config.timeout_seconds,
        )
    return LogNotifier()
