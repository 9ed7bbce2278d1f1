"""
Telegram command handler for position control.

Runs as a background async task, long-polling getUpdates.
Supports:
  SELL NOW button (sell_<id>)   - manual close through the signer
  CANCEL button (cancel_<id>)   - stop tracking, no sell sent
  /positions                    - this chat's tracked positions
  /disconnect                   - cancel every open position of this chat
  /admin_report                 - user/position counts (admin chat only)
  /help, /start                 - command list

Errors are logged, never propagated: the tracker must never be affected
by command handling failures.
"""
import asyncio
from typing import Optional

import aiohttp

from trailguard.domain.protocols import Notifier
from trailguard.exceptions import PositionNotFoundError
from trailguard.execution.position_tracker import PositionTracker, owner_predicate
from trailguard.monitoring import messages
from trailguard.monitoring.logger import get_logger

logger = get_logger(__name__)

HELP_TEXT = (
    "🤖 trailguard\n\n"
    "Every tracked position reports on each check with SELL NOW / CANCEL buttons.\n"
    "/positions - Your tracked positions\n"
    "/disconnect - Cancel tracking of all your open positions\n"
    "/help - This message"
)


class TelegramCommandHandler:
    """Polls Telegram for commands and button presses and acts on the tracker."""

    def __init__(
        self,
        tracker: PositionTracker,
        notifier: Notifier,
        bot_token: str,
        admin_chat_id: Optional[str] = None,
        api_base: str = "https://api.telegram.org",
        poll_interval_seconds: float = 5.0,
        timeout_seconds: float = 10.0,
    ):
        self.tracker = tracker
        self.notifier = notifier
        self.admin_chat_id = str(admin_chat_id) if admin_chat_id else None
        self.poll_interval = poll_interval_seconds
        self._api = f"{api_base.rstrip('/')}/bot{bot_token}"
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._last_update_id: int = 0
        self._active = False

    async def run(self) -> None:
        """Main polling loop. Call as asyncio.create_task(handler.run())."""
        self._active = True
        logger.info("Telegram command handler started", admin_chat_id=self.admin_chat_id)

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            while self._active:
                try:
                    await self._poll_updates(session)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.warning("Telegram poll error (non-fatal)", error=str(e))

                await asyncio.sleep(self.poll_interval)

    def stop(self) -> None:
        """Stop the polling loop."""
        self._active = False

    async def _poll_updates(self, session: aiohttp.ClientSession) -> None:
        params = {"offset": self._last_update_id + 1, "timeout": 3}
        async with session.get(f"{self._api}/getUpdates", params=params) as resp:
            if resp.status != 200:
                return
            data = await resp.json()

        if not data.get("ok") or not data.get("result"):
            return

        for update in data["result"]:
            self._last_update_id = update["update_id"]
            try:
                await self.handle_update(update)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Update handling failed (non-fatal)", update_id=update.get("update_id"), error=str(e))

            callback = update.get("callback_query")
            if callback and callback.get("id"):
                await self._answer_callback(session, callback["id"])

    async def _answer_callback(self, session: aiohttp.ClientSession, callback_id: str) -> None:
        try:
            async with session.post(f"{self._api}/answerCallbackQuery", json={"callback_query_id": callback_id}):
                pass
        except aiohttp.ClientError as e:
            logger.debug("answerCallbackQuery failed", error=str(e))

    async def handle_update(self, update: dict) -> None:
        """Dispatch one Telegram update (message or button press)."""
        callback = update.get("callback_query")
        if callback:
            chat_id = str(callback.get("from", {}).get("id", ""))
            await self.handle_callback(chat_id, callback.get("data") or "")
            return

        message = update.get("message") or {}
        chat_id = str(message.get("chat", {}).get("id", ""))
        text = (message.get("text") or "").strip().lower()
        if chat_id and text.startswith("/"):
            await self.handle_command(chat_id, text.split()[0])

    async def handle_command(self, chat_id: str, command: str) -> None:
        if command in ("/help", "/start"):
            await self.notifier.send(chat_id, HELP_TEXT)
        elif command in ("/positions", "/pos", "/p"):
            await self.notifier.send(chat_id, messages.positions_summary(self.tracker.positions(owner=chat_id)))
        elif command == "/disconnect":
            cancelled = await self.tracker.cancel_all_for(owner_predicate(chat_id))
            await self.notifier.send(
                chat_id,
                f"✅ Disconnected. {len(cancelled)} open position(s) cancelled.",
            )
        elif command == "/admin_report":
            if chat_id != self.admin_chat_id:
                return
            await self.notifier.send(chat_id, messages.admin_report(self.tracker.positions()))
        # Unknown commands are ignored

    async def handle_callback(self, chat_id: str, data: str) -> None:
        action, _, position_id = data.partition("_")
        if action not in ("sell", "cancel") or not position_id:
            return

        try:
            position = self.tracker.get(position_id)
        except PositionNotFoundError:
            await self.notifier.send(chat_id, f"Unknown position {position_id}")
            return

        if position.owner != chat_id and chat_id != self.admin_chat_id:
            logger.warning("Callback from non-owner ignored", chat_id=chat_id, position_id=position_id)
            return

        if action == "sell":
            result = await self.tracker.close_position(position_id)
            if result is None:
                await self.notifier.send(chat_id, f"Position {position_id} is already {position.state.value}.")
        else:
            if not await self.tracker.cancel_position(position_id):
                await self.notifier.send(chat_id, f"Position {position_id} is already closed.")
