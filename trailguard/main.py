"""
Long-running tracker service.

Wires the price feed, signer, store and notifier into a PositionTracker,
resumes every open position found in the store, keeps adopting positions
that the buy flow writes there, and runs the Telegram command handler
until SIGINT/SIGTERM.
"""
import asyncio
import signal
from dataclasses import dataclass
from typing import Optional

from trailguard.config.config import Config, fail_fast_startup
from trailguard.data.price_source import JupiterPriceSource
from trailguard.exceptions import OperationalError
from trailguard.execution.position_tracker import PositionTracker
from trailguard.execution.rules import ExitRules
from trailguard.execution.scheduler import TrackingScheduler
from trailguard.execution.trade_engine import build_trade_engine
from trailguard.monitoring.alerting import build_notifier
from trailguard.monitoring.logger import get_logger
from trailguard.monitoring.telegram_bot import TelegramCommandHandler
from trailguard.storage.db import Database, init_db
from trailguard.storage.position_store import SqlPositionStore

logger = get_logger("Main")


@dataclass
class Service:
    """Everything the running service owns, for orderly shutdown."""
    config: Config
    db: Database
    tracker: PositionTracker
    price_source: JupiterPriceSource
    execution: object
    notifier: object
    commands: Optional[TelegramCommandHandler] = None


def build_service(config: Config) -> Service:
    db = init_db(config.storage.database_url)
    store = SqlPositionStore(db)
    price_source = JupiterPriceSource(config.price_feed.base_url, config.price_feed.timeout_seconds)
    execution = build_trade_engine(config.execution.signer_url, config.execution.timeout_seconds)
    notifier = build_notifier(config.telegram)

    tracker = PositionTracker(
        price_source=price_source,
        execution=execution,
        store=store,
        notifier=notifier,
        rules=ExitRules.from_config(config.tracker),
        scheduler=TrackingScheduler(config.tracker.track_interval_seconds),
    )

    commands = None
    if config.telegram.enabled and config.telegram.bot_token:
        commands = TelegramCommandHandler(
            tracker,
            notifier,
            bot_token=config.telegram.bot_token,
            admin_chat_id=config.telegram.admin_chat_id,
            api_base=config.telegram.api_base,
            poll_interval_seconds=config.telegram.poll_interval_seconds,
            timeout_seconds=config.telegram.timeout_seconds,
        )

    return Service(
        config=config,
        db=db,
        tracker=tracker,
        price_source=price_source,
        execution=execution,
        notifier=notifier,
        commands=commands,
    )


async def _sync_loop(tracker: PositionTracker, interval: float, stop_event: asyncio.Event) -> None:
    """Pick up positions the buy flow recorded in the store."""
    while not stop_event.is_set():
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
            return
        except asyncio.TimeoutError:
            pass
        try:
            await tracker.resume_from_store()
        except OperationalError as e:
            logger.warning("Store sync failed, retrying next interval", error=str(e))


async def run_service(config: Config, stop_event: Optional[asyncio.Event] = None) -> None:
    fail_fast_startup(config)
    service = build_service(config)
    tracker = service.tracker
    stop_event = stop_event or asyncio.Event()

    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            pass

    adopted = await tracker.resume_from_store()
    logger.info(
        "Tracker online",
        resumed=len(adopted),
        interval_seconds=config.tracker.track_interval_seconds,
        stoploss_percent=config.tracker.stoploss_percent,
        trailing_trigger_percent=config.tracker.trailing_trigger_percent,
        signer_configured=bool(config.execution.signer_url),
    )
    if config.telegram.admin_chat_id:
        await service.notifier.send(
            config.telegram.admin_chat_id,
            f"{config.system.name} v{config.system.version} online. Tracking {len(adopted)} open position(s).",
        )

    background = [asyncio.create_task(_sync_loop(tracker, config.tracker.store_sync_interval_seconds, stop_event))]
    if service.commands is not None:
        background.append(asyncio.create_task(service.commands.run()))

    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down")
        if service.commands is not None:
            service.commands.stop()
        for task in background:
            task.cancel()
        await asyncio.gather(*background, return_exceptions=True)
        await tracker.shutdown()
        for resource in (service.price_source, service.execution, service.notifier):
            close = getattr(resource, "close", None)
            if close is not None:
                await close()
        service.db.dispose()
        for sig in installed:
            loop.remove_signal_handler(sig)
        logger.info("Shutdown complete")
