"""
Position Tracker - the exit-trigger engine.

Drives every tracked position through its state machine:

    OPEN → CLOSING → CLOSED      (stop-loss, trailing or manual close)
    CLOSING → OPEN               (close request failed, keep tracking)
    OPEN/CLOSING → CLOSED        (administrative cancel, no sell sent)

Concurrency rules (single asyncio loop):
    - each position is sampled by exactly one scheduler task, cycles are
      sequential;
    - peak updates and the OPEN → CLOSING marker happen without an await
      between the state read and the write;
    - close requests and administrative cancels run under a per-position
      lock, so exactly one terminal transition is ever applied and
      persisted. The side that loses the race observes the terminal state
      and drops its effect.
"""
import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional

from trailguard.domain.models import (
    CloseReason,
    CloseResult,
    Position,
    PositionState,
    new_position_id,
)
from trailguard.domain.protocols import ExecutionService, Notifier, PositionStore, PriceSource
from trailguard.exceptions import PositionNotFoundError, StoreError
from trailguard.execution.rules import Evaluation, ExitRules, evaluate_sample
from trailguard.execution.scheduler import TrackingScheduler
from trailguard.monitoring import messages
from trailguard.monitoring.logger import get_logger

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PositionTracker:
    """
    Owns the polling loop, rule evaluation and close orchestration for
    all tracked positions.
    """

    def __init__(
        self,
        price_source: PriceSource,
        execution: ExecutionService,
        store: PositionStore,
        notifier: Notifier,
        rules: Optional[ExitRules] = None,
        scheduler: Optional[TrackingScheduler] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.price_source = price_source
        self.execution = execution
        self.store = store
        self.notifier = notifier
        self.rules = rules or ExitRules()
        self.scheduler = scheduler or TrackingScheduler()
        self._clock = clock

        self._positions: Dict[str, Position] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    # ============ REGISTRY ============

    def get(self, position_id: str) -> Position:
        position = self._positions.get(position_id)
        if position is None:
            raise PositionNotFoundError(f"Position not tracked: {position_id}")
        return position

    def positions(self, owner: Optional[str] = None) -> List[Position]:
        return [p for p in self._positions.values() if owner is None or p.owner == owner]

    def open_positions(self) -> List[Position]:
        return [p for p in self._positions.values() if not p.is_closed]

    def _lock_for(self, position_id: str) -> asyncio.Lock:
        lock = self._locks.get(position_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[position_id] = lock
        return lock

    # ============ LIFECYCLE ============

    async def open_position(
        self,
        owner: str,
        wallet_ref: str,
        token_ref: str,
        quantity: Decimal,
        entry_price: Optional[Decimal] = None,
    ) -> Position:
        """Record a confirmed buy and start tracking it."""
        position = Position(
            position_id=new_position_id(token_ref),
            owner=str(owner),
            wallet_ref=wallet_ref,
            token_ref=token_ref,
            quantity=quantity,
            entry_price=entry_price,
            opened_at=self._clock(),
        )
        await asyncio.to_thread(self.store.save, position)
        self.start_tracking(position)
        logger.info(
            "Position opened",
            position_id=position.position_id,
            owner=position.owner,
            token=token_ref,
            entry_price=str(entry_price) if entry_price is not None else None,
            quantity=str(quantity),
        )
        return position

    def start_tracking(self, position: Position) -> bool:
        """
        Start the polling task for an open position. Idempotent per id.

        Returns True if a new task was started.
        """
        if position.is_closed:
            logger.warning("Refusing to track closed position", position_id=position.position_id)
            return False
        self._positions.setdefault(position.position_id, position)
        return self.scheduler.start(position.position_id, self.run_cycle)

    def stop_tracking(self, position_id: str) -> bool:
        """Cancel the polling task if present. No-op for unknown ids."""
        return self.scheduler.stop(position_id)

    def is_tracking(self, position_id: str) -> bool:
        return self.scheduler.is_tracking(position_id)

    async def resume_from_store(self) -> List[str]:
        """
        Adopt every non-closed position in the store that is not yet tracked.

        Positions found in CLOSING were interrupted mid-request; they revert
        to OPEN so the rules are evaluated again on their next cycle.
        """
        stored = await asyncio.to_thread(self.store.load_open)
        adopted = []
        for position in stored:
            if position.position_id in self._positions:
                continue
            if position.state == PositionState.CLOSING:
                position.abort_close()
                await asyncio.to_thread(self.store.save, position)
                logger.warning("Interrupted close reverted to open", position_id=position.position_id)
            if self.start_tracking(position):
                adopted.append(position.position_id)
        if adopted:
            logger.info("Positions adopted from store", count=len(adopted), position_ids=adopted)
        return adopted

    async def shutdown(self) -> None:
        await self.scheduler.stop_all()

    # ============ TRACKING CYCLE ============

    async def run_cycle(self, position_id: str) -> Optional[Evaluation]:
        """
        One sampling cycle: fetch price, update peak, report, maybe close.

        Returns the evaluation, or None when the cycle was skipped.
        """
        position = self._positions.get(position_id)
        if position is None or position.is_closed:
            return None

        price = await self.price_source.get_price(position.token_ref)

        # Cancelled while the fetch was in flight
        if position.is_closed:
            return None

        if price is None:
            logger.warning("Price unavailable, cycle skipped", position_id=position_id, token=position.token_ref)
            await self._notify(position, messages.price_unavailable_message(position))
            return None

        now = self._clock()
        if position.state == PositionState.CLOSING:
            # A close request is outstanding: report only, no rule evaluation
            evaluation = evaluate_sample(position, price, self.rules, check_triggers=False, now=now)
            await self._notify(
                position,
                messages.status_message(position, evaluation, now),
                messages.position_actions(position_id),
            )
            return evaluation

        evaluation = evaluate_sample(position, price, self.rules, now=now)
        if evaluation.trigger is not None:
            position.begin_close()

        logger.debug(
            "Position sampled",
            position_id=position_id,
            price=str(price),
            peak=str(evaluation.peak_price),
            profit_pct=str(evaluation.profit_pct),
            drawdown_pct=str(evaluation.drawdown_pct),
            trigger=evaluation.trigger.value if evaluation.trigger else None,
        )
        await self._notify(
            position,
            messages.status_message(position, evaluation, now),
            messages.position_actions(position_id),
        )

        if evaluation.trigger is None:
            async with self._lock_for(position_id):
                if position.is_open:
                    await self._persist(position)
            return evaluation

        threshold = (
            self.rules.stoploss_percent
            if evaluation.trigger == CloseReason.STOPLOSS
            else self.rules.trailing_trigger_percent
        )
        logger.info(
            "Exit rule triggered",
            position_id=position_id,
            reason=evaluation.trigger.value,
            price=str(price),
            profit_pct=str(evaluation.profit_pct),
            drawdown_pct=str(evaluation.drawdown_pct),
        )
        await self._notify(position, messages.trigger_message(position, evaluation.trigger, threshold))
        await self._request_close(position, evaluation.trigger)
        return evaluation

    # ============ CLOSE ORCHESTRATION ============

    async def close_position(self, position_id: str, reason: CloseReason = CloseReason.MANUAL) -> Optional[CloseResult]:
        """
        Request a close outside the rule engine (SELL NOW button).

        Returns None when the position is not OPEN (already closing or closed).
        """
        position = self.get(position_id)
        if not position.is_open:
            logger.info("Close refused, position not open", position_id=position_id, state=position.state.value)
            return None
        position.begin_close()
        await self._notify(position, messages.trigger_message(position, reason, Decimal("0")))
        return await self._request_close(position, reason)

    async def _request_close(self, position: Position, reason: CloseReason) -> Optional[CloseResult]:
        """
        Send the sell request and reconcile the outcome. The position must
        already be CLOSING.
        """
        position_id = position.position_id
        async with self._lock_for(position_id):
            if position.state != PositionState.CLOSING:
                # An administrative cancel won the race
                logger.info(
                    "Close request dropped, position no longer closing",
                    position_id=position_id,
                    state=position.state.value,
                    reason=reason.value,
                )
                return None

            try:
                result = await self.execution.request_close(
                    position.owner,
                    position.wallet_ref,
                    position.token_ref,
                    position.quantity,
                )
            except asyncio.CancelledError:
                position.abort_close()
                raise
            except Exception as e:
                logger.error(
                    "Execution service raised",
                    position_id=position_id,
                    reason=reason.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                result = CloseResult(success=False, message=str(e) or type(e).__name__)

            if result.success:
                self.stop_tracking(position_id)
                position.mark_closed(reason, close_ref=result.settlement_ref, closed_at=self._clock())
                logger.info(
                    "Position closed",
                    position_id=position_id,
                    reason=reason.value,
                    settlement_ref=result.settlement_ref,
                )
            else:
                position.abort_close()
                logger.warning(
                    "Close request failed, still tracking",
                    position_id=position_id,
                    reason=reason.value,
                    message=result.message,
                )
            await self._persist(position)

        if result.success:
            await self._notify(position, messages.close_success_message(position, reason, result))
        else:
            await self._notify(position, messages.close_failure_message(position, reason, result))
        return result

    # ============ ADMINISTRATIVE CANCEL ============

    async def cancel_position(self, position_id: str) -> bool:
        """
        Stop tracking and mark closed with external_cancel. No sell is sent.

        Waits for an in-flight close request on the same position; returns
        False if that request (or anything else) already closed it.
        """
        position = self.get(position_id)
        async with self._lock_for(position_id):
            if position.is_closed:
                logger.info("Cancel dropped, position already closed", position_id=position_id)
                return False
            self.stop_tracking(position_id)
            position.mark_closed(CloseReason.EXTERNAL_CANCEL, closed_at=self._clock())
            await self._persist(position)

        logger.info("Position cancelled", position_id=position_id, owner=position.owner)
        await self._notify(position, messages.cancelled_message(position))
        return True

    async def cancel_all_for(self, predicate: Callable[[Position], bool]) -> List[str]:
        """
        Cancel every non-closed position matching predicate (e.g. same wallet).

        Open positions that are only in the store are registered first
        (without a tracking task) so a later resume_from_store cannot adopt
        them.
        """
        try:
            stored = await asyncio.to_thread(self.store.load_open)
        except StoreError as e:
            logger.error("Failed to load stored positions for cancel", error=str(e))
            stored = []
        for position in stored:
            if position.position_id not in self._positions and predicate(position):
                self._positions[position.position_id] = position

        cancelled = []
        for position in list(self._positions.values()):
            if position.is_closed or not predicate(position):
                continue
            if await self.cancel_position(position.position_id):
                cancelled.append(position.position_id)
        logger.info("Bulk cancel", count=len(cancelled), position_ids=cancelled)
        return cancelled

    # ============ HELPERS ============

    async def _persist(self, position: Position) -> None:
        try:
            await asyncio.to_thread(self.store.save, position)
        except StoreError as e:
            logger.error(
                "Failed to persist position",
                position_id=position.position_id,
                state=position.state.value,
                error=str(e),
            )

    async def _notify(self, position: Position, text: str, actions=None) -> None:
        try:
            await self.notifier.send(position.owner, text, actions)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "Notification failed (non-fatal)",
                position_id=position.position_id,
                error=str(e),
            )


def wallet_predicate(wallet_ref: str) -> Callable[[Position], bool]:
    return lambda position: position.wallet_ref == wallet_ref


def owner_predicate(owner: str) -> Callable[[Position], bool]:
    return lambda position: position.owner == str(owner)


def summarize(positions: Iterable[Position]) -> Dict[str, int]:
    """Counts per state, for status reports."""
    counts = {state.value: 0 for state in PositionState}
    for position in positions:
        counts[position.state.value] += 1
    return counts
