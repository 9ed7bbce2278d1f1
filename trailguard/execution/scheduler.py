"""
Per-position tracking scheduler.

Owns an explicit map position_id -> running task. Each task runs its
cycles strictly one after another on a fixed cadence that starts
immediately; if a cycle outlives the interval, the missed ticks are
skipped instead of being run in parallel.

Stopping a position:
    - a task sleeping between cycles is cancelled at once, so no further
      tick fires;
    - a task in the middle of a cycle is only flagged: the cycle finishes
      and the loop exits without rescheduling. This also makes it safe
      for a cycle to stop its own task.

A stopped task stays in the draining map until it has finished. Starting
the same id again before that chains the new task behind the old one, so
two cycles for one position never run at the same time.
"""
import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

from trailguard.monitoring.logger import get_logger, position_context

logger = get_logger(__name__)

Cycle = Callable[[str], Awaitable[None]]


@dataclass
class TrackingHandle:
    """Live bookkeeping for one tracked position."""
    position_id: str
    task: Optional[asyncio.Task] = None
    in_cycle: bool = False
    stopped: bool = False
    cycles_run: int = 0
    ticks_skipped: int = 0


class TrackingScheduler:
    """At most one recurring sampling task per position id."""

    def __init__(self, interval_seconds: float = 120.0):
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive: {interval_seconds}")
        self.interval = interval_seconds
        self._handles: Dict[str, TrackingHandle] = {}
        # Stopped, but the task has not finished yet
        self._draining: Dict[str, TrackingHandle] = {}

    def start(self, position_id: str, cycle: Cycle) -> bool:
        """
        Begin tracking. Idempotent: returns False if a task already exists
        for this id, so sampling can never be double-scheduled.
        """
        if position_id in self._handles:
            return False

        previous = self._draining.get(position_id)
        predecessor = previous.task if previous is not None else None

        handle = TrackingHandle(position_id=position_id)
        self._handles[position_id] = handle
        handle.task = asyncio.create_task(self._run(handle, cycle, predecessor), name=f"track:{position_id}")
        handle.task.add_done_callback(lambda _task, h=handle: self._forget(h))
        logger.info(
            "Tracking started",
            position_id=position_id,
            interval_seconds=self.interval,
            waits_for_previous=predecessor is not None,
        )
        return True

    def stop(self, position_id: str) -> bool:
        """Stop tracking. Returns False (no-op) for an id that is not running."""
        handle = self._handles.pop(position_id, None)
        if handle is None:
            return False

        handle.stopped = True
        if handle.task is not None and not handle.task.done():
            self._draining[position_id] = handle
            if not handle.in_cycle and handle.task is not asyncio.current_task():
                handle.task.cancel()
        logger.info("Tracking stopped", position_id=position_id, in_flight=handle.in_cycle)
        return True

    def is_tracking(self, position_id: str) -> bool:
        return position_id in self._handles

    def tracked_ids(self) -> List[str]:
        return list(self._handles)

    def handle(self, position_id: str) -> Optional[TrackingHandle]:
        return self._handles.get(position_id)

    async def stop_all(self) -> None:
        """Cancel every task, in-flight cycles included. Used on shutdown."""
        handles = list(self._handles.values()) + list(self._draining.values())
        self._handles.clear()
        self._draining.clear()
        tasks = []
        for handle in handles:
            handle.stopped = True
            if handle.task is not None and not handle.task.done():
                handle.task.cancel()
                tasks.append(handle.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("All tracking stopped", count=len(handles))

    def _forget(self, handle: TrackingHandle) -> None:
        for registry in (self._handles, self._draining):
            if registry.get(handle.position_id) is handle:
                del registry[handle.position_id]

    async def _run(self, handle: TrackingHandle, cycle: Cycle, predecessor: Optional[asyncio.Task] = None) -> None:
        if predecessor is not None and not predecessor.done():
            # Let the stopped task finish its in-flight cycle first
            await asyncio.wait({predecessor})

        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while not handle.stopped:
            handle.in_cycle = True
            try:
                with position_context(handle.position_id):
                    await cycle(handle.position_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # One position's failure never affects another's task
                logger.error(
                    "Tracking cycle failed",
                    position_id=handle.position_id,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
            finally:
                handle.in_cycle = False
                handle.cycles_run += 1

            if handle.stopped:
                break

            next_tick += self.interval
            now = loop.time()
            if now > next_tick:
                missed = int((now - next_tick) // self.interval) + 1
                handle.ticks_skipped += missed
                next_tick += missed * self.interval
                logger.warning(
                    "Tracking cycle overran interval",
                    position_id=handle.position_id,
                    ticks_skipped=missed,
                )
            await asyncio.sleep(max(0.0, next_tick - now))
