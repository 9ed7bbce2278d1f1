"""
In-memory stand-ins for the tracker's collaborators, plus small test helpers.
"""
import asyncio
from collections import deque
from decimal import Decimal
from typing import Iterable, List, Optional

from trailguard.domain.models import CloseResult, Position


class FakePriceSource:
    """Returns queued prices in order; repeats the last one when exhausted."""

    def __init__(self, prices: Iterable[Optional[str]] = ()):
        self._prices = deque(Decimal(p) if p is not None else None for p in prices)
        self._last: Optional[Decimal] = None
        self.calls: List[str] = []
        self.gate: Optional[asyncio.Event] = None

    def push(self, *prices: Optional[str]) -> None:
        for p in prices:
            self._prices.append(Decimal(p) if p is not None else None)

    async def get_price(self, token_ref: str) -> Optional[Decimal]:
        self.calls.append(token_ref)
        if self.gate is not None:
            await self.gate.wait()
        if self._prices:
            self._last = self._prices.popleft()
        return self._last


class FakeExecution:
    """Records close requests; answers with queued results (default: success)."""

    def __init__(self, results: Iterable[CloseResult] = ()):
        self._results = deque(results)
        self.calls: List[dict] = []
        self.gate: Optional[asyncio.Event] = None
        self.started = asyncio.Event()

    async def request_close(self, owner, wallet_ref, token_ref, quantity) -> CloseResult:
        self.calls.append({"owner": owner, "wallet_ref": wallet_ref, "token_ref": token_ref, "quantity": quantity})
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self._results:
            return self._results.popleft()
        return CloseResult(success=True, settlement_ref=f"tx{len(self.calls)}", message="ok")


class RecordingNotifier:
    """Keeps every message; can be told to blow up."""

    def __init__(self, fail: bool = False):
        self.sent: List[tuple] = []
        self.fail = fail

    async def send(self, owner, text, actions=None) -> None:
        if self.fail:
            raise RuntimeError("telegram down")
        self.sent.append((owner, text, actions))

    def texts(self, owner: Optional[str] = None) -> List[str]:
        return [text for o, text, _ in self.sent if owner is None or o == owner]


def make_position(
    position_id: str = "pos-1",
    owner: str = "1001",
    wallet_ref: str = "WalletA",
    token_ref: str = "MintA",
    quantity: str = "1000000",
    entry_price: Optional[str] = "100",
    **kwargs,
) -> Position:
    return Position(
        position_id=position_id,
        owner=owner,
        wallet_ref=wallet_ref,
        token_ref=token_ref,
        quantity=Decimal(quantity),
        entry_price=Decimal(entry_price) if entry_price is not None else None,
        **kwargs,
    )


async def wait_until(condition, timeout: float = 2.0, interval: float = 0.005) -> None:
    """Poll condition() until true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(interval)
