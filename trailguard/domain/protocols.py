"""
Domain protocols (interfaces) for dependency inversion.

The tracker depends only on these contracts; concrete implementations
live in data/, execution/, storage/ and monitoring/. Tests replace them
with in-memory fakes.
"""
from decimal import Decimal
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from trailguard.domain.models import CloseResult, Position

# One inline button: (label, callback_data)
Action = Tuple[str, str]
ActionRows = Sequence[Sequence[Action]]


@runtime_checkable
class PriceSource(Protocol):
    """
    USD price lookup for a token.

    Returns None on any failure (timeout, HTTP error, unknown token).
    A missing price is an expected outcome, not an exception.
    """

    async def get_price(self, token_ref: str) -> Optional[Decimal]: ...


@runtime_checkable
class ExecutionService(Protocol):
    """Accepts a close (sell) request for a position's full quantity."""

    async def request_close(
        self,
        owner: str,
        wallet_ref: str,
        token_ref: str,
        quantity: Decimal,
    ) -> CloseResult: ...


@runtime_checkable
class PositionStore(Protocol):
    """
    Durable record of positions.

    Writes are whole-record replace-by-id; there is no partial patch.
    """

    def load(self, position_id: str) -> Position: ...

    def save(self, position: Position) -> None: ...

    def save_all(self, positions: Iterable[Position]) -> None: ...

    def load_open(self) -> List[Position]: ...

    def load_all(self) -> List[Position]: ...


@runtime_checkable
class Notifier(Protocol):
    """Fire-and-forget delivery of human-readable text to a position owner."""

    async def send(self, owner: str, text: str, actions: Optional[ActionRows] = None) -> None: ...
