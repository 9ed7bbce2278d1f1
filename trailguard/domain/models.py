"""
Domain models for trailguard.

These are the core business objects used throughout the application.
All timestamps use UTC timezone-aware datetimes; prices and quantities
are Decimals.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from trailguard.exceptions import InvalidTransition, InvariantViolation


class PositionState(str, Enum):
    """
    Position lifecycle states.

    State Machine:
        OPEN → CLOSING (risk trigger or manual close, request outstanding)
        CLOSING → OPEN (close request failed)
        CLOSING → CLOSED (close request succeeded)
        OPEN → CLOSED (administrative cancel)

    Terminal States: CLOSED
    """
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class CloseReason(str, Enum):
    """Reason a position left the OPEN state."""
    STOPLOSS = "stoploss"
    TRAILING = "trailing"
    MANUAL = "manual"
    EXTERNAL_CANCEL = "external_cancel"


_ALLOWED_TRANSITIONS = {
    PositionState.OPEN: {PositionState.CLOSING, PositionState.CLOSED},
    PositionState.CLOSING: {PositionState.OPEN, PositionState.CLOSED},
    PositionState.CLOSED: set(),
}

# Fixed at creation
_IMMUTABLE_FIELDS = frozenset({"position_id", "token_ref", "quantity"})
# Write-once
_WRITE_ONCE_FIELDS = frozenset({"closed_at", "close_reason"})


def new_position_id(token_ref: str) -> str:
    """Generate a unique position id."""
    return f"pos_{token_ref[:8]}_{uuid.uuid4().hex[:12]}"


def _dec(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(str(value))


def _dt(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass
class Position:
    """
    A tracked holding of a token funded from a wallet, from open to close.

    The record is plain data: no task handles or locks live here, so it
    can be persisted and reloaded as-is.
    """
    position_id: str
    owner: str
    wallet_ref: str
    token_ref: str
    quantity: Decimal
    entry_price: Optional[Decimal] = None
    peak_price: Optional[Decimal] = None

    state: PositionState = PositionState.OPEN
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    closed_at: Optional[datetime] = None
    close_reason: Optional[CloseReason] = None
    close_ref: Optional[str] = None

    last_price: Optional[Decimal] = None
    last_checked_at: Optional[datetime] = None

    def __post_init__(self):
        if self.quantity < 0:
            raise InvariantViolation(f"Quantity must not be negative: {self.quantity}")
        # Entry counts as the first price sample
        if self.peak_price is None and self.entry_price is not None:
            self.peak_price = self.entry_price

    def __setattr__(self, name, value):
        current = self.__dict__.get(name)
        if name in self.__dict__:
            if name in _IMMUTABLE_FIELDS and value != current:
                raise InvariantViolation(f"{name} is immutable (position {self.position_id})")
            if name in _WRITE_ONCE_FIELDS and current is not None and value != current:
                raise InvariantViolation(f"{name} already set (position {self.position_id})")
        super().__setattr__(name, value)

    # ---------- state ----------

    @property
    def is_open(self) -> bool:
        return self.state == PositionState.OPEN

    @property
    def is_closed(self) -> bool:
        return self.state == PositionState.CLOSED

    def _transition(self, new_state: PositionState) -> None:
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"Position {self.position_id}: {self.state.value} -> {new_state.value} not allowed"
            )
        self.state = new_state

    def begin_close(self) -> None:
        """OPEN → CLOSING. Marks a close request as outstanding."""
        if self.state != PositionState.OPEN:
            raise InvalidTransition(
                f"Position {self.position_id}: cannot begin close from {self.state.value}"
            )
        self._transition(PositionState.CLOSING)

    def abort_close(self) -> None:
        """CLOSING → OPEN after a failed close request."""
        if self.state != PositionState.CLOSING:
            raise InvalidTransition(
                f"Position {self.position_id}: cannot abort close from {self.state.value}"
            )
        self._transition(PositionState.OPEN)

    def mark_closed(
        self,
        reason: CloseReason,
        close_ref: Optional[str] = None,
        closed_at: Optional[datetime] = None,
    ) -> None:
        """Terminal transition. Happens at most once."""
        self._transition(PositionState.CLOSED)
        self.closed_at = closed_at or datetime.now(timezone.utc)
        self.close_reason = reason
        self.close_ref = close_ref

    # ---------- prices ----------

    def record_price(self, price: Decimal, at: Optional[datetime] = None) -> None:
        """Store a fresh sample and raise the peak if needed."""
        self.last_price = price
        self.last_checked_at = at or datetime.now(timezone.utc)
        if self.peak_price is None or price > self.peak_price:
            self.peak_price = price

    def hold_minutes(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        return round((now - self.opened_at).total_seconds() / 60)

    # ---------- serialisation ----------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position_id": self.position_id,
            "owner": self.owner,
            "wallet_ref": self.wallet_ref,
            "token_ref": self.token_ref,
            "quantity": str(self.quantity),
            "entry_price": str(self.entry_price) if self.entry_price is not None else None,
            "peak_price": str(self.peak_price) if self.peak_price is not None else None,
            "state": self.state.value,
            "opened_at": self.opened_at.isoformat(),
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "close_reason": self.close_reason.value if self.close_reason else None,
            "close_ref": self.close_ref,
            "last_price": str(self.last_price) if self.last_price is not None else None,
            "last_checked_at": self.last_checked_at.isoformat() if self.last_checked_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Position":
        return cls(
            position_id=data["position_id"],
            owner=str(data["owner"]),
            wallet_ref=data["wallet_ref"],
            token_ref=data["token_ref"],
            quantity=_dec(data["quantity"]),
            entry_price=_dec(data.get("entry_price")),
            peak_price=_dec(data.get("peak_price")),
            state=PositionState(data.get("state", PositionState.OPEN.value)),
            opened_at=_dt(data.get("opened_at")) or datetime.now(timezone.utc),
            closed_at=_dt(data.get("closed_at")),
            close_reason=CloseReason(data["close_reason"]) if data.get("close_reason") else None,
            close_ref=data.get("close_ref"),
            last_price=_dec(data.get("last_price")),
            last_checked_at=_dt(data.get("last_checked_at")),
        )


@dataclass(frozen=True)
class CloseResult:
    """Outcome of a close (sell) request to the execution service."""
    success: bool
    settlement_ref: Optional[str] = None
    message: str = ""
