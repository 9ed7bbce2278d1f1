"""
SQL-backed PositionStore.

One row per position, keyed by position_id. Every write replaces the
whole row (session.merge); there is no partial-field update path, so a
record on disk always matches exactly one in-memory snapshot.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import Column, DateTime, Index, String
from sqlalchemy.exc import SQLAlchemyError

from trailguard.domain.models import CloseReason, Position, PositionState
from trailguard.exceptions import PositionNotFoundError, StoreError
from trailguard.monitoring.logger import get_logger
from trailguard.storage.db import Base, Database

logger = get_logger(__name__)


class PositionModel(Base):
    """ORM model for tracked positions."""
    __tablename__ = "positions"

    position_id = Column(String, primary_key=True)
    owner = Column(String, nullable=False)
    wallet_ref = Column(String, nullable=False)
    token_ref = Column(String, nullable=False)
    # Decimals stored as text to keep raw token quantities exact
    quantity = Column(String, nullable=False)
    entry_price = Column(String, nullable=True)
    peak_price = Column(String, nullable=True)
    state = Column(String, nullable=False)
    opened_at = Column(DateTime(timezone=True), nullable=False)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    close_reason = Column(String, nullable=True)
    close_ref = Column(String, nullable=True)
    last_price = Column(String, nullable=True)
    last_checked_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_positions_state", "state"),
        Index("idx_positions_wallet", "wallet_ref"),
    )


def _dec_str(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _str_dec(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def to_model(position: Position) -> PositionModel:
    return PositionModel(
        position_id=position.position_id,
        owner=position.owner,
        wallet_ref=position.wallet_ref,
        token_ref=position.token_ref,
        quantity=str(position.quantity),
        entry_price=_dec_str(position.entry_price),
        peak_price=_dec_str(position.peak_price),
        state=position.state.value,
        opened_at=position.opened_at,
        closed_at=position.closed_at,
        close_reason=position.close_reason.value if position.close_reason else None,
        close_ref=position.close_ref,
        last_price=_dec_str(position.last_price),
        last_checked_at=position.last_checked_at,
        updated_at=datetime.now(timezone.utc),
    )


def from_model(row: PositionModel) -> Position:
    return Position(
        position_id=row.position_id,
        owner=row.owner,
        wallet_ref=row.wallet_ref,
        token_ref=row.token_ref,
        quantity=Decimal(row.quantity),
        entry_price=_str_dec(row.entry_price),
        peak_price=_str_dec(row.peak_price),
        state=PositionState(row.state),
        opened_at=_utc(row.opened_at),
        closed_at=_utc(row.closed_at),
        close_reason=CloseReason(row.close_reason) if row.close_reason else None,
        close_ref=row.close_ref,
        last_price=_str_dec(row.last_price),
        last_checked_at=_utc(row.last_checked_at),
    )


class SqlPositionStore:
    """PositionStore on top of a SQLAlchemy Database."""

    def __init__(self, db: Database):
        self.db = db

    def load(self, position_id: str) -> Position:
        try:
            with self.db.get_session() as session:
                row = session.get(PositionModel, position_id)
                if row is None:
                    raise PositionNotFoundError(f"Unknown position: {position_id}")
                return from_model(row)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to load position {position_id}: {e}") from e

    def save(self, position: Position) -> None:
        self.save_all([position])

    def save_all(self, positions: Iterable[Position]) -> None:
        positions = list(positions)
        try:
            with self.db.get_session() as session:
                for position in positions:
                    session.merge(to_model(position))
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to save {len(positions)} position(s): {e}") from e
        logger.debug("Positions saved", position_ids=[p.position_id for p in positions])

    def _query(self, state: Optional[PositionState] = None) -> List[Position]:
        try:
            with self.db.get_session() as session:
                query = session.query(PositionModel)
                if state is not None:
                    query = query.filter(PositionModel.state == state.value)
                rows = query.order_by(PositionModel.opened_at).all()
                return [from_model(row) for row in rows]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to query positions: {e}") from e

    def load_open(self) -> List[Position]:
        """Positions that still need tracking (OPEN or an interrupted CLOSING)."""
        return [p for p in self._query() if not p.is_closed]

    def load_all(self) -> List[Position]:
        return self._query()
