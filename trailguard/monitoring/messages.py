"""
Human-readable texts sent to position owners.

Kept apart from the tracker so that wording changes never touch the
state machine.
"""
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from trailguard.domain.models import CloseReason, CloseResult, Position
from trailguard.domain.protocols import Action

REASON_LABELS = {
    CloseReason.STOPLOSS: "Auto stoploss",
    CloseReason.TRAILING: "Trailing stop",
    CloseReason.MANUAL: "Manual sell",
    CloseReason.EXTERNAL_CANCEL: "Cancelled",
}


def _fmt(value: Optional[Decimal], places: int) -> str:
    if value is None:
        return "?"
    return f"{value:.{places}f}"


def _percent(value: Decimal) -> str:
    # 20.0 -> "20", 12.50 -> "12.5", never exponent form
    return f"{value.normalize():f}"


def position_actions(position_id: str) -> List[List[Action]]:
    """Inline buttons attached to every status message."""
    return [[("🔴 SELL NOW", f"sell_{position_id}"), ("🔵 CANCEL", f"cancel_{position_id}")]]


def status_message(position: Position, evaluation, now: Optional[datetime] = None) -> str:
    return (
        f"💹 {position.token_ref}\n"
        f"📈 {_fmt(evaluation.profit_pct, 1)}% | Hold: {position.hold_minutes(now)}m\n"
        f"🔝 Peak: {_fmt(evaluation.peak_price, 6)} | Drawdown: {_fmt(evaluation.drawdown_pct, 1)}%\n"
        f"Qty(raw): {position.quantity}"
    )


def price_unavailable_message(position: Position) -> str:
    return f"⚠️ Failed to fetch price for {position.token_ref}"


def trigger_message(position: Position, reason: CloseReason, threshold: Decimal) -> str:
    if reason == CloseReason.STOPLOSS:
        detail = f"Auto stoploss ({_percent(threshold)}%)"
    elif reason == CloseReason.TRAILING:
        detail = f"Trailing stop ({_percent(threshold)}% from peak)"
    else:
        detail = REASON_LABELS[reason]
    return f"🔴 {detail} triggered for {position.token_ref}. Attempting auto-sell..."


def close_success_message(position: Position, reason: CloseReason, result: CloseResult) -> str:
    return f"✅ {REASON_LABELS[reason]} complete for {position.token_ref}. Tx: {result.settlement_ref or result.message}"


def close_failure_message(position: Position, reason: CloseReason, result: CloseResult) -> str:
    return (
        f"❌ {REASON_LABELS[reason]} failed for {position.token_ref}: {result.message}\n"
        f"Still tracking, will retry on the next check."
    )


def cancelled_message(position: Position) -> str:
    return f"🔵 Tracking cancelled for {position.token_ref}. No sell was sent."


def position_line(position: Position) -> str:
    line = f"{position.position_id} | {position.token_ref} | {position.state.value}"
    if position.close_reason:
        line += f" ({position.close_reason.value})"
    if position.entry_price is not None:
        line += f" | entry {position.entry_price}"
    if position.last_price is not None:
        line += f" | last {position.last_price}"
    return line


def positions_summary(positions: Iterable[Position]) -> str:
    lines = [position_line(p) for p in positions]
    if not lines:
        return "No tracked positions."
    return "📊 Positions\n" + "\n".join(lines)


def admin_report(positions: Iterable[Position]) -> str:
    positions = list(positions)
    owners = {p.owner for p in positions}
    open_count = sum(1 for p in positions if not p.is_closed)
    return f"Users: {len(owners)}, Trades open: {open_count}, Trades total: {len(positions)}"
