"""
Exit rule evaluation.

Given a fresh price sample, update the position's peak and decide
whether an automated close should be requested. Triggers are checked
in a fixed priority order and the first match wins:

    1. stop-loss: profit from entry <= -stoploss_percent
    2. trailing:  drawdown from peak <= -trailing_trigger_percent

Stop-loss comes first because it bounds absolute capital loss; trailing
only protects unrealized gains.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from trailguard.domain.models import CloseReason, Position

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class ExitRules:
    """Thresholds, as positive percentages."""
    stoploss_percent: Decimal = Decimal("20")
    trailing_trigger_percent: Decimal = Decimal("20")

    @classmethod
    def from_config(cls, tracker_config) -> "ExitRules":
        return cls(
            stoploss_percent=tracker_config.stoploss_pct,
            trailing_trigger_percent=tracker_config.trailing_pct,
        )


@dataclass(frozen=True)
class Evaluation:
    """Result of one price sample against one position."""
    price: Decimal
    peak_price: Optional[Decimal]
    profit_pct: Optional[Decimal]
    drawdown_pct: Optional[Decimal]
    trigger: Optional[CloseReason] = None


def profit_pct(entry_price: Optional[Decimal], price: Decimal) -> Optional[Decimal]:
    """Percent change from entry; None when the entry is unknown."""
    if entry_price is None or entry_price <= 0:
        return None
    return (price - entry_price) / entry_price * HUNDRED


def drawdown_pct(peak_price: Optional[Decimal], price: Decimal) -> Optional[Decimal]:
    """Percent below the peak (<= 0 whenever peak >= price)."""
    if peak_price is None or peak_price <= 0:
        return None
    return (price - peak_price) / peak_price * HUNDRED


def select_trigger(
    profit: Optional[Decimal],
    drawdown: Optional[Decimal],
    rules: ExitRules,
) -> Optional[CloseReason]:
    if profit is not None and profit <= -rules.stoploss_percent:
        return CloseReason.STOPLOSS
    if drawdown is not None and drawdown <= -rules.trailing_trigger_percent:
        return CloseReason.TRAILING
    return None


def evaluate_sample(
    position: Position,
    price: Decimal,
    rules: ExitRules,
    check_triggers: bool = True,
    now: Optional[datetime] = None,
) -> Evaluation:
    """
    Apply a price sample to the position and evaluate the exit rules.

    Mutates the position's peak and last-sample fields. Never changes
    its state; the caller owns the transition.
    """
    position.record_price(price, at=now)

    profit = profit_pct(position.entry_price, price)
    drawdown = drawdown_pct(position.peak_price, price)
    trigger = select_trigger(profit, drawdown, rules) if check_triggers else None

    return Evaluation(
        price=price,
        peak_price=position.peak_price,
        profit_pct=profit,
        drawdown_pct=drawdown,
        trigger=trigger,
    )
