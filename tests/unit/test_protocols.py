"""
Concrete collaborators satisfy the protocols the tracker depends on.
"""
import typing

from helpers import FakeExecution, FakePriceSource, RecordingNotifier
from trailguard.data.price_source import JupiterPriceSource
from trailguard.domain.protocols import Action, ExecutionService, Notifier, PositionStore, PriceSource
from trailguard.execution.trade_engine import HttpTradeEngine, UnconfiguredTradeEngine
from trailguard.monitoring import messages
from trailguard.monitoring.alerting import LogNotifier, TelegramNotifier


def test_price_sources():
    assert isinstance(JupiterPriceSource(), PriceSource)
    assert isinstance(FakePriceSource(), PriceSource)


def test_execution_services():
    assert isinstance(HttpTradeEngine("http://signer"), ExecutionService)
    assert isinstance(UnconfiguredTradeEngine(), ExecutionService)
    assert isinstance(FakeExecution(), ExecutionService)


def test_position_store(store):
    assert isinstance(store, PositionStore)
    assert not isinstance(object(), PositionStore)


def test_notifiers():
    assert isinstance(TelegramNotifier("t"), Notifier)
    assert isinstance(LogNotifier(), Notifier)
    assert isinstance(RecordingNotifier(), Notifier)


def test_action_is_label_and_callback_data():
    assert typing.get_args(Action) == (str, str)
    label, data = messages.position_actions("p1")[0][0]
    assert isinstance(label, str) and data == "sell_p1"
