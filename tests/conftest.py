from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import pytest

from signal_desk import (
    Confidence,
    DeskSettings,
    PaperOrderManager,
    PerSymbolDecisionPipeline,
    Position,
    Side,
    Signal,
    StrategyKind,
)


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingOrderManager(PaperOrderManager):
    """Paper manager that logs every call and can be told to fail."""

    def __init__(self, clock: FakeClock) -> None:
        super().__init__(clock=clock)
        self.calls: List[Tuple[str, str]] = []
        self.fail_open: Optional[Exception] = None
        self.fail_close: Optional[Exception] = None
        self.fail_pnl: Optional[Exception] = None

    def seed(self, symbol: str, side: Side, filled_at: float, pnl: float = 0.0) -> None:
        self._positions[symbol] = Position(symbol=symbol, side=side, filled_at=filled_at, pnl=pnl)

    async def open_momentum_signal(self, signal: Signal) -> None:
        self.calls.append(("open_momentum", signal.symbol))
        if self.fail_open:
            raise self.fail_open
        await super().open_momentum_signal(signal)

    async def open_order_book_signal(self, signal: Signal) -> None:
        self.calls.append(("open_order_book", signal.symbol))
        if self.fail_open:
            raise self.fail_open
        await super().open_order_book_signal(signal)

    async def open_scalp_signal(self, signal: Signal) -> None:
        self.calls.append(("open_scalp", signal.symbol))
        if self.fail_open:
            raise self.fail_open
        await super().open_scalp_signal(signal)

    async def close_position(self, symbol: str, pnl: float) -> None:
        self.calls.append(("close", symbol))
        if self.fail_close:
            raise self.fail_close
        await super().close_position(symbol, pnl)

    async def query_net_pnl(self, symbol: str) -> float:
        if self.fail_pnl:
            raise self.fail_pnl
        return await super().query_net_pnl(symbol)


class RecordingNarrator:
    def __init__(self) -> None:
        self.lines: List[Tuple[str, str]] = []
        self.errors: List[str] = []

    def update_status_narrative(self, symbol: str, text: str) -> None:
        self.lines.append((symbol, text))

    def report_error(self, message: str) -> None:
        self.errors.append(message)

    def texts(self, symbol: str) -> List[str]:
        return [text for sym, text in self.lines if sym == symbol]


class RecordingPortfolio:
    def __init__(self) -> None:
        self.events: List[Tuple[Any, ...]] = []

    def remove_from_portfolio(self, symbol: str) -> None:
        self.events.append(("remove", symbol))

    def update_portfolio_entry(self, symbol: str, side: Side, confidence: Confidence) -> None:
        self.events.append(("update", symbol, side, confidence))


def make_signal(
    side: Side = Side.LONG,
    confidence: Confidence = Confidence.HIGH,
    strategy: StrategyKind = StrategyKind.ORDER_BOOK,
    symbol: str = "BTCUSDT",
    **kwargs: Any,
) -> Signal:
    return Signal(symbol=symbol, side=side, confidence=confidence, strategy=strategy, **kwargs)


def payload(symbol: str, side: str, confidence: str, **extra: Any) -> Dict[str, Any]:
    data: Dict[str, Any] = {"symbol": symbol, "side": side, "confidence": confidence}
    data.update(extra)
    return data


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def orders(clock: FakeClock) -> RecordingOrderManager:
    return RecordingOrderManager(clock)


@pytest.fixture
def narrator() -> RecordingNarrator:
    return RecordingNarrator()


@pytest.fixture
def portfolio() -> RecordingPortfolio:
    return RecordingPortfolio()


@pytest.fixture
def make_pipeline(clock, orders, narrator, portfolio):
    def _make(**settings: Any) -> PerSymbolDecisionPipeline:
        return PerSymbolDecisionPipeline(
            orders,
            DeskSettings(**settings),
            narrator=narrator,
            portfolio=portfolio,
            clock=clock,
        )

    return _make
