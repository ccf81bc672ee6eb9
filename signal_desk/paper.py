"""In-memory order manager that simulates fills for dry runs."""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Callable, Dict, List, Mapping, Tuple

from .models import Position, Side, Signal
from .order_manager import OrderManager, OrderManagerStatus


class PaperOrderManager(OrderManager):
    """Fills every open request immediately at the signal's side.

    Holds at most one position per symbol. PnL is whatever was last set
    through :meth:`mark_pnl`; closed trades are kept in :attr:`closed`.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        self._clock = clock
        self._positions: Dict[str, Position] = {}
        self._closed: List[Tuple[Position, float]] = []
        self._log = logger or logging.getLogger(__name__)

    @property
    def active_positions(self) -> Mapping[str, Position]:
        return dict(self._positions)

    @property
    def closed(self) -> Tuple[Tuple[Position, float], ...]:
        return tuple(self._closed)

    def get_status(self) -> OrderManagerStatus:
        return OrderManagerStatus(active_positions=tuple(self._positions.values()))

    def mark_pnl(self, symbol: str, pnl: float) -> None:
        position = self._positions.get(symbol)
        if position is None:
            raise KeyError(f"No open position for {symbol}")
        self._positions[symbol] = replace(position, pnl=float(pnl))

    def total_pnl(self) -> float:
        return sum(position.pnl for position in self._positions.values())

    async def open_momentum_signal(self, signal: Signal) -> None:
        self._fill(signal)

    async def open_order_book_signal(self, signal: Signal) -> None:
        self._fill(signal)

    async def open_scalp_signal(self, signal: Signal) -> None:
        self._fill(signal)

    async def close_position(self, symbol: str, pnl: float) -> None:
        position = self._positions.pop(symbol, None)
        if position is None:
            raise RuntimeError(f"No open position for {symbol}")
        self._closed.append((position, pnl))
        self._log.info(
            "Paper close %s %s pnl=%.2f", position.side.value, symbol, pnl
        )

    async def query_net_pnl(self, symbol: str) -> float:
        position = self._positions.get(symbol)
        if position is None:
            raise RuntimeError(f"No open position for {symbol}")
        return position.pnl

    async def query_total_pnl(self) -> float:
        return self.total_pnl()

    def _fill(self, signal: Signal) -> None:
        if signal.side is Side.NEUTRAL:
            raise ValueError("Cannot open a NEUTRAL position")
        if signal.symbol in self._positions:
            raise RuntimeError(f"Position already open for {signal.symbol}")
        self._positions[signal.symbol] = Position(
            symbol=signal.symbol, side=signal.side, filled_at=self._clock()
        )
        self._log.info(
            "Paper fill %s %s (%s)",
            signal.side.value,
            signal.symbol,
            signal.strategy.value,
        )
