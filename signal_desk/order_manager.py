"""Order manager interface consumed by the decision desk."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Mapping, Optional, Tuple

from .errors import CapabilityMissing
from .models import Position, Signal, StrategyKind


@dataclass(frozen=True)
class OrderManagerStatus:
    """Snapshot returned by :meth:`OrderManager.get_status`."""

    active_positions: Tuple[Position, ...] = ()

    def position_for(self, symbol: str) -> Optional[Position]:
        for position in self.active_positions:
            if position.symbol == symbol:
                return position
        return None


class OrderManager(ABC):
    """Abstract base class for order execution collaborators.

    Implementations own the positions; the desk only reads them and asks for
    opens and closes. The three ``open_*`` methods are optional: a manager
    that does not support a strategy leaves the default, which raises
    :class:`CapabilityMissing`.
    """

    @abstractmethod
    def get_status(self) -> OrderManagerStatus:
        """Return a snapshot of currently open positions."""

    @property
    @abstractmethod
    def active_positions(self) -> Mapping[str, Position]:
        """Open positions keyed by symbol."""

    async def open_momentum_signal(self, signal: Signal) -> None:
        raise CapabilityMissing("open_momentum_signal")

    async def open_order_book_signal(self, signal: Signal) -> None:
        raise CapabilityMissing("open_order_book_signal")

    async def open_scalp_signal(self, signal: Signal) -> None:
        raise CapabilityMissing("open_scalp_signal")

    @abstractmethod
    async def close_position(self, symbol: str, pnl: float) -> None:
        """Close the open position for ``symbol``.

        Args:
            symbol: Trading symbol (e.g., "BTCUSDT")
            pnl: Net PnL at the time of the decision, for bookkeeping

        Raises:
            Exception: If the close is rejected
        """

    @abstractmethod
    async def query_net_pnl(self, symbol: str) -> float:
        """Return net PnL (after fees) of the open position for ``symbol``."""

    async def query_total_pnl(self) -> float:
        """Return the aggregate net PnL across all open positions."""
        total = 0.0
        for symbol in self.active_positions:
            total += float(await self.query_net_pnl(symbol))
        return total

    def opener_for(self, strategy: StrategyKind) -> Callable[[Signal], Awaitable[None]]:
        if strategy is StrategyKind.MOMENTUM:
            return self.open_momentum_signal
        if strategy is StrategyKind.ORDER_BOOK:
            return self.open_order_book_signal
        return self.open_scalp_signal
