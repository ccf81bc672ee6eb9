from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Union

from .collaborators import InMemoryPortfolio, LoggingNarrator, PortfolioBook, StatusNarrator
from .engine import DecisionContext, DecisionEngine
from .errors import CapabilityMissing, ExecutionFailure, PnlQueryFailure
from .history import SignalHistory, SignalRecord
from .models import (
    Action,
    Decision,
    DeskSettings,
    NarrativeEvent,
    NarrativeKind,
    Outcome,
    Position,
    Signal,
    StrategyKind,
)
from .normalizer import NormalizedSignal, SignalNormalizer
from .order_manager import OrderManager


class SymbolContext:
    """Mutable per-symbol state owned by the pipeline."""

    __slots__ = ("symbol", "history", "lock", "loop", "pending")

    def __init__(self, symbol: str) -> None:
        self.symbol = symbol
        self.history = SignalHistory(symbol)
        self.lock = asyncio.Lock()
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.pending = 0

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        """Give an idle context a fresh lock when it moves to another event loop."""
        if self.loop is loop or self.pending:
            return
        if self.loop is not None:
            self.lock = asyncio.Lock()
        self.loop = loop


class PerSymbolDecisionPipeline:
    """Serialises signals per symbol and applies one action per signal.

    Signals for the same symbol are processed strictly in arrival order;
    different symbols proceed independently. Every call to :meth:`handle`
    is a failure boundary: errors are reported to the narrator and never
    propagate to the caller.
    """

    def __init__(
        self,
        order_manager: OrderManager,
        settings: DeskSettings | None = None,
        *,
        narrator: StatusNarrator | None = None,
        portfolio: PortfolioBook | None = None,
        normalizer: SignalNormalizer | None = None,
        engine: DecisionEngine | None = None,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        self._settings = settings or DeskSettings()
        self._orders = order_manager
        self._log = logger or logging.getLogger(__name__)
        self._narrator = narrator or LoggingNarrator(self._log)
        self._portfolio = portfolio or InMemoryPortfolio(self._log)
        self._normalizer = normalizer or SignalNormalizer(self._log)
        self._engine = engine or DecisionEngine(self._settings, logger=self._log)
        self._clock = clock
        self._symbols: Dict[str, SymbolContext] = {}
        self._last_total_pnl: Optional[float] = None

    @property
    def settings(self) -> DeskSettings:
        return self._settings

    @property
    def order_manager(self) -> OrderManager:
        return self._orders

    @property
    def symbols(self) -> Iterable[str]:
        return tuple(self._symbols)

    def history_for(self, symbol: str) -> Optional[SignalHistory]:
        ctx = self._symbols.get(symbol.strip().upper())
        return ctx.history if ctx else None

    @property
    def last_total_pnl(self) -> Optional[float]:
        return self._last_total_pnl

    def observe_pnl(self, total: float) -> None:
        """Record the latest aggregate PnL, used when a per-symbol query fails."""
        self._last_total_pnl = float(total)

    async def refresh_pnl(self) -> Optional[float]:
        """Ask the order manager for its aggregate PnL and remember it.

        A failed query keeps the previous value and returns None.
        """
        try:
            total = float(await self._orders.query_total_pnl())
        except Exception as exc:  # noqa: BLE001 - keep the last known value
            self._log.warning("Aggregate PnL poll failed: %s", exc)
            return None
        self.observe_pnl(total)
        return total

    async def poll_pnl(
        self,
        interval: Optional[float] = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Refresh the aggregate PnL every ``interval`` seconds until cancelled."""
        if interval is None:
            interval = self._settings.pnl_poll_interval_seconds
        if interval <= 0:
            raise ValueError("PnL poll interval must be positive")
        self._log.info("PnL poller started", extra={"interval": interval})
        while True:
            await self.refresh_pnl()
            await sleep(interval)

    async def handle(
        self, strategy: Union[str, StrategyKind], message: Any
    ) -> Optional[Outcome]:
        """Process one inbound message. Returns None when the message was dropped."""
        normalized = self._normalizer.normalize(strategy, message)
        if normalized is None:
            return None

        symbol = normalized.signal.symbol
        ctx = self._symbols.get(symbol)
        if ctx is None:
            ctx = SymbolContext(symbol)
            self._symbols[symbol] = ctx
        ctx.bind(asyncio.get_running_loop())

        if ctx.pending >= self._settings.max_pending_per_symbol:
            self._log.warning(
                "Signal queue full, dropping signal",
                extra={
                    "symbol": symbol,
                    "strategy": normalized.signal.strategy.value,
                    "pending": ctx.pending,
                },
            )
            return None

        ctx.pending += 1
        try:
            async with ctx.lock:
                return await self._process(ctx, normalized)
        finally:
            ctx.pending -= 1

    # ------------------------------------------------------------------ #
    # Per-signal processing
    # ------------------------------------------------------------------ #

    async def _process(
        self, ctx: SymbolContext, normalized: NormalizedSignal
    ) -> Optional[Outcome]:
        signal = normalized.signal
        strategy = signal.strategy.value
        decision: Decision | None = None
        try:
            status = self._orders.get_status()
            position = status.position_for(signal.symbol)
            grace_position = self._orders.active_positions.get(signal.symbol)

            pnl: Optional[float] = None
            if position is not None:
                pnl = await self._net_pnl(signal.symbol)
                self._adopt(ctx, position)

            now = self._clock()
            ctx.history.append(
                SignalRecord(
                    side=signal.side,
                    confidence=signal.confidence,
                    timestamp=now,
                    pnl=pnl,
                )
            )
            self._narrator.update_status_narrative(signal.symbol, normalized.narrative)

            decision = self._engine.decide(
                signal,
                DecisionContext(
                    position=position,
                    pnl=pnl,
                    now=now,
                    history=ctx.history,
                    grace_position=grace_position,
                ),
            )
            self._render(decision.narrative)
            self._log.info(
                "Signal decided",
                extra={
                    "symbol": signal.symbol,
                    "strategy": strategy,
                    "side": signal.side.value,
                    "confidence": signal.confidence.value,
                    "action": decision.action.value,
                    "reason": decision.reason,
                },
            )
            await self._apply(ctx, signal, decision, pnl)
            return Outcome(decision)
        except CapabilityMissing as exc:
            message = f"{strategy} signal dropped for {signal.symbol}: {exc}"
            self._log.warning(message)
            self._narrator.report_error(message)
            return self._failed(decision, message)
        except ExecutionFailure as exc:
            self._log.error("%s", exc, extra={"symbol": signal.symbol, "strategy": strategy})
            self._narrator.report_error(str(exc))
            return self._failed(decision, str(exc))
        except Exception as exc:  # noqa: BLE001 - per-signal failure boundary
            message = f"Failed to handle {strategy} signal for {signal.symbol}: {exc}"
            self._log.exception(message)
            self._narrator.report_error(message)
            return self._failed(decision, message)

    @staticmethod
    def _failed(decision: Decision | None, message: str) -> Optional[Outcome]:
        if decision is None:
            return None
        return Outcome(decision, completed=False, error=message)

    async def _net_pnl(self, symbol: str) -> float:
        try:
            return float(await self._orders.query_net_pnl(symbol))
        except Exception as exc:  # noqa: BLE001 - fall back to the aggregate
            failure = PnlQueryFailure(symbol, exc)
            fallback = self._last_total_pnl if self._last_total_pnl is not None else 0.0
            self._log.warning("%s; using last known PnL %.2f", failure, fallback)
            return fallback

    def _adopt(self, ctx: SymbolContext, position: Position) -> None:
        """Anchor the history to a position the desk did not open itself."""
        entry = ctx.history.entry
        if entry is not None and entry.side is position.side:
            return
        ctx.history.mark_entry(
            position.side, None, position.filled_at, include_last=False
        )
        self._log.info(
            "Adopted existing %s position for %s", position.side.value, position.symbol
        )

    def _render(self, events: Iterable[NarrativeEvent]) -> None:
        for event in events:
            if event.kind is NarrativeKind.NOTE:
                self._log.info("[%s] %s", event.symbol, event.text)
            else:
                self._narrator.update_status_narrative(event.symbol, event.text)

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #

    async def _apply(
        self,
        ctx: SymbolContext,
        signal: Signal,
        decision: Decision,
        pnl: Optional[float],
    ) -> None:
        action = decision.action
        if action is Action.ENTER:
            await self._open(signal)
            ctx.history.mark_entry(signal.side, signal.confidence, self._clock())
            if self._settings.auto_mode:
                self._portfolio.update_portfolio_entry(
                    signal.symbol, signal.side, signal.confidence
                )
        elif action is Action.EXIT:
            await self._close(signal, pnl)
            ctx.history.clear_entry()
            if self._settings.auto_mode:
                self._portfolio.remove_from_portfolio(signal.symbol)
        elif action is Action.REVERSE:
            await self._close(signal, pnl)
            ctx.history.clear_entry()
            if self._settings.auto_mode:
                self._portfolio.remove_from_portfolio(signal.symbol)
            await self._open(signal)
            ctx.history.mark_entry(signal.side, signal.confidence, self._clock())
            if self._settings.auto_mode:
                self._portfolio.update_portfolio_entry(
                    signal.symbol, signal.side, signal.confidence
                )

    async def _open(self, signal: Signal) -> None:
        opener = self._orders.opener_for(signal.strategy)
        try:
            await opener(signal)
        except CapabilityMissing:
            raise
        except Exception as exc:
            raise ExecutionFailure(
                signal.strategy.value, "open", signal.symbol, exc
            ) from exc
        self._log.info(
            "Opened %s %s position for %s",
            signal.side.value,
            signal.strategy.value,
            signal.symbol,
        )

    async def _close(self, signal: Signal, pnl: Optional[float]) -> None:
        try:
            await self._orders.close_position(signal.symbol, pnl if pnl is not None else 0.0)
        except Exception as exc:
            raise ExecutionFailure(
                signal.strategy.value, "close", signal.symbol, exc
            ) from exc
        self._log.info("Closed position for %s", signal.symbol)
