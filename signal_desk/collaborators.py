"""Display and portfolio collaborators the pipeline reports to."""

from __future__ import annotations

import logging
from typing import Dict, Protocol, Set, Tuple

from .models import Confidence, Side


class StatusNarrator(Protocol):
    """Receives human-readable status lines. Fire-and-forget."""

    def update_status_narrative(self, symbol: str, text: str) -> None: ...

    def report_error(self, message: str) -> None: ...


class PortfolioBook(Protocol):
    """Auto Mode portfolio bookkeeping."""

    def remove_from_portfolio(self, symbol: str) -> None: ...

    def update_portfolio_entry(
        self, symbol: str, side: Side, confidence: Confidence
    ) -> None: ...


class LoggingNarrator:
    """Narrator that writes status lines to the log."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._log = logger or logging.getLogger(__name__)

    def update_status_narrative(self, symbol: str, text: str) -> None:
        self._log.info("[%s] %s", symbol, text)

    def report_error(self, message: str) -> None:
        self._log.error(message)


class InMemoryPortfolio:
    """Tracks Auto Mode portfolio entries and symbol subscriptions."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._entries: Dict[str, Tuple[Side, Confidence]] = {}
        self._subscriptions: Set[str] = set()
        self._log = logger or logging.getLogger(__name__)

    @property
    def entries(self) -> Dict[str, Tuple[Side, Confidence]]:
        return dict(self._entries)

    @property
    def subscriptions(self) -> Set[str]:
        return set(self._subscriptions)

    def remove_from_portfolio(self, symbol: str) -> None:
        self._entries.pop(symbol, None)
        self._subscriptions.discard(symbol)
        self._log.info("Removed %s from portfolio", symbol)

    def update_portfolio_entry(
        self, symbol: str, side: Side, confidence: Confidence
    ) -> None:
        self._entries[symbol] = (side, confidence)
        self._subscriptions.add(symbol)
        self._log.info(
            "Portfolio entry %s -> %s (%s)", symbol, side.value, confidence.value
        )
