"""Per-symbol signal history used by Smart Mode."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

from .models import Confidence, Side


@dataclass(frozen=True)
class SignalRecord:
    """One processed signal as seen by the history."""

    side: Side
    confidence: Confidence
    timestamp: float
    pnl: Optional[float] = None


@dataclass(frozen=True)
class EntryMark:
    """Position the history is currently measured against.

    ``index`` is the history length at the moment the position was adopted;
    records from that index onwards belong to the position. ``confidence`` is
    None when the position was opened outside the desk.
    """

    side: Side
    confidence: Optional[Confidence]
    opened_at: float
    index: int


class SignalHistory:
    """Append-only ordered sequence of processed signals for one symbol."""

    def __init__(self, symbol: str) -> None:
        self.symbol = symbol
        self._records: List[SignalRecord] = []
        self._entry: Optional[EntryMark] = None

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[SignalRecord]:
        return iter(tuple(self._records))

    @property
    def records(self) -> Tuple[SignalRecord, ...]:
        return tuple(self._records)

    @property
    def entry(self) -> Optional[EntryMark]:
        return self._entry

    def append(self, record: SignalRecord) -> None:
        self._records.append(record)

    def mark_entry(
        self,
        side: Side,
        confidence: Optional[Confidence],
        opened_at: float,
        *,
        include_last: bool = True,
    ) -> EntryMark:
        """Anchor the history to a newly opened or adopted position.

        With ``include_last`` the most recent record (the signal that opened
        the position) is counted as part of the position's window.
        """
        index = len(self._records)
        if include_last and index:
            index -= 1
        self._entry = EntryMark(
            side=side, confidence=confidence, opened_at=opened_at, index=index
        )
        return self._entry

    def clear_entry(self) -> None:
        self._entry = None

    def window(self, limit: int) -> Tuple[SignalRecord, ...]:
        """Records since the entry mark, capped at the last ``limit``."""
        start = self._entry.index if self._entry else 0
        since_entry = self._records[start:]
        if limit > 0:
            since_entry = since_entry[-limit:]
        return tuple(since_entry)
