"""Confidence gating and post-fill grace windows."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .models import Confidence, Position


def is_actionable(confidence: Confidence, trust_low_confidence: bool) -> bool:
    """Return True if a signal of this confidence may open a position."""
    if confidence in (Confidence.HIGH, Confidence.MEDIUM):
        return True
    return confidence is Confidence.LOW and trust_low_confidence


def within_grace(
    position: Optional[Position], now: float, window_seconds: float
) -> bool:
    """Return True if ``position`` was filled less than ``window_seconds`` ago.

    A missing position is never within grace.
    """
    if position is None:
        return False
    return (now - position.filled_at) < window_seconds


@dataclass(frozen=True)
class GraceTracker:
    """The two independent protection windows applied after a fill."""

    entry_grace_seconds: float
    reversal_grace_seconds: float

    def age_of(self, position: Optional[Position], now: float) -> Optional[float]:
        if position is None:
            return None
        return now - position.filled_at

    def in_entry_grace(self, position: Optional[Position], now: float) -> bool:
        return within_grace(position, now, self.entry_grace_seconds)

    def in_reversal_grace(self, position: Optional[Position], now: float) -> bool:
        return within_grace(position, now, self.reversal_grace_seconds)
