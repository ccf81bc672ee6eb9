"""Stay-in-until-reversal policy for order-book signals."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .gates import GraceTracker
from .models import Action, Confidence, Position, Signal, Side


@dataclass(frozen=True)
class ReversalVerdict:
    action: Action
    reason: str
    note: str


class ReversalEvaluator:
    """Decides whether an opposing order-book signal flips the position.

    NEUTRAL and same-direction signals always hold. An opposing signal is
    first gated by the reversal grace window, then by spoofing (HIGH only)
    and finally by confidence (HIGH or MEDIUM).
    """

    def __init__(self, grace: GraceTracker) -> None:
        self._grace = grace

    def evaluate(
        self,
        position: Position,
        signal: Signal,
        now: float,
        grace_position: Optional[Position] = None,
    ) -> ReversalVerdict:
        # Grace is measured against the fill of whatever is open right now.
        fill_reference = grace_position or position

        if signal.side is Side.NEUTRAL:
            return ReversalVerdict(
                Action.HOLD,
                "neutral_hold",
                "NEUTRAL signal - staying in position",
            )
        if not signal.side.opposes(position.side):
            return ReversalVerdict(
                Action.HOLD,
                "same_direction",
                f"Confirming {signal.side.value} position - staying in",
            )

        if self._grace.in_reversal_grace(fill_reference, now):
            age = self._grace.age_of(fill_reference, now) or 0.0
            return ReversalVerdict(
                Action.HOLD,
                "reversal_grace",
                f"Position is only {age:.0f}s old - grace period "
                f"({self._grace.reversal_grace_seconds:.0f}s) - skipping reversal",
            )

        if signal.is_spoofing:
            if signal.confidence is Confidence.HIGH:
                return ReversalVerdict(
                    Action.REVERSE,
                    "spoof_high_confidence",
                    "HIGH confidence reversal during spoofing - reversing position",
                )
            return ReversalVerdict(
                Action.HOLD,
                "spoof_blocked",
                f"Reversal signal blocked by spoofing ({signal.recent_spoofs} "
                f"recent spoofs) at {signal.confidence.value} confidence - holding",
            )

        if signal.confidence in (Confidence.HIGH, Confidence.MEDIUM):
            return ReversalVerdict(
                Action.REVERSE,
                "confirmed_reversal",
                f"{signal.confidence.value.upper()} confidence reversal - "
                "reversing position",
            )
        return ReversalVerdict(
            Action.HOLD,
            "low_confidence",
            "Reversal signal but low confidence - holding position",
        )
