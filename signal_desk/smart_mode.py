"""Smart Mode: early exit on weakening signal evidence and PnL.

The evaluator is a pure function of the symbol's history, the incoming
signal, the current PnL and the clock value it is handed. It never writes to
the history; consecutive counters are recomputed from the window on every
call.

Rules are checked in priority order and the first match wins:

1. strong reversal           - opposite HIGH signal
2. profit protection         - in profit and any opposite signal
3. confidence decay          - held a while and confidence fell two tiers
4. persistent low confidence - a run of LOW signals
5. persistent reversal       - a run of opposite signals
6. profit erosion            - peak profit given back on a LOW signal
7. stale losing position     - old, LOW and losing
8. confidence downtrend      - strictly falling scores while losing

In auto mode only rules 1 and 2 apply, so portfolio positions are closed on
flips alone.
"""

from __future__ import annotations

import logging
from typing import Callable, Sequence

from .history import SignalHistory, SignalRecord
from .models import Confidence, ExitDecision, Position, Side, SmartExitConfig


class SmartExitEvaluator:
    """Decides whether an open position should be closed early."""

    def __init__(
        self,
        config: SmartExitConfig | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config or SmartExitConfig()
        self._log = logger or logging.getLogger(__name__)

    @property
    def config(self) -> SmartExitConfig:
        return self._config

    def evaluate(
        self,
        history: SignalHistory,
        symbol: str,
        position: Position,
        side: Side,
        confidence: Confidence,
        current_pnl: float,
        now: float,
        *,
        is_auto_mode: bool = False,
    ) -> ExitDecision:
        cfg = self._config
        entry = history.entry
        if entry is not None and entry.side is position.side:
            entry_side = entry.side
            entry_confidence = entry.confidence
            opened_at = entry.opened_at
        else:
            entry_side = position.side
            entry_confidence = None
            opened_at = position.filled_at

        window = history.window(cfg.history_window)
        time_in_position = max(0.0, now - opened_at)
        current_score = confidence.score
        entry_score = entry_confidence.score if entry_confidence else None
        opposite = side.opposes(entry_side)

        self._log.debug(
            "%s | entry %s (%s) | current %s (%s) | pnl %.2f | age %.0fs",
            symbol,
            entry_side.value,
            entry_confidence.value if entry_confidence else "unknown",
            side.value,
            confidence.value,
            current_pnl,
            time_in_position,
        )

        if opposite and confidence is Confidence.HIGH:
            return ExitDecision(
                should_exit=True,
                reason="strong_reversal",
                statement=(
                    f"High confidence {side.value} signal detected - "
                    f"closing {entry_side.value} position"
                ),
                details={
                    "entry_score": entry_score,
                    "current_score": current_score,
                    "time_in_position": time_in_position,
                },
            )

        if opposite and current_pnl > cfg.profit_protection_pnl:
            return ExitDecision(
                should_exit=True,
                reason="profit_protection_reversal",
                statement=(
                    f"Locking in ${current_pnl:.2f} profit - reversal signal detected"
                ),
                details={
                    "entry_score": entry_score,
                    "current_score": current_score,
                    "time_in_position": time_in_position,
                    "pnl": current_pnl,
                },
            )

        if is_auto_mode:
            return ExitDecision.hold()

        if (
            entry_score is not None
            and time_in_position > cfg.decay_min_age_seconds
            and entry_score - current_score >= cfg.decay_min_drop
        ):
            return ExitDecision(
                should_exit=True,
                reason="confidence_decay",
                statement=(
                    f"Confidence decayed from {entry_confidence.value} to "
                    f"{confidence.value} after {time_in_position / 60:.1f} minutes"
                ),
                details={
                    "entry_score": entry_score,
                    "current_score": current_score,
                    "time_in_position": time_in_position,
                },
            )

        low_run = _trailing_run(window, lambda r: r.confidence is Confidence.LOW)
        if low_run >= cfg.consecutive_low_limit:
            return ExitDecision(
                should_exit=True,
                reason="persistent_low_confidence",
                statement=(
                    f"{low_run} consecutive low confidence signals - cutting losses"
                ),
                details={
                    "consecutive_low_count": low_run,
                    "time_in_position": time_in_position,
                },
            )

        opposite_run = _trailing_run(window, lambda r: r.side.opposes(entry_side))
        if opposite_run >= cfg.consecutive_opposite_limit:
            return ExitDecision(
                should_exit=True,
                reason="persistent_reversal",
                statement=(
                    f"{opposite_run} consecutive {side.value} signals - trend reversed"
                ),
                details={
                    "consecutive_opposite_count": opposite_run,
                    "time_in_position": time_in_position,
                },
            )

        peak_pnl = max([r.pnl for r in window if r.pnl is not None] + [0.0])
        if (
            peak_pnl > cfg.erosion_peak_pnl
            and current_pnl <= cfg.erosion_floor_pnl
            and confidence is Confidence.LOW
        ):
            return ExitDecision(
                should_exit=True,
                reason="profit_erosion",
                statement=(
                    f"Profit eroded from ${peak_pnl:.2f} to ${current_pnl:.2f} - "
                    "exiting before worse"
                ),
                details={
                    "max_past_pnl": peak_pnl,
                    "current_pnl": current_pnl,
                    "time_in_position": time_in_position,
                },
            )

        if (
            time_in_position > cfg.stale_age_seconds
            and confidence is Confidence.LOW
            and current_pnl < cfg.stale_loss_pnl
        ):
            return ExitDecision(
                should_exit=True,
                reason="stale_losing_position",
                statement=(
                    f"Position stale ({time_in_position / 60:.1f}min) with low "
                    "confidence and negative PNL"
                ),
                details={
                    "time_in_position": time_in_position,
                    "current_pnl": current_pnl,
                    "confidence": confidence.value,
                },
            )

        if len(window) >= cfg.downtrend_length and current_pnl < 0:
            recent = window[-cfg.downtrend_length:]
            scores = [r.confidence.score for r in recent]
            if all(a > b for a, b in zip(scores, scores[1:])):
                return ExitDecision(
                    should_exit=True,
                    reason="confidence_downtrend",
                    statement="Confidence trending down: "
                    + " → ".join(r.confidence.value for r in recent),
                    details={
                        "scores": scores,
                        "current_pnl": current_pnl,
                        "time_in_position": time_in_position,
                    },
                )

        self._log.debug("%s - holding position (no exit conditions met)", symbol)
        return ExitDecision.hold()


def _trailing_run(
    records: Sequence[SignalRecord], predicate: Callable[[SignalRecord], bool]
) -> int:
    count = 0
    for record in reversed(records):
        if not predicate(record):
            break
        count += 1
    return count