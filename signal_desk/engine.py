"""Pure per-signal decision step shared by all strategies."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .gates import GraceTracker, is_actionable
from .history import SignalHistory
from .models import (
    Action,
    Confidence,
    Decision,
    DeskSettings,
    ExitDecision,
    NarrativeEvent,
    NarrativeKind,
    Position,
    Side,
    Signal,
    StrategyKind,
)
from .reversal import ReversalEvaluator
from .smart_mode import SmartExitEvaluator


@dataclass(frozen=True)
class DecisionContext:
    """Everything the engine needs to know about the symbol right now."""

    position: Optional[Position]
    pnl: Optional[float]
    now: float
    history: SignalHistory
    grace_position: Optional[Position] = None


def _drop_neutral(signal: Signal) -> Optional[str]:
    if signal.side is Side.NEUTRAL:
        return "neutral"
    return None


def _momentum_filter(signal: Signal) -> Optional[str]:
    if signal.side is Side.NEUTRAL:
        return "neutral"
    if signal.trend_alignment == "CONFLICTED" and signal.confidence is Confidence.LOW:
        return "trend_conflicted"
    if signal.market_regime == "FLAT":
        return "flat_regime"
    return None


def _no_filter(signal: Signal) -> Optional[str]:
    return None


@dataclass(frozen=True)
class StrategyPolicy:
    """Per-strategy knobs of the shared pipeline.

    ``entry_filter`` returns a reason when the signal must be dropped before
    any position logic runs.
    """

    entry_filter: Callable[[Signal], Optional[str]]
    holds_until_reversal: bool = False
    spoof_guarded_entry: bool = False


POLICIES: Dict[StrategyKind, StrategyPolicy] = {
    StrategyKind.MOMENTUM: StrategyPolicy(entry_filter=_momentum_filter),
    StrategyKind.SCALP: StrategyPolicy(entry_filter=_drop_neutral),
    StrategyKind.ORDER_BOOK: StrategyPolicy(
        entry_filter=_no_filter,
        holds_until_reversal=True,
        spoof_guarded_entry=True,
    ),
}

_DROP_NOTES = {
    "neutral": "NEUTRAL signal, skipping",
    "trend_conflicted": "Trend alignment CONFLICTED, skipping",
    "flat_regime": "FLAT market regime, skipping",
}


class DecisionEngine:
    """Maps a signal and the symbol's state to exactly one action.

    The engine never touches the order manager or the history; the pipeline
    feeds it a :class:`DecisionContext` and applies what comes back.
    """

    def __init__(
        self,
        settings: DeskSettings,
        smart_exit: SmartExitEvaluator | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._settings = settings
        self._grace = GraceTracker(
            entry_grace_seconds=settings.entry_grace_seconds,
            reversal_grace_seconds=settings.reversal_grace_seconds,
        )
        self._smart_exit = smart_exit or SmartExitEvaluator(settings.smart_exit, logger)
        self._reversal = ReversalEvaluator(self._grace)
        self._log = logger or logging.getLogger(__name__)

    @property
    def settings(self) -> DeskSettings:
        return self._settings

    def decide(self, signal: Signal, context: DecisionContext) -> Decision:
        narrative: List[NarrativeEvent] = []
        policy = POLICIES[signal.strategy]

        def finish(
            action: Action,
            reason: str,
            note: str | None = None,
            exit_decision: ExitDecision | None = None,
        ) -> Decision:
            if note:
                narrative.append(
                    NarrativeEvent(signal.symbol, NarrativeKind.NOTE, note)
                )
            return Decision(
                symbol=signal.symbol,
                strategy=signal.strategy,
                action=action,
                reason=reason,
                side=signal.side,
                narrative=tuple(narrative),
                exit_decision=exit_decision,
            )

        drop_reason = policy.entry_filter(signal)
        if drop_reason:
            return finish(Action.IGNORE, drop_reason, _DROP_NOTES[drop_reason])

        position = context.position
        if position is not None:
            exit_decision = self._check_smart_exit(signal, context, narrative)
            if exit_decision is not None and exit_decision.should_exit:
                narrative.append(
                    NarrativeEvent(
                        signal.symbol, NarrativeKind.STATEMENT, exit_decision.statement
                    )
                )
                return finish(
                    Action.EXIT,
                    exit_decision.reason,
                    f"Smart Mode EXIT: {exit_decision.reason} {exit_decision.details}",
                    exit_decision,
                )

            if policy.holds_until_reversal:
                verdict = self._reversal.evaluate(
                    position, signal, context.now, context.grace_position
                )
                return finish(verdict.action, verdict.reason, verdict.note)

            return finish(
                Action.HOLD,
                "existing_position",
                f"Skipping {signal.strategy.value} signal - active "
                f"{position.side.value} position exists",
            )

        if signal.side is Side.NEUTRAL:
            return finish(Action.IGNORE, "neutral", _DROP_NOTES["neutral"])

        if policy.spoof_guarded_entry and signal.is_spoofing:
            if signal.confidence is not Confidence.HIGH:
                return finish(
                    Action.IGNORE,
                    "spoof_blocked",
                    f"BLOCKED: SPOOF ALERT ({signal.recent_spoofs} recent) + "
                    f"{signal.confidence.value} confidence - skipping entry",
                )
            narrative.append(
                NarrativeEvent(
                    signal.symbol,
                    NarrativeKind.NOTE,
                    f"SPOOF ALERT ({signal.recent_spoofs} recent) but HIGH "
                    "confidence - allowing entry",
                )
            )

        if not is_actionable(signal.confidence, self._settings.trust_low_confidence):
            trust = (
                "trust enabled but still skipped"
                if self._settings.trust_low_confidence
                else "trust low confidence disabled"
            )
            return finish(
                Action.IGNORE,
                "low_confidence",
                f"Skipping {signal.strategy.value} signal - low confidence "
                f"({signal.confidence.value}) ({trust})",
            )

        return finish(
            Action.ENTER,
            "entry",
            f"Opening {signal.confidence.value.upper()} confidence "
            f"{signal.side.value} {signal.strategy.value} position",
        )

    def _check_smart_exit(
        self,
        signal: Signal,
        context: DecisionContext,
        narrative: List[NarrativeEvent],
    ) -> Optional[ExitDecision]:
        """Run Smart Mode when its preconditions hold, otherwise return None."""
        settings = self._settings
        if not settings.smart_mode or context.position is None:
            return None

        fill_reference = context.grace_position or context.position
        if self._grace.in_entry_grace(fill_reference, context.now):
            age = self._grace.age_of(fill_reference, context.now) or 0.0
            narrative.append(
                NarrativeEvent(
                    signal.symbol,
                    NarrativeKind.NOTE,
                    f"Position is only {age:.0f}s old - grace period "
                    f"({settings.entry_grace_seconds:.0f}s) - skipping Smart Mode exit",
                )
            )
            return None

        pnl = context.pnl if context.pnl is not None else 0.0
        if pnl < settings.smart_mode_min_pnl:
            narrative.append(
                NarrativeEvent(
                    signal.symbol,
                    NarrativeKind.NOTE,
                    f"Smart Mode DISABLED for this signal: PNL ${pnl:.2f} < "
                    f"min ${settings.smart_mode_min_pnl:.2f}",
                )
            )
            return None

        return self._smart_exit.evaluate(
            context.history,
            signal.symbol,
            context.position,
            signal.side,
            signal.confidence,
            pnl,
            context.now,
            is_auto_mode=settings.auto_mode,
        )
