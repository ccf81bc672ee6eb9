"""Data models for the signal decision desk."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple, Union

DEFAULT_SMART_MODE_MIN_PNL = -50.0
DEFAULT_ENTRY_GRACE_SECONDS = 60.0
DEFAULT_REVERSAL_GRACE_SECONDS = 30.0
DEFAULT_PNL_POLL_INTERVAL_SECONDS = 2.0

_TRUTHY = {"1", "true", "yes", "y", "on"}


class Side(Enum):
    """Signal or position direction."""

    LONG = "LONG"
    SHORT = "SHORT"
    NEUTRAL = "NEUTRAL"

    def opposite(self) -> "Side":
        if self is Side.LONG:
            return Side.SHORT
        if self is Side.SHORT:
            return Side.LONG
        return Side.NEUTRAL

    def opposes(self, other: "Side") -> bool:
        """True when both sides are directional and point opposite ways."""
        return self is not Side.NEUTRAL and other is self.opposite()


class Confidence(Enum):
    """Confidence tier attached to a signal."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def score(self) -> int:
        return _CONFIDENCE_SCORES[self]


_CONFIDENCE_SCORES = {Confidence.HIGH: 3, Confidence.MEDIUM: 2, Confidence.LOW: 1}


class StrategyKind(Enum):
    """Strategy family that produced a signal."""

    MOMENTUM = "momentum"
    ORDER_BOOK = "orderbook"
    SCALP = "scalp"


class WallVelocity(Enum):
    """Speed at which order-book walls appear and vanish."""

    LOW = "low"
    HIGH = "high"


class Action(Enum):
    """Position action chosen for a signal."""

    ENTER = "ENTER"
    EXIT = "EXIT"
    REVERSE = "REVERSE"
    HOLD = "HOLD"
    IGNORE = "IGNORE"


class NarrativeKind(Enum):
    """How a narrative line is rendered.

    REASONING and STATEMENT lines are pushed to the display collaborator,
    NOTE lines are only logged.
    """

    REASONING = "reasoning"
    STATEMENT = "statement"
    NOTE = "note"


@dataclass(frozen=True)
class SpoofDetection:
    """Upstream spoofing detector output."""

    wall_velocity: WallVelocity = WallVelocity.LOW
    recent_spoofs: int = 0

    @property
    def is_spoofing(self) -> bool:
        return self.wall_velocity is WallVelocity.HIGH


@dataclass(frozen=True)
class Signal:
    """Canonical trading signal, one per inbound message."""

    symbol: str
    side: Side
    confidence: Confidence
    strategy: StrategyKind
    reasoning: Union[str, Tuple[str, ...]] = ""
    market_regime: Optional[str] = None
    layer_score: Optional[float] = None
    delta_trend: Optional[str] = None
    orderbook_pressure: Optional[str] = None
    cvd_slope: Optional[str] = None
    obi: Optional[float] = None
    bias_score: Optional[float] = None
    spoof_detection: Optional[SpoofDetection] = None
    limit_price: Optional[float] = None
    trend_alignment: Optional[str] = None
    confluence_score: Optional[float] = None
    payload: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @property
    def display_reasoning(self) -> str:
        if isinstance(self.reasoning, tuple):
            return " ".join(self.reasoning)
        return self.reasoning

    @property
    def is_spoofing(self) -> bool:
        return self.spoof_detection is not None and self.spoof_detection.is_spoofing

    @property
    def recent_spoofs(self) -> int:
        return self.spoof_detection.recent_spoofs if self.spoof_detection else 0


@dataclass(frozen=True)
class Position:
    """Open position as reported by the order manager."""

    symbol: str
    side: Side
    filled_at: float
    pnl: float = 0.0

    def __post_init__(self) -> None:
        if self.side is Side.NEUTRAL:
            raise ValueError("Position side must be LONG or SHORT")


@dataclass(frozen=True)
class ExitDecision:
    """Smart Mode verdict for an open position."""

    should_exit: bool
    reason: str = ""
    statement: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def hold(cls) -> "ExitDecision":
        return cls(should_exit=False)


@dataclass(frozen=True)
class NarrativeEvent:
    """A human-readable line produced while handling a signal."""

    symbol: str
    kind: NarrativeKind
    text: str


@dataclass(frozen=True)
class Decision:
    """Result of the pure decision step for one signal."""

    symbol: str
    strategy: StrategyKind
    action: Action
    reason: str
    side: Side
    narrative: Tuple[NarrativeEvent, ...] = ()
    exit_decision: Optional[ExitDecision] = None


@dataclass(frozen=True)
class Outcome:
    """Decision plus what happened when it was applied."""

    decision: Decision
    completed: bool = True
    error: Optional[str] = None

    @property
    def action(self) -> Action:
        return self.decision.action


@dataclass(frozen=True)
class SmartExitConfig:
    """Thresholds for the Smart Mode exit heuristic."""

    history_window: int = 10
    profit_protection_pnl: float = 10.0
    decay_min_age_seconds: float = 120.0
    decay_min_drop: int = 2
    consecutive_low_limit: int = 3
    consecutive_opposite_limit: int = 2
    erosion_peak_pnl: float = 20.0
    erosion_floor_pnl: float = 5.0
    stale_age_seconds: float = 300.0
    stale_loss_pnl: float = -10.0
    downtrend_length: int = 3

    def __post_init__(self) -> None:
        if self.history_window < self.downtrend_length:
            raise ValueError("history_window must cover downtrend_length")
        if self.downtrend_length < 2:
            raise ValueError("downtrend_length must be at least 2")
        if self.decay_min_drop <= 0:
            raise ValueError("decay_min_drop must be positive")
        if self.consecutive_low_limit <= 0 or self.consecutive_opposite_limit <= 0:
            raise ValueError("consecutive limits must be positive")
        if self.decay_min_age_seconds < 0 or self.stale_age_seconds < 0:
            raise ValueError("age thresholds must be non-negative")


def parse_min_pnl(value: Any, default: float = DEFAULT_SMART_MODE_MIN_PNL) -> float:
    """Parse the Smart Mode PnL floor from a string or number."""
    if value is None or isinstance(value, bool):
        return default
    try:
        parsed = float(str(value).strip())
    except (TypeError, ValueError):
        return default
    if math.isnan(parsed) or math.isinf(parsed):
        return default
    return parsed


def _parse_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if not text:
        return default
    return text in _TRUTHY


@dataclass(frozen=True)
class DeskSettings:
    """Process-wide configuration injected into the pipeline."""

    smart_mode: bool = False
    smart_mode_min_pnl: float = DEFAULT_SMART_MODE_MIN_PNL
    trust_low_confidence: bool = False
    auto_mode: bool = False
    entry_grace_seconds: float = DEFAULT_ENTRY_GRACE_SECONDS
    reversal_grace_seconds: float = DEFAULT_REVERSAL_GRACE_SECONDS
    max_pending_per_symbol: int = 16
    pnl_poll_interval_seconds: float = DEFAULT_PNL_POLL_INTERVAL_SECONDS
    smart_exit: SmartExitConfig = field(default_factory=SmartExitConfig)

    def __post_init__(self) -> None:
        if not isinstance(self.smart_mode_min_pnl, float):
            object.__setattr__(
                self, "smart_mode_min_pnl", parse_min_pnl(self.smart_mode_min_pnl)
            )
        if self.entry_grace_seconds < 0:
            raise ValueError("entry_grace_seconds must be non-negative")
        if self.reversal_grace_seconds < 0:
            raise ValueError("reversal_grace_seconds must be non-negative")
        if self.max_pending_per_symbol <= 0:
            raise ValueError("max_pending_per_symbol must be positive")
        if self.pnl_poll_interval_seconds < 0:
            raise ValueError("pnl_poll_interval_seconds must be non-negative")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "DeskSettings":
        """Build settings from loosely typed values (env vars, stored settings)."""
        defaults = cls()

        def _number(key: str, fallback: float) -> float:
            raw = data.get(key)
            if raw is None or str(raw).strip() == "":
                return fallback
            return float(raw)

        return cls(
            smart_mode=_parse_bool(data.get("smart_mode"), defaults.smart_mode),
            smart_mode_min_pnl=parse_min_pnl(data.get("smart_mode_min_pnl")),
            trust_low_confidence=_parse_bool(
                data.get("trust_low_confidence"), defaults.trust_low_confidence
            ),
            auto_mode=_parse_bool(data.get("auto_mode"), defaults.auto_mode),
            entry_grace_seconds=_number(
                "entry_grace_seconds", defaults.entry_grace_seconds
            ),
            reversal_grace_seconds=_number(
                "reversal_grace_seconds", defaults.reversal_grace_seconds
            ),
            max_pending_per_symbol=int(
                _number("max_pending_per_symbol", defaults.max_pending_per_symbol)
            ),
            pnl_poll_interval_seconds=_number(
                "pnl_poll_interval_seconds", defaults.pnl_poll_interval_seconds
            ),
        )
