"""Strategy adapters that turn raw inbound messages into canonical signals."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator  # type: ignore[import-not-found]

from .errors import MalformedSignal
from .models import (
    Confidence,
    Side,
    Signal,
    SpoofDetection,
    StrategyKind,
    WallVelocity,
)

MOMENTUM_PLACEHOLDER = "Calling home for some data..."
ORDER_BOOK_PLACEHOLDER = "Analyzing order flow..."

RSI_OVERSOLD = 40.0
RSI_OVERBOUGHT = 60.0
FIB_PROXIMITY = 0.15

_STRATEGY_ALIASES = {
    "momentum": StrategyKind.MOMENTUM,
    "momentum_x": StrategyKind.MOMENTUM,
    "momentumx": StrategyKind.MOMENTUM,
    "orderbook": StrategyKind.ORDER_BOOK,
    "order_book": StrategyKind.ORDER_BOOK,
    "scalp": StrategyKind.SCALP,
}


def parse_strategy(name: Union[str, StrategyKind]) -> StrategyKind:
    if isinstance(name, StrategyKind):
        return name
    key = str(name).strip().lower().replace("-", "_")
    try:
        return _STRATEGY_ALIASES[key]
    except KeyError:
        raise ValueError(f"Unknown strategy: {name}") from None


def _upper(value: Any) -> Any:
    return value.strip().upper() if isinstance(value, str) else value


def _lower(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


class SpoofDetectionPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    wall_velocity: WallVelocity = WallVelocity.LOW
    recent_spoofs: int = Field(default=0, ge=0)

    @field_validator("wall_velocity", mode="before")
    @classmethod
    def _normalize_velocity(cls, value: Any) -> Any:
        # Only an explicit "high" counts as spoofing.
        value = _lower(value)
        if value == WallVelocity.HIGH.value:
            return WallVelocity.HIGH
        return WallVelocity.LOW

    @field_validator("recent_spoofs", mode="before")
    @classmethod
    def _default_spoofs(cls, value: Any) -> Any:
        return 0 if value is None else value


class FibLevelPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Optional[str] = None
    distance: Optional[float] = None
    price: Optional[float] = None
    level: Optional[str] = None


class BaseSignalPayload(BaseModel):
    """Fields shared by every strategy's wire format."""

    model_config = ConfigDict(extra="ignore")

    symbol: str = Field(min_length=1)
    side: Side
    confidence: Confidence
    limit_price: Optional[float] = None

    @field_validator("side", mode="before")
    @classmethod
    def _normalize_side(cls, value: Any) -> Any:
        return _upper(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _normalize_confidence(cls, value: Any) -> Any:
        return _lower(value)

    @field_validator("symbol")
    @classmethod
    def _strip_symbol(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            raise ValueError("symbol must not be blank")
        return value


class MomentumPayload(BaseSignalPayload):
    reasoning: Optional[str] = None
    market_regime: Optional[str] = None
    layer_score: Optional[float] = None
    delta_trend: Optional[str] = None
    orderbook_pressure: Optional[str] = None
    trend_alignment: Optional[str] = None
    confluence_score: Optional[float] = None
    rsi: Optional[float] = None
    rsi_alignment: Optional[str] = None
    near_fib_level: Optional[FibLevelPayload] = None
    at_fib_support: bool = False
    at_fib_resistance: bool = False
    current_price: Optional[float] = None


class ScalpPayload(BaseSignalPayload):
    reasoning: Optional[str] = None


class OrderBookPayload(BaseSignalPayload):
    reasoning: List[str] = Field(default_factory=list)
    cvd_slope: Optional[Union[str, float]] = None
    obi: Optional[float] = None
    bias_score: Optional[float] = None
    spoof_detection: Optional[SpoofDetectionPayload] = None

    @field_validator("reasoning", mode="before")
    @classmethod
    def _coerce_reasoning(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value


@dataclass(frozen=True)
class NormalizedSignal:
    """Canonical signal plus the status line to display for it."""

    signal: Signal
    narrative: str


def unwrap(message: Any) -> Optional[Mapping[str, Any]]:
    """Return the payload, descending one level into ``data`` if present."""
    if message is None:
        return None
    payload = message
    if isinstance(message, Mapping) and message.get("data") is not None:
        payload = message["data"]
    if not isinstance(payload, Mapping) or not payload:
        return None
    return payload


def _client_side_upgrade(payload: MomentumPayload, log: logging.Logger) -> MomentumPayload:
    """Promote a LOW momentum signal when RSI and fib structure agree."""
    rsi = payload.rsi if payload.rsi is not None else 50.0
    fib = payload.near_fib_level or FibLevelPayload()
    near = fib.distance is not None and fib.distance < FIB_PROXIMITY
    near_support = fib.type == "support" and near
    near_resistance = fib.type == "resistance" and near
    aligned_oversold = payload.rsi_alignment == "ALIGNED_OVERSOLD"
    aligned_overbought = payload.rsi_alignment == "ALIGNED_OVERBOUGHT"
    level_price = fib.price if fib.price is not None else payload.current_price

    update: Dict[str, Any]
    if (rsi < RSI_OVERSOLD or aligned_oversold) and (near_support or payload.at_fib_support):
        level = fib.level or "fib support"
        update = {
            "side": Side.LONG,
            "limit_price": level_price,
            "reasoning": (
                f"Client Analysis: RSI oversold ({rsi:.1f}) + {level} support. "
                "Upgraded from low to medium confidence."
            ),
        }
    elif (rsi > RSI_OVERBOUGHT or aligned_overbought) and (
        near_resistance or payload.at_fib_resistance
    ):
        level = fib.level or "fib resistance"
        update = {
            "side": Side.SHORT,
            "limit_price": level_price,
            "reasoning": (
                f"Client Analysis: RSI overbought ({rsi:.1f}) + {level} resistance. "
                "Upgraded from low to medium confidence."
            ),
        }
    elif aligned_oversold:
        update = {
            "side": Side.LONG,
            "reasoning": (
                "Client Analysis: Multi-timeframe RSI oversold alignment detected. "
                "Upgraded from low to medium confidence."
            ),
        }
    elif aligned_overbought:
        update = {
            "side": Side.SHORT,
            "reasoning": (
                "Client Analysis: Multi-timeframe RSI overbought alignment detected. "
                "Upgraded from low to medium confidence."
            ),
        }
    else:
        log.debug(
            "No client override for %s, keeping low confidence %s",
            payload.symbol,
            payload.side.value,
        )
        return payload

    update["confidence"] = Confidence.MEDIUM
    log.info(
        "Client override for %s: %s upgraded to MEDIUM", payload.symbol, update["side"].value
    )
    return payload.model_copy(update=update)


def _momentum_signal(
    payload: Mapping[str, Any], log: logging.Logger
) -> NormalizedSignal:
    parsed = MomentumPayload.model_validate(payload)
    if parsed.confidence is Confidence.LOW:
        parsed = _client_side_upgrade(parsed, log)
    reasoning = parsed.reasoning or MOMENTUM_PLACEHOLDER
    signal = Signal(
        symbol=parsed.symbol,
        side=parsed.side,
        confidence=parsed.confidence,
        strategy=StrategyKind.MOMENTUM,
        reasoning=reasoning,
        market_regime=_upper(parsed.market_regime),
        layer_score=parsed.layer_score,
        delta_trend=parsed.delta_trend,
        orderbook_pressure=parsed.orderbook_pressure,
        limit_price=parsed.limit_price,
        trend_alignment=_upper(parsed.trend_alignment),
        confluence_score=parsed.confluence_score,
        payload=dict(payload),
    )
    return NormalizedSignal(signal=signal, narrative=reasoning)


def _scalp_signal(payload: Mapping[str, Any], log: logging.Logger) -> NormalizedSignal:
    parsed = ScalpPayload.model_validate(payload)
    reasoning = parsed.reasoning or MOMENTUM_PLACEHOLDER
    signal = Signal(
        symbol=parsed.symbol,
        side=parsed.side,
        confidence=parsed.confidence,
        strategy=StrategyKind.SCALP,
        reasoning=reasoning,
        limit_price=parsed.limit_price,
        payload=dict(payload),
    )
    return NormalizedSignal(signal=signal, narrative=reasoning)


def order_book_narrative(signal: Signal) -> str:
    reasoning = signal.display_reasoning or ORDER_BOOK_PLACEHOLDER
    cvd = signal.cvd_slope if signal.cvd_slope else "N/A"
    obi = f"{signal.obi:.2f}" if signal.obi is not None else "N/A"
    text = f"{reasoning} | CVD: {cvd} | OBI: {obi}"
    if signal.is_spoofing:
        text = f"⚠️ SPOOF ALERT ({signal.recent_spoofs} recent) | {text}"
    return text


def _order_book_signal(
    payload: Mapping[str, Any], log: logging.Logger
) -> NormalizedSignal:
    parsed = OrderBookPayload.model_validate(payload)
    spoof = None
    if parsed.spoof_detection is not None:
        spoof = SpoofDetection(
            wall_velocity=parsed.spoof_detection.wall_velocity,
            recent_spoofs=parsed.spoof_detection.recent_spoofs,
        )
    signal = Signal(
        symbol=parsed.symbol,
        side=parsed.side,
        confidence=parsed.confidence,
        strategy=StrategyKind.ORDER_BOOK,
        reasoning=tuple(parsed.reasoning),
        cvd_slope=None if parsed.cvd_slope is None else str(parsed.cvd_slope),
        obi=parsed.obi,
        bias_score=parsed.bias_score,
        spoof_detection=spoof,
        limit_price=parsed.limit_price,
        payload=dict(payload),
    )
    return NormalizedSignal(signal=signal, narrative=order_book_narrative(signal))


_ADAPTERS: Dict[
    StrategyKind, Callable[[Mapping[str, Any], logging.Logger], NormalizedSignal]
] = {
    StrategyKind.MOMENTUM: _momentum_signal,
    StrategyKind.ORDER_BOOK: _order_book_signal,
    StrategyKind.SCALP: _scalp_signal,
}


class SignalNormalizer:
    """Unwraps and validates raw messages for one of the supported strategies."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._log = logger or logging.getLogger(__name__)

    def normalize(
        self, strategy: Union[str, StrategyKind], message: Any
    ) -> Optional[NormalizedSignal]:
        """Return the normalized signal, or None for a missing/malformed payload."""
        try:
            kind = parse_strategy(strategy)
            payload = unwrap(message)
            if payload is None:
                raise MalformedSignal(f"No {kind.value} payload found in message")
            return _ADAPTERS[kind](payload, self._log)
        except ValidationError as exc:
            self._log.warning(
                "Malformed %s signal dropped: %s",
                strategy,
                exc.errors(include_url=False),
            )
        except (MalformedSignal, ValueError, TypeError) as exc:
            self._log.warning("Malformed %s signal dropped: %s", strategy, exc)
        return None
