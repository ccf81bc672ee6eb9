from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field  # type: ignore[import-not-found]

from signal_desk import Outcome, SignalHistory


class SignalResponse(BaseModel):
    """Result of submitting one signal to the desk."""

    model_config = ConfigDict(extra="ignore")

    accepted: bool
    symbol: Optional[str] = None
    strategy: Optional[str] = None
    action: Optional[str] = None
    reason: Optional[str] = None
    completed: bool = False
    error: Optional[str] = None

    @classmethod
    def from_outcome(cls, outcome: Optional[Outcome]) -> "SignalResponse":
        if outcome is None:
            return cls(accepted=False)
        decision = outcome.decision
        return cls(
            accepted=True,
            symbol=decision.symbol,
            strategy=decision.strategy.value,
            action=decision.action.value,
            reason=decision.reason,
            completed=outcome.completed,
            error=outcome.error,
        )


class HistoryRecordModel(BaseModel):
    side: str
    confidence: str
    timestamp: float
    pnl: Optional[float] = None


class EntryMarkModel(BaseModel):
    side: str
    confidence: Optional[str] = None
    opened_at: float
    index: int


class HistoryResponse(BaseModel):
    symbol: str
    entry: Optional[EntryMarkModel] = None
    records: List[HistoryRecordModel] = Field(default_factory=list)

    @classmethod
    def from_history(cls, history: SignalHistory) -> "HistoryResponse":
        entry = history.entry
        return cls(
            symbol=history.symbol,
            entry=None
            if entry is None
            else EntryMarkModel(
                side=entry.side.value,
                confidence=entry.confidence.value if entry.confidence else None,
                opened_at=entry.opened_at,
                index=entry.index,
            ),
            records=[
                HistoryRecordModel(
                    side=record.side.value,
                    confidence=record.confidence.value,
                    timestamp=record.timestamp,
                    pnl=record.pnl,
                )
                for record in history.records
            ],
        )


class PnlObservation(BaseModel):
    """Aggregate PnL pushed by an external poller."""

    model_config = ConfigDict(extra="ignore")

    total: float


class HealthResponse(BaseModel):
    status: str = "ok"
    smart_mode: bool
    auto_mode: bool
    symbols: List[str] = Field(default_factory=list)
    positions: Dict[str, str] = Field(default_factory=dict)
    last_total_pnl: Optional[float] = None
