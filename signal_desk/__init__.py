"""Signal decision desk for perpetual-futures trading signals."""

from .collaborators import InMemoryPortfolio, LoggingNarrator, PortfolioBook, StatusNarrator
from .engine import DecisionContext, DecisionEngine, StrategyPolicy
from .errors import (
    CapabilityMissing,
    ExecutionFailure,
    MalformedSignal,
    PnlQueryFailure,
    SignalDeskError,
)
from .gates import GraceTracker, is_actionable, within_grace
from .history import EntryMark, SignalHistory, SignalRecord
from .models import (
    Action,
    Confidence,
    Decision,
    DeskSettings,
    ExitDecision,
    NarrativeEvent,
    NarrativeKind,
    Outcome,
    Position,
    Side,
    Signal,
    SmartExitConfig,
    SpoofDetection,
    StrategyKind,
    WallVelocity,
    parse_min_pnl,
)
from .normalizer import NormalizedSignal, SignalNormalizer, parse_strategy
from .order_manager import OrderManager, OrderManagerStatus
from .paper import PaperOrderManager
from .pipeline import PerSymbolDecisionPipeline
from .reversal import ReversalEvaluator, ReversalVerdict
from .smart_mode import SmartExitEvaluator

__all__ = [
    "Action",
    "CapabilityMissing",
    "Confidence",
    "Decision",
    "DecisionContext",
    "DecisionEngine",
    "DeskSettings",
    "EntryMark",
    "ExecutionFailure",
    "ExitDecision",
    "GraceTracker",
    "InMemoryPortfolio",
    "LoggingNarrator",
    "MalformedSignal",
    "NarrativeEvent",
    "NarrativeKind",
    "NormalizedSignal",
    "OrderManager",
    "OrderManagerStatus",
    "Outcome",
    "PaperOrderManager",
    "PerSymbolDecisionPipeline",
    "PnlQueryFailure",
    "PortfolioBook",
    "Position",
    "ReversalEvaluator",
    "ReversalVerdict",
    "Side",
    "Signal",
    "SignalDeskError",
    "SignalHistory",
    "SignalNormalizer",
    "SignalRecord",
    "SmartExitConfig",
    "SmartExitEvaluator",
    "SpoofDetection",
    "StatusNarrator",
    "StrategyKind",
    "StrategyPolicy",
    "WallVelocity",
    "is_actionable",
    "parse_min_pnl",
    "parse_strategy",
    "within_grace",
]
