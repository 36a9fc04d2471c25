"""
Signal Analysis
Per-coin technical analysis feeding the decision prompt and position checks
"""
from src.signals.models import (
    CoinSnapshot,
    OpenPosition,
    TrendAnalysis,
    RegimeState,
    KeyLevels,
    EntrySignal,
    Divergence,
    RiskAssessment,
    CoinSignalSummary,
    PositionSignals,
    MarketOverview,
    ProcessedSignals,
    TrendDirection,
    SignalDirection,
    SignalStrength,
    SignalType,
    Recommendation,
)
from src.signals.trend import analyze_trend, analyze_snapshot_trend
from src.signals.regime import compute_market_regime
from src.signals.levels import detect_key_levels
from src.signals.divergence import detect_divergences
from src.signals.entry import detect_entry_signals
from src.signals.risk import assess_risk
from src.signals.positions import evaluate_positions
from src.signals.processor import (
    process_signals,
    process_all_coins,
    compute_market_overview,
    process_market_signals,
)

__all__ = [
    "CoinSnapshot",
    "OpenPosition",
    "TrendAnalysis",
    "RegimeState",
    "KeyLevels",
    "EntrySignal",
    "Divergence",
    "RiskAssessment",
    "CoinSignalSummary",
    "PositionSignals",
    "MarketOverview",
    "ProcessedSignals",
    "TrendDirection",
    "SignalDirection",
    "SignalStrength",
    "SignalType",
    "Recommendation",
    "analyze_trend",
    "analyze_snapshot_trend",
    "compute_market_regime",
    "detect_key_levels",
    "detect_divergences",
    "detect_entry_signals",
    "assess_risk",
    "evaluate_positions",
    "process_signals",
    "process_all_coins",
    "compute_market_overview",
    "process_market_signals",
]
