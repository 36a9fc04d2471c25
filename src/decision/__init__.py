"""
Decision Layer
Model reply parsing, trend guard veto and the per-cycle pipeline
"""
from src.decision.models import (
    DecisionType,
    WarningType,
    ParserWarning,
    TradeDecision,
)
from src.decision.parser import DecisionParser, get_decision_parser, parse_decision
from src.decision.trend_guard import TrendGuard, TrendGuardResult
from src.decision.pipeline import CycleResult, DecisionPipeline

__all__ = [
    "DecisionType",
    "WarningType",
    "ParserWarning",
    "TradeDecision",
    "DecisionParser",
    "get_decision_parser",
    "parse_decision",
    "TrendGuard",
    "TrendGuardResult",
    "CycleResult",
    "DecisionPipeline",
]
