"""
Risk Assessor
=============

Additive risk score (1-10) from named factors, plus a position size
multiplier stepped on the rounded score.
"""
import math
from typing import Dict, List, Optional, Sequence

from src.signals.models import (
    EntrySignal, RegimeState, RiskAssessment, SignalDirection, SignalStrength, TrendAnalysis,
    TrendDirection,
)


# ============================================================
# RISK FACTORS
# ============================================================

EXTREME_VOLATILITY = "Extreme volatility (ATR ratio > 2.0)"
HIGH_VOLATILITY = "High volatility (ATR ratio > 1.5)"
RSI_OVERBOUGHT = "RSI overbought (>70)"
RSI_OVERSOLD = "RSI oversold (<30)"
LOW_VOLUME = "Low volume (<0.7x average)"
COUNTER_TREND = "Counter-trend setup"
NEAR_RESISTANCE = "Near resistance"
NEAR_SUPPORT = "Near support"
CONFLICTING_SIGNALS = "Conflicting signals"
WEAK_SIGNALS = "Weak signal strength"
BEARISH_4H_TREND = "Bearish 4h trend"
BULLISH_4H_TREND = "Bullish 4h trend"

RISK_WEIGHTS: Dict[str, float] = {
    EXTREME_VOLATILITY: 2.0,
    HIGH_VOLATILITY: 1.0,
    RSI_OVERBOUGHT: 1.0,
    RSI_OVERSOLD: 1.0,
    LOW_VOLUME: 1.0,
    COUNTER_TREND: 1.5,
    NEAR_RESISTANCE: 0.5,
    NEAR_SUPPORT: 0.5,
    CONFLICTING_SIGNALS: 1.5,
    WEAK_SIGNALS: 0.5,
    BEARISH_4H_TREND: 1.0,
    BULLISH_4H_TREND: 1.0,
}

BASE_SCORE = 3.0
NEAR_LEVEL_PCT = 1.0


def is_counter_trend(trend_direction: TrendDirection, proposed: SignalDirection) -> bool:
    if proposed == SignalDirection.LONG and trend_direction == TrendDirection.BEARISH:
        return True
    if proposed == SignalDirection.SHORT and trend_direction == TrendDirection.BULLISH:
        return True
    return False


def identify_risk_factors(
    trend: TrendAnalysis,
    regime: RegimeState,
    signals: Sequence[EntrySignal],
    rsi: float,
    distance_to_resistance_pct: float,
    distance_to_support_pct: float,
    proposed_direction: Optional[SignalDirection] = None,
) -> List[str]:
    factors = []

    if regime.atr_ratio > 2.0:
        factors.append(EXTREME_VOLATILITY)
    elif regime.atr_ratio > 1.5:
        factors.append(HIGH_VOLATILITY)

    if rsi > 70:
        factors.append(RSI_OVERBOUGHT)
    if rsi < 30:
        factors.append(RSI_OVERSOLD)

    if regime.volume_ratio < 0.7:
        factors.append(LOW_VOLUME)

    if proposed_direction is not None and is_counter_trend(trend.direction, proposed_direction):
        factors.append(COUNTER_TREND)

    if distance_to_resistance_pct < NEAR_LEVEL_PCT:
        factors.append(NEAR_RESISTANCE)
    if distance_to_support_pct < NEAR_LEVEL_PCT:
        factors.append(NEAR_SUPPORT)

    has_long = any(s.direction == SignalDirection.LONG for s in signals)
    has_short = any(s.direction == SignalDirection.SHORT for s in signals)
    if has_long and has_short:
        factors.append(CONFLICTING_SIGNALS)

    if signals and not any(s.strength == SignalStrength.STRONG for s in signals):
        factors.append(WEAK_SIGNALS)

    if proposed_direction == SignalDirection.LONG and trend.ema20_vs_ema50_pct < 0:
        factors.append(BEARISH_4H_TREND)
    if proposed_direction == SignalDirection.SHORT and trend.ema20_vs_ema50_pct > 0:
        factors.append(BULLISH_4H_TREND)

    return factors


def calculate_risk_score(factors: Sequence[str]) -> int:
    score = BASE_SCORE + sum(RISK_WEIGHTS.get(f, 0.0) for f in factors)
    # Half-steps round up (4.5 -> 5)
    rounded = int(math.floor(score + 0.5))
    return max(1, min(10, rounded))


def calculate_size_multiplier(score: int) -> float:
    if score <= 3:
        return 1.0
    if score <= 5:
        return 0.75
    if score <= 7:
        return 0.5
    return 0.25


def assess_risk(
    trend: TrendAnalysis,
    regime: RegimeState,
    signals: Sequence[EntrySignal],
    rsi: float,
    distance_to_resistance_pct: float,
    distance_to_support_pct: float,
    proposed_direction: Optional[SignalDirection] = None,
) -> RiskAssessment:
    factors = identify_risk_factors(
        trend, regime, signals, rsi,
        distance_to_resistance_pct, distance_to_support_pct, proposed_direction,
    )
    score = calculate_risk_score(factors)
    counter_trend = (
        is_counter_trend(trend.direction, proposed_direction)
        if proposed_direction is not None else False
    )
    return RiskAssessment(
        score=score,
        factors=factors,
        counter_trend=counter_trend,
        size_multiplier=calculate_size_multiplier(score),
    )
