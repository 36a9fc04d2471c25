"""
Trend Analyzer
==============

Multi-timeframe trend read from EMA separation and RSI:
- Direction: price vs EMA20 (intraday) and EMA20 vs EMA50 (4h) must agree
- Strength: 1-10 from EMA separation, RSI confirmation and signal consistency
- Momentum: slope of the RSI(14) history
"""
import math
from typing import Sequence, Optional

import numpy as np
import structlog

from src.signals.models import CoinSnapshot, TrendAnalysis, TrendDirection, Momentum

logger = structlog.get_logger(__name__)


# Both % signals must clear this to call a direction
DIRECTION_THRESHOLD_PCT = 0.5

# RSI slope per bar for ACCELERATING / DECELERATING
MOMENTUM_SLOPE_THRESHOLD = 0.5

MIN_STRENGTH = 1
MAX_STRENGTH = 10


def percentage_diff(value: float, reference: float) -> float:
    """(value - reference) / reference * 100, 0 when reference is 0"""
    if reference == 0:
        return 0.0
    return (value - reference) / reference * 100


def calculate_slope(values: Sequence[float]) -> float:
    """Least-squares slope of values against their index (non-finite points dropped)"""
    arr = np.asarray(values, dtype=float)
    if arr.size < 2:
        return 0.0
    x = np.arange(arr.size, dtype=float)
    mask = np.isfinite(arr)
    if mask.sum() < 2:
        return 0.0
    x, y = x[mask], arr[mask]
    x_mean = x.mean()
    denom = float(np.sum((x - x_mean) ** 2))
    if denom == 0:
        return 0.0
    return float(np.sum((x - x_mean) * (y - y.mean())) / denom)


def calculate_trend_direction(price_vs_ema20_pct: float, ema20_vs_ema50_pct: float) -> TrendDirection:
    if price_vs_ema20_pct > DIRECTION_THRESHOLD_PCT and ema20_vs_ema50_pct > DIRECTION_THRESHOLD_PCT:
        return TrendDirection.BULLISH
    if price_vs_ema20_pct < -DIRECTION_THRESHOLD_PCT and ema20_vs_ema50_pct < -DIRECTION_THRESHOLD_PCT:
        return TrendDirection.BEARISH
    return TrendDirection.NEUTRAL


def _separation_points(price_vs_ema20_pct: float, ema20_vs_ema50_pct: float) -> int:
    separation = abs(price_vs_ema20_pct) + abs(ema20_vs_ema50_pct)
    if separation >= 3:
        return 4
    if separation >= 2:
        return 3
    if separation >= 1:
        return 2
    if separation >= 0.5:
        return 1
    return 0


def _rsi_points(ema20_vs_ema50_pct: float, rsi14: float) -> int:
    """RSI confirming the slow-EMA direction; 0 when it contradicts"""
    if ema20_vs_ema50_pct > 0 and rsi14 > 50:
        if rsi14 >= 65:
            return 3
        if rsi14 >= 55:
            return 2
        return 1
    if ema20_vs_ema50_pct < 0 and rsi14 < 50:
        if rsi14 <= 35:
            return 3
        if rsi14 <= 45:
            return 2
        return 1
    return 0


def _consistency_points(price_vs_ema20_pct: float, ema20_vs_ema50_pct: float) -> int:
    if (price_vs_ema20_pct > 0) != (ema20_vs_ema50_pct > 0):
        return 0
    a, b = abs(price_vs_ema20_pct), abs(ema20_vs_ema50_pct)
    largest = max(a, b)
    ratio = min(a, b) / (largest if largest > 0 else 1)
    if ratio >= 0.7:
        return 3
    if ratio >= 0.4:
        return 2
    return 1


def calculate_trend_strength(
    price_vs_ema20_pct: float,
    ema20_vs_ema50_pct: float,
    rsi14: float,
) -> int:
    """
    Trend strength on a 1-10 scale.

    Sum of:
    - EMA separation (0-4)
    - RSI confirmation of the 4h EMA direction (0-3)
    - Consistency of the two % signals (0-3)
    """
    if not all(math.isfinite(v) for v in (price_vs_ema20_pct, ema20_vs_ema50_pct, rsi14)):
        return MIN_STRENGTH

    score = (
        _separation_points(price_vs_ema20_pct, ema20_vs_ema50_pct)
        + _rsi_points(ema20_vs_ema50_pct, rsi14)
        + _consistency_points(price_vs_ema20_pct, ema20_vs_ema50_pct)
    )
    return max(MIN_STRENGTH, min(MAX_STRENGTH, score))


def detect_momentum(rsi_history: Sequence[float]) -> Momentum:
    if len(rsi_history) < 2:
        return Momentum.STEADY
    slope = calculate_slope(rsi_history)
    if slope > MOMENTUM_SLOPE_THRESHOLD:
        return Momentum.ACCELERATING
    if slope < -MOMENTUM_SLOPE_THRESHOLD:
        return Momentum.DECELERATING
    return Momentum.STEADY


def analyze_trend(
    current_price: float,
    ema20: float,
    ema20_4h: float,
    ema50_4h: float,
    rsi14: float,
    rsi14_history: Optional[Sequence[float]] = None,
) -> TrendAnalysis:
    """Full trend read; degenerate price returns the neutral default"""
    if not current_price or not math.isfinite(current_price) or current_price <= 0:
        return TrendAnalysis()

    price_vs_ema20 = percentage_diff(current_price, ema20)
    ema20_vs_ema50 = percentage_diff(ema20_4h, ema50_4h)

    return TrendAnalysis(
        direction=calculate_trend_direction(price_vs_ema20, ema20_vs_ema50),
        strength=calculate_trend_strength(price_vs_ema20, ema20_vs_ema50, rsi14),
        momentum=detect_momentum(rsi14_history or []),
        timeframe_alignment=(price_vs_ema20 > 0) == (ema20_vs_ema50 > 0),
        price_vs_ema20_pct=round(price_vs_ema20, 2),
        ema20_vs_ema50_pct=round(ema20_vs_ema50, 2),
    )


def analyze_snapshot_trend(snapshot: CoinSnapshot) -> TrendAnalysis:
    """Convenience wrapper over analyze_trend for a CoinSnapshot"""
    return analyze_trend(
        current_price=snapshot.current_price,
        ema20=snapshot.ema20,
        ema20_4h=snapshot.ema20_4h,
        ema50_4h=snapshot.ema50_4h,
        rsi14=snapshot.rsi14,
        rsi14_history=snapshot.rsi14_history,
    )
