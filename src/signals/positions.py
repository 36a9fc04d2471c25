"""
Position Evaluator
==================

Re-checks open positions against the latest per-coin summaries.

Close triggers:
- Opposing 4h trend with strength >= 6 (thesis invalidated)
- 2+ STRONG entry signals against the position (thesis invalidated)
- Aggregate risk score >= 8

Near stop / near target flags are informational and never close on their own.
"""
from typing import List, Mapping, Optional, Sequence

import structlog

from src.signals.models import (
    CoinSignalSummary, OpenPosition, PositionSignals, SignalDirection, SignalStrength, TrendDirection,
)

logger = structlog.get_logger(__name__)


TREND_REVERSAL_MIN_STRENGTH = 6
MIN_STRONG_OPPOSING = 2
CLOSE_RISK_SCORE = 8
NEAR_LEVEL_PCT = 0.5


def _pnl_pct(position: OpenPosition, coin: Optional[CoinSignalSummary] = None) -> float:
    if position.unrealized_pnl_pct is not None:
        return position.unrealized_pnl_pct
    if coin is None or position.entry_price <= 0 or coin.current_price <= 0:
        return 0.0
    move = (coin.current_price - position.entry_price) / position.entry_price * 100
    return round(move if position.side == SignalDirection.LONG else -move, 2)


def evaluate_position(position: OpenPosition, coin: CoinSignalSummary) -> PositionSignals:
    result = PositionSignals(symbol=position.symbol, pnl_pct=_pnl_pct(position, coin))
    is_long = position.side == SignalDirection.LONG
    trend = coin.trend

    # GATE 1: Trend reversal against the position
    if is_long and trend.direction == TrendDirection.BEARISH and trend.strength >= TREND_REVERSAL_MIN_STRENGTH:
        result.invalidation_triggered = True
        result.invalidation_reason = "Strong bearish trend reversal"
        result.should_close = True
        result.close_reason = "Trend reversed against long position"
    elif not is_long and trend.direction == TrendDirection.BULLISH and trend.strength >= TREND_REVERSAL_MIN_STRENGTH:
        result.invalidation_triggered = True
        result.invalidation_reason = "Strong bullish trend reversal"
        result.should_close = True
        result.close_reason = "Trend reversed against short position"

    # GATE 2: Strong signals against the position
    opposing_dir = SignalDirection.SHORT if is_long else SignalDirection.LONG
    opposing = [
        s for s in coin.entry_signals
        if s.direction == opposing_dir and s.strength == SignalStrength.STRONG
    ]
    if len(opposing) >= MIN_STRONG_OPPOSING:
        result.invalidation_triggered = True
        result.invalidation_reason = f"{len(opposing)} strong opposing signals"
        if not result.should_close:
            result.should_close = True
            result.close_reason = "Multiple strong signals against position direction"

    levels = coin.key_levels
    if is_long:
        result.near_stop_loss = levels.distance_to_support_pct < NEAR_LEVEL_PCT
        result.near_take_profit = levels.distance_to_resistance_pct < NEAR_LEVEL_PCT
    else:
        result.near_stop_loss = levels.distance_to_resistance_pct < NEAR_LEVEL_PCT
        result.near_take_profit = levels.distance_to_support_pct < NEAR_LEVEL_PCT

    # GATE 3: Risk
    if coin.risk.score >= CLOSE_RISK_SCORE and not result.should_close:
        result.should_close = True
        result.close_reason = "Very high risk conditions detected"

    if result.should_close:
        logger.warning(
            "position_close_flagged",
            symbol=position.symbol,
            side=position.side.value,
            reason=result.close_reason,
            invalidation=result.invalidation_reason,
        )
    return result


def evaluate_positions(
    positions: Sequence[OpenPosition],
    coins: Mapping[str, CoinSignalSummary],
) -> List[PositionSignals]:
    """One PositionSignals per position; symbols without a summary default to hold"""
    results = []
    for position in positions:
        coin = coins.get(position.symbol)
        if coin is None:
            results.append(PositionSignals(symbol=position.symbol, pnl_pct=_pnl_pct(position)))
            continue
        results.append(evaluate_position(position, coin))
    return results
