"""
Signal Processor
================

Per-symbol pipeline run once per tick:
1. Trend (EMA alignment)
2. Regime (ATR / volume ratios)
3. Key levels (swing clustering)
4. Divergences (RSI, MACD vs price)
5. Entry signals, with divergences appended as directional signals
6. Risk assessment against the majority signal direction
7. Recommendation + one-line summary

Batch entry points isolate per-symbol failures behind a neutral summary.
"""
import time
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Union

import structlog

from src.signals.divergence import detect_divergences
from src.signals.entry import SignalInput, detect_entry_signals
from src.signals.levels import detect_key_levels
from src.signals.models import (
    CoinSignalSummary, CoinSnapshot, Divergence, DivergenceType, EntrySignal, KeyLevels, MarketOverview,
    OpenPosition, ProcessedSignals, Recommendation, RegimeState, RegimeType, RiskAssessment,
    Sentiment, SignalDirection, SignalType, TrendAnalysis, TrendDirection,
)
from src.signals.positions import evaluate_positions
from src.signals.regime import regime_from_snapshot
from src.signals.risk import assess_risk
from src.signals.trend import analyze_snapshot_trend

logger = structlog.get_logger(__name__)


INSUFFICIENT_DATA_FACTOR = "Insufficient data"
INSUFFICIENT_DATA_SUMMARY = "Insufficient data for analysis"

# Recommendation gates
STRONG_MIN_SIGNALS = 3
STRONG_MAX_RISK = 5
BASIC_MIN_SIGNALS = 2

NEAR_LEVEL_PCT = 1.0

MarketData = Mapping[str, Union[CoinSnapshot, dict]]


def _divergence_to_signal(div: Divergence) -> EntrySignal:
    bullish = div.type == DivergenceType.BULLISH
    return EntrySignal(
        type=SignalType.BULLISH_DIVERGENCE if bullish else SignalType.BEARISH_DIVERGENCE,
        strength=div.strength,
        direction=SignalDirection.LONG if bullish else SignalDirection.SHORT,
        description=div.description,
    )


def _count(signals: Iterable[EntrySignal], direction: SignalDirection) -> int:
    return sum(1 for s in signals if s.direction == direction)


def proposed_direction(signals: List[EntrySignal]) -> Optional[SignalDirection]:
    """Majority signal direction, None on a tie"""
    longs = _count(signals, SignalDirection.LONG)
    shorts = _count(signals, SignalDirection.SHORT)
    if longs > shorts:
        return SignalDirection.LONG
    if shorts > longs:
        return SignalDirection.SHORT
    return None


def determine_recommendation(
    trend: TrendAnalysis,
    signals: List[EntrySignal],
    risk: RiskAssessment,
) -> Recommendation:
    longs = _count(signals, SignalDirection.LONG)
    shorts = _count(signals, SignalDirection.SHORT)

    if trend.direction == TrendDirection.BULLISH and longs >= STRONG_MIN_SIGNALS and risk.score < STRONG_MAX_RISK:
        return Recommendation.STRONG_LONG
    if trend.direction == TrendDirection.BEARISH and shorts >= STRONG_MIN_SIGNALS and risk.score < STRONG_MAX_RISK:
        return Recommendation.STRONG_SHORT
    if trend.direction == TrendDirection.BULLISH and longs >= BASIC_MIN_SIGNALS:
        return Recommendation.LONG
    if trend.direction == TrendDirection.BEARISH and shorts >= BASIC_MIN_SIGNALS:
        return Recommendation.SHORT
    return Recommendation.NEUTRAL


def _strength_word(strength: int) -> str:
    if strength >= 7:
        return "Strong"
    if strength >= 4:
        return "Moderate"
    return "Weak"


def _risk_word(score: int) -> str:
    if score <= 3:
        return "low risk"
    if score <= 6:
        return "moderate risk"
    return "high risk"


def generate_summary(coin: CoinSignalSummary) -> str:
    """One-line human readable summary for the prompt; derived, not authoritative"""
    parts = []
    trend_desc = coin.trend.direction.value.lower()
    strength_word = _strength_word(coin.trend.strength)
    longs = coin.count_signals(SignalDirection.LONG)
    shorts = coin.count_signals(SignalDirection.SHORT)

    rec = coin.recommendation
    if rec == Recommendation.STRONG_LONG:
        parts.append(f"Strong bullish setup with {longs} aligned signals")
    elif rec == Recommendation.LONG:
        parts.append(f"{strength_word} {trend_desc} trend with {longs} long signals")
    elif rec == Recommendation.STRONG_SHORT:
        parts.append(f"Strong bearish setup with {shorts} aligned signals")
    elif rec == Recommendation.SHORT:
        parts.append(f"{strength_word} {trend_desc} trend with {shorts} short signals")
    elif coin.regime.type == RegimeType.RANGING:
        parts.append("Ranging market, no clear signals")
    elif coin.regime.type == RegimeType.VOLATILE:
        parts.append("High volatility, mixed signals")
    else:
        parts.append("Neutral setup, waiting for confirmation")

    if coin.divergences:
        div = coin.divergences[0]
        parts.append(f"{div.type.value.lower()} {div.indicator.value} divergence")

    parts.append(_risk_word(coin.risk.score))

    if coin.key_levels.distance_to_resistance_pct < NEAR_LEVEL_PCT:
        parts.append("near resistance")
    elif coin.key_levels.distance_to_support_pct < NEAR_LEVEL_PCT:
        parts.append("near support")

    return ", ".join(parts)


def create_neutral_summary(symbol: str, snapshot: Optional[CoinSnapshot] = None) -> CoinSignalSummary:
    """Documented neutral default used for invalid input and per-symbol faults"""
    return CoinSignalSummary(
        symbol=symbol,
        current_price=snapshot.current_price if snapshot is not None and snapshot.has_price else 0.0,
        trend=TrendAnalysis(),
        regime=RegimeState(type=RegimeType.RANGING),
        key_levels=KeyLevels(),
        entry_signals=[],
        divergences=[],
        risk=RiskAssessment(
            score=5,
            factors=[INSUFFICIENT_DATA_FACTOR],
            counter_trend=False,
            size_multiplier=0.5,
        ),
        rsi14=snapshot.rsi14 if snapshot else 50.0,
        macd=snapshot.macd if snapshot else 0.0,
        macd_signal=0.0,
        funding_rate=snapshot.funding_rate if snapshot else None,
        summary=INSUFFICIENT_DATA_SUMMARY,
        recommendation=Recommendation.NEUTRAL,
    )


def _as_snapshot(symbol: str, data: Union[CoinSnapshot, dict, None]) -> Optional[CoinSnapshot]:
    if data is None or isinstance(data, CoinSnapshot):
        return data
    return CoinSnapshot.from_dict(data, symbol=symbol)


def process_signals(symbol: str, snapshot: Optional[CoinSnapshot]) -> CoinSignalSummary:
    """Run the full analysis for one symbol"""
    if snapshot is None or not snapshot.has_price:
        logger.info("signals_insufficient_data", symbol=symbol)
        return create_neutral_summary(symbol, snapshot)

    trend = analyze_snapshot_trend(snapshot)
    regime = regime_from_snapshot(snapshot)

    prices = snapshot.price_history
    high_24h = snapshot.high_24h if snapshot.high_24h is not None else (
        max(prices) if prices else snapshot.current_price
    )
    low_24h = snapshot.low_24h if snapshot.low_24h is not None else (
        min(prices) if prices else snapshot.current_price
    )
    key_levels = detect_key_levels(prices, snapshot.current_price, high_24h, low_24h)

    divergences = detect_divergences(prices, snapshot.rsi14_history, snapshot.macd_history)

    volume_ratio_4h = (
        snapshot.current_volume_4h / snapshot.avg_volume_4h if snapshot.avg_volume_4h > 0 else 1.0
    )
    signal_input = SignalInput.from_snapshot(snapshot, fallback_volume_ratio=volume_ratio_4h)
    entry_signals = detect_entry_signals(signal_input)
    # Divergences are appended after the strength sort so risk sees them
    entry_signals.extend(_divergence_to_signal(d) for d in divergences)

    risk = assess_risk(
        trend=trend,
        regime=regime,
        signals=entry_signals,
        rsi=snapshot.rsi14,
        distance_to_resistance_pct=key_levels.distance_to_resistance_pct,
        distance_to_support_pct=key_levels.distance_to_support_pct,
        proposed_direction=proposed_direction(entry_signals),
    )

    coin = CoinSignalSummary(
        symbol=symbol,
        current_price=snapshot.current_price,
        trend=trend,
        regime=regime,
        key_levels=key_levels,
        entry_signals=entry_signals,
        divergences=divergences,
        risk=risk,
        rsi14=snapshot.rsi14,
        macd=snapshot.macd,
        macd_signal=signal_input.macd_signal,
        funding_rate=snapshot.funding_rate,
        summary="",
        recommendation=determine_recommendation(trend, entry_signals, risk),
    )
    coin.summary = generate_summary(coin)

    logger.debug(
        "signals_processed",
        symbol=symbol,
        trend=trend.direction.value,
        strength=trend.strength,
        regime=regime.type.value,
        signals=len(entry_signals),
        risk=risk.score,
        recommendation=coin.recommendation.value,
    )
    return coin


def process_all_coins(market_data: MarketData) -> Dict[str, CoinSignalSummary]:
    """Process every symbol independently; a failing symbol gets the neutral summary"""
    results: Dict[str, CoinSignalSummary] = {}
    for symbol, data in market_data.items():
        snapshot = None
        try:
            snapshot = _as_snapshot(symbol, data)
            results[symbol] = process_signals(symbol, snapshot)
        except Exception as e:
            logger.error("signals_symbol_failed", symbol=symbol, error=str(e))
            results[symbol] = create_neutral_summary(symbol, snapshot)
    return results


def compute_market_overview(coins: Mapping[str, CoinSignalSummary]) -> MarketOverview:
    bullish = 0
    bearish = 0
    best_symbol = None
    best_direction = None
    max_signals = 0

    for symbol, coin in coins.items():
        if coin.recommendation in (Recommendation.STRONG_LONG, Recommendation.LONG):
            bullish += 1
        elif coin.recommendation in (Recommendation.STRONG_SHORT, Recommendation.SHORT):
            bearish += 1

        longs = coin.count_signals(SignalDirection.LONG)
        shorts = coin.count_signals(SignalDirection.SHORT)
        coin_max = max(longs, shorts)
        if coin_max > max_signals:
            max_signals = coin_max
            best_symbol = symbol
            best_direction = SignalDirection.LONG if longs > shorts else SignalDirection.SHORT

    total = len(coins)
    if total == 0:
        sentiment = Sentiment.NEUTRAL
    elif bullish > bearish and bullish >= total / 2:
        sentiment = Sentiment.BULLISH
    elif bearish > bullish and bearish >= total / 2:
        sentiment = Sentiment.BEARISH
    elif bullish > 0 and bearish > 0:
        sentiment = Sentiment.MIXED
    else:
        sentiment = Sentiment.NEUTRAL

    return MarketOverview(
        sentiment=sentiment,
        bullish_count=bullish,
        bearish_count=bearish,
        best_opportunity=best_symbol,
        best_direction=best_direction,
        max_signal_count=max_signals,
    )


def process_market_signals(
    market_data: MarketData,
    positions: Optional[List[OpenPosition]] = None,
) -> ProcessedSignals:
    """One full tick: all coins, open positions and the market overview"""
    start = time.perf_counter()

    coins = process_all_coins(market_data)
    position_signals = evaluate_positions(positions or [], coins)
    overview = compute_market_overview(coins)

    elapsed_ms = (time.perf_counter() - start) * 1000
    logger.info(
        "market_signals_processed",
        coins=len(coins),
        positions=len(position_signals),
        sentiment=overview.sentiment.value,
        best=overview.best_opportunity,
        elapsed_ms=round(elapsed_ms, 2),
    )

    return ProcessedSignals(
        timestamp=datetime.now(timezone.utc).isoformat(),
        processing_time_ms=elapsed_ms,
        coins=coins,
        positions=position_signals,
        overview=overview,
    )
