"""
Divergence Detector
===================

Price vs oscillator divergence over the last 5 bars:
- BULLISH: price lower low, indicator higher low
- BEARISH: price higher high, indicator lower high

Checked independently for RSI and MACD; bullish takes priority per indicator.
"""
from typing import List, Optional, Sequence

from src.signals.models import Divergence, DivergenceType, DivergenceIndicator, SignalStrength


MIN_CANDLES = 5
LOOKBACK = 5

# Indicator swing weight relative to price swing %
INDICATOR_WEIGHT = 0.1
STRONG_THRESHOLD = 4.0
MODERATE_THRESHOLD = 2.0


def find_local_lows(values: Sequence[float]) -> List[float]:
    """Troughs including window endpoints (non-strict neighbour comparison)"""
    lows = []
    n = len(values)
    if n < 2:
        return lows
    if values[0] <= values[1]:
        lows.append(values[0])
    for i in range(1, n - 1):
        if values[i] <= values[i - 1] and values[i] <= values[i + 1]:
            lows.append(values[i])
    if values[n - 1] <= values[n - 2]:
        lows.append(values[n - 1])
    return lows


def find_local_highs(values: Sequence[float]) -> List[float]:
    """Peaks including window endpoints (non-strict neighbour comparison)"""
    highs = []
    n = len(values)
    if n < 2:
        return highs
    if values[0] >= values[1]:
        highs.append(values[0])
    for i in range(1, n - 1):
        if values[i] >= values[i - 1] and values[i] >= values[i + 1]:
            highs.append(values[i])
    if values[n - 1] >= values[n - 2]:
        highs.append(values[n - 1])
    return highs


def _is_lower_low(values: Sequence[float]) -> bool:
    lows = find_local_lows(values)
    return len(lows) >= 2 and lows[-1] < lows[-2]


def _is_higher_low(values: Sequence[float]) -> bool:
    lows = find_local_lows(values)
    return len(lows) >= 2 and lows[-1] > lows[-2]


def _is_higher_high(values: Sequence[float]) -> bool:
    highs = find_local_highs(values)
    return len(highs) >= 2 and highs[-1] > highs[-2]


def _is_lower_high(values: Sequence[float]) -> bool:
    highs = find_local_highs(values)
    return len(highs) >= 2 and highs[-1] < highs[-2]


def _calc_strength(prices: Sequence[float], indicator: Sequence[float]) -> SignalStrength:
    lo, hi = min(prices), max(prices)
    mid = (lo + hi) / 2
    price_delta = (hi - lo) / mid * 100 if mid != 0 else 0.0
    indicator_delta = max(indicator) - min(indicator)

    score = abs(price_delta) + abs(indicator_delta) * INDICATOR_WEIGHT
    if score >= STRONG_THRESHOLD:
        return SignalStrength.STRONG
    if score >= MODERATE_THRESHOLD:
        return SignalStrength.MODERATE
    return SignalStrength.WEAK


def detect_divergence(
    prices: Sequence[float],
    indicator: Sequence[float],
    indicator_name: DivergenceIndicator,
) -> Optional[Divergence]:
    if len(prices) < MIN_CANDLES or len(indicator) < MIN_CANDLES:
        return None

    recent_prices = list(prices)[-LOOKBACK:]
    recent_indicator = list(indicator)[-LOOKBACK:]
    name = indicator_name.value

    if _is_lower_low(recent_prices) and _is_higher_low(recent_indicator):
        return Divergence(
            type=DivergenceType.BULLISH,
            indicator=indicator_name,
            strength=_calc_strength(recent_prices, recent_indicator),
            description=(
                f"Bullish {name} divergence: Price made lower low while {name} "
                f"made higher low, suggesting potential reversal upward"
            ),
        )

    if _is_higher_high(recent_prices) and _is_lower_high(recent_indicator):
        return Divergence(
            type=DivergenceType.BEARISH,
            indicator=indicator_name,
            strength=_calc_strength(recent_prices, recent_indicator),
            description=(
                f"Bearish {name} divergence: Price made higher high while {name} "
                f"made lower high, suggesting potential reversal downward"
            ),
        )

    return None


def detect_divergences(
    price_history: Sequence[float],
    rsi_history: Sequence[float],
    macd_history: Sequence[float],
) -> List[Divergence]:
    """RSI then MACD divergences against price; both may fire"""
    divergences = []

    rsi_div = detect_divergence(price_history, rsi_history, DivergenceIndicator.RSI)
    if rsi_div:
        divergences.append(rsi_div)

    macd_div = detect_divergence(price_history, macd_history, DivergenceIndicator.MACD)
    if macd_div:
        divergences.append(macd_div)

    return divergences
