"""
Key Level Detector
==================

Support/resistance from recent swing points:
1. Swing highs/lows at two lookbacks (3 and 5 bars)
2. Add the 24h extremes, drop near-duplicates (within 0.1%)
3. Greedy-cluster levels within 0.3%, average each cluster
4. Rank clusters by size then proximity, keep the top 3 per side
"""
from typing import List, Optional, Sequence

from src.signals.models import KeyLevels


SWING_LOOKBACKS = (3, 5)
DUPLICATE_THRESHOLD_PCT = 0.1
CLUSTER_THRESHOLD_PCT = 0.3
MAX_LEVELS_PER_SIDE = 3

ABOVE = "above"
BELOW = "below"


def find_swing_highs(prices: Sequence[float], lookback: int = 3) -> List[float]:
    """Points strictly greater than every neighbour within `lookback` on both sides"""
    highs = []
    if len(prices) < lookback * 2 + 1:
        return highs
    for i in range(lookback, len(prices) - lookback):
        current = prices[i]
        window = list(prices[i - lookback:i]) + list(prices[i + 1:i + lookback + 1])
        if all(current > p for p in window):
            highs.append(current)
    return highs


def find_swing_lows(prices: Sequence[float], lookback: int = 3) -> List[float]:
    """Points strictly less than every neighbour within `lookback` on both sides"""
    lows = []
    if len(prices) < lookback * 2 + 1:
        return lows
    for i in range(lookback, len(prices) - lookback):
        current = prices[i]
        window = list(prices[i - lookback:i]) + list(prices[i + 1:i + lookback + 1])
        if all(current < p for p in window):
            lows.append(current)
    return lows


def remove_duplicate_levels(levels: Sequence[float], threshold_pct: float = DUPLICATE_THRESHOLD_PCT) -> List[float]:
    if not levels:
        return []
    ordered = sorted(levels)
    unique = [ordered[0]]
    for level in ordered[1:]:
        last = unique[-1]
        if last == 0 or abs(level - last) / last * 100 > threshold_pct:
            unique.append(level)
    return unique


def cluster_levels(
    levels: Sequence[float],
    current_price: float,
    side: str,
    threshold_pct: float = CLUSTER_THRESHOLD_PCT,
    max_levels: int = MAX_LEVELS_PER_SIDE,
) -> List[float]:
    """
    Cluster levels on one side of price.

    Returns at most `max_levels` cluster averages, nearest to price first.
    """
    if side == ABOVE:
        candidates = sorted(lvl for lvl in levels if lvl > current_price)
    else:
        candidates = sorted(lvl for lvl in levels if lvl < current_price)
    if not candidates:
        return []

    clusters: List[List[float]] = [[candidates[0]]]
    for level in candidates[1:]:
        prev = clusters[-1][-1]
        if prev != 0 and abs(level - prev) / prev * 100 <= threshold_pct:
            clusters[-1].append(level)
        else:
            clusters.append([level])

    averaged = [(sum(c) / len(c), len(c)) for c in clusters]
    averaged.sort(key=lambda item: (-item[1], abs(item[0] - current_price)))

    top = [level for level, _ in averaged[:max_levels]]
    top.sort(key=lambda level: abs(level - current_price))
    return top


def calculate_pivot_point(high: float, low: float, close: float) -> float:
    return (high + low + close) / 3


def calculate_distance_to_level(current_price: float, level: float) -> float:
    """Absolute % distance from price to level"""
    if current_price == 0:
        return 0.0
    return abs((level - current_price) / current_price) * 100


def detect_key_levels(
    price_history: Sequence[float],
    current_price: float,
    high_24h: Optional[float] = None,
    low_24h: Optional[float] = None,
) -> KeyLevels:
    """
    Detect clustered support/resistance around the current price.

    Missing 24h extremes fall back to the history max/min, or to the
    current price when there is no history.
    """
    prices = list(price_history)
    if high_24h is None:
        high_24h = max(prices) if prices else current_price
    if low_24h is None:
        low_24h = min(prices) if prices else current_price

    highs: List[float] = []
    lows: List[float] = []
    for lookback in SWING_LOOKBACKS:
        highs.extend(find_swing_highs(prices, lookback))
        lows.extend(find_swing_lows(prices, lookback))

    all_resistance = remove_duplicate_levels(highs + [high_24h])
    all_support = remove_duplicate_levels(lows + [low_24h])

    resistance = cluster_levels(all_resistance, current_price, ABOVE)
    support = cluster_levels(all_support, current_price, BELOW)

    nearest_resistance = resistance[0] if resistance else high_24h
    nearest_support = support[0] if support else low_24h

    return KeyLevels(
        resistance=resistance,
        support=support,
        high_24h=high_24h,
        low_24h=low_24h,
        pivot_point=calculate_pivot_point(high_24h, low_24h, current_price),
        distance_to_resistance_pct=round(calculate_distance_to_level(current_price, nearest_resistance), 2),
        distance_to_support_pct=round(calculate_distance_to_level(current_price, nearest_support), 2),
    )
