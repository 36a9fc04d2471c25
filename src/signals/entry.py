"""
Entry Signal Detectors
======================

Independent indicator-family detectors, concatenated and sorted
STRONG -> MODERATE -> WEAK (stable).

Active Detectors:
1. RSISignals: oversold/overbought reversal + 50-line momentum cross
2. MACDSignals: MACD crossing its signal line
3. EMASignals: price crossing EMA20 on elevated volume
4. PriceActionSignals: higher-low / lower-high over the last 5 bars
5. VolumeSignals: volume spike confirmation flag

Each detector only reads SignalInput and returns a list; order of
evaluation does not affect the output beyond the stable sort.
"""
from dataclasses import dataclass, field
from typing import List, Sequence

from src.signals.models import (
    CoinSnapshot, EntrySignal, SignalType, SignalStrength, SignalDirection, STRENGTH_ORDER,
)


# Volume spikes carry no direction of their own; they are reported as LONG
# so they fit the two-sided signal model. Counting code treats them like any
# other LONG signal.
VOLUME_SPIKE_DIRECTION = SignalDirection.LONG


@dataclass
class SignalInput:
    """Indicator values the entry detectors read"""
    current_price: float
    ema20: float
    rsi14: float
    macd: float
    macd_signal: float
    volume_ratio: float
    price_history: List[float] = field(default_factory=list)
    rsi14_history: List[float] = field(default_factory=list)
    macd_history: List[float] = field(default_factory=list)

    @classmethod
    def from_snapshot(cls, snapshot: CoinSnapshot, fallback_volume_ratio: float = 1.0) -> "SignalInput":
        """
        Build detector input from a snapshot.

        The MACD signal line is the snapshot's own value when provided,
        otherwise the last MACD history point (or MACD itself).
        """
        if snapshot.macd_signal is not None:
            macd_signal = snapshot.macd_signal
        elif snapshot.macd_history:
            macd_signal = snapshot.macd_history[-1]
        else:
            macd_signal = snapshot.macd

        volume_ratio = snapshot.volume_ratio if snapshot.volume_ratio is not None else fallback_volume_ratio

        return cls(
            current_price=snapshot.current_price,
            ema20=snapshot.ema20,
            rsi14=snapshot.rsi14,
            macd=snapshot.macd,
            macd_signal=macd_signal,
            volume_ratio=volume_ratio,
            price_history=list(snapshot.price_history),
            rsi14_history=list(snapshot.rsi14_history),
            macd_history=list(snapshot.macd_history),
        )


def is_rising(values: Sequence[float], periods: int = 2) -> bool:
    """Strictly increasing over the last `periods` steps"""
    if len(values) < periods + 1:
        return False
    recent = list(values)[-periods - 1:]
    return all(recent[i] > recent[i - 1] for i in range(1, len(recent)))


def is_falling(values: Sequence[float], periods: int = 2) -> bool:
    """Strictly decreasing over the last `periods` steps"""
    if len(values) < periods + 1:
        return False
    recent = list(values)[-periods - 1:]
    return all(recent[i] < recent[i - 1] for i in range(1, len(recent)))


def classify_strength(value: float, weak: float, moderate: float, strong: float) -> SignalStrength:
    # `weak` is the documented floor; anything below moderate is WEAK
    if value >= strong:
        return SignalStrength.STRONG
    if value >= moderate:
        return SignalStrength.MODERATE
    return SignalStrength.WEAK


def sort_by_strength(signals: List[EntrySignal]) -> List[EntrySignal]:
    return sorted(signals, key=lambda s: STRENGTH_ORDER[s.strength])


class RSISignals:
    """
    RSI REVERSAL + MOMENTUM
    =======================

    - Oversold (<30) and rising 2 bars -> LONG, strength from 30 - RSI
    - Overbought (>70) and falling 2 bars -> SHORT, strength from RSI - 70
    - 50-line cross from the previous bar -> momentum, strength from |RSI - 50|
    """

    def __init__(self):
        self.name = "RSI"
        self.oversold = 30.0
        self.overbought = 70.0
        self.midline = 50.0
        self.extreme_bands = (2.0, 5.0, 10.0)
        self.momentum_bands = (1.0, 3.0, 5.0)

    def evaluate(self, data: SignalInput) -> List[EntrySignal]:
        signals: List[EntrySignal] = []
        rsi = data.rsi14
        history = list(data.rsi14_history) + [rsi]

        if rsi < self.oversold and is_rising(history, 2):
            signals.append(EntrySignal(
                type=SignalType.RSI_OVERSOLD,
                strength=classify_strength(self.oversold - rsi, *self.extreme_bands),
                direction=SignalDirection.LONG,
                description=f"RSI at {rsi:.1f} (oversold) and rising - potential reversal",
            ))

        if rsi > self.overbought and is_falling(history, 2):
            signals.append(EntrySignal(
                type=SignalType.RSI_OVERBOUGHT,
                strength=classify_strength(rsi - self.overbought, *self.extreme_bands),
                direction=SignalDirection.SHORT,
                description=f"RSI at {rsi:.1f} (overbought) and falling - potential reversal",
            ))

        if len(history) >= 2:
            prev = history[-2]
            if prev < self.midline <= rsi:
                signals.append(EntrySignal(
                    type=SignalType.RSI_MOMENTUM_BULL,
                    strength=classify_strength(rsi - self.midline, *self.momentum_bands),
                    direction=SignalDirection.LONG,
                    description=f"RSI crossed above 50 ({prev:.1f} -> {rsi:.1f}) - bullish momentum shift",
                ))
            if prev > self.midline >= rsi:
                signals.append(EntrySignal(
                    type=SignalType.RSI_MOMENTUM_BEAR,
                    strength=classify_strength(self.midline - rsi, *self.momentum_bands),
                    direction=SignalDirection.SHORT,
                    description=f"RSI crossed below 50 ({prev:.1f} -> {rsi:.1f}) - bearish momentum shift",
                ))

        return signals


class MACDSignals:
    """MACD vs signal line crossover; strength from |MACD - signal|"""

    def __init__(self):
        self.name = "MACD"
        self.bands = (0.5, 2.0, 5.0)

    def evaluate(self, data: SignalInput) -> List[EntrySignal]:
        signals: List[EntrySignal] = []
        if not data.macd_history:
            return signals

        prev_macd = data.macd_history[-1]
        diff = data.macd - data.macd_signal
        prev_diff = prev_macd - data.macd_signal

        if prev_diff < 0 and diff >= 0:
            signals.append(EntrySignal(
                type=SignalType.MACD_CROSS_BULL,
                strength=classify_strength(abs(diff), *self.bands),
                direction=SignalDirection.LONG,
                description="MACD crossed above signal line - bullish crossover",
            ))

        if prev_diff > 0 and diff <= 0:
            signals.append(EntrySignal(
                type=SignalType.MACD_CROSS_BEAR,
                strength=classify_strength(abs(diff), *self.bands),
                direction=SignalDirection.SHORT,
                description="MACD crossed below signal line - bearish crossover",
            ))

        return signals


class EMASignals:
    """Price crossing EMA20 since the previous bar, volume ratio >= 1.2"""

    def __init__(self):
        self.name = "EMA"
        self.min_volume_ratio = 1.2
        self.bands = (0.1, 0.3, 0.5)

    def evaluate(self, data: SignalInput) -> List[EntrySignal]:
        signals: List[EntrySignal] = []
        if not data.price_history or data.ema20 == 0:
            return signals
        if data.volume_ratio < self.min_volume_ratio:
            return signals

        prev_price = data.price_history[-1]
        price, ema = data.current_price, data.ema20

        if prev_price < ema <= price:
            breakout_pct = (price - ema) / ema * 100
            signals.append(EntrySignal(
                type=SignalType.EMA_BREAKOUT_BULL,
                strength=classify_strength(breakout_pct, *self.bands),
                direction=SignalDirection.LONG,
                description=f"Price broke above EMA20 with {data.volume_ratio:.1f}x volume",
            ))

        if prev_price > ema >= price:
            breakout_pct = (ema - price) / ema * 100
            signals.append(EntrySignal(
                type=SignalType.EMA_BREAKOUT_BEAR,
                strength=classify_strength(breakout_pct, *self.bands),
                direction=SignalDirection.SHORT,
                description=f"Price broke below EMA20 with {data.volume_ratio:.1f}x volume",
            ))

        return signals


class PriceActionSignals:
    """Higher-low / lower-high from strict 3-point extrema in the last 5 bars"""

    def __init__(self):
        self.name = "PRICE_ACTION"
        self.window = 5
        self.bands = (0.1, 0.3, 0.5)

    def evaluate(self, data: SignalInput) -> List[EntrySignal]:
        signals: List[EntrySignal] = []
        if len(data.price_history) < self.window:
            return signals

        recent = data.price_history[-self.window:]
        lows: List[float] = []
        highs: List[float] = []
        for i in range(1, len(recent) - 1):
            prev, curr, nxt = recent[i - 1], recent[i], recent[i + 1]
            if curr < prev and curr < nxt:
                lows.append(curr)
            if curr > prev and curr > nxt:
                highs.append(curr)

        if len(lows) >= 2 and lows[-1] > lows[-2] and lows[-2] != 0:
            improvement = (lows[-1] - lows[-2]) / lows[-2] * 100
            signals.append(EntrySignal(
                type=SignalType.HIGHER_LOW,
                strength=classify_strength(improvement, *self.bands),
                direction=SignalDirection.LONG,
                description=f"Higher low formation detected ({improvement:.2f}% improvement)",
            ))

        if len(highs) >= 2 and highs[-1] < highs[-2] and highs[-2] != 0:
            decline = (highs[-2] - highs[-1]) / highs[-2] * 100
            signals.append(EntrySignal(
                type=SignalType.LOWER_HIGH,
                strength=classify_strength(decline, *self.bands),
                direction=SignalDirection.SHORT,
                description=f"Lower high formation detected ({decline:.2f}% decline)",
            ))

        return signals


class VolumeSignals:
    """Volume ratio >= 1.5 -> VOLUME_SPIKE (direction fixed, see VOLUME_SPIKE_DIRECTION)"""

    def __init__(self):
        self.name = "VOLUME"
        self.spike_threshold = 1.5
        self.bands = (1.5, 2.0, 2.5)

    def evaluate(self, data: SignalInput) -> List[EntrySignal]:
        if data.volume_ratio < self.spike_threshold:
            return []
        return [EntrySignal(
            type=SignalType.VOLUME_SPIKE,
            strength=classify_strength(data.volume_ratio, *self.bands),
            direction=VOLUME_SPIKE_DIRECTION,
            description=f"Volume spike at {data.volume_ratio:.1f}x average - increased interest",
        )]


class EntrySignalDetector:
    """Runs every detector and returns the combined, strength-sorted list"""

    def __init__(self):
        self.detectors = [
            RSISignals(),
            MACDSignals(),
            EMASignals(),
            PriceActionSignals(),
            VolumeSignals(),
        ]

    def detect(self, data: SignalInput) -> List[EntrySignal]:
        signals: List[EntrySignal] = []
        for detector in self.detectors:
            signals.extend(detector.evaluate(data))
        return sort_by_strength(signals)


_detector = EntrySignalDetector()


def detect_entry_signals(data: SignalInput) -> List[EntrySignal]:
    """Convenience function over the shared detector"""
    return _detector.detect(data)
