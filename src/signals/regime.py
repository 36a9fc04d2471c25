"""
Regime Classifier
=================

Stateless regime read from two 4h ratios:
- ATR ratio: ATR(3) / ATR(14), short-term vs baseline volatility
- Volume ratio: current 4h volume / average 4h volume

Regime types:
- TRENDING: calm volatility with participation
- VOLATILE: short-term ATR well above baseline
- RANGING: everything else
"""
from src.signals.models import CoinSnapshot, RegimeState, RegimeType, Volatility


class RegimeClassifier:
    """Maps (atr_ratio, volume_ratio) to a regime; no history retained"""

    # Regime type thresholds
    TRENDING_MAX_ATR = 1.2
    TRENDING_MIN_VOLUME = 0.8
    VOLATILE_MIN_ATR = 1.5

    # Volatility bands on ATR ratio
    VOL_LOW = 0.8
    VOL_NORMAL = 1.5
    VOL_HIGH = 2.0

    def classify(self, atr_ratio: float, volume_ratio: float) -> RegimeState:
        return RegimeState(
            type=self._calc_type(atr_ratio, volume_ratio),
            volatility=self._calc_volatility(atr_ratio),
            atr_ratio=round(atr_ratio, 2),
            volume_ratio=round(volume_ratio, 2),
        )

    def classify_snapshot(self, snapshot: CoinSnapshot) -> RegimeState:
        atr_ratio = snapshot.atr3_4h / snapshot.atr14_4h if snapshot.atr14_4h > 0 else 1.0
        volume_ratio = (
            snapshot.current_volume_4h / snapshot.avg_volume_4h
            if snapshot.avg_volume_4h > 0 else 1.0
        )
        return self.classify(atr_ratio, volume_ratio)

    def _calc_type(self, atr_ratio: float, volume_ratio: float) -> RegimeType:
        if atr_ratio < self.TRENDING_MAX_ATR and volume_ratio > self.TRENDING_MIN_VOLUME:
            return RegimeType.TRENDING
        if atr_ratio > self.VOLATILE_MIN_ATR:
            return RegimeType.VOLATILE
        return RegimeType.RANGING

    def _calc_volatility(self, atr_ratio: float) -> Volatility:
        if atr_ratio < self.VOL_LOW:
            return Volatility.LOW
        if atr_ratio < self.VOL_NORMAL:
            return Volatility.NORMAL
        if atr_ratio < self.VOL_HIGH:
            return Volatility.HIGH
        return Volatility.EXTREME


# Singleton instance
_classifier = RegimeClassifier()


def compute_market_regime(atr_ratio: float, volume_ratio: float) -> RegimeState:
    """Convenience function to classify a regime from raw ratios"""
    return _classifier.classify(atr_ratio, volume_ratio)


def regime_from_snapshot(snapshot: CoinSnapshot) -> RegimeState:
    return _classifier.classify_snapshot(snapshot)
