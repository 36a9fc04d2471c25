"""
SIGNAL ANALYSIS TESTS
Trend, regime, levels, divergence, entry signals, risk, positions and the
per-tick processor

Run:
    python -m pytest tests/test_signals.py -v
"""
import pytest
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def make_input(**overrides):
    from src.signals.entry import SignalInput

    values = dict(
        current_price=100.0,
        ema20=100.0,
        rsi14=50.0,
        macd=0.0,
        macd_signal=0.0,
        volume_ratio=1.0,
    )
    values.update(overrides)
    return SignalInput(**values)


def make_coin(symbol="BTC", **overrides):
    from src.signals.processor import create_neutral_summary
    from src.signals.models import KeyLevels

    coin = create_neutral_summary(symbol)
    coin.key_levels = KeyLevels(distance_to_resistance_pct=5.0, distance_to_support_pct=5.0)
    coin.risk.score = 3
    for name, value in overrides.items():
        setattr(coin, name, value)
    return coin


# ============================================================
# A. TREND
# ============================================================

class TestTrendAnalyzer:
    """Test multi-timeframe trend read"""

    def test_bullish_example(self):
        from src.signals.trend import analyze_trend
        from src.signals.models import TrendDirection

        trend = analyze_trend(current_price=105, ema20=100, ema20_4h=110, ema50_4h=100, rsi14=60)

        assert trend.direction == TrendDirection.BULLISH
        assert trend.price_vs_ema20_pct == 5.0
        assert trend.ema20_vs_ema50_pct == 10.0
        # separation 4 + RSI 2 + consistency 2
        assert trend.strength == 8
        assert trend.timeframe_alignment is True

    def test_deterministic(self):
        from src.signals.trend import analyze_trend

        a = analyze_trend(105, 100, 110, 100, 60, [50, 55, 60])
        b = analyze_trend(105, 100, 110, 100, 60, [50, 55, 60])
        assert a == b

    def test_disagreeing_signs_are_neutral(self):
        from src.signals.trend import analyze_trend
        from src.signals.models import TrendDirection

        trend = analyze_trend(current_price=101, ema20=100, ema20_4h=99, ema50_4h=100, rsi14=50)

        assert trend.direction == TrendDirection.NEUTRAL
        assert trend.timeframe_alignment is False
        assert 1 <= trend.strength <= 10

    def test_zero_price_default(self):
        from src.signals.trend import analyze_trend
        from src.signals.models import TrendAnalysis, TrendDirection, Momentum

        trend = analyze_trend(current_price=0, ema20=100, ema20_4h=100, ema50_4h=100, rsi14=50)

        assert trend == TrendAnalysis()
        assert trend.direction == TrendDirection.NEUTRAL
        assert trend.strength == 1
        assert trend.momentum == Momentum.STEADY

    def test_strength_bounds(self):
        from src.signals.trend import calculate_trend_strength

        for fast, slow, rsi in [(0, 0, 50), (20, 30, 90), (-20, -30, 5), (5, -5, 50), (float("nan"), 1, 50)]:
            strength = calculate_trend_strength(fast, slow, rsi)
            assert 1 <= strength <= 10

    def test_momentum(self):
        from src.signals.trend import detect_momentum
        from src.signals.models import Momentum

        assert detect_momentum([40, 42, 44, 46]) == Momentum.ACCELERATING
        assert detect_momentum([60, 55, 50]) == Momentum.DECELERATING
        assert detect_momentum([50, 50, 50]) == Momentum.STEADY
        assert detect_momentum([50]) == Momentum.STEADY


# ============================================================
# B. REGIME
# ============================================================

class TestRegimeClassifier:
    """Test ATR / volume regime classification"""

    def test_trending(self):
        from src.signals.regime import compute_market_regime
        from src.signals.models import RegimeType, Volatility

        regime = compute_market_regime(1.0, 1.0)
        assert regime.type == RegimeType.TRENDING
        assert regime.volatility == Volatility.NORMAL

    def test_volatile(self):
        from src.signals.regime import compute_market_regime
        from src.signals.models import RegimeType, Volatility

        assert compute_market_regime(1.8, 1.0).type == RegimeType.VOLATILE
        assert compute_market_regime(1.8, 1.0).volatility == Volatility.HIGH
        assert compute_market_regime(2.5, 0.5).volatility == Volatility.EXTREME

    def test_ranging(self):
        from src.signals.regime import compute_market_regime
        from src.signals.models import RegimeType, Volatility

        assert compute_market_regime(1.3, 0.5).type == RegimeType.RANGING
        low = compute_market_regime(0.5, 0.5)
        assert low.type == RegimeType.RANGING
        assert low.volatility == Volatility.LOW

    def test_snapshot_without_baselines(self):
        from src.signals.regime import regime_from_snapshot
        from src.signals.models import CoinSnapshot

        regime = regime_from_snapshot(CoinSnapshot(symbol="BTC", current_price=100))
        assert regime.atr_ratio == 1.0
        assert regime.volume_ratio == 1.0


# ============================================================
# C. KEY LEVELS
# ============================================================

class TestKeyLevels:
    """Test swing detection and clustering"""

    def test_swings(self):
        from src.signals.levels import find_swing_highs, find_swing_lows

        assert find_swing_highs([1, 2, 3, 10, 3, 2, 1], 3) == [10]
        assert find_swing_lows([9, 8, 7, 1, 7, 8, 9], 3) == [1]
        assert find_swing_highs([1, 2, 3], 3) == []

    def test_cluster_above(self):
        from src.signals.levels import cluster_levels, ABOVE

        levels = cluster_levels([101.0, 101.2, 104.0, 99.0], 100.0, ABOVE)
        assert levels == [pytest.approx(101.1), pytest.approx(104.0)]

    def test_cluster_below(self):
        from src.signals.levels import cluster_levels, BELOW

        assert cluster_levels([99.0, 102.0], 100.0, BELOW) == [99.0]

    def test_detect_without_history(self):
        from src.signals.levels import detect_key_levels

        levels = detect_key_levels([], 100.0, high_24h=105.0, low_24h=95.0)

        assert levels.resistance == [105.0]
        assert levels.support == [95.0]
        assert levels.pivot_point == pytest.approx(100.0)
        assert levels.distance_to_resistance_pct == 5.0
        assert levels.distance_to_support_pct == 5.0

    def test_levels_on_correct_side(self):
        from src.signals.levels import detect_key_levels

        history = [100, 102, 104, 103, 101, 99, 97, 98, 100, 103, 105, 104, 102, 100, 101]
        levels = detect_key_levels(history, 101.5)

        assert all(r > 101.5 for r in levels.resistance)
        assert all(s < 101.5 for s in levels.support)
        assert len(levels.resistance) <= 3
        assert len(levels.support) <= 3


# ============================================================
# D. DIVERGENCE
# ============================================================

class TestDivergence:
    """Test price vs oscillator divergence"""

    def test_bullish_rsi_divergence(self):
        from src.signals.divergence import detect_divergence
        from src.signals.models import DivergenceType, DivergenceIndicator, SignalStrength

        div = detect_divergence([100, 95, 98, 93, 96], [30, 25, 35, 28, 40], DivergenceIndicator.RSI)

        assert div is not None
        assert div.type == DivergenceType.BULLISH
        assert div.indicator == DivergenceIndicator.RSI
        assert div.strength == SignalStrength.STRONG
        assert div.description.startswith("Bullish RSI divergence")

    def test_bearish_divergence(self):
        from src.signals.divergence import detect_divergence
        from src.signals.models import DivergenceType, DivergenceIndicator

        div = detect_divergence([100, 105, 102, 107, 104], [70, 75, 65, 72, 60], DivergenceIndicator.MACD)

        assert div is not None
        assert div.type == DivergenceType.BEARISH

    def test_too_few_candles(self):
        from src.signals.divergence import detect_divergence
        from src.signals.models import DivergenceIndicator

        assert detect_divergence([100, 95, 98, 93], [30, 25, 35, 28], DivergenceIndicator.RSI) is None

    def test_detect_both_indicators(self):
        from src.signals.divergence import detect_divergences

        divs = detect_divergences([100, 95, 98, 93, 96], [30, 25, 35, 28, 40], [0.1])
        assert len(divs) == 1


# ============================================================
# E. ENTRY SIGNALS
# ============================================================

class TestEntrySignals:
    """Test the independent entry detectors"""

    def test_quiet_market_has_no_signals(self):
        from src.signals.entry import detect_entry_signals

        assert detect_entry_signals(make_input()) == []

    def test_rsi_oversold_rising(self):
        from src.signals.entry import detect_entry_signals
        from src.signals.models import SignalType, SignalStrength, SignalDirection

        signals = detect_entry_signals(make_input(rsi14=25.0, rsi14_history=[20.0, 22.0]))

        assert len(signals) == 1
        assert signals[0].type == SignalType.RSI_OVERSOLD
        assert signals[0].strength == SignalStrength.MODERATE
        assert signals[0].direction == SignalDirection.LONG

    def test_rsi_midline_cross(self):
        from src.signals.entry import detect_entry_signals
        from src.signals.models import SignalType, SignalStrength

        signals = detect_entry_signals(make_input(rsi14=56.0, rsi14_history=[45.0]))

        assert [s.type for s in signals] == [SignalType.RSI_MOMENTUM_BULL]
        assert signals[0].strength == SignalStrength.STRONG

    def test_macd_cross(self):
        from src.signals.entry import detect_entry_signals
        from src.signals.models import SignalType, SignalDirection

        signals = detect_entry_signals(make_input(macd=1.0, macd_signal=0.0, macd_history=[-1.0]))

        assert [s.type for s in signals] == [SignalType.MACD_CROSS_BULL]
        assert signals[0].direction == SignalDirection.LONG

    def test_ema_breakout_needs_volume(self):
        from src.signals.entry import detect_entry_signals
        from src.signals.models import SignalType, SignalStrength

        quiet = detect_entry_signals(make_input(current_price=100.6, price_history=[99.0]))
        loud = detect_entry_signals(make_input(current_price=100.6, price_history=[99.0], volume_ratio=1.3))

        assert quiet == []
        assert [s.type for s in loud] == [SignalType.EMA_BREAKOUT_BULL]
        assert loud[0].strength == SignalStrength.STRONG

    def test_higher_low(self):
        from src.signals.entry import detect_entry_signals
        from src.signals.models import SignalType

        signals = detect_entry_signals(make_input(price_history=[100.0, 98.0, 101.0, 99.0, 102.0]))
        assert [s.type for s in signals] == [SignalType.HIGHER_LOW]

    def test_volume_spike_direction(self):
        from src.signals.entry import detect_entry_signals, VOLUME_SPIKE_DIRECTION
        from src.signals.models import SignalType, SignalStrength

        signals = detect_entry_signals(make_input(volume_ratio=1.5))

        assert [s.type for s in signals] == [SignalType.VOLUME_SPIKE]
        assert signals[0].direction == VOLUME_SPIKE_DIRECTION
        assert signals[0].strength == SignalStrength.WEAK

    def test_sorted_by_strength(self):
        from src.signals.entry import detect_entry_signals
        from src.signals.models import SignalType

        signals = detect_entry_signals(make_input(rsi14=25.0, rsi14_history=[20.0, 22.0], volume_ratio=2.6))
        assert [s.type for s in signals] == [SignalType.VOLUME_SPIKE, SignalType.RSI_OVERSOLD]

    def test_signal_line_fallback(self):
        from src.signals.entry import SignalInput
        from src.signals.models import CoinSnapshot

        snapshot = CoinSnapshot(symbol="BTC", current_price=100, macd=0.3, macd_history=[0.1, 0.2])
        data = SignalInput.from_snapshot(snapshot, fallback_volume_ratio=1.7)

        assert data.macd_signal == 0.2
        assert data.volume_ratio == 1.7


# ============================================================
# F. RISK
# ============================================================

class TestRiskAssessor:
    """Test factor scoring and size multiplier"""

    def test_base_score(self):
        from src.signals.risk import calculate_risk_score

        assert calculate_risk_score([]) == 3

    def test_half_step_rounds_up(self):
        from src.signals.risk import calculate_risk_score, NEAR_RESISTANCE, EXTREME_VOLATILITY, COUNTER_TREND

        assert calculate_risk_score([NEAR_RESISTANCE]) == 4
        assert calculate_risk_score([EXTREME_VOLATILITY, COUNTER_TREND]) == 7

    def test_size_multiplier_steps(self):
        from src.signals.risk import calculate_size_multiplier

        assert calculate_size_multiplier(3) == 1.0
        assert calculate_size_multiplier(5) == 0.75
        assert calculate_size_multiplier(7) == 0.5
        assert calculate_size_multiplier(9) == 0.25

        values = [calculate_size_multiplier(s) for s in range(1, 11)]
        assert values == sorted(values, reverse=True)

    def test_everything_wrong_clamps_to_ten(self):
        from src.signals import risk
        from src.signals.models import (
            EntrySignal, RegimeState, SignalDirection, SignalStrength, SignalType, TrendAnalysis,
            TrendDirection,
        )

        trend = TrendAnalysis(direction=TrendDirection.BEARISH, strength=7, ema20_vs_ema50_pct=-1.0)
        regime = RegimeState(atr_ratio=2.5, volume_ratio=0.5)
        signals = [
            EntrySignal(SignalType.HIGHER_LOW, SignalStrength.WEAK, SignalDirection.LONG, "a"),
            EntrySignal(SignalType.LOWER_HIGH, SignalStrength.WEAK, SignalDirection.SHORT, "b"),
        ]

        result = risk.assess_risk(trend, regime, signals, 75, 0.5, 5.0, SignalDirection.LONG)

        assert result.score == 10
        assert result.counter_trend is True
        assert result.size_multiplier == 0.25
        for factor in (risk.EXTREME_VOLATILITY, risk.RSI_OVERBOUGHT, risk.LOW_VOLUME, risk.COUNTER_TREND,
                       risk.NEAR_RESISTANCE, risk.CONFLICTING_SIGNALS, risk.WEAK_SIGNALS,
                       risk.BEARISH_4H_TREND):
            assert factor in result.factors
        assert risk.NEAR_SUPPORT not in result.factors

    def test_no_proposal_no_counter_trend(self):
        from src.signals.risk import assess_risk, COUNTER_TREND
        from src.signals.models import RegimeState, TrendAnalysis, TrendDirection

        trend = TrendAnalysis(direction=TrendDirection.BEARISH, strength=9)
        result = assess_risk(trend, RegimeState(), [], 50, 5.0, 5.0)

        assert result.counter_trend is False
        assert COUNTER_TREND not in result.factors
        assert 1 <= result.score <= 10


# ============================================================
# G. POSITIONS
# ============================================================

class TestPositionEvaluator:
    """Test close / invalidation triggers"""

    def _long(self, **kwargs):
        from src.signals.models import OpenPosition, SignalDirection

        return OpenPosition(symbol="BTC", side=SignalDirection.LONG, entry_price=100.0, size=1.0, **kwargs)

    def test_trend_reversal_closes_long(self):
        from src.signals.positions import evaluate_position
        from src.signals.models import TrendAnalysis, TrendDirection

        coin = make_coin(trend=TrendAnalysis(direction=TrendDirection.BEARISH, strength=7))
        result = evaluate_position(self._long(), coin)

        assert result.should_close is True
        assert result.invalidation_triggered is True
        assert result.close_reason == "Trend reversed against long position"

    def test_strong_opposing_signals(self):
        from src.signals.positions import evaluate_position
        from src.signals.models import EntrySignal, SignalDirection, SignalStrength, SignalType

        opposing = [
            EntrySignal(SignalType.LOWER_HIGH, SignalStrength.STRONG, SignalDirection.SHORT, "a"),
            EntrySignal(SignalType.MACD_CROSS_BEAR, SignalStrength.STRONG, SignalDirection.SHORT, "b"),
        ]
        result = evaluate_position(self._long(), make_coin(entry_signals=opposing))

        assert result.should_close is True
        assert result.invalidation_reason == "2 strong opposing signals"

    def test_high_risk_closes_without_invalidation(self):
        from src.signals.positions import evaluate_position

        coin = make_coin()
        coin.risk.score = 8
        result = evaluate_position(self._long(), coin)

        assert result.should_close is True
        assert result.invalidation_triggered is False
        assert result.close_reason == "Very high risk conditions detected"

    def test_healthy_position_holds(self):
        from src.signals.positions import evaluate_position

        result = evaluate_position(self._long(), make_coin(current_price=110.0))

        assert result.should_close is False
        assert result.near_stop_loss is False
        assert result.pnl_pct == 10.0

    def test_short_pnl_and_missing_coin(self):
        from src.signals.positions import evaluate_positions
        from src.signals.models import OpenPosition, SignalDirection

        short = OpenPosition(symbol="ETH", side=SignalDirection.SHORT, entry_price=100.0, size=1.0)
        orphan = OpenPosition(symbol="DOGE", side=SignalDirection.LONG, entry_price=1.0, size=1.0)

        results = evaluate_positions([short, orphan], {"ETH": make_coin("ETH", current_price=110.0)})

        assert results[0].pnl_pct == -10.0
        assert results[1].symbol == "DOGE"
        assert results[1].should_close is False


# ============================================================
# H. PROCESSOR
# ============================================================

BULLISH_SNAPSHOT = {
    "current_price": 105.0,
    "ema20": 100.0,
    "rsi14": 60.0,
    "ema20_4h": 110.0,
    "ema50_4h": 100.0,
    "atr3_4h": 1.0,
    "atr14_4h": 1.0,
    "current_volume_4h": 100.0,
    "avg_volume_4h": 100.0,
}


class TestSignalProcessor:
    """Test the per-symbol and batch processors"""

    def test_missing_snapshot_is_neutral(self):
        from src.signals.processor import process_signals, INSUFFICIENT_DATA_SUMMARY
        from src.signals.models import Recommendation

        coin = process_signals("BTC", None)

        assert coin.recommendation == Recommendation.NEUTRAL
        assert coin.risk.score == 5
        assert coin.risk.factors == ["Insufficient data"]
        assert coin.summary == INSUFFICIENT_DATA_SUMMARY

    def test_non_finite_price_is_neutral(self):
        from src.signals.processor import process_signals, INSUFFICIENT_DATA_SUMMARY
        from src.signals.models import CoinSnapshot

        for price in (float("nan"), float("inf")):
            snapshot = CoinSnapshot.from_dict(dict(BULLISH_SNAPSHOT, current_price=price), symbol="BTC")
            coin = process_signals("BTC", snapshot)

            assert coin.summary == INSUFFICIENT_DATA_SUMMARY
            assert coin.current_price == 0.0

    def test_bullish_snapshot(self):
        from src.signals.processor import process_signals
        from src.signals.models import CoinSnapshot, RegimeType, TrendDirection

        coin = process_signals("BTC", CoinSnapshot.from_dict(BULLISH_SNAPSHOT, symbol="BTC"))

        assert coin.trend.direction == TrendDirection.BULLISH
        assert coin.regime.type == RegimeType.TRENDING
        assert coin.summary

    def test_batch_isolates_bad_symbol(self):
        from src.signals.processor import process_all_coins, INSUFFICIENT_DATA_SUMMARY
        from src.signals.models import TrendDirection

        coins = process_all_coins({
            "BTC": BULLISH_SNAPSHOT,
            "BAD": dict(BULLISH_SNAPSHOT, price_history=["not-a-number"]),
        })

        assert coins["BTC"].trend.direction == TrendDirection.BULLISH
        assert coins["BAD"].summary == INSUFFICIENT_DATA_SUMMARY

    def test_recommendation_gates(self):
        from src.signals.processor import determine_recommendation
        from src.signals.models import (
            EntrySignal, Recommendation, RiskAssessment, SignalDirection, SignalStrength, SignalType,
            TrendAnalysis, TrendDirection,
        )

        trend = TrendAnalysis(direction=TrendDirection.BULLISH, strength=7)
        long_signal = EntrySignal(SignalType.HIGHER_LOW, SignalStrength.STRONG, SignalDirection.LONG, "x")

        assert determine_recommendation(trend, [long_signal] * 3, RiskAssessment(score=4)) == Recommendation.STRONG_LONG
        assert determine_recommendation(trend, [long_signal] * 3, RiskAssessment(score=6)) == Recommendation.LONG
        assert determine_recommendation(trend, [long_signal], RiskAssessment(score=2)) == Recommendation.NEUTRAL

    def test_market_overview(self):
        from src.signals.processor import compute_market_overview
        from src.signals.models import (
            EntrySignal, Recommendation, Sentiment, SignalDirection, SignalStrength, SignalType,
        )

        long_signal = EntrySignal(SignalType.HIGHER_LOW, SignalStrength.STRONG, SignalDirection.LONG, "x")
        coins = {
            "BTC": make_coin("BTC", recommendation=Recommendation.LONG, entry_signals=[long_signal] * 2),
            "ETH": make_coin("ETH"),
        }
        overview = compute_market_overview(coins)

        assert overview.sentiment == Sentiment.BULLISH
        assert overview.bullish_count == 1
        assert overview.best_opportunity == "BTC"
        assert overview.best_direction == SignalDirection.LONG
        assert overview.max_signal_count == 2

        empty = compute_market_overview({})
        assert empty.sentiment == Sentiment.NEUTRAL
        assert empty.best_opportunity is None

    def test_process_market_signals_serialises(self):
        import orjson
        from src.signals.processor import process_market_signals
        from src.signals.models import OpenPosition, SignalDirection

        position = OpenPosition(symbol="BTC", side=SignalDirection.SHORT, entry_price=100.0, size=1.0)
        result = process_market_signals({"BTC": BULLISH_SNAPSHOT}, [position])

        payload = orjson.loads(orjson.dumps(result.to_dict()))
        assert "BTC" in payload["coins"]
        assert payload["positions"][0]["symbol"] == "BTC"
        assert payload["overview"]["sentiment"] in ("BULLISH", "BEARISH", "MIXED", "NEUTRAL")
