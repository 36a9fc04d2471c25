"""
TREND GUARD TESTS
Veto of OPEN decisions against a strong trend, fail-open on missing data

Run:
    python -m pytest tests/test_trend_guard.py -v
"""
import pytest
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


BEARISH_BTC = {
    "current_price": 95.0,
    "ema20": 100.0,
    "rsi14": 40.0,
    "ema20_4h": 90.0,
    "ema50_4h": 100.0,
}


def open_decision(decision="OPEN_LONG", symbol="BTC"):
    from src.decision.models import TradeDecision, DecisionType

    return TradeDecision(
        decision=DecisionType(decision),
        symbol=symbol,
        confidence=0.8,
        leverage=5,
        size_usd=100,
        stop_loss=90,
        take_profit=110,
    )


def make_guard(snapshots=None):
    from src.core.interfaces import StaticMarketDataProvider
    from src.decision.trend_guard import TrendGuard

    return TrendGuard(StaticMarketDataProvider(snapshots or {}), min_strength=6)


class FailingProvider:
    async def get_snapshot(self, symbol):
        raise RuntimeError("exchange timeout")

    async def get_snapshots(self, symbols):
        raise RuntimeError("exchange timeout")


# ============================================================
# A. PURE EVALUATION
# ============================================================

class TestTrendGuardEvaluate:
    """Test the decision vs trend rule"""

    def test_bearish_blocks_long(self):
        from src.signals.models import TrendAnalysis, TrendDirection

        result = make_guard().evaluate(open_decision(), TrendAnalysis(direction=TrendDirection.BEARISH, strength=7))

        assert result.allowed is False
        assert "BEARISH" in result.reason
        assert "7" in result.reason
        assert result.trend_direction == TrendDirection.BEARISH
        assert result.trend_strength == 7

    def test_bullish_allows_long(self):
        from src.signals.models import TrendAnalysis, TrendDirection

        result = make_guard().evaluate(open_decision(), TrendAnalysis(direction=TrendDirection.BULLISH, strength=7))
        assert result.allowed is True

    def test_weak_opposing_trend_allows(self):
        from src.signals.models import TrendAnalysis, TrendDirection

        result = make_guard().evaluate(open_decision(), TrendAnalysis(direction=TrendDirection.BEARISH, strength=5))
        assert result.allowed is True

    def test_bullish_blocks_short_at_threshold(self):
        from src.signals.models import TrendAnalysis, TrendDirection

        short = open_decision("OPEN_SHORT")
        result = make_guard().evaluate(short, TrendAnalysis(direction=TrendDirection.BULLISH, strength=6))
        assert result.allowed is False

    def test_non_open_passes(self):
        from src.decision.models import TradeDecision, DecisionType
        from src.decision.trend_guard import SKIP_NOT_OPEN
        from src.signals.models import TrendAnalysis, TrendDirection

        close = TradeDecision(decision=DecisionType.CLOSE, symbol="BTC", confidence=0.9)
        result = make_guard().evaluate(close, TrendAnalysis(direction=TrendDirection.BULLISH, strength=10))

        assert result.allowed is True
        assert result.reason == SKIP_NOT_OPEN

    def test_requires_provider(self):
        from src.decision.trend_guard import TrendGuard

        with pytest.raises(ValueError):
            TrendGuard(None)


# ============================================================
# B. LIVE CHECK
# ============================================================

class TestTrendGuardCheck:
    """Test the async check against a market data provider"""

    @pytest.mark.asyncio
    async def test_fresh_bearish_data_blocks(self):
        guard = make_guard({"BTC": BEARISH_BTC})
        result = await guard.check(open_decision())

        assert result.allowed is False
        assert result.reason == "Strong BEARISH trend (strength: 8/10)"
        assert result.price_vs_ema20_pct == -5.0

    @pytest.mark.asyncio
    async def test_missing_data_fails_open(self):
        from src.decision.trend_guard import SKIP_NO_DATA

        result = await make_guard().check(open_decision())

        assert result.allowed is True
        assert result.reason == SKIP_NO_DATA

    @pytest.mark.asyncio
    async def test_nan_price_counts_as_missing_data(self):
        from src.decision.trend_guard import SKIP_NO_DATA

        guard = make_guard({"BTC": dict(BEARISH_BTC, current_price=float("nan"))})
        result = await guard.check(open_decision())

        assert result.allowed is True
        assert result.reason == SKIP_NO_DATA

    @pytest.mark.asyncio
    async def test_fetch_error_fails_open(self):
        from src.decision.trend_guard import TrendGuard, SKIP_FETCH_FAILED

        result = await TrendGuard(FailingProvider()).check(open_decision())

        assert result.allowed is True
        assert result.reason.startswith(SKIP_FETCH_FAILED)

    @pytest.mark.asyncio
    async def test_hold_skips_fetch(self):
        from src.decision.trend_guard import TrendGuard
        from src.decision.parser import DecisionParser

        hold = DecisionParser(tradable_symbols=["BTC"]).safe_hold("nothing to do")
        result = await TrendGuard(FailingProvider()).check(hold)

        assert result.allowed is True
