"""
Trend Guard
===========

Last check before an OPEN reaches execution: re-derive the symbol's trend
from fresh market data and veto entries against a strong trend.

- OPEN_LONG blocked by BEARISH trend with strength >= 6
- OPEN_SHORT blocked by BULLISH trend with strength >= 6
- Non-OPEN decisions pass untouched
- Missing or failing market data fails open (allowed) with its own reason
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog

from config.settings import settings
from src.core.interfaces import MarketDataProvider
from src.decision.models import DecisionType, TradeDecision
from src.signals.models import CoinSnapshot, TrendAnalysis, TrendDirection
from src.signals.trend import analyze_snapshot_trend

logger = structlog.get_logger(__name__)


SKIP_NOT_OPEN = "Not an open trade - trend guard skipped"
SKIP_NO_DATA = "No market data available - trend guard skipped"
SKIP_FETCH_FAILED = "Market data fetch failed - trend guard skipped"


@dataclass
class TrendGuardResult:
    """Outcome of the guard; blocked results carry the trend evidence"""
    allowed: bool
    reason: str
    trend_direction: Optional[TrendDirection] = None
    trend_strength: Optional[int] = None
    price_vs_ema20_pct: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "trend_direction": self.trend_direction.value if self.trend_direction else None,
            "trend_strength": self.trend_strength,
            "price_vs_ema20_pct": self.price_vs_ema20_pct,
        }


class TrendGuard:
    def __init__(self, provider: MarketDataProvider, min_strength: Optional[int] = None):
        if provider is None:
            raise ValueError("TrendGuard requires a market data provider")
        self.provider = provider
        self.min_strength = min_strength if min_strength is not None else settings.TREND_GUARD_MIN_STRENGTH

    def evaluate(self, decision: TradeDecision, trend: TrendAnalysis) -> TrendGuardResult:
        """Pure check of an OPEN decision against an already-derived trend"""
        if not decision.is_open:
            return TrendGuardResult(allowed=True, reason=SKIP_NOT_OPEN)

        blocking = (
            TrendDirection.BEARISH if decision.decision == DecisionType.OPEN_LONG else TrendDirection.BULLISH
        )

        if trend.direction == blocking and trend.strength >= self.min_strength:
            result = TrendGuardResult(
                allowed=False,
                reason=f"Strong {trend.direction.value} trend (strength: {trend.strength}/10)",
                trend_direction=trend.direction,
                trend_strength=trend.strength,
                price_vs_ema20_pct=trend.price_vs_ema20_pct,
            )
            logger.warning(
                "trend_guard_blocked",
                symbol=decision.symbol,
                decision=decision.decision.value,
                trend=trend.direction.value,
                strength=trend.strength,
                price_vs_ema20_pct=trend.price_vs_ema20_pct,
            )
            return result

        return TrendGuardResult(
            allowed=True,
            reason=f"Aligned with {trend.direction.value} trend",
            trend_direction=trend.direction,
            trend_strength=trend.strength,
            price_vs_ema20_pct=trend.price_vs_ema20_pct,
        )

    def evaluate_snapshot(self, decision: TradeDecision, snapshot: Optional[CoinSnapshot]) -> TrendGuardResult:
        if not decision.is_open:
            return TrendGuardResult(allowed=True, reason=SKIP_NOT_OPEN)
        if snapshot is None or not snapshot.has_price:
            logger.info("trend_guard_no_data", symbol=decision.symbol)
            return TrendGuardResult(allowed=True, reason=SKIP_NO_DATA)
        return self.evaluate(decision, analyze_snapshot_trend(snapshot))

    async def check(self, decision: TradeDecision) -> TrendGuardResult:
        """Fetch fresh data for the decision's symbol and run the guard"""
        if not decision.is_open:
            return TrendGuardResult(allowed=True, reason=SKIP_NOT_OPEN)

        try:
            snapshot = await self.provider.get_snapshot(decision.symbol)
        except Exception as e:
            logger.warning("trend_guard_fetch_failed", symbol=decision.symbol, error=str(e))
            return TrendGuardResult(allowed=True, reason=f"{SKIP_FETCH_FAILED} ({e})")

        return self.evaluate_snapshot(decision, snapshot)
