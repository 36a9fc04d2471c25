"""
Signal Models
=============

Core data structures for per-coin technical analysis.

Inputs:
- CoinSnapshot: indicator snapshot for one symbol (intraday + 4h context)
- OpenPosition: an open perp position to re-evaluate

Outputs:
- TrendAnalysis, RegimeState, KeyLevels, EntrySignal, Divergence, RiskAssessment
- CoinSignalSummary: everything above rolled up per symbol
- PositionSignals, MarketOverview, ProcessedSignals
"""
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, List, Any


class TrendDirection(Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


class Momentum(Enum):
    ACCELERATING = "ACCELERATING"
    STEADY = "STEADY"
    DECELERATING = "DECELERATING"


class RegimeType(Enum):
    TRENDING = "TRENDING"
    RANGING = "RANGING"
    VOLATILE = "VOLATILE"


class Volatility(Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    EXTREME = "EXTREME"


class SignalDirection(Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class SignalStrength(Enum):
    WEAK = "WEAK"
    MODERATE = "MODERATE"
    STRONG = "STRONG"


# Sort rank: STRONG first
STRENGTH_ORDER: Dict[SignalStrength, int] = {
    SignalStrength.STRONG: 0,
    SignalStrength.MODERATE: 1,
    SignalStrength.WEAK: 2,
}


class SignalType(Enum):
    # RSI
    RSI_OVERSOLD = "RSI_OVERSOLD"
    RSI_OVERBOUGHT = "RSI_OVERBOUGHT"
    RSI_MOMENTUM_BULL = "RSI_MOMENTUM_BULL"
    RSI_MOMENTUM_BEAR = "RSI_MOMENTUM_BEAR"
    # MACD
    MACD_CROSS_BULL = "MACD_CROSS_BULL"
    MACD_CROSS_BEAR = "MACD_CROSS_BEAR"
    # EMA
    EMA_BREAKOUT_BULL = "EMA_BREAKOUT_BULL"
    EMA_BREAKOUT_BEAR = "EMA_BREAKOUT_BEAR"
    # Structure
    HIGHER_LOW = "HIGHER_LOW"
    LOWER_HIGH = "LOWER_HIGH"
    # Volume
    VOLUME_SPIKE = "VOLUME_SPIKE"
    # Divergence-derived
    BULLISH_DIVERGENCE = "BULLISH_DIVERGENCE"
    BEARISH_DIVERGENCE = "BEARISH_DIVERGENCE"


class DivergenceType(Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"


class DivergenceIndicator(Enum):
    RSI = "RSI"
    MACD = "MACD"


class Recommendation(Enum):
    STRONG_LONG = "STRONG_LONG"
    LONG = "LONG"
    NEUTRAL = "NEUTRAL"
    SHORT = "SHORT"
    STRONG_SHORT = "STRONG_SHORT"


class Sentiment(Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    MIXED = "MIXED"
    NEUTRAL = "NEUTRAL"


def _float_list(values: Any) -> List[float]:
    if not values:
        return []
    return [float(v) for v in values]


def _opt_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


@dataclass
class CoinSnapshot:
    """Indicator snapshot for one symbol as delivered by the market-data collaborator"""
    symbol: str = ""
    current_price: float = 0.0

    # Intraday indicators
    ema20: float = 0.0
    macd: float = 0.0
    macd_signal: Optional[float] = None
    rsi7: float = 50.0
    rsi14: float = 50.0

    # Intraday histories (oldest first, current value excluded)
    price_history: List[float] = field(default_factory=list)
    ema20_history: List[float] = field(default_factory=list)
    macd_history: List[float] = field(default_factory=list)
    rsi7_history: List[float] = field(default_factory=list)
    rsi14_history: List[float] = field(default_factory=list)

    # 4h context
    ema20_4h: float = 0.0
    ema50_4h: float = 0.0
    atr3_4h: float = 0.0
    atr14_4h: float = 0.0
    current_volume_4h: float = 0.0
    avg_volume_4h: float = 0.0
    macd_history_4h: List[float] = field(default_factory=list)
    rsi14_history_4h: List[float] = field(default_factory=list)

    # Optional market data
    high_24h: Optional[float] = None
    low_24h: Optional[float] = None
    volume_ratio: Optional[float] = None
    funding_rate: Optional[float] = None
    open_interest: Optional[float] = None
    avg_open_interest: Optional[float] = None

    @property
    def has_price(self) -> bool:
        """Finite, positive current price"""
        price = self.current_price
        return price is not None and math.isfinite(price) and price > 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any], symbol: Optional[str] = None) -> "CoinSnapshot":
        """Build a snapshot from a plain dict; missing optional fields stay None"""
        return cls(
            symbol=symbol or data.get("symbol", ""),
            current_price=float(data.get("current_price") or 0.0),
            ema20=float(data.get("ema20") or 0.0),
            macd=float(data.get("macd") or 0.0),
            macd_signal=_opt_float(data.get("macd_signal")),
            rsi7=float(data["rsi7"]) if data.get("rsi7") is not None else 50.0,
            rsi14=float(data["rsi14"]) if data.get("rsi14") is not None else 50.0,
            price_history=_float_list(data.get("price_history")),
            ema20_history=_float_list(data.get("ema20_history")),
            macd_history=_float_list(data.get("macd_history")),
            rsi7_history=_float_list(data.get("rsi7_history")),
            rsi14_history=_float_list(data.get("rsi14_history")),
            ema20_4h=float(data.get("ema20_4h") or 0.0),
            ema50_4h=float(data.get("ema50_4h") or 0.0),
            atr3_4h=float(data.get("atr3_4h") or 0.0),
            atr14_4h=float(data.get("atr14_4h") or 0.0),
            current_volume_4h=float(data.get("current_volume_4h") or 0.0),
            avg_volume_4h=float(data.get("avg_volume_4h") or 0.0),
            macd_history_4h=_float_list(data.get("macd_history_4h")),
            rsi14_history_4h=_float_list(data.get("rsi14_history_4h")),
            high_24h=_opt_float(data.get("high_24h")),
            low_24h=_opt_float(data.get("low_24h")),
            volume_ratio=_opt_float(data.get("volume_ratio")),
            funding_rate=_opt_float(data.get("funding_rate")),
            open_interest=_opt_float(data.get("open_interest")),
            avg_open_interest=_opt_float(data.get("avg_open_interest")),
        )


@dataclass
class OpenPosition:
    """Open perp position as reported by the execution layer"""
    symbol: str
    side: SignalDirection
    entry_price: float
    size: float
    unrealized_pnl: Optional[float] = None
    unrealized_pnl_pct: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OpenPosition":
        return cls(
            symbol=data["symbol"],
            side=SignalDirection(str(data["side"]).upper()),
            entry_price=float(data["entry_price"]),
            size=float(data["size"]),
            unrealized_pnl=_opt_float(data.get("unrealized_pnl")),
            unrealized_pnl_pct=_opt_float(data.get("unrealized_pnl_pct")),
        )


@dataclass
class TrendAnalysis:
    """Trend analysis result"""
    direction: TrendDirection = TrendDirection.NEUTRAL
    strength: int = 1  # 1 to 10
    momentum: Momentum = Momentum.STEADY
    timeframe_alignment: bool = False

    # % distances, rounded to 2 dp
    price_vs_ema20_pct: float = 0.0
    ema20_vs_ema50_pct: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "direction": self.direction.value,
            "strength": self.strength,
            "momentum": self.momentum.value,
            "timeframe_alignment": self.timeframe_alignment,
            "price_vs_ema20_pct": self.price_vs_ema20_pct,
            "ema20_vs_ema50_pct": self.ema20_vs_ema50_pct,
        }


@dataclass
class RegimeState:
    """Market regime derived from ATR and volume ratios"""
    type: RegimeType = RegimeType.RANGING
    volatility: Volatility = Volatility.NORMAL
    atr_ratio: float = 1.0
    volume_ratio: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "volatility": self.volatility.value,
            "atr_ratio": self.atr_ratio,
            "volume_ratio": self.volume_ratio,
        }


@dataclass
class KeyLevels:
    """Clustered support/resistance levels around the current price"""
    resistance: List[float] = field(default_factory=list)  # nearest first, all > price
    support: List[float] = field(default_factory=list)  # nearest first, all < price
    high_24h: float = 0.0
    low_24h: float = 0.0
    pivot_point: float = 0.0
    distance_to_resistance_pct: float = 0.0
    distance_to_support_pct: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resistance": list(self.resistance),
            "support": list(self.support),
            "high_24h": self.high_24h,
            "low_24h": self.low_24h,
            "pivot_point": self.pivot_point,
            "distance_to_resistance_pct": self.distance_to_resistance_pct,
            "distance_to_support_pct": self.distance_to_support_pct,
        }


@dataclass(frozen=True)
class EntrySignal:
    type: SignalType
    strength: SignalStrength
    direction: SignalDirection
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "strength": self.strength.value,
            "direction": self.direction.value,
            "description": self.description,
        }


@dataclass(frozen=True)
class Divergence:
    type: DivergenceType
    indicator: DivergenceIndicator
    strength: SignalStrength
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "indicator": self.indicator.value,
            "strength": self.strength.value,
            "description": self.description,
        }


@dataclass
class RiskAssessment:
    score: int = 5  # 1 (low) to 10 (high)
    factors: List[str] = field(default_factory=list)
    counter_trend: bool = False
    size_multiplier: float = 0.75

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "factors": list(self.factors),
            "counter_trend": self.counter_trend,
            "size_multiplier": self.size_multiplier,
        }


@dataclass
class CoinSignalSummary:
    """Per-symbol analysis rolled up for the prompt and the position evaluator"""
    symbol: str
    current_price: float
    trend: TrendAnalysis
    regime: RegimeState
    key_levels: KeyLevels
    entry_signals: List[EntrySignal]
    divergences: List[Divergence]
    risk: RiskAssessment
    rsi14: float
    macd: float
    macd_signal: float
    summary: str
    recommendation: Recommendation
    funding_rate: Optional[float] = None

    def count_signals(self, direction: SignalDirection) -> int:
        return sum(1 for s in self.entry_signals if s.direction == direction)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "current_price": self.current_price,
            "trend": self.trend.to_dict(),
            "regime": self.regime.to_dict(),
            "key_levels": self.key_levels.to_dict(),
            "entry_signals": [s.to_dict() for s in self.entry_signals],
            "divergences": [d.to_dict() for d in self.divergences],
            "risk": self.risk.to_dict(),
            "rsi14": self.rsi14,
            "macd": self.macd,
            "macd_signal": self.macd_signal,
            "funding_rate": self.funding_rate,
            "summary": self.summary,
            "recommendation": self.recommendation.value,
        }


@dataclass
class PositionSignals:
    symbol: str
    pnl_pct: float = 0.0
    invalidation_triggered: bool = False
    invalidation_reason: Optional[str] = None
    near_stop_loss: bool = False
    near_take_profit: bool = False
    should_close: bool = False
    close_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "pnl_pct": self.pnl_pct,
            "invalidation_triggered": self.invalidation_triggered,
            "invalidation_reason": self.invalidation_reason,
            "near_stop_loss": self.near_stop_loss,
            "near_take_profit": self.near_take_profit,
            "should_close": self.should_close,
            "close_reason": self.close_reason,
        }


@dataclass
class MarketOverview:
    sentiment: Sentiment = Sentiment.NEUTRAL
    bullish_count: int = 0
    bearish_count: int = 0
    best_opportunity: Optional[str] = None
    best_direction: Optional[SignalDirection] = None
    max_signal_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sentiment": self.sentiment.value,
            "bullish_count": self.bullish_count,
            "bearish_count": self.bearish_count,
            "best_opportunity": self.best_opportunity,
            "best_direction": self.best_direction.value if self.best_direction else None,
            "max_signal_count": self.max_signal_count,
        }


@dataclass
class ProcessedSignals:
    """Output of one full analysis tick"""
    timestamp: str
    processing_time_ms: float
    coins: Dict[str, CoinSignalSummary]
    positions: List[PositionSignals]
    overview: MarketOverview

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "processing_time_ms": round(self.processing_time_ms, 2),
            "coins": {sym: c.to_dict() for sym, c in self.coins.items()},
            "positions": [p.to_dict() for p in self.positions],
            "overview": self.overview.to_dict(),
        }
