"""
Decision Pipeline
=================

One trading-loop cycle, awaited sequentially:
1. Fetch snapshots for the tradable symbols
2. Process signals (pure, synchronous)
3. Build the prompt (injected) and call the model with bounded retry,
   unless the AI circuit breaker is open
4. Parse the reply (never raises; errors and empty replies become HOLD)
5. Trend guard the resulting decision

The pipeline does not place orders; it hands back the decision, the guard
verdict and the signals that produced them.
"""
import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import orjson
import structlog

from config.settings import settings
from src.core.errors import ModelCallError
from src.core.interfaces import MarketDataProvider, ModelClient
from src.core.resilience import AdaptiveBackoff, CircuitBreaker, CircuitBreakerConfig, call_with_retry
from src.decision.models import DecisionType, TradeDecision
from src.decision.parser import DecisionParser
from src.decision.trend_guard import TrendGuard, TrendGuardResult
from src.signals.models import OpenPosition, ProcessedSignals
from src.signals.processor import process_market_signals

logger = structlog.get_logger(__name__)


PromptBuilder = Callable[[ProcessedSignals, List[OpenPosition]], str]

BREAKER_OPEN_REASONING = "AI circuit breaker open - skipping model call"
NO_MARKET_DATA_REASONING = "Market data unavailable - skipping model call"


def signals_payload_prompt(signals: ProcessedSignals, positions: List[OpenPosition]) -> str:
    """Minimal prompt: the processed signals as JSON"""
    return orjson.dumps(signals.to_dict(), option=orjson.OPT_INDENT_2).decode()


@dataclass
class CycleResult:
    signals: Optional[ProcessedSignals]
    decision: TradeDecision
    guard: TrendGuardResult
    raw_response: str = ""
    model_called: bool = False
    model_error: Optional[str] = None

    @property
    def actionable(self) -> bool:
        """Non-HOLD decision that cleared the trend guard"""
        return self.guard.allowed and self.decision.decision != DecisionType.HOLD

    def to_dict(self) -> Dict[str, Any]:
        return {
            "decision": self.decision.to_dict(),
            "guard": self.guard.to_dict(),
            "actionable": self.actionable,
            "model_called": self.model_called,
            "model_error": self.model_error,
            "overview": self.signals.overview.to_dict() if self.signals else None,
            "positions": [p.to_dict() for p in self.signals.positions] if self.signals else [],
        }


class DecisionPipeline:
    def __init__(
        self,
        provider: MarketDataProvider,
        model_client: ModelClient,
        prompt_builder: PromptBuilder = signals_payload_prompt,
        parser: Optional[DecisionParser] = None,
        trend_guard: Optional[TrendGuard] = None,
        breaker: Optional[CircuitBreaker] = None,
        symbols: Optional[Sequence[str]] = None,
        max_attempts: Optional[int] = None,
        backoff: Optional[AdaptiveBackoff] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if provider is None:
            raise ValueError("DecisionPipeline requires a market data provider")
        if model_client is None:
            raise ValueError("DecisionPipeline requires a model client")

        self.provider = provider
        self.model_client = model_client
        self.prompt_builder = prompt_builder
        self.symbols = list(symbols if symbols is not None else settings.TRADABLE_SYMBOLS)
        self.parser = parser or DecisionParser(tradable_symbols=self.symbols)
        self.trend_guard = trend_guard or TrendGuard(provider)
        self.breaker = breaker or CircuitBreaker("ai_decisions", CircuitBreakerConfig.from_settings(settings))
        self.max_attempts = max_attempts if max_attempts is not None else settings.MODEL_MAX_RETRIES
        self.backoff = backoff or AdaptiveBackoff(
            base_delay_s=settings.MODEL_BACKOFF_BASE_S,
            max_delay_s=settings.MODEL_BACKOFF_MAX_S,
        )
        self._sleep = sleep

    async def run_cycle(self, positions: Optional[List[OpenPosition]] = None) -> CycleResult:
        positions = list(positions or [])

        try:
            snapshots = await self.provider.get_snapshots(self.symbols)
        except Exception as e:
            logger.error("market_data_fetch_failed", error=str(e))
            return await self._skip(None, f"{NO_MARKET_DATA_REASONING} ({e})")
        if not snapshots:
            return await self._skip(None, NO_MARKET_DATA_REASONING)

        signals = process_market_signals(snapshots, positions)

        if not self.breaker.can_proceed():
            logger.warning("ai_breaker_open", status=self.breaker.get_status())
            return await self._skip(signals, BREAKER_OPEN_REASONING)

        prompt = self.prompt_builder(signals, positions)
        raw, model_error = await self._call_model(prompt)
        decision = self.parser.parse(raw)

        if model_error is not None:
            self.breaker.record_failure(f"model error: {model_error}")
        elif decision.is_fallback:
            self.breaker.record_failure("unparseable model response")
        else:
            self.breaker.record_success()

        guard = await self.trend_guard.check(decision)
        if not guard.allowed:
            logger.warning(
                "decision_vetoed",
                symbol=decision.symbol,
                decision=decision.decision.value,
                reason=guard.reason,
            )

        logger.info(
            "decision_cycle_complete",
            decision=decision.decision.value,
            symbol=decision.symbol,
            confidence=decision.confidence,
            allowed=guard.allowed,
            warnings=len(decision.warnings),
        )
        return CycleResult(
            signals=signals,
            decision=decision,
            guard=guard,
            raw_response=raw,
            model_called=True,
            model_error=model_error,
        )

    async def _call_model(self, prompt: str):
        """Return (reply, error); model failures degrade to an empty reply"""
        try:
            raw = await call_with_retry(
                lambda: self.model_client.generate(prompt),
                max_attempts=self.max_attempts,
                backoff=self.backoff,
                sleep=self._sleep,
                name=f"model:{getattr(self.model_client, 'model_id', 'unknown')}",
            )
        except ModelCallError as e:
            logger.error("model_call_failed", error=str(e))
            return "", str(e)
        except Exception as e:
            # Timeouts and transport errors from the client still count against the breaker
            logger.error("model_call_crashed", error=str(e), error_type=type(e).__name__)
            return "", f"{type(e).__name__}: {e}"
        return (raw or ""), None

    async def _skip(self, signals: Optional[ProcessedSignals], reasoning: str) -> CycleResult:
        decision = self.parser.safe_hold(reasoning)
        guard = await self.trend_guard.check(decision)
        return CycleResult(signals=signals, decision=decision, guard=guard, model_called=False)
