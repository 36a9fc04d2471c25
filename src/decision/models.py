"""
Decision Models
===============

Typed shape of a trading decision as it leaves the parser. Validated with
pydantic so that malformed model payloads cannot reach the execution layer:
- OPEN_LONG / OPEN_SHORT carry symbol, leverage, size, stop and target
- CLOSE carries a symbol
- Every automatic correction is recorded as a ParserWarning
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


class DecisionType(str, Enum):
    HOLD = "HOLD"
    OPEN_LONG = "OPEN_LONG"
    OPEN_SHORT = "OPEN_SHORT"
    CLOSE = "CLOSE"


OPEN_DECISIONS = (DecisionType.OPEN_LONG, DecisionType.OPEN_SHORT)

# Fields an OPEN decision cannot execute without
ORDER_FIELDS = ("leverage", "size_usd", "stop_loss", "take_profit")


class WarningType(str, Enum):
    LEVERAGE_CORRECTED = "LEVERAGE_CORRECTED"
    SYMBOL_CORRECTED = "SYMBOL_CORRECTED"
    CONFIDENCE_CORRECTED = "CONFIDENCE_CORRECTED"
    DECISION_CORRECTED = "DECISION_CORRECTED"
    INCOMPLETE_ORDER_DOWNGRADED = "INCOMPLETE_ORDER_DOWNGRADED"
    JSON_EXTRACTION_FALLBACK = "JSON_EXTRACTION_FALLBACK"
    JSON_REPAIRED = "JSON_REPAIRED"
    LEGACY_FORMAT_RECOVERED = "LEGACY_FORMAT_RECOVERED"
    MULTIPLE_DECISIONS_DROPPED = "MULTIPLE_DECISIONS_DROPPED"
    PARSE_FAILED_DEFAULT_HOLD = "PARSE_FAILED_DEFAULT_HOLD"


class ParserWarning(BaseModel):
    type: WarningType
    message: str
    original: Any = None
    corrected: Any = None


class TradeDecision(BaseModel):
    decision: DecisionType
    symbol: Optional[str] = None
    confidence: float = Field(ge=0.0, le=1.0)
    leverage: Optional[float] = Field(default=None, ge=1.0)
    size_usd: Optional[float] = Field(default=None, gt=0.0)
    stop_loss: Optional[float] = Field(default=None, gt=0.0)
    take_profit: Optional[float] = Field(default=None, gt=0.0)
    risk_reward_ratio: Optional[float] = None
    reasoning: str = ""
    invalidation_condition: Optional[str] = None
    chain_of_thought: Optional[str] = None
    warnings: List[ParserWarning] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_shape(self) -> "TradeDecision":
        if self.decision in OPEN_DECISIONS:
            missing = [f for f in ORDER_FIELDS if getattr(self, f) is None]
            if self.symbol is None:
                missing.insert(0, "symbol")
            if missing:
                raise ValueError(f"{self.decision.value} missing {', '.join(missing)}")
        elif self.decision == DecisionType.CLOSE and self.symbol is None:
            raise ValueError("CLOSE requires a symbol")
        return self

    @property
    def is_open(self) -> bool:
        return self.decision in OPEN_DECISIONS

    @property
    def is_fallback(self) -> bool:
        """True when the reply could not be parsed at all"""
        return any(w.type == WarningType.PARSE_FAILED_DEFAULT_HOLD for w in self.warnings)

    def has_warning(self, warning_type: WarningType) -> bool:
        return any(w.type == warning_type for w in self.warnings)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
