"""
Decision Parser
===============

Turns an untrusted model reply into a TradeDecision. Never raises.

Stages:
1. Think-block extraction (kept as chain of thought / reasoning fallback)
2. Code fence stripping (prose before the fence kept as reasoning fallback)
3. Balanced-object scan when the reply does not start with '{'
4. Strict parse (orjson), then the repair pass on failure
5. Safe HOLD (confidence 0.5) when nothing parses
6. Field corrections: leverage bounds, tradable symbols, confidence range,
   unknown decision values, incomplete OPEN orders
7. Per-symbol replies ({"decisions": {SYM: {...}}}) reduced to one decision

Every correction is appended to the decision's warnings and logged.
"""
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

import orjson
import structlog
from pydantic import ValidationError

from config.settings import settings
from src.decision.models import (
    DecisionType, OPEN_DECISIONS, ORDER_FIELDS, ParserWarning, TradeDecision, WarningType,
)
from src.decision.repair import extract_think_blocks, iter_json_objects, repair_json, strip_code_fences

logger = structlog.get_logger(__name__)


PARSE_FAILED_REASONING = "Could not parse model response - defaulting to HOLD"
ALL_HOLD_REASONING = "All positions stable, no high-conviction entries"

FALLBACK_CONFIDENCE = 0.5
MISSING_CONFIDENCE = 0.5
ENTRY_DEFAULT_CONFIDENCE = 0.7
CLOSE_DEFAULT_CONFIDENCE = 0.9
ALL_HOLD_CONFIDENCE = 0.99

# Longest prose kept as a reasoning fallback
MAX_FALLBACK_REASONING = 2000

_NUMBER_RE = re.compile(r"[-+]?\d*\.?\d+(?:[eE][-+]?\d+)?")

_DECISION_ALIASES = {
    "OPEN_LONG": DecisionType.OPEN_LONG,
    "OPEN_SHORT": DecisionType.OPEN_SHORT,
    "CLOSE": DecisionType.CLOSE,
    "HOLD": DecisionType.HOLD,
}

_ENTRY_SIDES = {"long": "OPEN_LONG", "short": "OPEN_SHORT"}


def _coerce_number(value: Any) -> Optional[float]:
    """Numbers, numeric strings ("10x", "$500") -> float; anything else -> None"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        match = _NUMBER_RE.search(value.replace(",", ""))
        if match:
            return float(match.group(0))
    return None


def _decision_key(value: Any) -> str:
    if value is None:
        return ""
    return re.sub(r"[\s\-]+", "_", str(value).strip().upper())


def _clip(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    text = text.strip()
    if len(text) > MAX_FALLBACK_REASONING:
        return text[:MAX_FALLBACK_REASONING].rstrip() + "..."
    return text or None


class DecisionParser:
    """
    Parser for model replies.

    Tradable symbols and leverage bounds are injected; the symbol list order
    doubles as the priority order when reducing per-symbol replies.
    """

    def __init__(
        self,
        tradable_symbols: Optional[Sequence[str]] = None,
        min_leverage: Optional[float] = None,
        max_leverage: Optional[float] = None,
        max_repair_chars: Optional[int] = None,
    ):
        symbols = tradable_symbols if tradable_symbols is not None else settings.TRADABLE_SYMBOLS
        self.tradable_symbols: List[str] = [s.upper() for s in symbols]
        self.min_leverage = min_leverage if min_leverage is not None else settings.MIN_LEVERAGE
        self.max_leverage = max_leverage if max_leverage is not None else settings.MAX_LEVERAGE
        self.max_repair_chars = max_repair_chars if max_repair_chars is not None else settings.PARSER_MAX_REPAIR_CHARS
        self._priority = {s: i for i, s in enumerate(self.tradable_symbols)}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def parse(self, raw: Any) -> TradeDecision:
        warnings: List[ParserWarning] = []
        try:
            return self._parse(raw, warnings)
        except Exception as e:
            # Last line of defence: the caller always gets a decision
            logger.error("decision_parse_crashed", error=str(e), error_type=type(e).__name__)
            return self.safe_hold(PARSE_FAILED_REASONING, warnings=warnings, error=str(e))

    def safe_hold(
        self,
        reasoning: str,
        warnings: Optional[List[ParserWarning]] = None,
        chain_of_thought: Optional[str] = None,
        error: Optional[str] = None,
    ) -> TradeDecision:
        """HOLD with fallback confidence, tagged as a parse failure"""
        warnings = list(warnings or [])
        warnings.append(self._warn(
            WarningType.PARSE_FAILED_DEFAULT_HOLD,
            "No usable decision in model response; defaulting to HOLD",
            original=error,
            corrected="HOLD",
        ))
        return TradeDecision(
            decision=DecisionType.HOLD,
            symbol=None,
            confidence=FALLBACK_CONFIDENCE,
            reasoning=reasoning,
            chain_of_thought=chain_of_thought,
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _parse(self, raw: Any, warnings: List[ParserWarning]) -> TradeDecision:
        text = raw if isinstance(raw, str) else ("" if raw is None else str(raw))

        think, text = extract_think_blocks(text)
        body, fence_prose = strip_code_fences(text)
        body = body.strip()

        data, pre_object_prose = self._decode(body, warnings)
        prose = _clip(fence_prose) or _clip(pre_object_prose)

        if data is None:
            reasoning = _clip(think) or prose or PARSE_FAILED_REASONING
            logger.warning("decision_parse_failed", response_chars=len(text), has_think=think is not None)
            return self.safe_hold(reasoning, warnings=warnings, chain_of_thought=think)

        if "decision" not in data and isinstance(data.get("decisions"), dict):
            data = self._reduce_per_symbol(data, warnings)

        return self._build(data, think, prose, warnings)

    def _loads(self, text: str) -> Tuple[Optional[Dict[str, Any]], bool]:
        """Strict parse, then repaired parse. Returns (object, repaired)"""
        try:
            data = orjson.loads(text)
            return (data if isinstance(data, dict) else None), False
        except orjson.JSONDecodeError:
            pass
        if len(text) > self.max_repair_chars:
            logger.warning("decision_repair_skipped", chars=len(text), limit=self.max_repair_chars)
            return None, False
        try:
            data = orjson.loads(repair_json(text))
        except orjson.JSONDecodeError:
            return None, False
        return (data if isinstance(data, dict) else None), True

    def _decode(self, body: str, warnings: List[ParserWarning]) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
        """Return (decoded object or None, prose preceding the object)"""
        if body.startswith("{"):
            data, repaired = self._loads(body)
            if data is not None:
                if repaired:
                    warnings.append(self._warn(
                        WarningType.JSON_REPAIRED, "Malformed JSON repaired before parsing",
                    ))
                return data, None

        first_brace = body.find("{")
        prose = body[:first_brace] if first_brace > 0 else (body if first_brace == -1 else None)

        chosen: Optional[Tuple[Dict[str, Any], bool]] = None
        for candidate in iter_json_objects(body):
            if candidate == body:
                continue
            data, repaired = self._loads(candidate)
            if data is None:
                continue
            if "decision" in data or "decisions" in data:
                chosen = (data, repaired)
                break
            if chosen is None:
                chosen = (data, repaired)

        if chosen is None:
            return None, prose

        warnings.append(self._warn(
            WarningType.JSON_EXTRACTION_FALLBACK,
            "Decision object extracted from surrounding text",
        ))
        if chosen[1]:
            warnings.append(self._warn(
                WarningType.JSON_REPAIRED, "Malformed JSON repaired before parsing",
            ))
        return chosen[0], prose

    def _reduce_per_symbol(self, data: Dict[str, Any], warnings: List[ParserWarning]) -> Dict[str, Any]:
        """
        Collapse {"thinking": ..., "decisions": {SYM: {...}}} into one flat decision.

        Entries with a long/short side beat closes; within each, highest
        confidence wins and ties go to the earlier symbol in the tradable list,
        then to symbol name. Entries without a usable side are dropped.
        """
        thinking = data.get("thinking") or data.get("reasoning") or ""
        if not isinstance(thinking, str):
            thinking = str(thinking)

        entries: List[Tuple[str, Dict[str, Any]]] = []
        closes: List[Tuple[str, Dict[str, Any]]] = []
        for symbol, item in data["decisions"].items():
            if not isinstance(item, dict):
                continue
            signal = str(item.get("signal", "hold")).strip().lower()
            if signal in ("entry", "open"):
                side = str(item.get("side", "")).strip().lower()
                if side in _ENTRY_SIDES:
                    entries.append((symbol, item))
                else:
                    warnings.append(self._warn(
                        WarningType.DECISION_CORRECTED,
                        f"Entry for {symbol} has no long/short side; ignored",
                        original=item.get("side"),
                        corrected=None,
                    ))
            elif signal == "close":
                closes.append((symbol, item))

        def confidence_of(item: Dict[str, Any], default: float) -> float:
            confidence = _coerce_number(item.get("confidence"))
            return confidence if confidence is not None else default

        def rank(pair: Tuple[str, Dict[str, Any]], default: float) -> Tuple[float, int, str]:
            symbol, item = pair
            return (
                -confidence_of(item, default),
                self._priority.get(str(symbol).upper(), len(self._priority)),
                str(symbol),
            )

        entries.sort(key=lambda pair: rank(pair, ENTRY_DEFAULT_CONFIDENCE))
        closes.sort(key=lambda pair: rank(pair, CLOSE_DEFAULT_CONFIDENCE))

        if entries:
            symbol, item = entries[0]
            flat = {
                "decision": _ENTRY_SIDES[str(item["side"]).strip().lower()],
                "symbol": symbol,
                "confidence": item.get("confidence") if item.get("confidence") is not None else ENTRY_DEFAULT_CONFIDENCE,
                "leverage": item.get("leverage"),
                "size_usd": item.get("size_usd"),
                "stop_loss": item.get("stop_loss"),
                "take_profit": item.get("take_profit"),
                "risk_reward_ratio": item.get("risk_reward_ratio"),
                "invalidation_condition": item.get("invalidation_condition"),
                "reasoning": item.get("reason") or thinking,
            }
        elif closes:
            symbol, item = closes[0]
            flat = {
                "decision": "CLOSE",
                "symbol": symbol,
                "confidence": item.get("confidence") if item.get("confidence") is not None else CLOSE_DEFAULT_CONFIDENCE,
                "reasoning": item.get("reason") or thinking,
            }
        else:
            symbol = None
            flat = {
                "decision": "HOLD",
                "symbol": None,
                "confidence": ALL_HOLD_CONFIDENCE,
                "reasoning": thinking or ALL_HOLD_REASONING,
            }

        warnings.append(self._warn(
            WarningType.LEGACY_FORMAT_RECOVERED,
            "Per-symbol decisions reduced to a single decision",
            original=sorted(str(s) for s in data["decisions"]),
            corrected=flat["decision"] if symbol is None else f"{flat['decision']} {symbol}",
        ))

        actionable = entries + closes
        if len(actionable) > 1:
            dropped = [str(s) for s, _ in actionable if s != symbol]
            warnings.append(self._warn(
                WarningType.MULTIPLE_DECISIONS_DROPPED,
                f"{len(dropped)} actionable decision(s) dropped in favour of {symbol}",
                original=dropped,
                corrected=symbol,
            ))

        return flat

    def _build(
        self,
        data: Dict[str, Any],
        think: Optional[str],
        prose: Optional[str],
        warnings: List[ParserWarning],
    ) -> TradeDecision:
        requested = _DECISION_ALIASES.get(_decision_key(data.get("decision")))
        decision = self._normalize_decision(data.get("decision"), warnings)
        symbol, decision = self._normalize_symbol(data.get("symbol"), decision, warnings)
        confidence = self._normalize_confidence(data.get("confidence"), warnings)
        leverage = self._normalize_leverage(data.get("leverage"), warnings)

        fields: Dict[str, Optional[float]] = {"leverage": leverage}
        for name in ("size_usd", "stop_loss", "take_profit"):
            value = _coerce_number(data.get(name))
            fields[name] = value if value is not None and value > 0 else None

        if decision in OPEN_DECISIONS:
            missing = [f for f in ORDER_FIELDS if fields[f] is None]
            if missing:
                warnings.append(self._warn(
                    WarningType.INCOMPLETE_ORDER_DOWNGRADED,
                    f"{decision.value} missing {', '.join(missing)}; downgraded to HOLD",
                    original=decision.value,
                    corrected=DecisionType.HOLD.value,
                ))
                decision = DecisionType.HOLD

        if decision in OPEN_DECISIONS + (DecisionType.CLOSE,) and symbol is None:
            warnings.append(self._warn(
                WarningType.INCOMPLETE_ORDER_DOWNGRADED,
                f"{decision.value} without a symbol; downgraded to HOLD",
                original=decision.value,
                corrected=DecisionType.HOLD.value,
            ))
            decision = DecisionType.HOLD

        # A HOLD the model did not ask for never names a symbol
        if decision == DecisionType.HOLD and requested != DecisionType.HOLD:
            symbol = None

        reasoning = data.get("reasoning")
        reasoning = reasoning.strip() if isinstance(reasoning, str) else ""
        reasoning = reasoning or _clip(think) or prose or ""

        invalidation = data.get("invalidation_condition")
        invalidation = str(invalidation).strip() if invalidation not in (None, "") else None

        try:
            result = TradeDecision(
                decision=decision,
                symbol=symbol,
                confidence=confidence,
                leverage=fields["leverage"],
                size_usd=fields["size_usd"],
                stop_loss=fields["stop_loss"],
                take_profit=fields["take_profit"],
                risk_reward_ratio=_coerce_number(data.get("risk_reward_ratio")),
                reasoning=reasoning,
                invalidation_condition=invalidation,
                chain_of_thought=think,
                warnings=warnings,
            )
        except ValidationError as e:
            logger.error("decision_validation_failed", error=str(e))
            return self.safe_hold(
                reasoning or PARSE_FAILED_REASONING, warnings=warnings, chain_of_thought=think, error=str(e),
            )

        logger.info(
            "decision_parsed",
            decision=result.decision.value,
            symbol=result.symbol,
            confidence=result.confidence,
            warnings=[w.type.value for w in result.warnings],
        )
        return result

    # ------------------------------------------------------------------
    # Field corrections
    # ------------------------------------------------------------------

    def _normalize_decision(self, value: Any, warnings: List[ParserWarning]) -> DecisionType:
        decision = _DECISION_ALIASES.get(_decision_key(value))
        if decision is None:
            warnings.append(self._warn(
                WarningType.DECISION_CORRECTED,
                f"Unknown decision {value!r}; using HOLD",
                original=value,
                corrected=DecisionType.HOLD.value,
            ))
            return DecisionType.HOLD
        return decision

    def _normalize_symbol(
        self,
        value: Any,
        decision: DecisionType,
        warnings: List[ParserWarning],
    ) -> Tuple[Optional[str], DecisionType]:
        if value is None or (isinstance(value, str) and not value.strip()):
            return None, decision
        symbol = str(value).strip().upper()
        if symbol in self._priority:
            return symbol, decision

        if decision == DecisionType.HOLD:
            message = f"Symbol {value!r} is not tradable; symbol cleared"
        else:
            message = f"Symbol {value!r} is not tradable; symbol cleared and {decision.value} downgraded to HOLD"
        warnings.append(self._warn(WarningType.SYMBOL_CORRECTED, message, original=value, corrected=None))
        return None, DecisionType.HOLD

    def _normalize_confidence(self, value: Any, warnings: List[ParserWarning]) -> float:
        confidence = _coerce_number(value)
        if confidence is None:
            warnings.append(self._warn(
                WarningType.CONFIDENCE_CORRECTED,
                "Missing or non-numeric confidence",
                original=value,
                corrected=MISSING_CONFIDENCE,
            ))
            return MISSING_CONFIDENCE
        if 0.0 <= confidence <= 1.0:
            return confidence
        corrected = confidence / 100 if 1.0 < confidence <= 100.0 else min(1.0, max(0.0, confidence))
        warnings.append(self._warn(
            WarningType.CONFIDENCE_CORRECTED,
            "Confidence outside [0, 1]",
            original=value,
            corrected=corrected,
        ))
        return corrected

    def _normalize_leverage(self, value: Any, warnings: List[ParserWarning]) -> Optional[float]:
        leverage = _coerce_number(value)
        if leverage is None:
            return None
        if leverage < self.min_leverage:
            corrected = self.min_leverage
        elif leverage > self.max_leverage:
            corrected = self.max_leverage
        else:
            return leverage
        warnings.append(self._warn(
            WarningType.LEVERAGE_CORRECTED,
            f"Leverage {leverage:g} outside [{self.min_leverage:g}, {self.max_leverage:g}]",
            original=value,
            corrected=corrected,
        ))
        return corrected

    @staticmethod
    def _warn(warning_type: WarningType, message: str, original: Any = None, corrected: Any = None) -> ParserWarning:
        logger.warning(
            "parser_correction",
            type=warning_type.value,
            message=message,
            original=original,
            corrected=corrected,
        )
        return ParserWarning(type=warning_type, message=message, original=original, corrected=corrected)


# Singleton instance
_parser: Optional[DecisionParser] = None


def get_decision_parser() -> DecisionParser:
    global _parser
    if _parser is None:
        _parser = DecisionParser()
    return _parser


def parse_decision(raw: Any) -> TradeDecision:
    """Convenience function: parse with the settings-configured parser"""
    return get_decision_parser().parse(raw)
