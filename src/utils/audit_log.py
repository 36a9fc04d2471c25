"""
Decision Audit Log

Appends every decision cycle (decision, warnings, guard verdict) to a JSON
lines file so parser corrections and vetoes can be reviewed later.
"""
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional, Union

import orjson
import structlog

from config.settings import settings
from src.decision.models import TradeDecision
from src.decision.trend_guard import TrendGuardResult

logger = structlog.get_logger(__name__)

# Thread lock for file operations
_file_lock = Lock()


def _resolve(path: Optional[Union[str, Path]]) -> Path:
    return Path(path) if path is not None else settings.AUDIT_LOG_PATH


def log_decision_event(
    decision: TradeDecision,
    guard_result: Optional[TrendGuardResult] = None,
    path: Optional[Union[str, Path]] = None,
) -> bool:
    """
    Append one decision event.

    Returns False if the write failed; a broken audit file never interrupts
    the trading loop.
    """
    target = _resolve(path)
    event = {
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "decision": decision.decision.value,
        "symbol": decision.symbol,
        "confidence": round(decision.confidence, 4),
        "allowed": guard_result.allowed if guard_result else None,
        "guard_reason": guard_result.reason if guard_result else None,
        "warnings": [w.type.value for w in decision.warnings],
        "payload": decision.to_dict(),
    }

    try:
        with _file_lock:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "ab") as f:
                f.write(orjson.dumps(event, default=str) + b"\n")
    except OSError as e:
        logger.error("audit_write_error", path=str(target), error=str(e))
        return False

    logger.debug(
        "audit_decision_logged",
        decision=event["decision"],
        symbol=event["symbol"],
        allowed=event["allowed"],
    )
    return True


def load_decision_events(path: Optional[Union[str, Path]] = None) -> List[Dict[str, Any]]:
    """Read events back; unreadable lines are skipped"""
    target = _resolve(path)
    if not target.exists():
        return []

    events: List[Dict[str, Any]] = []
    with _file_lock:
        with open(target, "rb") as f:
            lines = f.read().splitlines()
    for line in lines:
        if not line.strip():
            continue
        try:
            events.append(orjson.loads(line))
        except orjson.JSONDecodeError as e:
            logger.warning("audit_line_skipped", error=str(e))
    return events


def get_audit_stats(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Counts by decision type plus veto and warning totals"""
    events = load_decision_events(path)
    if not events:
        return {"count": 0}

    by_decision: Dict[str, int] = {}
    for e in events:
        by_decision[e.get("decision", "?")] = by_decision.get(e.get("decision", "?"), 0) + 1

    return {
        "count": len(events),
        "by_decision": by_decision,
        "vetoed": sum(1 for e in events if e.get("allowed") is False),
        "with_warnings": sum(1 for e in events if e.get("warnings")),
        "first_event": events[0].get("timestamp"),
        "last_event": events[-1].get("timestamp"),
    }
