#!/usr/bin/env python3
"""
Replay one decision cycle offline.

Feeds a recorded market snapshot and a recorded model reply through the
signal processor, decision parser and trend guard, then prints the result.

Usage:
  python run_replay.py --market snapshot.json --reply reply.txt
  python run_replay.py --market snapshot.json --reply reply.txt --positions positions.json
  python run_replay.py --market snapshot.json --reply reply.txt --audit-file data/decisions.jsonl --json-logs
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path (works with absolute paths)
PROJECT_ROOT = Path(__file__).parent.resolve()
sys.path.insert(0, str(PROJECT_ROOT))

import orjson
import structlog

from config.settings import settings
from src.core.interfaces import StaticMarketDataProvider, StaticModelClient
from src.decision.pipeline import DecisionPipeline
from src.signals.models import OpenPosition
from src.utils.audit_log import log_decision_event

logger = structlog.get_logger(__name__)


def parse_args(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="Replay a decision cycle from recorded inputs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_replay.py --market snapshot.json --reply reply.txt
  python run_replay.py --market snapshot.json --reply reply.txt --json-logs
        """
    )
    parser.add_argument(
        "--market",
        required=True,
        type=Path,
        help="JSON object mapping symbol -> snapshot fields"
    )
    parser.add_argument(
        "--reply",
        required=True,
        type=Path,
        help="Raw model reply text"
    )
    parser.add_argument(
        "--positions",
        type=Path,
        default=None,
        help="JSON list of open positions (symbol, side, entry_price, size)"
    )
    parser.add_argument(
        "--audit-file",
        type=Path,
        default=None,
        help="Append the decision to this JSON lines audit file"
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Render logs as JSON lines instead of console output"
    )
    return parser.parse_args(argv)


def configure_logging(json_logs: bool) -> None:
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    if not isinstance(level, int):
        level = logging.INFO
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


def load_inputs(args):
    market = orjson.loads(args.market.read_bytes())
    if not isinstance(market, dict):
        raise ValueError(f"{args.market} must hold a JSON object keyed by symbol")
    reply = args.reply.read_text(encoding="utf-8")

    positions = []
    if args.positions is not None:
        raw_positions = orjson.loads(args.positions.read_bytes())
        positions = [OpenPosition.from_dict(p) for p in raw_positions]
    return market, reply, positions


async def replay(market, reply, positions):
    provider = StaticMarketDataProvider(market)
    pipeline = DecisionPipeline(
        provider=provider,
        model_client=StaticModelClient([reply], model_id="replay"),
        symbols=provider.symbols,
    )
    return await pipeline.run_cycle(positions)


def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging(args.json_logs)

    try:
        market, reply, positions = load_inputs(args)
    except (OSError, ValueError, KeyError) as e:
        logger.error("replay_input_error", error=str(e))
        return 2

    result = asyncio.run(replay(market, reply, positions))

    if args.audit_file is not None:
        log_decision_event(result.decision, result.guard, path=args.audit_file)

    sys.stdout.write(orjson.dumps(result.to_dict(), option=orjson.OPT_INDENT_2).decode() + "\n")
    return 0 if result.guard.allowed else 1


if __name__ == "__main__":
    sys.exit(main())
