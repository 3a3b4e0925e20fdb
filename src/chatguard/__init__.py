"""
ChatGuard - automated moderation and threat scoring for chat rooms.

This package evaluates every inbound chat message and decides whether to
ignore, warn, mute or ban the sender:
- Tiered toxicity, spam and filter-evasion classification
- Per-device behavioral tracking (rapid fire, flooding, repetition)
- Cumulative risk profiles and prior-ban escalation
- Durable ban records in SQLite
- Configurable logging with personal-information redaction
"""

from __future__ import annotations

from chatguard.config import Config, ModerationThresholds, load_config
from chatguard.engine import ModerationEngine, build_engine
from chatguard.utils.decision import BanDecision, MessageEvent, SuggestedAction

__version__ = "1.0.0"
__all__ = [
    "BanDecision",
    "Config",
    "MessageEvent",
    "ModerationEngine",
    "ModerationThresholds",
    "SuggestedAction",
    "build_engine",
    "load_config",
    "main",
]


def _parse_args(argv: list[str] | None):
    import argparse

    parser = argparse.ArgumentParser(prog="chatguard", description="Chat moderation engine")
    parser.add_argument("--env-file", help="Path to a .env file")
    commands = parser.add_subparsers(dest="command", required=True)

    evaluate = commands.add_parser("evaluate", help="Evaluate a message and print the decision")
    evaluate.add_argument("--actor", help="Username of the sender")
    evaluate.add_argument("--device", help="Device id of the sender")
    evaluate.add_argument("--room", type=int, help="Room id")
    evaluate.add_argument(
        "message",
        help="Message text, or '-' to read actor<TAB>device<TAB>message lines from stdin",
    )

    high_risk = commands.add_parser("high-risk", help="List actors with a high cumulative threat score")
    high_risk.add_argument("--min-score", type=float, default=80.0)
    high_risk.add_argument("--limit", type=int, default=50)

    return parser, parser.parse_args(argv)


async def _evaluate_stream(engine: ModerationEngine, lines, room_id: int | None) -> list[dict]:
    from chatguard.utils.logging import get_logger

    logger = get_logger(__name__)
    results = []
    for number, line in enumerate(lines, start=1):
        line = line.rstrip("\n")
        if not line.strip():
            continue
        parts = line.split("\t", 2)
        if len(parts) != 3:
            logger.warning("Skipping malformed input line %d", number)
            continue
        actor, device, message = parts
        decision = await engine.evaluate(MessageEvent(message, actor, device, room_id))
        results.append({"actor": actor, "device": device, **decision.to_dict()})
    return results


def main(argv: list[str] | None = None) -> None:
    """Entry point for the chatguard command."""
    import asyncio
    import json
    import sys

    from chatguard.utils.logging import get_logger, setup_logging

    parser, args = _parse_args(argv)

    # Load configuration
    try:
        config = load_config(args.env_file)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    logger = get_logger(__name__)
    logger.debug("Starting ChatGuard v%s", __version__)

    engine = build_engine(config)

    if args.command == "high-risk":
        actors = asyncio.run(engine.high_risk_actors(args.min_score, args.limit))
        print(json.dumps(actors))
        return

    if args.message == "-":
        results = asyncio.run(_evaluate_stream(engine, sys.stdin, args.room))
        for result in results:
            print(json.dumps(result))
        return

    if not args.actor or not args.device:
        parser.error("--actor and --device are required for a single message")

    event = MessageEvent(args.message, args.actor, args.device, args.room)
    decision = asyncio.run(engine.evaluate(event))
    print(json.dumps(decision.to_dict()))
