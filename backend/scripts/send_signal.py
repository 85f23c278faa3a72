"""
Send a trading signal to a running SignalHub server.

Usage:
    SIGNAL_API_KEY=... python scripts/send_signal.py EUR/USD long 1.0850 1.0820 1.0920 --confidence 85
    SIGNAL_API_KEY=... python scripts/send_signal.py --close <signal-id> --status closed_win --price 1.0920
"""
import argparse
import logging
import os
import sys

import httpx

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("send_signal")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Post a signal to SignalHub")
    parser.add_argument("pair", nargs="?", help="Instrument pair, e.g. EUR/USD")
    parser.add_argument("action", nargs="?", help="LONG or SHORT")
    parser.add_argument("entry", nargs="?", help="Entry price")
    parser.add_argument("stop_loss", nargs="?", help="Stop level")
    parser.add_argument("take_profit", nargs="?", help="Target level")
    parser.add_argument("--confidence", type=int)
    parser.add_argument("--risk", type=float)
    parser.add_argument("--reasoning")
    parser.add_argument("--source")
    parser.add_argument("--close", metavar="SIGNAL_ID", help="Patch the status of an existing signal")
    parser.add_argument("--status", help="New status for --close")
    parser.add_argument("--price", type=float, help="Close price for --close")
    parser.add_argument("--url", default=os.getenv("SIGNALHUB_URL", "http://localhost:8000"))
    return parser


def main() -> int:
    args = build_parser().parse_args()
    api_key = os.getenv("SIGNAL_API_KEY")
    if not api_key:
        logger.error("SIGNAL_API_KEY is not set")
        return 2

    headers = {"Authorization": f"Bearer {api_key}"}
    with httpx.Client(base_url=args.url, headers=headers, timeout=10.0) as client:
        if args.close:
            body = {"status": args.status, "closePrice": args.price}
            response = client.patch(f"/api/signals/{args.close}/status", json=body)
        else:
            if not all([args.pair, args.action, args.entry, args.stop_loss, args.take_profit]):
                logger.error("pair, action, entry, stop_loss and take_profit are required")
                return 2
            body = {
                "pair": args.pair,
                "action": args.action,
                "entry": args.entry,
                "stopLoss": args.stop_loss,
                "takeProfit": args.take_profit,
                "confidence": args.confidence,
                "risk": args.risk,
                "reasoning": args.reasoning,
                "source": args.source,
            }
            response = client.post("/api/signals/ingest", json=body)

    if response.is_error:
        logger.error("Request failed (%s): %s", response.status_code, response.text)
        return 1
    logger.info("OK %s: %s", response.status_code, response.json())
    return 0


if __name__ == "__main__":
    sys.exit(main())
