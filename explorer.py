"""
Territory explorer runtime.

Starts a navigation session against the ledger gateway:
- loads the ancestry, children and bids of the start territory
- prints the details panel once the view has settled
- with --watch, refreshes the view every N seconds until interrupted
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal

import config
import render_projector as rp
from ledger_client import LedgerClient
from notifier import ErrorSink
from sync_controller import SyncController


logger = logging.getLogger(__name__)


def setup_logging() -> None:
    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Navigate the territory tree of the ledger.")
    parser.add_argument("--territory", type=int, default=config.START_TERRITORY_ID,
                        help="territory id to open (default: %(default)s)")
    parser.add_argument("--account", default=config.ACCOUNT_ADDRESS,
                        help="account to view as; enables ownership tagging")
    parser.add_argument("--rpc-url", default=config.LEDGER_RPC_URL,
                        help="ledger JSON-RPC endpoint (default: %(default)s)")
    parser.add_argument("--watch", type=float, default=0.0, metavar="SECONDS",
                        help="refresh the view every SECONDS until interrupted")
    return parser.parse_args(argv)


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    def _handle_signal(signum, _frame=None):
        logger.info("Signal %s received", signum)
        loop.call_soon_threadsafe(stop.set)

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _handle_signal, sig, None)
        except NotImplementedError:
            # Windows event loops lack add_signal_handler.
            signal.signal(sig, _handle_signal)
    if hasattr(signal, "SIGBREAK"):
        signal.signal(signal.SIGBREAK, _handle_signal)


async def run_session(args: argparse.Namespace) -> int:
    stop = asyncio.Event()
    _install_signal_handlers(stop)

    sink = ErrorSink()
    async with LedgerClient(url=args.rpc_url) as ledger:
        controller = SyncController(ledger, rp.Canvas(), sink, account=args.account or None)
        await controller.start(args.territory)
        try:
            await controller.settle()
            print(rp.format_summary(rp.view_summary(controller.state)))
            if args.watch > 0:
                poll = max(1.0, float(args.watch))
                logger.info("Watching territory view (every %ss)", poll)
                while not stop.is_set():
                    try:
                        await asyncio.wait_for(stop.wait(), timeout=poll)
                    except asyncio.TimeoutError:
                        pass
                    if stop.is_set():
                        break
                    controller.refresh(include_ancestry=True)
                    await controller.settle()
                    print(rp.format_summary(rp.view_summary(controller.state)))
        finally:
            await controller.stop()
    await sink.drain()
    return 1 if sink.recent else 0


def run(argv: list[str] | None = None) -> int:
    setup_logging()
    args = parse_args(argv)
    config.print_banner()
    return asyncio.run(run_session(args))


if __name__ == "__main__":
    raise SystemExit(run())
