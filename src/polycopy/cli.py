"""
polycopy - copy-trade Polymarket wallets

Commands:
  run       follow wallets and replicate their trades (dry run by default)
  deepdive  FIFO-replay one wallet's recent trades and report ROI %
"""

import argparse
import signal
import sys
import threading
import time

from polycopy.config import TIMEZONE_NAME, Config
from polycopy.core.client import ClobOrderGateway, ClobPriceSource, DataApiClient
from polycopy.core.types import OrderKind
from polycopy.engine import CopyTradeOptions, CopyTradingEngine
from polycopy.infra.logging_config import log
from polycopy.report import FinalReport, wallet_deepdive, write_report
from polycopy.strategies.classifier import SmartMoneyRegistry

STOP_WORDS = ("stop", "quit", "exit")

stop_event = threading.Event()


def handle_signal(sig, _frame):
    print("\n[polycopy] Shutting down gracefully...")
    stop_event.set()


def parse_wallets(raw: str | None, configured: list[str] | None = None) -> list[str]:
    """Merge --wallets with COPY_ADDRESSES, lowercased, first occurrence wins."""
    merged = list(configured if configured is not None else Config.COPY_ADDRESSES)
    if raw:
        merged += raw.split(",")
    wallets: list[str] = []
    for w in merged:
        w = w.strip().lower()
        if w and w not in wallets:
            wallets.append(w)
    return wallets


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="polycopy",
        description="Copy-trade Polymarket wallets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Environment Variables (.env):
  COPY_ADDRESSES       Comma-separated wallets to follow
  DRY_RUN              Anything but "false" stays in dry run (default: true)
  SIZE_SCALE           Fraction of the source size to copy (default: 0.3)
  MAX_SLIPPAGE         Worst-price tolerance (default: 0.05)
  MIN_ORDER_VALUE_USD  Skip BUYs below this value (default: 1)
  MAX_PRICE_PER_SHARE  Skip BUYs above this price (default: 0.96)
  ORDER_KIND           FOK, FAK or GTC (default: FOK)
  PRIVATE_KEY          Wallet key (live only)

Current Configuration:
  Mode:        {"DRY RUN" if Config.DRY_RUN else "LIVE"}
  Size scale:  {Config.SIZE_SCALE}
  Order kind:  {Config.ORDER_KIND}
  Log dir:     {Config.COPY_TRADE_LOG_DIR}
  Timezone:    {TIMEZONE_NAME}

Examples:
  polycopy run --wallets 0x1234...,0x5678...
  polycopy run --live --scale 0.5 --kind FAK --wallets 0x1234...
  polycopy deepdive 0x1234... --days 7
""",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Follow wallets and copy their trades")
    run.add_argument("--wallets", type=str, metavar="ADDR", help="Comma-separated wallets")
    mode = run.add_mutually_exclusive_group()
    mode.add_argument("--dry-run", dest="dry_run", action="store_true", default=None)
    mode.add_argument("--live", dest="dry_run", action="store_false")
    run.add_argument("--scale", type=float, metavar="X", help=f"Size scale (default: {Config.SIZE_SCALE})")
    run.add_argument("--max-size", type=float, metavar="SHARES", help="Cap shares per replica")
    run.add_argument("--slippage", type=float, metavar="FRAC", help=f"Max slippage (default: {Config.MAX_SLIPPAGE})")
    run.add_argument("--min-trade-size", type=float, metavar="SHARES", help="Ignore smaller source trades")
    run.add_argument("--min-value", type=float, metavar="USD", help=f"Min BUY value (default: {Config.MIN_ORDER_VALUE_USD})")
    run.add_argument("--max-price", type=float, metavar="P", help=f"Max BUY price (default: {Config.MAX_PRICE_PER_SHARE})")
    run.add_argument("--kind", type=str.upper, choices=[k.value for k in OrderKind], help="Order kind")
    run.add_argument("--smart-money", action="store_true", help="Only copy leaderboard wallets")
    run.add_argument("--credit-partial", action="store_true", default=None, help="Credit partial fills on timeout")
    run.add_argument("--stats-interval", type=float, metavar="SEC", help=f"Stats line period (default: {Config.STATS_INTERVAL})")
    run.add_argument("--log-dir", type=str, help=f"Report directory (default: {Config.COPY_TRADE_LOG_DIR})")
    run.add_argument("--csv", action="store_true", help="Also export the trade log as CSV")

    dive = sub.add_parser("deepdive", help="Sub-minimum trades and ROI % for one wallet")
    dive.add_argument("wallet", type=str)
    dive.add_argument("--days", type=int, default=30)
    dive.add_argument("--min-value", type=float, default=1.0, metavar="USD")
    dive.add_argument("--max-trades", type=int, default=10_000)
    return parser


def options_from_args(args: argparse.Namespace) -> CopyTradeOptions:
    options = CopyTradeOptions(target_addresses=parse_wallets(args.wallets))
    if args.dry_run is not None:
        options.dry_run = args.dry_run
    if args.scale is not None:
        options.size_scale = args.scale
    if args.max_size is not None:
        options.max_size_per_trade = args.max_size
    if args.slippage is not None:
        options.max_slippage = args.slippage
    if args.min_trade_size is not None:
        options.min_trade_size = args.min_trade_size
    if args.min_value is not None:
        options.min_order_value_usd = args.min_value
    if args.max_price is not None:
        options.max_price_per_share = args.max_price
    if args.kind:
        options.order_kind = OrderKind(args.kind)
    if args.credit_partial:
        options.credit_partial_fills = True
    options.smart_money_only = args.smart_money
    return options


def _watch_stdin():
    for line in sys.stdin:
        if line.strip().lower() in STOP_WORDS:
            stop_event.set()
            return


def print_banner(options: CopyTradeOptions):
    print("=" * 60)
    print("Polymarket Copy Trading")
    print("=" * 60)
    print(f"Mode:            {'DRY RUN' if options.dry_run else 'LIVE TRADING'}")
    print(f"Targets:         {len(options.target_addresses)} wallet(s)")
    print(f"Size scale:      {options.size_scale * 100:g}%")
    print(f"Min BUY value:   ${options.min_order_value_usd:g} (SELL any size)")
    print(f"Max price/share: ${options.max_price_per_share:g}")
    print(f"Max slippage:    {options.max_slippage * 100:g}%")
    print(f"Order kind:      {options.order_kind.value}")
    print("=" * 60)
    for i, address in enumerate(options.target_addresses, 1):
        print(f"  {i}. {address}")
    print()


def run(args: argparse.Namespace) -> int:
    options = options_from_args(args)
    if not options.target_addresses:
        print("Error: No wallets to copy.")
        print("Set COPY_ADDRESSES in .env or use --wallets")
        return 1
    try:
        options.validate()
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    data_api = DataApiClient()
    prices = ClobPriceSource(data_api=data_api)
    smart_money = (
        SmartMoneyRegistry.from_leaderboard(data_api) if options.smart_money_only else None
    )
    gateway = None if options.dry_run else ClobOrderGateway()

    print_banner(options)
    engine = CopyTradingEngine(
        data_api, gateway=gateway, price_source=prices, smart_money=smart_money
    )
    subscription = engine.subscribe(options)

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)
    threading.Thread(target=_watch_stdin, name="stdin-stop", daemon=True).start()

    log.status_line(f"Tracking {len(options.target_addresses)} wallet(s), polling every {engine.poller.interval:g}s")
    print('Type "stop" or press Ctrl+C to shut down.\n')

    stats_interval = args.stats_interval or Config.STATS_INTERVAL
    next_stats = time.monotonic() + stats_interval
    while not stop_event.wait(1.0):
        if time.monotonic() >= next_stats:
            log.stats_line(subscription.stats().to_dict())
            next_stats += stats_interval

    subscription.stop()
    engine.stop()

    report = FinalReport.build(
        subscription.stats(),
        subscription.trade_log,
        subscription.ledger,
        prices,
        dry_run=options.dry_run,
    )
    print(report.render())
    try:
        path = write_report(report, log_dir=args.log_dir, csv=args.csv)
        log.status_line(f"Log saved: {path}")
    except OSError as e:
        print(f"Failed to write log file: {e}", file=sys.stderr)
    log.status_line("Stopped")
    return 0


def deepdive(args: argparse.Namespace) -> int:
    result = wallet_deepdive(
        DataApiClient(),
        args.wallet,
        days=args.days,
        min_value_usd=args.min_value,
        max_trades=args.max_trades,
    )
    print(result.render())
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "run":
        return run(args)
    return deepdive(args)


if __name__ == "__main__":
    sys.exit(main())
