#!/usr/bin/env python3
"""
Binance connector command line.

Usage:
    python runclient.py ping
    python runclient.py account
    python runclient.py balance BTC
    python runclient.py stream btcusdt@trade btcusdt@depth@100ms [--limit 20]

Options common to every command:
    --config FILE     YAML settings layered over the environment
    --env-file FILE   dotenv file with BINANCE_API_KEY / BINANCE_API_SECRET
    --testnet         use the spot testnet endpoints
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

import dotenv

from client_config import load_settings
from client_config.settings import TESTNET_REST_URL, TESTNET_STREAM_URL
from exchange_clients.binance import BinanceClient
from networking.exceptions import ExchangeError
from streaming.events import GapDetected


def parse_arguments(argv=None):
    parser = argparse.ArgumentParser(description="Binance spot connector CLI.")
    parser.add_argument("--config", "-c", type=str, default=None, help="YAML settings file.")
    parser.add_argument(
        "--env-file",
        type=str,
        default=".env",
        help="Path to the environment file with API credentials (default: .env).",
    )
    parser.add_argument("--testnet", action="store_true", help="Use the spot testnet endpoints.")
    parser.add_argument(
        "--log-level",
        "-l",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO).",
    )

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("ping", help="Check REST connectivity and clock offset.")
    commands.add_parser("account", help="Show account permissions and non-zero balances.")

    balance = commands.add_parser("balance", help="Show the balance of one asset.")
    balance.add_argument("asset", type=str)

    stream = commands.add_parser("stream", help="Print events from one or more streams.")
    stream.add_argument("streams", nargs="+")
    stream.add_argument("--limit", type=int, default=0, help="Stop after N events per stream (0 = run forever).")

    return parser.parse_args(argv)


def setup_logging(log_level: str):
    """Quiet the standard-library loggers of third-party packages."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.getLogger().setLevel(level)
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


async def cmd_ping(client: BinanceClient) -> None:
    await client.ping()
    server_ms = await client.market.server_time()
    offset = await client.transport.sync_time() if client.signer else None
    print(f"✓ REST reachable, server time {server_ms}")
    if offset is not None:
        print(f"  Clock offset: {offset}ms")


async def cmd_account(client: BinanceClient) -> None:
    account = await client.get_account()
    print(f"Account type: {account.account_type or 'unknown'}")
    print(f"  canTrade={account.can_trade} canWithdraw={account.can_withdraw} canDeposit={account.can_deposit}")
    for balance in account.balances:
        if balance.total > 0:
            print(f"  {balance.asset:<8} free={balance.free} locked={balance.locked}")


async def cmd_balance(client: BinanceClient, asset: str) -> None:
    balance = await client.get_balance(asset.upper())
    print(f"{balance.asset}: free={balance.free} locked={balance.locked}")


async def _print_stream(client: BinanceClient, stream: str, limit: int) -> None:
    channel = await client.subscribe(stream)
    seen = 0
    async for item in channel:
        if isinstance(item, GapDetected):
            print(f"[{stream}] gap: {item.missing} update(s) missed after {item.last_known_id}")
            continue
        print(f"[{stream}] {item.data}")
        seen += 1
        if limit and seen >= limit:
            break
    await client.unsubscribe(stream)


async def cmd_stream(client: BinanceClient, streams, limit: int) -> None:
    await asyncio.gather(*(_print_stream(client, stream, limit) for stream in streams))


async def main(argv=None) -> int:
    args = parse_arguments(argv)
    os.environ["LOG_LEVEL"] = args.log_level
    setup_logging(args.log_level)

    env_path = Path(args.env_file)
    if env_path.exists():
        dotenv.load_dotenv(env_path)

    overrides = {"log_level": args.log_level}
    if args.testnet:
        overrides.update(rest_url=TESTNET_REST_URL, stream_url=TESTNET_STREAM_URL)
    try:
        settings = load_settings(args.config, overrides)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: Invalid configuration: {e}")
        return 1

    try:
        async with BinanceClient(settings) as client:
            if args.command == "ping":
                await cmd_ping(client)
            elif args.command == "account":
                await cmd_account(client)
            elif args.command == "balance":
                await cmd_balance(client, args.asset)
            elif args.command == "stream":
                await cmd_stream(client, args.streams, args.limit)
    except ExchangeError as e:
        print(f"Error: {type(e).__name__}: {e}")
        return 1
    return 0


def cli() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    cli()
