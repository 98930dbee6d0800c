#!/usr/bin/env python3
"""
Resolve a symbol list against TWS/IB Gateway.

Connects to the gateway, requests contract definitions for every symbol in
the file and prints how many contracts each one resolved to.

Requirements:
    1. pip install -e .
    2. TWS or IB Gateway running with API enabled

Usage:
    python scripts/resolve_symbols.py symbols.txt
    python scripts/resolve_symbols.py symbols.txt --port 4002
    python scripts/resolve_symbols.py symbols.txt --dump -v
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from ibmux import GatewayConfig, GatewayError, GatewaySession, Symbols


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Resolve symbols to contract definitions via IB Gateway",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Port Reference:
  7497  TWS Paper Trading
  7496  TWS Live Trading
  4002  IB Gateway Paper
  4001  IB Gateway Live (default)

Symbol file format:
  # comment
  name[,sec_type[,exchange[,currency]]]
        """,
    )
    parser.add_argument("path", help="Symbol file")
    parser.add_argument("--host", type=str, default="127.0.0.1", help="Gateway host")
    parser.add_argument("--port", type=int, default=4001, help="Gateway port (default: 4001)")
    parser.add_argument(
        "--client-id",
        type=int,
        default=0,
        help="Client ID (default: allocate automatically)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=15.0,
        help="Seconds to wait for all symbols (default: 15)",
    )
    parser.add_argument("--dump", action="store_true", help="Log every request and reply")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args()


def build_config(args: argparse.Namespace) -> GatewayConfig:
    """Session configuration from command line arguments."""
    return GatewayConfig(
        host=args.host,
        port=args.port,
        client_id=args.client_id,
        dump_conversation=args.dump,
    )


async def resolve(args: argparse.Namespace, config: GatewayConfig) -> int:
    """Resolve every symbol; returns the process exit code."""
    async with GatewaySession(config) as session:
        symbols = Symbols.from_file(session, args.path)
        try:
            ready = await symbols.wait(timeout=args.timeout)

            for sym in symbols:
                status = "ok" if sym.valid else sym.state.value
                print(f"{sym.name:<12} {status:<16} {len(sym.data)} contract(s)")

            if not ready:
                print(f"\nTimed out after {args.timeout}s waiting for all symbols")
                return 1
            return 0
        finally:
            await symbols.cleanup()


def main() -> int:
    """Main entry point."""
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose or args.dump else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = build_config(args)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    try:
        return asyncio.run(resolve(args, config))
    except GatewayError as e:
        print(f"Gateway error: {e}", file=sys.stderr)
        return 2
    except (OSError, ValueError) as e:
        print(f"Cannot read symbols: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
