"""Command line interface for txparser.

``txparser serve`` runs the block scanner and the REST API in one process;
``head`` and ``scan-block`` are one-shot helpers for poking at a node.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Sequence

from .config import AppConfig, ConfigurationError, load_config
from .facade import TxParser
from .rpc_client import EthereumRPCClient, RPCClientError, format_rpc_hint
from .scanner import BlockScanner
from .storage import MemoryAddressStore

logger = logging.getLogger(__name__)

COMPACT_JSON_SEPARATORS = (",", ":")


class CLIError(RuntimeError):
    """Raised when CLI arguments are invalid."""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Index ledger transactions by address")
    parser.add_argument("--config", default=None, help="Path to a YAML config (default: ~/.txparser.yaml)")
    parser.add_argument("--rpc-url", default=None, help="JSON-RPC endpoint (overrides TXPARSER_RPC_URL)")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser(
        "serve", help="scan blocks continuously and serve the query API"
    )
    serve_parser.add_argument("--host", default=None, help="Bind address (default: 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, default=None, help="Bind port (default: 8080)")
    serve_parser.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="Seconds between head checks (default: 5)",
    )
    serve_parser.add_argument(
        "--no-backward-scan",
        action="store_true",
        help="Skip the historical backfill below the startup head",
    )
    serve_parser.add_argument(
        "--backward-depth",
        type=int,
        default=None,
        help="How many blocks below the startup head to backfill (default: 10000)",
    )

    subparsers.add_parser("head", help="print the ledger's current head block")

    scan_parser = subparsers.add_parser(
        "scan-block", help="index a single block and print its records"
    )
    scan_parser.add_argument("block", type=int, help="Block number to fetch")
    scan_parser.add_argument(
        "--address",
        default=None,
        help="Only print records filed under this address",
    )
    return parser


def _load_app_config(args: argparse.Namespace) -> AppConfig:
    overrides: dict[str, Any] = {"rpc_url": args.rpc_url}
    if args.command == "serve":
        overrides.update(
            host=args.host,
            port=args.port,
            poll_interval=args.poll_interval,
            backward_scan_depth=args.backward_depth,
        )
        if args.no_backward_scan:
            overrides["backward_scan_enabled"] = False
    return load_config(config_path=args.config, overrides=overrides)


def cmd_serve(config: AppConfig) -> None:
    import uvicorn

    from .server import create_app

    rpc = EthereumRPCClient(config.rpc)
    store = MemoryAddressStore()
    scanner = BlockScanner(rpc, store, config.scanner)
    app = create_app(TxParser(scanner, store))

    logger.info(
        "Starting scanner against %s (poll=%ss, backward=%s, depth=%d)",
        config.rpc.url,
        config.scanner.poll_interval,
        config.scanner.backward_scan_enabled,
        config.scanner.backward_scan_depth,
    )
    scanner.start()
    try:
        # uvicorn installs its own SIGINT/SIGTERM handlers and returns on shutdown.
        uvicorn.run(app, host=config.server.host, port=config.server.port)
    finally:
        logger.info("Shutting down...")
        scanner.stop()
        rpc.close()


def cmd_head(config: AppConfig) -> None:
    rpc = EthereumRPCClient(config.rpc)
    try:
        block = rpc.get_block_number_int()
    finally:
        rpc.close()
    print(json.dumps({"block": block}, separators=COMPACT_JSON_SEPARATORS))


def cmd_scan_block(config: AppConfig, args: argparse.Namespace) -> None:
    if args.block < 0:
        raise CLIError(f"block number must be non-negative: {args.block}")
    rpc = EthereumRPCClient(config.rpc)
    store = MemoryAddressStore(gate_reads=False)
    scanner = BlockScanner(rpc, store, config.scanner)
    try:
        scanner.process_block(args.block)
    finally:
        rpc.close()

    addresses = [args.address] if args.address else store.addresses()
    result = {
        address: [record.to_dict() for record in store.get_transactions(address)]
        for address in addresses
    }
    print(json.dumps(result, indent=2))


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = _load_app_config(args)
        if args.command == "serve":
            cmd_serve(config)
        elif args.command == "head":
            cmd_head(config)
        elif args.command == "scan-block":
            cmd_scan_block(config, args)
        else:  # pragma: no cover - argparse enforces choices
            raise CLIError(f"Unknown command: {args.command}")
    except KeyboardInterrupt:  # pragma: no cover - interactive use
        logger.info("Interrupted by user")
    except RPCClientError as exc:
        hint = format_rpc_hint(exc)
        message = f"error: {exc}\n" if hint is None else f"error: {exc}\nHint: {hint}\n"
        parser.exit(1, message)
    except (CLIError, ConfigurationError) as exc:
        parser.exit(1, f"error: {exc}\n")


if __name__ == "__main__":
    main(sys.argv[1:])
