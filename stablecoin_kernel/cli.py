"""
Operator CLI.

Usage:
    stablecoin-kernel sync
    stablecoin-kernel sync --schedule "*/15 * * * *"
    stablecoin-kernel add 0xabc...
    stablecoin-kernel upload data/whitelist.csv --concurrency 20
    stablecoin-kernel create-policy data/whitelist.csv --bind
    stablecoin-kernel claims
    stablecoin-kernel serve --port 8000
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from stablecoin_kernel.chain.units import format_token_amount
from stablecoin_kernel.errors import KernelError
from stablecoin_kernel.kernel import Kernel
from stablecoin_kernel.models.config import KernelConfig
from stablecoin_kernel.models.outcome import Outcome
from stablecoin_kernel.reconciler.bulk import (
    FIRST_CHUNK_SIZE,
    PARALLEL_ADD_SIZE,
    create_policy_chunked,
    upload_addresses,
)
from stablecoin_kernel.reconciler.seeds import read_address_csv

logger = logging.getLogger("stablecoin_kernel.cli")


def _print(payload: dict) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _exit_code(outcome: Outcome) -> int:
    return 0 if outcome == Outcome.SUCCESS else 1


async def _sync(kernel: Kernel, args: argparse.Namespace) -> int:
    if args.schedule or args.interval:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                pass
        await kernel.reconciler.run_async(
            stop_event=stop_event,
            schedule=args.schedule,
            interval_seconds=args.interval or 3600.0,
        )
        return 0

    result = await kernel.reconciler.sync(args.address or None)
    _print(result.to_payload())
    return _exit_code(result.outcome)


async def _add(kernel: Kernel, args: argparse.Namespace) -> int:
    result = await kernel.reconciler.add_if_eligible(args.address)
    payload = result.model_dump(mode="json")
    if result.tx_hash:
        payload["explorer_url"] = kernel.config.receipt_url(result.tx_hash)
    _print(payload)
    return _exit_code(result.outcome)


async def _upload(kernel: Kernel, args: argparse.Namespace) -> int:
    addresses = read_address_csv(Path(args.csv), allowed_column="allowed")
    logger.info("Loaded %d addresses from %s", len(addresses), args.csv)
    result = await upload_addresses(
        kernel.config, kernel.provider, kernel.whitelist, addresses, args.concurrency
    )
    _print(result.to_payload())
    return _exit_code(result.outcome)


async def _create_policy(kernel: Kernel, args: argparse.Namespace) -> int:
    addresses = read_address_csv(Path(args.csv))
    policy_id, result = await create_policy_chunked(
        kernel.config,
        kernel.provider,
        kernel.whitelist,
        addresses,
        first_chunk_size=args.first_chunk,
        concurrency=args.concurrency,
    )
    payload = {"policy_id": policy_id, "populate": result.to_payload(), "bound": False}
    if args.bind:
        receipt = await kernel.whitelist.set_token_policy(policy_id)
        payload["bound"] = True
        payload["bind_tx_hash"] = receipt.tx_hash
    _print(payload)
    print(f"Update .env: POLICY_ID={policy_id}", file=sys.stderr)
    return _exit_code(result.outcome)


async def _claims(kernel: Kernel, args: argparse.Namespace) -> int:
    records = kernel.ledger.get_all_claims()
    total = kernel.ledger.get_total_claimed()
    _print({
        "count": len(records),
        "total_claimed": str(total),
        "total_claimed_formatted": format_token_amount(total, kernel.config.token_decimals),
        "pending": [p.model_dump(mode="json") for p in kernel.ledger.get_pending_claims()],
    })
    return 0


_COMMANDS = {
    "sync": _sync,
    "add": _add,
    "upload": _upload,
    "create-policy": _create_policy,
    "claims": _claims,
}


async def _run(config: KernelConfig, args: argparse.Namespace) -> int:
    kernel = Kernel(config)
    try:
        return await _COMMANDS[args.command](kernel, args)
    except KernelError as e:
        logger.error("%s", e)
        _print({"error": e.to_dict()})
        return 1
    finally:
        await kernel.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stablecoin-kernel",
        description="Reputation-gated stablecoin operator tools",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    parser.add_argument("--env-file", default=None, help="Path to a .env file")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("sync", help="Reconcile the whitelist against reputation scores")
    p.add_argument("--address", action="append", help="Address to check (repeatable); default: seeds")
    p.add_argument("--schedule", default=None, help="Cron expression; run until interrupted")
    p.add_argument("--interval", type=float, default=None, help="Seconds between passes")

    p = sub.add_parser("add", help="Authorize one address if its score qualifies")
    p.add_argument("address")

    p = sub.add_parser("upload", help="Authorize every address in a CSV (no score check)")
    p.add_argument("csv")
    p.add_argument("--concurrency", type=int, default=PARALLEL_ADD_SIZE)

    p = sub.add_parser("create-policy", help="Create a new whitelist policy from a CSV")
    p.add_argument("csv")
    p.add_argument("--first-chunk", type=int, default=FIRST_CHUNK_SIZE)
    p.add_argument("--concurrency", type=int, default=PARALLEL_ADD_SIZE)
    p.add_argument("--bind", action="store_true", help="Bind the token to the new policy")

    sub.add_parser("claims", help="Report recorded claims")

    p = sub.add_parser("serve", help="Run the HTTP API")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8000)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = KernelConfig.from_env(dotenv_path=args.env_file)

    if args.command == "serve":
        import uvicorn

        from stablecoin_kernel.api.app import create_app

        uvicorn.run(create_app(config), host=args.host, port=args.port)
        return 0

    return asyncio.run(_run(config, args))


if __name__ == "__main__":
    sys.exit(main())
