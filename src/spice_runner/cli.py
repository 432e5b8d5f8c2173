"""Command line entry point.

Usage:
    spice-runner run 971694 --text Token=ETH --number MinAmount=100 --timeout 120
    spice-runner status 01HXYZ...
    spice-runner cancel 01HXYZ...
"""

from __future__ import annotations

import argparse
import dataclasses
import datetime
import json
import logging
import sys
from collections.abc import Sequence
from typing import Any

from .adapters.dune.client import DuneClient
from .config import Config
from .core.errors import DuneRequestError, error_response
from .core.models import ExecutionHandle, Parameter, PollPolicy

logger = logging.getLogger(__name__)


def _split_assignment(raw: str) -> tuple[str, str]:
    if "=" not in raw:
        raise argparse.ArgumentTypeError(f"expected NAME=VALUE, got {raw!r}")
    name, value = raw.split("=", 1)
    return name.strip(), value


def _date_value(value: str) -> datetime.datetime:
    try:
        return datetime.datetime.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}: {exc}") from exc


def build_parameters(args: argparse.Namespace) -> list[Parameter]:
    params: list[Parameter] = []
    for raw in args.text or ():
        params.append(Parameter.text(*_split_assignment(raw)))
    for raw in args.number or ():
        params.append(Parameter.number(*_split_assignment(raw)))
    for raw in args.list or ():
        params.append(Parameter.list(*_split_assignment(raw)))
    for raw in args.date or ():
        name, value = _split_assignment(raw)
        params.append(Parameter.date(name, _date_value(value)))
    return params


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="spice-runner", description="Run saved Dune queries")
    parser.add_argument("-v", "--verbose", action="store_true", help="log polling progress")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="execute a query and print its rows")
    run.add_argument("query_id", type=int)
    run.add_argument("--text", "-p", action="append", metavar="NAME=VALUE")
    run.add_argument("--number", action="append", metavar="NAME=VALUE")
    run.add_argument("--list", action="append", metavar="NAME=VALUE")
    run.add_argument("--date", action="append", metavar="NAME=ISO_DATETIME")
    run.add_argument("--interval", type=float, default=None, help="seconds between status polls")
    run.add_argument("--timeout", type=float, default=None, help="give up polling after this many seconds")
    run.add_argument("--limit", type=int, default=None, help="return at most this many rows")
    run.add_argument("--performance", choices=["medium", "large"], default=None)
    run.add_argument("--format", choices=["json", "table"], default="json")

    status = sub.add_parser("status", help="show the status of an execution")
    status.add_argument("execution_id")

    cancel = sub.add_parser("cancel", help="request cancellation of an execution")
    cancel.add_argument("execution_id")
    return parser


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime.datetime):
        return value.isoformat()
    if hasattr(value, "name") and hasattr(value, "value"):
        return value.name
    return str(value)


def main(argv: Sequence[str] | None = None, *, client: DuneClient | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        if client is None:
            config = Config.from_env()
            client = DuneClient.from_config(config)
        if args.command == "run":
            base = client.poll_policy
            policy = PollPolicy(
                interval=args.interval if args.interval is not None else base.interval,
                max_attempts=base.max_attempts,
                timeout_seconds=args.timeout if args.timeout is not None else base.timeout_seconds,
                backoff=base.backoff,
                max_interval=base.max_interval,
            )
            result = client.run_to_completion(
                args.query_id,
                build_parameters(args),
                policy,
                performance=args.performance,
                limit=args.limit,
            )
            if args.format == "table":
                print(result.to_polars())
            else:
                print(json.dumps(result.rows, default=_jsonable, indent=2))
        elif args.command == "status":
            status = client.get_status(ExecutionHandle(args.execution_id))
            print(json.dumps(dataclasses.asdict(status), default=_jsonable, indent=2))
        elif args.command == "cancel":
            ok = client.cancel(ExecutionHandle(args.execution_id))
            print(json.dumps({"execution_id": args.execution_id, "success": ok}))
    except (DuneRequestError, ValueError) as exc:
        logger.debug("command failed", exc_info=True)
        print(json.dumps(error_response(exc, context={"command": args.command}), default=_jsonable), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
