"""Command-line client for the daemon's management API."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Mapping, Sequence
from dataclasses import astuple, dataclass, fields
from typing import Any

import requests
from tabulate import tabulate

DEFAULT_API = "http://127.0.0.1:25348"


@dataclass(frozen=True)
class SystemStats:
    """Traffic counters reported by the daemon."""

    active_connections: int
    total_rx_bytes: int
    total_tx_bytes: int


def _parse_stats(data: Any) -> SystemStats:
    if not isinstance(data, Mapping):
        raise ValueError("stats response is not an object")
    values = {}
    for f in fields(SystemStats):
        if f.name not in data:
            raise ValueError(f"stats response is missing {f.name!r}")
        value = data[f.name]
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValueError(f"stats field {f.name!r} is not a non-negative integer")
        values[f.name] = value
    return SystemStats(**values)


def format_stats(stats: SystemStats) -> str:
    """Render the statistics as a bordered table."""
    headers = [f.name for f in fields(SystemStats)]
    return tabulate(
        [astuple(stats)],
        headers=headers,
        tablefmt="pretty",
        stralign="left",
        numalign="left",
    )


def _u64(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {text!r}") from None
    if not 0 <= value < 1 << 64:
        raise argparse.ArgumentTypeError(f"integer out of range: {text!r}")
    return value


def _status_text(response: requests.Response) -> str:
    return f"{response.status_code} {response.reason or ''}".strip()


def _report(response: requests.Response, message: str) -> int:
    if 200 <= response.status_code < 300:
        print(message)
    else:
        print(f"Error: {_status_text(response)}", file=sys.stderr)
    return 0


def _stats(session: requests.Session, args: argparse.Namespace) -> int:
    response = session.get(f"{args.api}/admin/stats")
    response.raise_for_status()
    print(format_stats(_parse_stats(response.json())))
    return 0


def _user_create(session: requests.Session, args: argparse.Namespace) -> int:
    body = {"username": args.username, "quota_bytes": args.quota}
    response = session.post(f"{args.api}/admin/users", json=body)
    return _report(response, "User created successfully")


def _user_delete(session: requests.Session, args: argparse.Namespace) -> int:
    response = session.delete(f"{args.api}/admin/users/{args.id}")
    return _report(response, "User deleted successfully")


def _node_register(session: requests.Session, args: argparse.Namespace) -> int:
    body = {"name": args.name, "endpoint": args.endpoint, "weight": args.weight}
    response = session.post(f"{args.api}/admin/nodes", json=body)
    return _report(response, "Node registered successfully")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for all commands."""
    parser = argparse.ArgumentParser(
        prog="apfsds-cli", description="Manage the proxy daemon."
    )
    parser.add_argument("--api", default=DEFAULT_API, help="management API base URL")
    commands = parser.add_subparsers(dest="command", required=True)

    user = commands.add_parser("user", help="Manage users/accounts")
    user_commands = user.add_subparsers(dest="user_command", required=True)
    create = user_commands.add_parser("create", help="Create a new user")
    create.add_argument("username", help="Username")
    create.add_argument("--quota", type=_u64, default=None, help="Quota in bytes")
    create.set_defaults(handler=_user_create)
    delete = user_commands.add_parser("delete", help="Delete a user")
    delete.add_argument("id", type=_u64, help="User ID")
    delete.set_defaults(handler=_user_delete)

    node = commands.add_parser("node", help="Manage exit nodes")
    node_commands = node.add_subparsers(dest="node_command", required=True)
    register = node_commands.add_parser("register", help="Register a new exit node")
    register.add_argument("name", help="Name")
    register.add_argument("endpoint", help="Endpoint (e.g., 1.2.3.4:25347)")
    register.add_argument("--weight", type=float, default=1.0, help="Weight")
    register.set_defaults(handler=_node_register)

    stats = commands.add_parser("stats", help="View system statistics")
    stats.set_defaults(handler=_stats)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command line; return the process exit status."""
    args = build_parser().parse_args(argv)
    with requests.Session() as session:
        try:
            return args.handler(session, args)
        except (requests.RequestException, ValueError) as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1


if __name__ == "__main__":
    raise SystemExit(main())