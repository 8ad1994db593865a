from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any, Callable

import requests

DEFAULT_BASE_URL = "http://localhost:8000"
REQUEST_TIMEOUT = 30


class CLIError(RuntimeError):
    """Raised when CLI execution fails."""


def _build_url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}{path}" if path.startswith("/") else f"{base_url.rstrip('/')}/{path}"


def _detail(response: requests.Response) -> Any:
    try:
        payload = response.json()
    except ValueError:
        return response.text
    if isinstance(payload, dict) and "detail" in payload:
        return payload["detail"]
    return payload


def _perform(
    method: str,
    url: str,
    *,
    params: dict[str, Any] | None = None,
    body: dict[str, Any] | None = None,
) -> Any:
    try:
        response = requests.request(method, url, params=params, json=body, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as exc:
        raise CLIError(f"Request failed: {exc}") from exc
    if response.status_code >= 400:
        raise CLIError(f"HTTP {response.status_code}: {json.dumps(_detail(response), sort_keys=True)}")
    return response.json()


def _write_json(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, indent=2, sort_keys=True) + "\n")


def _symbol_command(args: argparse.Namespace) -> int:
    if args.set:
        payload = _perform("POST", _build_url(args.base_url, "/api/symbol"), body={"symbol": args.set})
    else:
        payload = _perform("GET", _build_url(args.base_url, "/api/symbol"))
    _write_json(payload)
    return 0


def _meta_command(args: argparse.Namespace) -> int:
    if args.override:
        try:
            override = json.loads(args.override)
        except json.JSONDecodeError as exc:
            raise CLIError(f"--override must be JSON: {exc}") from exc
        body = {"symbol": args.symbol, "override": override}
        payload = _perform("POST", _build_url(args.base_url, "/api/market-meta-override"), body=body)
    else:
        params = {"symbol": args.symbol} if args.symbol else None
        payload = _perform("GET", _build_url(args.base_url, "/api/market-meta"), params=params)
    _write_json(payload)
    return 0


def _simple_get(path: str) -> Callable[[argparse.Namespace], int]:
    def command(args: argparse.Namespace) -> int:
        _write_json(_perform("GET", _build_url(args.base_url, path)))
        return 0

    return command


def _target_command(args: argparse.Namespace) -> int:
    body = {"target_qty": args.qty}
    _write_json(_perform("POST", _build_url(args.base_url, "/api/position-target"), body=body))
    return 0


def _precheck_command(args: argparse.Namespace) -> int:
    _write_json(_perform("POST", _build_url(args.base_url, "/api/precheck"), body={"mode": args.mode}))
    return 0


def _execute_command(args: argparse.Namespace) -> int:
    body: dict[str, Any] = {"mode": args.mode}
    if args.expected_price_a is not None:
        body["expected_price_a"] = args.expected_price_a
    if args.expected_price_b is not None:
        body["expected_price_b"] = args.expected_price_b
    if not args.yes:
        check = _perform("POST", _build_url(args.base_url, "/api/precheck"), body={"mode": args.mode})
        _write_json(check)
        if check.get("blocked"):
            raise CLIError(f"precheck blocked: {check.get('reason')}")
        if check.get("need_confirm") or check.get("unknown_balance"):
            raise CLIError("precheck needs confirmation; rerun with --yes")
        details = check.get("details") or {}
        body.setdefault("expected_price_a", details.get("price_a"))
        body.setdefault("expected_price_b", details.get("price_b"))
    _write_json(_perform("POST", _build_url(args.base_url, "/api/execute-trade"), body=body))
    return 0


def _cancel_command(args: argparse.Namespace) -> int:
    body = {"local_id": args.local_id}
    _write_json(_perform("POST", _build_url(args.base_url, "/api/cancel-order"), body=body))
    return 0


def _resolve_command(args: argparse.Namespace) -> int:
    body = {"local_id": args.local_id, "leg_a_filled": args.outcome == "filled"}
    _write_json(_perform("POST", _build_url(args.base_url, "/api/resolve-trade"), body=body))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Arbdesk operator CLI")
    parser.add_argument(
        "--base-url",
        default=os.getenv("ARB_API_URL", DEFAULT_BASE_URL),
        help="Base URL of the arbdesk API (falls back to ARB_API_URL env)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    symbol_parser = subparsers.add_parser("symbol", help="Show or change the active symbol")
    symbol_parser.add_argument("--set", default=None, help="New symbol, e.g. BOXCAT_USDT")
    symbol_parser.set_defaults(func=_symbol_command)

    meta_parser = subparsers.add_parser("meta", help="Show market meta or store an override")
    meta_parser.add_argument("--symbol", default=None)
    meta_parser.add_argument("--override", default=None, help='JSON object, e.g. {"gate": {"min_quote": 5}}')
    meta_parser.set_defaults(func=_meta_command)

    for name, path, help_text in (
        ("data", "/api/data", "Top of book on both venues"),
        ("balances", "/api/balances", "Venue balances"),
        ("progress", "/api/position-progress", "Position progress"),
        ("history", "/api/history", "Trade history (runs one reconciliation pass)"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.set_defaults(func=_simple_get(path))

    target_parser = subparsers.add_parser("target", help="Set the position target in base units")
    target_parser.add_argument("qty", type=float)
    target_parser.set_defaults(func=_target_command)

    precheck_parser = subparsers.add_parser("precheck", help="Size a trade without submitting")
    precheck_parser.add_argument("mode", choices=["open", "close"])
    precheck_parser.set_defaults(func=_precheck_command)

    execute_parser = subparsers.add_parser("execute", help="Precheck, then submit both legs")
    execute_parser.add_argument("mode", choices=["open", "close"])
    execute_parser.add_argument("--yes", action="store_true", help="Skip the precheck confirmation step")
    execute_parser.add_argument("--expected-price-a", type=float, default=None)
    execute_parser.add_argument("--expected-price-b", type=float, default=None)
    execute_parser.set_defaults(func=_execute_command)

    cancel_parser = subparsers.add_parser("cancel", help="Cancel both legs of a trade")
    cancel_parser.add_argument("local_id")
    cancel_parser.set_defaults(func=_cancel_command)

    resolve_parser = subparsers.add_parser("resolve", help="Resolve a trade flagged needs_review")
    resolve_parser.add_argument("local_id")
    resolve_parser.add_argument("outcome", choices=["filled", "cancelled"])
    resolve_parser.set_defaults(func=_resolve_command)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    func: Callable[[argparse.Namespace], int] = args.func
    try:
        return func(args)
    except CLIError as exc:
        sys.stderr.write(f"error: {exc}\n")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
