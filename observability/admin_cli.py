"""Lightweight CLI helpers for inspecting usage tables and the spend gate."""
from __future__ import annotations

import argparse
from typing import List, Optional

from config.settings import settings
from storage import UsageStore, migrate
from usage_guard import UsageGuard


def tail_usage(limit: int = 20, store: Optional[UsageStore] = None) -> None:
    store = store or UsageStore(settings.DB_PATH)
    for row in store.recent_usage(limit):
        print(
            f"[{row.timestamp}] {row.identity or '-'}/{row.session_id or '-'} {row.operation} "
            f"prompt={row.prompt_tokens} completion={row.completion_tokens} cost=${row.cost:.6f}"
        )
    print(f"total=${store.total_cost():.6f} ceiling=${settings.SPEND_CEILING_USD:.2f}")


def gate_status(store: Optional[UsageStore] = None) -> None:
    store = store or UsageStore(settings.DB_PATH)
    state = "open" if store.read_gate() else "closed"
    print(f"gate={state} spend=${store.total_cost():.6f} ceiling=${settings.SPEND_CEILING_USD:.2f}")


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--tail-usage", type=int, help="Show the latest token usage ledger rows")
    parser.add_argument("--gate-status", action="store_true", help="Show whether provider calls are allowed")
    parser.add_argument("--reopen-gate", action="store_true", help="Allow provider calls again after a spend trip")
    args = parser.parse_args(argv)

    migrate(settings.DB_PATH)
    store = UsageStore(settings.DB_PATH)
    if args.reopen_gate:
        UsageGuard(store, cfg=settings).reopen_gate()
    if args.tail_usage:
        tail_usage(args.tail_usage, store)
    if args.gate_status or args.reopen_gate:
        gate_status(store)


if __name__ == "__main__":
    main()
