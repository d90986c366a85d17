# backend/rentledger/cli/__main__.py
from __future__ import annotations

import argparse
import json
from datetime import date
from typing import Optional

from rentledger.clients.notifications import build_notifier
from rentledger.config import settings
from rentledger.logging_config import configure_logging
from rentledger.services.categories import ensure_default_categories
from rentledger.services.late_payment import late_tenants
from rentledger.services.pipelines import run_reminder_cycle
from rentledger.storage import build_storage_provider


def _day(s: Optional[str]) -> Optional[date]:
    return date.fromisoformat(s) if s else None


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="python -m rentledger.cli")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("init-db", help="create tables on the configured database")

    seed = sub.add_parser("seed-categories", help="create a user's default transaction categories")
    seed.add_argument("--user-id", type=int, required=True)

    late = sub.add_parser("late", help="list active tenants without a received payment this month")
    late.add_argument("--user-id", type=int, required=True)
    late.add_argument("--today", default=None, help="YYYY-MM-DD, defaults to today")

    remind = sub.add_parser("remind", help="flag late payments, schedule and deliver reminders")
    remind.add_argument("--user-id", type=int, required=True)
    remind.add_argument("--today", default=None, help="YYYY-MM-DD, defaults to today")

    args = p.parse_args(argv)
    configure_logging()

    # build_storage_provider creates the schema as a side effect
    provider = build_storage_provider(settings)
    if args.cmd == "init-db":
        print(json.dumps({"ok": True, "storage": type(provider).__name__}))
        return 0

    with provider.session() as store:
        if args.cmd == "seed-categories":
            rows = ensure_default_categories(store, args.user_id)
            out = {"ok": True, "categories": [{"id": c.id, "name": c.name, "type": c.type} for c in rows]}
        elif args.cmd == "late":
            out = {
                "ok": True,
                "late": [
                    {
                        "tenant_id": lp.tenant.id,
                        "name": lp.tenant.full_name,
                        "reason": lp.reason,
                        "last_payment_id": lp.last_payment.id if lp.last_payment is not None else None,
                    }
                    for lp in late_tenants(store, args.user_id, _day(args.today))
                ],
            }
        else:
            cycle = run_reminder_cycle(store, build_notifier(settings), args.user_id, today=_day(args.today))
            out = {"ok": True, **cycle.as_dict()}

    print(json.dumps(out, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
