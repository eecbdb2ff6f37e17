#!/usr/bin/env python3
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path


REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from autotag.config.load_config import load_app_config  # noqa: E402
from autotag.rules.authoring import build_rule_draft, create_rule  # noqa: E402
from autotag.storage.sqlite_store import SQLiteStore  # noqa: E402


SEED_RULE_NAME = "UAT - Premium Vendor Rule"


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Seed an acceptance-test rule for a shop (idempotent).")
    p.add_argument("--shop", default=os.getenv("UAT_SHOP", "uat-shop.myshopify.com"), help="Shop domain.")
    p.add_argument("--vendor", default="X", help="Vendor substring the rule matches.")
    p.add_argument("--db-path", default="", help="SQLite path (default: env AUTOTAG_SQLITE_PATH or data/app.db).")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    store = SQLiteStore(args.db_path or None)
    try:
        existing = [r for r in store.list_rules(shop=args.shop, search=SEED_RULE_NAME) if r.name == SEED_RULE_NAME]
        if existing:
            print(f"Seed rule already exists for shop: {args.shop} ({existing[0].id})")
            return 0

        draft = build_rule_draft(
            name=SEED_RULE_NAME,
            enabled=True,
            conditions={
                "groupJoiner": "AND",
                "groups": [
                    {
                        "joiner": "AND",
                        "conditions": [
                            {"field": "vendor", "operator": "contains", "value": args.vendor},
                            {"field": "minVariantPrice", "operator": "greater_than", "value": "80"},
                        ],
                    }
                ],
            },
            actions={"items": [{"type": "add", "tags": ["premium"]}]},
        )
        rule_id = create_rule(
            store,
            shop=args.shop,
            draft=draft,
            max_active=load_app_config().limits.max_active_rules_per_shop,
        )
        print(f"Seeded rule {rule_id} for shop: {args.shop}")
        return 0
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
