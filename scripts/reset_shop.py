#!/usr/bin/env python3
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path


REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from autotag.storage.sqlite_store import SQLiteStore  # noqa: E402


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Delete every rule and bulk run of a shop (SQLite-backed).")
    p.add_argument("--shop", default=os.getenv("UAT_SHOP", "uat-shop.myshopify.com"), help="Shop domain.")
    p.add_argument("--db-path", default="", help="SQLite path (default: env AUTOTAG_SQLITE_PATH or data/app.db).")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    store = SQLiteStore(args.db_path or None)
    try:
        rules, runs = store.delete_shop_data(shop=args.shop)
        print(f"Reset data for {args.shop}: deleted {rules} rules and {runs} runs")
        return 0
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
