from __future__ import annotations

import json
import sqlite3
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from autotag.config.load_config import default_db_path
from autotag.rules.models import Rule, rule_from_row


SCHEMA_VERSION = 2

RUN_STATUSES = ("queued", "running", "completed", "failed")
TERMINAL_RUN_STATUSES = frozenset({"completed", "failed"})

# Progress fields the processor may write while it owns a running row.
_RUN_PROGRESS_FIELDS = frozenset({"processed", "updated", "errors", "cursor", "total", "last_error"})

_RUN_COLUMNS = """
  run_id, shop, status, processed, updated, errors, cursor, total, last_error,
  created_at, started_at, updated_at, finished_at
"""

_RULE_COLUMNS = """
  rule_id, shop, name, description, enabled, conditions_json, actions_json, created_at, updated_at
"""


def _utc_ts() -> float:
    return time.time()


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def _json_dumps(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


@dataclass(frozen=True)
class BulkRunRecord:
    run_id: str
    shop: str
    status: str
    processed: int
    updated: int
    errors: int
    cursor: str | None
    total: int
    last_error: str | None
    created_at: float
    started_at: float | None
    updated_at: float
    finished_at: float | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "BulkRunRecord":
        return cls(
            run_id=str(row["run_id"]),
            shop=str(row["shop"]),
            status=str(row["status"]),
            processed=int(row["processed"] or 0),
            updated=int(row["updated"] or 0),
            errors=int(row["errors"] or 0),
            cursor=str(row["cursor"]) if row["cursor"] is not None else None,
            total=int(row["total"] or 0),
            last_error=str(row["last_error"]) if row["last_error"] is not None else None,
            created_at=float(row["created_at"]),
            started_at=float(row["started_at"]) if row["started_at"] is not None else None,
            updated_at=float(row["updated_at"]),
            finished_at=float(row["finished_at"]) if row["finished_at"] is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "shop": self.shop,
            "status": self.status,
            "processed": self.processed,
            "updated": self.updated,
            "errors": self.errors,
            "cursor": self.cursor,
            "total": self.total,
            "last_error": self.last_error,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "updated_at": self.updated_at,
            "finished_at": self.finished_at,
        }


class SQLiteStore:
    """SQLite-backed rule store, run store and run event trace.

    Design goals:
    - Single-process, single-worker deployment; the queued -> running claim is
      still atomic so a second claimer can never own the same run.
    - Run rows are the crash-recovery state: counters and cursor are persisted
      as the run progresses and a restart resumes from them.
    - Trace events are program-recorded per run and replayable.
    """

    def __init__(self, db_path: str | Path | None = None) -> None:
        self.db_path = Path(db_path or default_db_path()).expanduser().resolve()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON;")
        self._conn.execute("PRAGMA journal_mode = WAL;")
        self._conn.execute("PRAGMA synchronous = NORMAL;")

        self._init_schema()

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self, *, mode: str = "IMMEDIATE") -> Iterable[None]:
        """Context manager for an explicit SQLite transaction.

        `BEGIN IMMEDIATE` takes the write lock up front, so a read-then-update
        inside the block cannot interleave with another writer.
        """
        self._conn.execute(f"BEGIN {mode};")
        try:
            yield
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def _init_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS meta (
              key TEXT PRIMARY KEY,
              value TEXT NOT NULL
            );
            """
        )

        # Base schema (v1): rules/bulk_runs/run_events.
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS rules (
              rule_id TEXT PRIMARY KEY,
              shop TEXT NOT NULL,
              name TEXT NOT NULL,
              description TEXT,
              enabled INTEGER NOT NULL,
              conditions_json TEXT NOT NULL,
              actions_json TEXT NOT NULL,
              created_at REAL NOT NULL,
              updated_at REAL NOT NULL
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS bulk_runs (
              run_id TEXT PRIMARY KEY,
              shop TEXT NOT NULL,
              status TEXT NOT NULL,
              processed INTEGER NOT NULL DEFAULT 0,
              updated INTEGER NOT NULL DEFAULT 0,
              errors INTEGER NOT NULL DEFAULT 0,
              cursor TEXT,
              total INTEGER NOT NULL DEFAULT 0,
              last_error TEXT,
              created_at REAL NOT NULL,
              started_at REAL,
              updated_at REAL NOT NULL,
              finished_at REAL
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS run_events (
              event_id TEXT PRIMARY KEY,
              run_id TEXT NOT NULL,
              created_at REAL NOT NULL,
              event_type TEXT NOT NULL,
              payload_json TEXT NOT NULL,
              FOREIGN KEY (run_id) REFERENCES bulk_runs(run_id) ON DELETE CASCADE
            );
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_run_events_run_ts ON run_events(run_id, created_at);")

        # New databases start at schema_version=1 and migrate forward.
        cur.execute(
            "INSERT OR IGNORE INTO meta(key, value) VALUES(?, ?);",
            ("schema_version", "1"),
        )
        self._conn.commit()

        self._migrate_if_needed()

    def _get_schema_version(self) -> int:
        row = self._conn.execute("SELECT value FROM meta WHERE key = ?;", ("schema_version",)).fetchone()
        if row is None:
            return 0
        try:
            return int(row["value"])
        except (TypeError, ValueError):
            return 0

    def _set_schema_version(self, version: int) -> None:
        self._conn.execute(
            "INSERT INTO meta(key, value) VALUES(?, ?) ON CONFLICT(key) DO UPDATE SET value = excluded.value;",
            ("schema_version", str(int(version))),
        )

    def _migrate_if_needed(self) -> None:
        current = self._get_schema_version()
        target = int(SCHEMA_VERSION)
        if current == target:
            return
        if current > target:
            raise RuntimeError(f"DB schema_version={current} is newer than code expects ({target}).")

        cur = self._conn.cursor()
        cur.execute("BEGIN;")
        try:
            while current < target:
                if current == 1:
                    self._migrate_1_to_2(cur)
                    current = 2
                    self._set_schema_version(current)
                else:
                    raise RuntimeError(f"Missing migration step for schema_version={current} -> {current+1}")
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def _migrate_1_to_2(self, cur: sqlite3.Cursor) -> None:
        # Queue scans (claim, orphan sweep) and per-shop listings.
        cur.execute("CREATE INDEX IF NOT EXISTS idx_bulk_runs_status_created ON bulk_runs(status, created_at);")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_bulk_runs_shop_created ON bulk_runs(shop, created_at);")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_rules_shop_enabled ON rules(shop, enabled, updated_at);")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_rules_shop_created ON rules(shop, created_at);")

    # --- Rules
    def create_rule(
        self,
        *,
        shop: str,
        name: str,
        description: str | None,
        enabled: bool,
        conditions: dict[str, Any] | list[Any],
        actions: dict[str, Any],
    ) -> str:
        rule_id = _new_id("rule")
        ts = _utc_ts()
        self._conn.execute(
            """
            INSERT INTO rules(
              rule_id, shop, name, description, enabled, conditions_json, actions_json, created_at, updated_at
            ) VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                rule_id,
                shop,
                name,
                description,
                1 if enabled else 0,
                _json_dumps(conditions),
                _json_dumps(actions),
                ts,
                ts,
            ),
        )
        self._conn.commit()
        return rule_id

    def get_rule(self, *, rule_id: str, shop: str | None = None) -> sqlite3.Row | None:
        if shop is None:
            return self._conn.execute(
                f"SELECT {_RULE_COLUMNS} FROM rules WHERE rule_id = ? LIMIT 1;",
                (rule_id,),
            ).fetchone()
        return self._conn.execute(
            f"SELECT {_RULE_COLUMNS} FROM rules WHERE rule_id = ? AND shop = ? LIMIT 1;",
            (rule_id, shop),
        ).fetchone()

    def update_rule(
        self,
        *,
        rule_id: str,
        shop: str,
        name: str,
        description: str | None,
        enabled: bool,
        conditions: dict[str, Any] | list[Any],
        actions: dict[str, Any],
    ) -> bool:
        cur = self._conn.execute(
            """
            UPDATE rules
            SET
              name = ?,
              description = ?,
              enabled = ?,
              conditions_json = ?,
              actions_json = ?,
              updated_at = ?
            WHERE rule_id = ? AND shop = ?;
            """,
            (
                name,
                description,
                1 if enabled else 0,
                _json_dumps(conditions),
                _json_dumps(actions),
                _utc_ts(),
                rule_id,
                shop,
            ),
        )
        self._conn.commit()
        return cur.rowcount == 1

    def delete_rule(self, *, rule_id: str, shop: str) -> bool:
        cur = self._conn.execute("DELETE FROM rules WHERE rule_id = ? AND shop = ?;", (rule_id, shop))
        self._conn.commit()
        return cur.rowcount == 1

    def list_rules(
        self,
        *,
        shop: str,
        status: str = "all",
        sort: str = "created_desc",
        search: str = "",
        action_type: str = "all",
    ) -> list[Rule]:
        """List a shop's rules for management screens.

        - status: all | active | inactive
        - sort: created_desc | created_asc
        - search: case-insensitive substring of the rule name
        - action_type: all | add | remove (rules having at least one such action)
        """
        where = ["shop = ?"]
        params: list[Any] = [shop]
        if status == "active":
            where.append("enabled = 1")
        elif status == "inactive":
            where.append("enabled = 0")
        order = "ASC" if sort == "created_asc" else "DESC"

        rows = self._conn.execute(
            f"""
            SELECT {_RULE_COLUMNS}
            FROM rules
            WHERE {" AND ".join(where)}
            ORDER BY created_at {order}, rowid {order};
            """,
            params,
        ).fetchall()
        rules = [rule_from_row(r) for r in rows]

        needle = (search or "").strip().lower()
        if needle:
            rules = [r for r in rules if needle in r.name.lower()]
        if action_type in {"add", "remove"}:
            rules = [r for r in rules if any(i.type.value == action_type for i in r.actions.items)]
        return rules

    def list_enabled_rules(self, *, shop: str) -> list[Rule]:
        rows = self._conn.execute(
            f"""
            SELECT {_RULE_COLUMNS}
            FROM rules
            WHERE shop = ? AND enabled = 1
            ORDER BY updated_at DESC, rowid DESC;
            """,
            (shop,),
        ).fetchall()
        return [rule_from_row(r) for r in rows]

    def count_active_rules(self, *, shop: str, exclude_rule_id: str | None = None) -> int:
        if exclude_rule_id:
            row = self._conn.execute(
                "SELECT COUNT(*) AS n FROM rules WHERE shop = ? AND enabled = 1 AND rule_id != ?;",
                (shop, exclude_rule_id),
            ).fetchone()
        else:
            row = self._conn.execute(
                "SELECT COUNT(*) AS n FROM rules WHERE shop = ? AND enabled = 1;",
                (shop,),
            ).fetchone()
        return int(row["n"])

    def delete_shop_data(self, *, shop: str) -> tuple[int, int]:
        """Delete every rule and run of a shop. Returns (rules_deleted, runs_deleted)."""
        with self.transaction():
            rules = self._conn.execute("DELETE FROM rules WHERE shop = ?;", (shop,)).rowcount
            runs = self._conn.execute("DELETE FROM bulk_runs WHERE shop = ?;", (shop,)).rowcount
        return int(rules), int(runs)

    # --- Bulk runs
    def create_bulk_run(self, *, shop: str) -> BulkRunRecord:
        run_id = _new_id("run")
        ts = _utc_ts()
        self._conn.execute(
            """
            INSERT INTO bulk_runs(run_id, shop, status, created_at, updated_at)
            VALUES(?, ?, ?, ?, ?);
            """,
            (run_id, shop, "queued", ts, ts),
        )
        self._conn.commit()
        return BulkRunRecord(
            run_id=run_id,
            shop=shop,
            status="queued",
            processed=0,
            updated=0,
            errors=0,
            cursor=None,
            total=0,
            last_error=None,
            created_at=ts,
            started_at=None,
            updated_at=ts,
            finished_at=None,
        )

    def get_bulk_run(self, *, run_id: str) -> BulkRunRecord | None:
        row = self._conn.execute(
            f"SELECT {_RUN_COLUMNS} FROM bulk_runs WHERE run_id = ? LIMIT 1;",
            (run_id,),
        ).fetchone()
        return BulkRunRecord.from_row(row) if row is not None else None

    def find_latest_run(self, *, shop: str) -> BulkRunRecord | None:
        row = self._conn.execute(
            f"""
            SELECT {_RUN_COLUMNS}
            FROM bulk_runs
            WHERE shop = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT 1;
            """,
            (shop,),
        ).fetchone()
        return BulkRunRecord.from_row(row) if row is not None else None

    def list_runs_page(
        self,
        *,
        shop: str | None,
        limit: int,
        cursor: tuple[float, str] | None,
        statuses: list[str] | None,
    ) -> dict[str, Any]:
        where = ["1=1"]
        params: list[Any] = []

        if shop:
            where.append("shop = ?")
            params.append(shop)

        if statuses:
            where.append("status IN (%s)" % ",".join(["?"] * len(statuses)))
            params.extend(statuses)

        if cursor is not None:
            created_at, run_id = cursor
            # Newest-first pagination (DESC).
            where.append("(created_at < ? OR (created_at = ? AND run_id < ?))")
            params.extend([float(created_at), float(created_at), str(run_id)])

        where_sql = " AND ".join(where)
        fetch_n = int(limit) + 1

        rows = self._conn.execute(
            f"""
            SELECT {_RUN_COLUMNS}
            FROM bulk_runs
            WHERE {where_sql}
            ORDER BY created_at DESC, run_id DESC
            LIMIT ?;
            """,
            (*params, fetch_n),
        ).fetchall()

        has_more = len(rows) > limit
        if has_more:
            rows = rows[:limit]

        items = [BulkRunRecord.from_row(r).to_dict() for r in rows]

        next_cursor: tuple[float, str] | None = None
        if has_more and items:
            last = items[-1]
            next_cursor = (float(last["created_at"]), str(last["run_id"]))

        return {"items": items, "has_more": has_more, "next_cursor": next_cursor}

    def count_runs_by_status(self) -> dict[str, int]:
        rows = self._conn.execute(
            "SELECT status, COUNT(*) AS n FROM bulk_runs GROUP BY status ORDER BY status;",
        ).fetchall()
        return {str(r["status"]): int(r["n"]) for r in rows}

    def update_bulk_run(self, run_id: str, **fields: Any) -> bool:
        """Persist progress fields of a run that has not finished yet.

        Returns False when the run does not exist or is already terminal.
        """
        unknown = set(fields) - _RUN_PROGRESS_FIELDS
        if unknown:
            raise ValueError(f"Unsupported run fields: {sorted(unknown)}")
        if not fields:
            return False

        columns = sorted(fields)
        assignments = ", ".join(f"{c} = ?" for c in columns)
        params = [fields[c] for c in columns]
        cur = self._conn.execute(
            f"""
            UPDATE bulk_runs
            SET {assignments}, updated_at = ?
            WHERE run_id = ? AND finished_at IS NULL;
            """,
            (*params, _utc_ts(), run_id),
        )
        self._conn.commit()
        return cur.rowcount == 1

    def finish_bulk_run(
        self,
        run_id: str,
        status: str,
        *,
        processed: int,
        updated: int,
        errors: int,
        cursor: str | None,
        last_error: str | None = None,
    ) -> bool:
        """Write the terminal state of a run, exactly once.

        `total` is set to the final `processed` count. A run that already has
        `finished_at` is left untouched and False is returned.
        """
        if status not in TERMINAL_RUN_STATUSES:
            raise ValueError(f"Not a terminal run status: {status!r}")
        ts = _utc_ts()
        cur = self._conn.execute(
            """
            UPDATE bulk_runs
            SET
              status = ?,
              processed = ?,
              updated = ?,
              errors = ?,
              total = ?,
              cursor = ?,
              last_error = COALESCE(?, last_error),
              finished_at = ?,
              updated_at = ?
            WHERE run_id = ? AND finished_at IS NULL;
            """,
            (status, processed, updated, errors, processed, cursor, last_error, ts, ts, run_id),
        )
        self._conn.commit()
        return cur.rowcount == 1

    # --- Queue helpers (single-writer safe claims)
    def claim_next_queued_run(self, *, shop: str | None = None) -> BulkRunRecord | None:
        """Atomically claim the oldest queued run and mark it as running.

        The conditional `status = 'queued'` update means a claimer that lost a
        race for the same row gets None instead of a second owner. With `shop`
        set, only that shop's runs are considered.
        """
        where = ["status = 'queued'", "finished_at IS NULL"]
        params: list[Any] = []
        if shop is not None:
            where.append("shop = ?")
            params.append(shop)
        with self.transaction(mode="IMMEDIATE"):
            row = self._conn.execute(
                f"""
                SELECT run_id
                FROM bulk_runs
                WHERE {" AND ".join(where)}
                ORDER BY created_at ASC, rowid ASC
                LIMIT 1;
                """,
                tuple(params),
            ).fetchone()
            if row is None:
                return None

            ts = _utc_ts()
            run_id = str(row["run_id"])
            claimed = self._conn.execute(
                """
                UPDATE bulk_runs
                SET
                  status = 'running',
                  started_at = COALESCE(started_at, ?),
                  updated_at = ?
                WHERE run_id = ? AND status = 'queued';
                """,
                (ts, ts, run_id),
            )
            if claimed.rowcount != 1:
                return None

            self._conn.execute(
                """
                INSERT INTO run_events(event_id, run_id, created_at, event_type, payload_json)
                VALUES(?, ?, ?, ?, ?);
                """,
                (_new_id("evt"), run_id, ts, "run_claimed", _json_dumps({})),
            )
            return self.get_bulk_run(run_id=run_id)

    # --- Requeue (startup safety)
    def requeue_orphaned_runs(self, *, reason: str = "process_restarted") -> int:
        """Move every unfinished 'running' run back to 'queued'.

        A run left running by a crashed process resumes from its persisted
        cursor and counters on the next claim. Returns the number of runs requeued.
        """
        with self.transaction(mode="IMMEDIATE"):
            rows = self._conn.execute(
                "SELECT run_id, processed, cursor FROM bulk_runs WHERE status = 'running' AND finished_at IS NULL;",
            ).fetchall()
            if not rows:
                return 0

            ts = _utc_ts()
            for r in rows:
                self._conn.execute(
                    """
                    UPDATE bulk_runs
                    SET status = 'queued', updated_at = ?
                    WHERE run_id = ? AND status = 'running' AND finished_at IS NULL;
                    """,
                    (ts, r["run_id"]),
                )
                self._conn.execute(
                    """
                    INSERT INTO run_events(event_id, run_id, created_at, event_type, payload_json)
                    VALUES(?, ?, ?, ?, ?);
                    """,
                    (
                        _new_id("evt"),
                        r["run_id"],
                        ts,
                        "run_requeued",
                        _json_dumps({"reason": reason, "processed": int(r["processed"]), "cursor": r["cursor"]}),
                    ),
                )
        return len(rows)

    # --- Events (trace)
    def append_event(self, run_id: str, event_type: str, payload: dict[str, Any]) -> str:
        event_id = _new_id("evt")
        created_at = _utc_ts()
        self._conn.execute(
            """
            INSERT INTO run_events(event_id, run_id, created_at, event_type, payload_json)
            VALUES(?, ?, ?, ?, ?);
            """,
            (event_id, run_id, created_at, event_type, _json_dumps(payload)),
        )
        self._conn.commit()
        return event_id

    def get_latest_event(self, *, run_id: str, event_type: str) -> sqlite3.Row | None:
        return self._conn.execute(
            """
            SELECT event_id, run_id, created_at, event_type, payload_json
            FROM run_events
            WHERE run_id = ? AND event_type = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT 1;
            """,
            (run_id, event_type),
        ).fetchone()

    def list_events_page(
        self,
        *,
        run_id: str,
        limit: int,
        cursor: tuple[float, str] | None,
        event_types: list[str] | None = None,
    ) -> dict[str, Any]:
        where = ["run_id = ?"]
        params: list[Any] = [run_id]

        if event_types:
            where.append("event_type IN (%s)" % ",".join(["?"] * len(event_types)))
            params.extend(event_types)

        if cursor is not None:
            created_at, event_id = cursor
            # Oldest-first: events read like a log.
            where.append("(created_at > ? OR (created_at = ? AND event_id > ?))")
            params.extend([float(created_at), float(created_at), str(event_id)])

        rows = self._conn.execute(
            f"""
            SELECT event_id, run_id, created_at, event_type, payload_json
            FROM run_events
            WHERE {" AND ".join(where)}
            ORDER BY created_at ASC, event_id ASC
            LIMIT ?;
            """,
            (*params, int(limit) + 1),
        ).fetchall()

        has_more = len(rows) > limit
        if has_more:
            rows = rows[:limit]

        items = [
            {
                "event_id": r["event_id"],
                "run_id": r["run_id"],
                "created_at": float(r["created_at"]),
                "event_type": r["event_type"],
                "payload": json.loads(r["payload_json"]),
            }
            for r in rows
        ]
        next_cursor: tuple[float, str] | None = None
        if has_more and items:
            last = items[-1]
            next_cursor = (float(last["created_at"]), str(last["event_id"]))
        return {"items": items, "has_more": has_more, "next_cursor": next_cursor}
