# src/visa_compliance/tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any

from ..errors import AuthorizationError, TaskNotFoundError, TransientIOError, ValidationError
from .task_models import Task, from_storage_record, to_storage_record

logger = logging.getLogger(__name__)

# Columns a partial update may touch. id, user_id and created_at are immutable.
UPDATABLE_COLUMNS: tuple[str, ...] = (
    "title",
    "description",
    "category",
    "phase",
    "priority",
    "due_date",
    "is_completed",
    "visa_type",
    "is_recurring",
    "recurring_interval",
)

_ORDER_CLAUSES: dict[str, str] = {
    # a generation batch shares one created_at; keep its template order
    "created": "created_at DESC, rowid ASC",
    "due_date": "due_date IS NULL, due_date ASC, created_at ASC, rowid ASC",
}


class TaskStore:
    """
    SQLite compliance-task table.

    The schema is migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    (user_id, title, phase) is unique; generation upserts on it.

    Ownership is checked inside the same connection that mutates the row, so a
    foreign task id never reaches an UPDATE/DELETE.

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "compliance.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("TaskStore ready db=%s total=%s", self._db_path, self.count_tasks())

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.DatabaseError):
            conn.execute("PRAGMA journal_mode=WAL")

    @contextlib.contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Connection scope that maps driver failures onto the error taxonomy."""
        try:
            conn = self._get_conn()
        except sqlite3.Error as e:
            raise TransientIOError(f"cannot open task database: {e}", user_message="Task storage is unavailable.") from e
        try:
            yield conn
        except sqlite3.IntegrityError as e:
            conn.rollback()
            raise ValidationError(
                f"constraint violated: {e}",
                user_message="A task with this title already exists in this phase.",
            ) from e
        except sqlite3.Error as e:
            conn.rollback()
            raise TransientIOError(f"task database error: {e}", user_message="Task storage failed.") from e
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS compliance_tasks (
                    id                 TEXT PRIMARY KEY,
                    user_id            TEXT NOT NULL,
                    title              TEXT NOT NULL,
                    description        TEXT NOT NULL DEFAULT '',
                    category           TEXT NOT NULL DEFAULT 'personal',
                    phase              TEXT NOT NULL DEFAULT 'general',
                    priority           TEXT NOT NULL DEFAULT 'medium',
                    due_date           TEXT,
                    is_completed       INTEGER NOT NULL DEFAULT 0,
                    visa_type          TEXT,
                    created_at         REAL NOT NULL,
                    updated_at         REAL NOT NULL
                )
                """
            )

            cur.execute("PRAGMA table_info(compliance_tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE compliance_tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("visa_type", "TEXT")
            add_col("is_recurring", "INTEGER NOT NULL DEFAULT 0")
            add_col("recurring_interval", "TEXT")

            cur.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_natural_key "
                "ON compliance_tasks(user_id, title, phase)"
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_user_due ON compliance_tasks(user_id, due_date)")

            conn.commit()

    @staticmethod
    def _check_owner(cur: sqlite3.Cursor, task_id: str, owner_id: str) -> None:
        cur.execute("SELECT user_id FROM compliance_tasks WHERE id = ?", (task_id,))
        row = cur.fetchone()
        if row is None:
            raise TaskNotFoundError(f"task not found id={task_id}", user_message="Task not found.")
        if row["user_id"] != owner_id:
            logger.warning("Denied access to task id=%s for user=%s", task_id, owner_id)
            raise AuthorizationError(f"task id={task_id} is not owned by user={owner_id}")

    # ---- public API ----

    def count_tasks(self, user_id: str | None = None) -> int:
        with self._connect() as conn:
            if user_id is None:
                (n,) = conn.execute("SELECT COUNT(*) FROM compliance_tasks").fetchone()
            else:
                (n,) = conn.execute(
                    "SELECT COUNT(*) FROM compliance_tasks WHERE user_id = ?", (user_id,)
                ).fetchone()
            return int(n)

    def owner_of(self, task_id: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute("SELECT user_id FROM compliance_tasks WHERE id = ?", (task_id,)).fetchone()
            return str(row["user_id"]) if row else None

    def get_task(self, task_id: str) -> Task | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM compliance_tasks WHERE id = ?", (task_id,)).fetchone()
            return from_storage_record(row) if row else None

    def list_tasks(self, user_id: str, *, order_by: str = "created") -> list[Task]:
        order = _ORDER_CLAUSES.get(order_by)
        if order is None:
            raise ValidationError(f"unknown order_by={order_by!r}")
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM compliance_tasks WHERE user_id = ? ORDER BY {order}",
                (user_id,),
            ).fetchall()
            return [from_storage_record(r) for r in rows]

    def insert_task(self, task: Task) -> Task:
        now = time.time()
        rec = to_storage_record(task)
        rec["created_at"] = now
        rec["updated_at"] = now

        cols = ", ".join(rec)
        placeholders = ", ".join("?" for _ in rec)
        with self._connect() as conn:
            conn.execute(f"INSERT INTO compliance_tasks({cols}) VALUES ({placeholders})", tuple(rec.values()))
            conn.commit()
        logger.debug("Task inserted id=%s user=%s phase=%s", task.id, task.user_id, task.phase.value)
        return from_storage_record(rec)

    def upsert_tasks(self, tasks: list[Task]) -> list[Task]:
        """
        Insert-or-update on (user_id, title, phase), in one transaction.

        Existing rows keep id, created_at and completion state; their descriptive
        fields and due date are refreshed. Rows not named here are untouched.
        Returns the persisted rows in input order.
        """
        if not tasks:
            return []

        now = time.time()
        records = []
        for t in tasks:
            rec = to_storage_record(t)
            rec["created_at"] = now
            rec["updated_at"] = now
            records.append(rec)

        cols = list(records[0])
        col_sql = ", ".join(cols)
        placeholders = ", ".join("?" for _ in cols)

        with self._connect() as conn:
            cur = conn.cursor()
            cur.executemany(
                f"""
                INSERT INTO compliance_tasks({col_sql})
                VALUES ({placeholders})
                ON CONFLICT(user_id, title, phase) DO UPDATE SET
                    description = excluded.description,
                    category = excluded.category,
                    priority = excluded.priority,
                    due_date = excluded.due_date,
                    visa_type = excluded.visa_type,
                    is_recurring = excluded.is_recurring,
                    recurring_interval = excluded.recurring_interval,
                    updated_at = excluded.updated_at
                """,
                [tuple(r[c] for c in cols) for r in records],
            )
            conn.commit()

            out: list[Task] = []
            for t in tasks:
                row = cur.execute(
                    "SELECT * FROM compliance_tasks WHERE user_id = ? AND title = ? AND phase = ?",
                    (t.user_id, t.title, t.phase.value),
                ).fetchone()
                if row is not None:
                    out.append(from_storage_record(row))

        logger.info("Upserted %d tasks user=%s", len(out), tasks[0].user_id)
        return out

    def update_task(self, task_id: str, fields: Mapping[str, Any], *, owner_id: str) -> Task:
        unknown = set(fields) - set(UPDATABLE_COLUMNS)
        if unknown:
            raise ValidationError(f"fields cannot be updated: {sorted(unknown)}")

        with self._connect() as conn:
            cur = conn.cursor()
            self._check_owner(cur, task_id, owner_id)

            if fields:
                sets = [f"{name} = ?" for name in fields]
                params: list[Any] = list(fields.values())
                sets.append("updated_at = ?")
                params.append(time.time())
                params.extend([task_id, owner_id])
                cur.execute(
                    f"UPDATE compliance_tasks SET {', '.join(sets)} WHERE id = ? AND user_id = ?",
                    params,
                )
                conn.commit()

            row = cur.execute("SELECT * FROM compliance_tasks WHERE id = ?", (task_id,)).fetchone()
            return from_storage_record(row)

    def delete_task(self, task_id: str, *, owner_id: str) -> None:
        with self._connect() as conn:
            cur = conn.cursor()
            self._check_owner(cur, task_id, owner_id)
            cur.execute("DELETE FROM compliance_tasks WHERE id = ? AND user_id = ?", (task_id, owner_id))
            conn.commit()
        logger.debug("Task deleted id=%s user=%s", task_id, owner_id)
