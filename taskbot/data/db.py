"""
Taskbot — Recurring Task Database.

SQLite implementation of the RecurringTaskStore port. Instants are stored as
fixed-width ISO-8601 UTC strings, so string comparison orders them correctly.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from taskbot.data.models import (
    CompletionRecord,
    RecurrenceRule,
    RecurringTask,
    RecurringTaskCompletion,
    ensure_utc,
    rule_from_fields,
    rule_to_fields,
)
from taskbot.ports.store_port import StoreUnavailable, TaskNotFound

logger = logging.getLogger(__name__)

# Columns update_recurring_task may touch besides the rule columns
_UPDATABLE_FIELDS = {
    "chat_id",
    "assignee_id",
    "assignee_mention",
    "task_title",
    "is_active",
    "next_send_at",
    "last_sent_at",
}


def _to_db(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return ensure_utc(dt).isoformat(timespec="microseconds")


def _from_db(raw: str | None) -> datetime | None:
    if raw is None:
        return None
    return ensure_utc(datetime.fromisoformat(raw))


class RecurringTaskDB:
    """SQLite-backed storage for recurring tasks and their completions."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from taskbot.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success, and map SQLite failures."""
        try:
            conn = sqlite3.connect(self._db_path)
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Cannot open {self._db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise StoreUnavailable(str(exc)) from exc
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Create tables if they don't exist, and migrate schema."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS recurring_tasks (
                    id               INTEGER PRIMARY KEY AUTOINCREMENT,
                    chat_id          TEXT    NOT NULL,
                    creator_id       TEXT    NOT NULL,
                    assignee_id      TEXT    NOT NULL,
                    assignee_mention TEXT,
                    task_title       TEXT    NOT NULL,
                    frequency        TEXT    NOT NULL
                        CHECK (frequency IN ('daily', 'weekly', 'monthly')),
                    day_of_week      INTEGER,
                    day_of_month     INTEGER,
                    exclude_days     TEXT,
                    hour             INTEGER NOT NULL,
                    minute           INTEGER NOT NULL DEFAULT 0,
                    is_active        INTEGER NOT NULL DEFAULT 1,
                    next_send_at     TEXT    NOT NULL,
                    last_sent_at     TEXT,
                    created_at       TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS recurring_task_completions (
                    id                INTEGER PRIMARY KEY AUTOINCREMENT,
                    recurring_task_id INTEGER NOT NULL,
                    chat_id           TEXT    NOT NULL,
                    completed_by      TEXT    NOT NULL,
                    completed_by_name TEXT,
                    scheduled_at      TEXT    NOT NULL,
                    completed_at      TEXT    NOT NULL
                )
            """)
            # Migrate existing DBs: add new columns if missing
            existing_cols = {
                row[1]
                for row in conn.execute(
                    "PRAGMA table_info(recurring_task_completions)"
                ).fetchall()
            }
            if "note" not in existing_cols:
                conn.execute(
                    "ALTER TABLE recurring_task_completions ADD COLUMN note TEXT"
                )
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_recurring_tasks_due
                ON recurring_tasks (is_active, next_send_at)
            """)
            # One completion per (task, occurrence)
            conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_completions_cycle
                ON recurring_task_completions (recurring_task_id, scheduled_at)
            """)
        logger.debug("Recurring task tables initialized at %s", self._db_path)

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> RecurringTask:
        return RecurringTask(
            id=row["id"],
            chat_id=row["chat_id"],
            creator_id=row["creator_id"],
            assignee_id=row["assignee_id"],
            assignee_mention=row["assignee_mention"],
            task_title=row["task_title"],
            rule=rule_from_fields(
                frequency=row["frequency"],
                hour=row["hour"],
                minute=row["minute"],
                day_of_week=row["day_of_week"],
                day_of_month=row["day_of_month"],
                exclude_days=row["exclude_days"],
            ),
            is_active=bool(row["is_active"]),
            next_send_at=_from_db(row["next_send_at"]),
            last_sent_at=_from_db(row["last_sent_at"]),
            created_at=_from_db(row["created_at"]),
        )

    @staticmethod
    def _row_to_completion(row: sqlite3.Row) -> RecurringTaskCompletion:
        return RecurringTaskCompletion(
            id=row["id"],
            recurring_task_id=row["recurring_task_id"],
            chat_id=row["chat_id"],
            completed_by=row["completed_by"],
            completed_by_name=row["completed_by_name"],
            scheduled_at=_from_db(row["scheduled_at"]),
            completed_at=_from_db(row["completed_at"]),
            note=row["note"],
        )

    # ------------------------------------------------------------------
    # Recurring tasks
    # ------------------------------------------------------------------

    def create_recurring_task(
        self,
        chat_id: str,
        creator_id: str,
        assignee_id: str,
        task_title: str,
        rule: RecurrenceRule,
        next_send_at: datetime,
        assignee_mention: str | None = None,
        is_active: bool = True,
    ) -> RecurringTask:
        """Insert a new recurring task and return it with its assigned id."""
        created_at = datetime.now(timezone.utc)
        rule_cols = rule_to_fields(rule)

        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO recurring_tasks
                    (chat_id, creator_id, assignee_id, assignee_mention, task_title,
                     frequency, day_of_week, day_of_month, exclude_days, hour, minute,
                     is_active, next_send_at, last_sent_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, NULL, ?)
                """,
                (
                    chat_id, creator_id, assignee_id, assignee_mention, task_title,
                    rule_cols["frequency"], rule_cols["day_of_week"],
                    rule_cols["day_of_month"], rule_cols["exclude_days"],
                    rule_cols["hour"], rule_cols["minute"],
                    int(is_active), _to_db(next_send_at), _to_db(created_at),
                ),
            )
            task_id = cursor.lastrowid

        task = RecurringTask(
            id=task_id,
            chat_id=chat_id,
            creator_id=creator_id,
            assignee_id=assignee_id,
            assignee_mention=assignee_mention,
            task_title=task_title,
            rule=rule,
            is_active=is_active,
            next_send_at=ensure_utc(next_send_at),
            last_sent_at=None,
            created_at=_from_db(_to_db(created_at)),
        )
        logger.info(
            "Recurring task added: #%d '%s' (%s), next send %s",
            task_id, task_title, rule.frequency.value, task.next_send_at.isoformat(),
        )
        return task

    def get_recurring_task_by_id(self, task_id: int) -> RecurringTask | None:
        """Fetch a single recurring task by ID. None when it doesn't exist."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM recurring_tasks WHERE id = ?", (task_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def get_all_recurring_tasks(self, active_only: bool = False) -> list[RecurringTask]:
        """List recurring tasks, newest first."""
        query = "SELECT * FROM recurring_tasks"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY created_at DESC, id DESC"

        with self._connect() as conn:
            rows = conn.execute(query).fetchall()
        return [self._row_to_task(r) for r in rows]

    def get_due_recurring_tasks(self, now: datetime) -> list[RecurringTask]:
        """Return active tasks with next_send_at <= now, oldest due first."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM recurring_tasks
                WHERE is_active = 1 AND next_send_at <= ?
                ORDER BY next_send_at, id
                """,
                (_to_db(now),),
            ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def update_recurring_task(self, task_id: int, **fields) -> RecurringTask:
        """Apply a partial update and return the updated task.

        Passing `rule` rewrites every rule column, so fields irrelevant to
        the new frequency are nulled.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS - {"rule"}
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")

        columns: dict = {}
        for name, value in fields.items():
            if name == "rule":
                columns.update(rule_to_fields(value))
            elif name == "is_active":
                columns[name] = int(bool(value))
            elif name in ("next_send_at", "last_sent_at"):
                columns[name] = _to_db(value)
            else:
                columns[name] = value

        with self._connect() as conn:
            if columns:
                assignments = ", ".join(f"{col} = ?" for col in columns)
                cursor = conn.execute(
                    f"UPDATE recurring_tasks SET {assignments} WHERE id = ?",
                    (*columns.values(), task_id),
                )
                if cursor.rowcount == 0:
                    raise TaskNotFound(task_id)
            row = conn.execute(
                "SELECT * FROM recurring_tasks WHERE id = ?", (task_id,)
            ).fetchone()
        if row is None:
            raise TaskNotFound(task_id)

        logger.debug("Recurring task #%d updated: %s", task_id, sorted(fields))
        return self._row_to_task(row)

    def delete_recurring_task(self, task_id: int) -> bool:
        """Permanently delete a task. Its completions are kept for reporting."""
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM recurring_tasks WHERE id = ?", (task_id,),
            )
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Recurring task #%d deleted", task_id)
        return deleted

    # ------------------------------------------------------------------
    # Completions
    # ------------------------------------------------------------------

    def create_recurring_task_completion(
        self,
        recurring_task_id: int,
        chat_id: str,
        completed_by: str,
        scheduled_at: datetime,
        completed_by_name: str | None = None,
        note: str | None = None,
    ) -> int:
        """Insert a completion row for one occurrence and return its id.

        If that occurrence was already completed, the existing id is returned
        and nothing is written.
        """
        completed_at = datetime.now(timezone.utc)
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO recurring_task_completions
                    (recurring_task_id, chat_id, completed_by, completed_by_name,
                     scheduled_at, completed_at, note)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    recurring_task_id, chat_id, completed_by, completed_by_name,
                    _to_db(scheduled_at), _to_db(completed_at), note,
                ),
            )
            if cursor.rowcount > 0:
                completion_id = cursor.lastrowid
                inserted = True
            else:
                completion_id = conn.execute(
                    """
                    SELECT id FROM recurring_task_completions
                    WHERE recurring_task_id = ? AND scheduled_at = ?
                    """,
                    (recurring_task_id, _to_db(scheduled_at)),
                ).fetchone()["id"]
                inserted = False

        if inserted:
            logger.info(
                "Completion #%d recorded for task #%d (cycle %s) by %s",
                completion_id, recurring_task_id,
                ensure_utc(scheduled_at).isoformat(), completed_by,
            )
        else:
            logger.info(
                "Task #%d cycle %s already completed (#%d), nothing recorded",
                recurring_task_id, ensure_utc(scheduled_at).isoformat(), completion_id,
            )
        return completion_id

    def get_completion_for_cycle(
        self, task_id: int, scheduled_at: datetime
    ) -> RecurringTaskCompletion | None:
        """Return the completion answering one occurrence, if any."""
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM recurring_task_completions
                WHERE recurring_task_id = ? AND scheduled_at = ?
                """,
                (task_id, _to_db(scheduled_at)),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_completion(row)

    def get_completions_by_task_id(self, task_id: int) -> list[RecurringTaskCompletion]:
        """All completions of one task, most recent first."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM recurring_task_completions
                WHERE recurring_task_id = ?
                ORDER BY completed_at DESC, id DESC
                """,
                (task_id,),
            ).fetchall()
        return [self._row_to_completion(r) for r in rows]

    def _completion_records(
        self, where: str = "", params: tuple = (), limit: int | None = None,
    ) -> list[CompletionRecord]:
        query = f"""
            SELECT c.*, t.id AS task_id, t.task_title AS task_title
            FROM recurring_task_completions c
            LEFT JOIN recurring_tasks t ON t.id = c.recurring_task_id
            {where}
            ORDER BY c.completed_at DESC, c.id DESC
        """
        if limit is not None:
            query += " LIMIT ?"
            params = (*params, limit)

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            CompletionRecord(
                completion=self._row_to_completion(r),
                task_id=r["task_id"],
                task_title=r["task_title"],
            )
            for r in rows
        ]

    def get_recent_completions(self, limit: int) -> list[CompletionRecord]:
        """Most recent completions across all tasks, joined with task titles."""
        return self._completion_records(limit=limit)

    def get_completions_by_date_range(
        self, start: datetime, end: datetime
    ) -> list[CompletionRecord]:
        """Completions whose completed_at falls in [start, end], most recent first."""
        return self._completion_records(
            "WHERE c.completed_at >= ? AND c.completed_at <= ?",
            (_to_db(start), _to_db(end)),
        )
