"""SQLite-backed storage for users, tasks, escrows, ledger entries, disputes, notifications."""

from __future__ import annotations

import contextlib
import json
import sqlite3
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator


class DuplicateUserError(Exception):
    """Raised when attempting to insert a user with a duplicate user_id."""


def _paginate(
    query: str, params: list[object], limit: int | None, offset: int | None
) -> tuple[str, list[object]]:
    # SQLite only accepts OFFSET after LIMIT; -1 means no limit
    if limit is None and offset is None:
        return query, params
    query += " LIMIT ? OFFSET ?"
    return query, [*params, -1 if limit is None else limit, 0 if offset is None else offset]


class MarketplaceStore:
    """
    SQLite-backed storage for the marketplace.

    A single connection is shared behind an RLock. ``transaction()`` opens
    the atomic unit used by every state transition: the lock is held and a
    ``BEGIN IMMEDIATE`` write transaction is open for its whole duration,
    so all writers are serialized and any exception rolls back every write
    made inside it. Writes outside a unit commit immediately.
    """

    _TASK_COLUMNS: tuple[str, ...] = (
        "task_id",
        "type",
        "title",
        "description",
        "category",
        "price",
        "author_id",
        "assignee_id",
        "parent_task_id",
        "is_pro",
        "status",
        "submission_ref",
        "submission_name",
        "submitted_at",
        "rating",
        "review",
        "cancellation_requested",
        "cancellation_status",
        "cancellation_requested_by",
        "cancellation_reason",
        "cancelled_at",
        "cancelled_by",
        "dispute_opened",
        "dispute_opened_by",
        "dispute_reason",
        "dispute_status",
        "dispute_resolution",
        "dispute_resolved_by",
        "dispute_resolved_at",
        "created_at",
        "assigned_at",
        "completed_at",
    )
    _TASK_BOOL_COLUMNS = frozenset({"is_pro", "cancellation_requested", "dispute_opened"})

    _USER_COLUMNS: tuple[str, ...] = (
        "user_id",
        "name",
        "role",
        "balance",
        "xp",
        "level",
        "completed_jobs",
        "rating_sum",
        "rating_count",
        "is_pro",
        "is_verified",
        "is_banned",
        "banned_at",
        "ban_reason",
        "bio",
        "photo_url",
        "telegram",
        "whatsapp",
        "open_for_work",
        "created_at",
    )
    _USER_BOOL_COLUMNS = frozenset({"is_pro", "is_verified", "is_banned", "open_for_work"})
    # balance is only ever changed through apply_balance_delta
    _USER_UPDATABLE = frozenset(_USER_COLUMNS) - {"user_id", "balance", "created_at"}

    _ESCROW_COLUMNS: tuple[str, ...] = (
        "escrow_id",
        "task_id",
        "payer_id",
        "amount",
        "status",
        "payout_amount",
        "commission_amount",
        "refund_amount",
        "retained_amount",
        "created_at",
        "resolved_at",
    )

    _TRANSACTION_COLUMNS: tuple[str, ...] = (
        "tx_id",
        "user_id",
        "type",
        "amount",
        "balance_after",
        "description",
        "task_id",
        "commission",
        "counterparty_id",
        "created_at",
    )

    _DISPUTE_COLUMNS: tuple[str, ...] = (
        "dispute_id",
        "task_id",
        "opened_by",
        "against",
        "reason",
        "description",
        "attachments",
        "status",
        "resolution",
        "resolved_by",
        "resolved_at",
        "refund_percentage",
        "refund_amount",
        "created_at",
    )

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        self._depth = 0
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    role TEXT NOT NULL,
                    balance INTEGER NOT NULL DEFAULT 0 CHECK (balance >= 0),
                    xp INTEGER NOT NULL DEFAULT 0,
                    level INTEGER NOT NULL DEFAULT 1,
                    completed_jobs INTEGER NOT NULL DEFAULT 0,
                    rating_sum INTEGER NOT NULL DEFAULT 0,
                    rating_count INTEGER NOT NULL DEFAULT 0,
                    is_pro INTEGER NOT NULL DEFAULT 0,
                    is_verified INTEGER NOT NULL DEFAULT 0,
                    is_banned INTEGER NOT NULL DEFAULT 0,
                    banned_at TEXT,
                    ban_reason TEXT,
                    bio TEXT NOT NULL DEFAULT '',
                    photo_url TEXT NOT NULL DEFAULT '',
                    telegram TEXT NOT NULL DEFAULT '',
                    whatsapp TEXT NOT NULL DEFAULT '',
                    open_for_work INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS tasks (
                    task_id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    category TEXT NOT NULL,
                    price INTEGER NOT NULL CHECK (price > 0),
                    author_id TEXT NOT NULL REFERENCES users(user_id),
                    assignee_id TEXT REFERENCES users(user_id),
                    parent_task_id TEXT REFERENCES tasks(task_id),
                    is_pro INTEGER NOT NULL DEFAULT 0,
                    status TEXT NOT NULL DEFAULT 'open',
                    submission_ref TEXT,
                    submission_name TEXT,
                    submitted_at TEXT,
                    rating INTEGER,
                    review TEXT,
                    cancellation_requested INTEGER NOT NULL DEFAULT 0,
                    cancellation_status TEXT NOT NULL DEFAULT 'none',
                    cancellation_requested_by TEXT,
                    cancellation_reason TEXT,
                    cancelled_at TEXT,
                    cancelled_by TEXT,
                    dispute_opened INTEGER NOT NULL DEFAULT 0,
                    dispute_opened_by TEXT,
                    dispute_reason TEXT,
                    dispute_status TEXT NOT NULL DEFAULT 'none',
                    dispute_resolution TEXT,
                    dispute_resolved_by TEXT,
                    dispute_resolved_at TEXT,
                    created_at TEXT NOT NULL,
                    assigned_at TEXT,
                    completed_at TEXT
                );

                CREATE TABLE IF NOT EXISTS escrows (
                    escrow_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL UNIQUE REFERENCES tasks(task_id),
                    payer_id TEXT NOT NULL REFERENCES users(user_id),
                    amount INTEGER NOT NULL CHECK (amount > 0),
                    status TEXT NOT NULL DEFAULT 'locked',
                    payout_amount INTEGER,
                    commission_amount INTEGER,
                    refund_amount INTEGER,
                    retained_amount INTEGER,
                    created_at TEXT NOT NULL,
                    resolved_at TEXT
                );

                CREATE TABLE IF NOT EXISTS transactions (
                    tx_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL REFERENCES users(user_id),
                    type TEXT NOT NULL,
                    amount INTEGER NOT NULL CHECK (amount != 0),
                    balance_after INTEGER NOT NULL,
                    description TEXT NOT NULL,
                    task_id TEXT,
                    commission INTEGER,
                    counterparty_id TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS disputes (
                    dispute_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(task_id),
                    opened_by TEXT NOT NULL REFERENCES users(user_id),
                    against TEXT NOT NULL REFERENCES users(user_id),
                    reason TEXT NOT NULL,
                    description TEXT NOT NULL,
                    attachments TEXT NOT NULL DEFAULT '[]',
                    status TEXT NOT NULL DEFAULT 'open',
                    resolution TEXT,
                    resolved_by TEXT,
                    resolved_at TEXT,
                    refund_percentage INTEGER,
                    refund_amount INTEGER,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS notifications (
                    notification_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    title TEXT NOT NULL,
                    message TEXT NOT NULL,
                    related_id TEXT,
                    related_type TEXT,
                    payload TEXT NOT NULL DEFAULT '{}',
                    read INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS saved_tasks (
                    user_id TEXT NOT NULL REFERENCES users(user_id),
                    task_id TEXT NOT NULL REFERENCES tasks(task_id),
                    saved_at TEXT NOT NULL,
                    PRIMARY KEY (user_id, task_id)
                );

                CREATE INDEX IF NOT EXISTS ix_tasks_status ON tasks(status);
                CREATE INDEX IF NOT EXISTS ix_tasks_author_status ON tasks(author_id, status);
                CREATE INDEX IF NOT EXISTS ix_tasks_assignee_status ON tasks(assignee_id, status);
                CREATE INDEX IF NOT EXISTS ix_transactions_user_created
                    ON transactions(user_id, created_at);
                CREATE INDEX IF NOT EXISTS ix_transactions_type ON transactions(type);
                CREATE INDEX IF NOT EXISTS ix_transactions_task ON transactions(task_id);
                CREATE INDEX IF NOT EXISTS ix_disputes_task ON disputes(task_id);
                CREATE INDEX IF NOT EXISTS ix_notifications_user_read
                    ON notifications(user_id, read, created_at);
                """
            )
            self._db.commit()

    # ------------------------------------------------------------------
    # Atomic unit
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        """
        Run the enclosed block as one serialized write transaction.

        Re-entrant: a nested call joins the enclosing transaction.
        """
        with self._lock:
            if self._depth > 0:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            self._db.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield
            except BaseException:
                self._depth = 0
                with contextlib.suppress(sqlite3.Error):
                    self._db.rollback()
                raise
            self._depth = 0
            self._db.commit()

    def _write(self, query: str, params: Iterable[object]) -> int:
        with self._lock:
            if self._depth > 0:
                return int(self._db.execute(query, tuple(params)).rowcount)
            try:
                cursor = self._db.execute(query, tuple(params))
                self._db.commit()
            except Exception:
                self._db.rollback()
                raise
            return int(cursor.rowcount)

    def _fetchone(self, query: str, params: Iterable[object]) -> sqlite3.Row | None:
        with self._lock:
            row: sqlite3.Row | None = self._db.execute(query, tuple(params)).fetchone()
        return row

    def _fetchall(self, query: str, params: Iterable[object]) -> list[sqlite3.Row]:
        with self._lock:
            return list(self._db.execute(query, tuple(params)).fetchall())

    @staticmethod
    def _insert_sql(table: str, columns: tuple[str, ...]) -> str:
        placeholders = ", ".join("?" for _ in columns)
        return f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"  # nosec B608

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    def _row_to_task(self, row: sqlite3.Row) -> dict[str, Any]:
        task = {column: row[column] for column in self._TASK_COLUMNS}
        for column in self._TASK_BOOL_COLUMNS:
            task[column] = bool(task[column])
        return task

    def _row_to_user(self, row: sqlite3.Row) -> dict[str, Any]:
        user = {column: row[column] for column in self._USER_COLUMNS}
        for column in self._USER_BOOL_COLUMNS:
            user[column] = bool(user[column])
        return user

    def _row_to_dispute(self, row: sqlite3.Row) -> dict[str, Any]:
        dispute = {column: row[column] for column in self._DISPUTE_COLUMNS}
        dispute["attachments"] = json.loads(dispute["attachments"])
        return dispute

    @staticmethod
    def _row_to_notification(row: sqlite3.Row) -> dict[str, Any]:
        return {
            "notification_id": row["notification_id"],
            "user_id": row["user_id"],
            "type": row["type"],
            "title": row["title"],
            "message": row["message"],
            "related_id": row["related_id"],
            "related_type": row["related_type"],
            "metadata": json.loads(row["payload"]),
            "read": bool(row["read"]),
            "created_at": row["created_at"],
        }

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def insert_user(self, user_data: dict[str, Any]) -> None:
        """Insert a new user row."""
        values = tuple(user_data[column] for column in self._USER_COLUMNS)
        try:
            self._write(self._insert_sql("users", self._USER_COLUMNS), values)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateUserError(
                    f"A user with user_id={user_data['user_id']} already exists"
                ) from exc
            raise

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        """Fetch a user by ID."""
        row = self._fetchone("SELECT * FROM users WHERE user_id = ?", (user_id,))
        return None if row is None else self._row_to_user(row)

    def update_user(self, user_id: str, updates: dict[str, Any]) -> int:
        """Update non-balance user columns and return the number of affected rows."""
        if len(updates) == 0:
            return 0
        if any(column not in self._USER_UPDATABLE for column in updates):
            msg = "Attempted to update unknown or protected user column"
            raise ValueError(msg)
        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params = [*updates.values(), user_id]
        return self._write(
            "UPDATE users SET " + set_clause + " WHERE user_id = ?",  # nosec B608
            params,
        )

    def apply_balance_delta(
        self, user_id: str, delta: int, max_balance: int | None = None
    ) -> int | None:
        """
        Add delta to a balance unless that would make it negative or exceed max_balance.

        Returns the new balance, or None when the user is missing or the
        result would fall outside those bounds.
        """
        query = "UPDATE users SET balance = balance + ? WHERE user_id = ? AND balance + ? >= 0"
        params: list[object] = [delta, user_id, delta]
        if max_balance is not None:
            query += " AND balance + ? <= ?"
            params.extend((delta, max_balance))
        with self._lock:
            changed = self._write(query, params)
            if changed == 0:
                return None
            row = self._fetchone("SELECT balance FROM users WHERE user_id = ?", (user_id,))
        if row is None:
            msg = "User not found after balance update"
            raise RuntimeError(msg)
        return int(row[0])

    def count_users_by_role(self) -> dict[str, int]:
        """Count users grouped by role."""
        rows = self._fetchall("SELECT role, COUNT(*) FROM users GROUP BY role", ())
        return {str(row[0]): int(row[1]) for row in rows}

    def count_users_flagged(self) -> dict[str, int]:
        """Count PRO, verified and banned users."""
        row = self._fetchone(
            "SELECT COALESCE(SUM(is_pro), 0), COALESCE(SUM(is_verified), 0), "
            "COALESCE(SUM(is_banned), 0) FROM users",
            (),
        )
        if row is None:
            return {"pro": 0, "verified": 0, "banned": 0}
        return {"pro": int(row[0]), "verified": int(row[1]), "banned": int(row[2])}

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def insert_task(self, task_data: dict[str, Any]) -> None:
        """Insert a new task row."""
        values = tuple(
            int(task_data[column]) if column in self._TASK_BOOL_COLUMNS else task_data[column]
            for column in self._TASK_COLUMNS
        )
        self._write(self._insert_sql("tasks", self._TASK_COLUMNS), values)

    def get_task(self, task_id: str) -> dict[str, Any] | None:
        """Fetch a task by ID."""
        row = self._fetchone("SELECT * FROM tasks WHERE task_id = ?", (task_id,))
        return None if row is None else self._row_to_task(row)

    def update_task(
        self,
        task_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
    ) -> int:
        """Update task columns and return the number of affected rows."""
        if len(updates) == 0:
            return 0
        if any(column not in self._TASK_COLUMNS for column in updates):
            msg = "Attempted to update unknown task column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = [
            int(value) if column in self._TASK_BOOL_COLUMNS else value
            for column, value in updates.items()
        ]
        query = "UPDATE tasks SET " + set_clause + " WHERE task_id = ?"  # nosec B608
        params.append(task_id)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)
        return self._write(query, params)

    def list_tasks(
        self,
        *,
        status: str | None,
        task_type: str | None,
        author_id: str | None,
        assignee_id: str | None,
        limit: int | None,
        offset: int | None,
    ) -> list[dict[str, Any]]:
        """List tasks with optional AND-combined filters, newest first."""
        query = "SELECT * FROM tasks"
        clauses: list[str] = []
        params: list[object] = []
        for column, value in (
            ("status", status),
            ("type", task_type),
            ("author_id", author_id),
            ("assignee_id", assignee_id),
        ):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC, task_id"
        query, params = _paginate(query, params, limit, offset)
        return [self._row_to_task(row) for row in self._fetchall(query, params)]

    def list_completed_tasks_for_worker(self, user_id: str, limit: int) -> list[dict[str, Any]]:
        """Completed tasks where user_id did the work (job assignee or gig author)."""
        rows = self._fetchall(
            "SELECT * FROM tasks WHERE status = 'completed' AND rating IS NOT NULL AND ("
            "(type = 'job' AND assignee_id = ?) OR (type = 'gig' AND author_id = ?)"
            ") ORDER BY completed_at DESC LIMIT ?",
            (user_id, user_id, limit),
        )
        return [self._row_to_task(row) for row in rows]

    def count_tasks_by_status(self) -> dict[str, int]:
        """Count tasks grouped by status."""
        rows = self._fetchall("SELECT status, COUNT(*) FROM tasks GROUP BY status", ())
        return {str(row[0]): int(row[1]) for row in rows}

    # ------------------------------------------------------------------
    # Escrows
    # ------------------------------------------------------------------

    def insert_escrow(self, escrow_data: dict[str, Any]) -> None:
        """Insert a locked escrow row."""
        values = tuple(escrow_data[column] for column in self._ESCROW_COLUMNS)
        self._write(self._insert_sql("escrows", self._ESCROW_COLUMNS), values)

    def get_escrow_for_task(self, task_id: str) -> dict[str, Any] | None:
        """Fetch the escrow held for a task."""
        row = self._fetchone("SELECT * FROM escrows WHERE task_id = ?", (task_id,))
        return None if row is None else {column: row[column] for column in self._ESCROW_COLUMNS}

    def resolve_escrow(self, task_id: str, updates: dict[str, Any]) -> int:
        """Resolve a still-locked escrow; returns 0 when it was already resolved."""
        if any(column not in self._ESCROW_COLUMNS for column in updates):
            msg = "Attempted to update unknown escrow column"
            raise ValueError(msg)
        set_clause = ", ".join(f"{column} = ?" for column in updates)
        return self._write(
            "UPDATE escrows SET " + set_clause + " WHERE task_id = ? AND status = 'locked'",  # nosec B608
            [*updates.values(), task_id],
        )

    def total_locked_escrow(self) -> int:
        """Sum of all funds still held in escrow."""
        row = self._fetchone(
            "SELECT COALESCE(SUM(amount), 0) FROM escrows WHERE status = 'locked'", ()
        )
        return 0 if row is None else int(row[0])

    # ------------------------------------------------------------------
    # Ledger entries
    # ------------------------------------------------------------------

    def insert_transaction(self, tx_data: dict[str, Any]) -> None:
        """Append an immutable ledger entry."""
        values = tuple(tx_data[column] for column in self._TRANSACTION_COLUMNS)
        self._write(self._insert_sql("transactions", self._TRANSACTION_COLUMNS), values)

    def list_transactions(
        self,
        *,
        user_id: str | None,
        tx_type: str | None,
        task_id: str | None,
        limit: int | None,
    ) -> list[dict[str, Any]]:
        """List ledger entries, newest first."""
        query = "SELECT * FROM transactions"
        clauses: list[str] = []
        params: list[object] = []
        for column, value in (("user_id", user_id), ("type", tx_type), ("task_id", task_id)):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC, rowid DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        return [
            {column: row[column] for column in self._TRANSACTION_COLUMNS}
            for row in self._fetchall(query, params)
        ]

    def sum_transactions_by_type(self) -> dict[str, int]:
        """Sum of signed amounts grouped by transaction type."""
        rows = self._fetchall("SELECT type, SUM(amount) FROM transactions GROUP BY type", ())
        return {str(row[0]): int(row[1]) for row in rows}

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    def insert_dispute(self, dispute_data: dict[str, Any]) -> None:
        """Insert a new dispute row."""
        values = tuple(
            json.dumps(dispute_data[column]) if column == "attachments" else dispute_data[column]
            for column in self._DISPUTE_COLUMNS
        )
        self._write(self._insert_sql("disputes", self._DISPUTE_COLUMNS), values)

    def get_dispute(self, dispute_id: str) -> dict[str, Any] | None:
        """Fetch a dispute by ID."""
        row = self._fetchone("SELECT * FROM disputes WHERE dispute_id = ?", (dispute_id,))
        return None if row is None else self._row_to_dispute(row)

    def update_dispute(
        self,
        dispute_id: str,
        updates: dict[str, Any],
        *,
        expected_statuses: frozenset[str],
    ) -> int:
        """Update a dispute if its status is one of expected_statuses."""
        if any(column not in self._DISPUTE_COLUMNS for column in updates):
            msg = "Attempted to update unknown dispute column"
            raise ValueError(msg)
        set_clause = ", ".join(f"{column} = ?" for column in updates)
        status_marks = ", ".join("?" for _ in expected_statuses)
        return self._write(
            "UPDATE disputes SET " + set_clause  # nosec B608
            + f" WHERE dispute_id = ? AND status IN ({status_marks})",
            [*updates.values(), dispute_id, *sorted(expected_statuses)],
        )

    def list_disputes(
        self,
        *,
        party_id: str | None,
        status: str | None,
        limit: int | None,
        offset: int | None,
    ) -> list[dict[str, Any]]:
        """List disputes, optionally those opened by or against party_id."""
        query = "SELECT * FROM disputes"
        clauses: list[str] = []
        params: list[object] = []
        if party_id is not None:
            clauses.append("(opened_by = ? OR against = ?)")
            params.extend((party_id, party_id))
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC, dispute_id"
        query, params = _paginate(query, params, limit, offset)
        return [self._row_to_dispute(row) for row in self._fetchall(query, params)]

    def list_disputes_for_task(self, task_id: str) -> list[dict[str, Any]]:
        """Every dispute raised on a task, oldest first."""
        rows = self._fetchall(
            "SELECT * FROM disputes WHERE task_id = ? ORDER BY created_at, dispute_id", (task_id,)
        )
        return [self._row_to_dispute(row) for row in rows]

    def count_disputes_by_status(self) -> dict[str, int]:
        """Count disputes grouped by status."""
        rows = self._fetchall("SELECT status, COUNT(*) FROM disputes GROUP BY status", ())
        return {str(row[0]): int(row[1]) for row in rows}

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def insert_notification(self, notification_data: dict[str, Any]) -> None:
        """Persist a notification for its recipient."""
        self._write(
            "INSERT INTO notifications (notification_id, user_id, type, title, message, "
            "related_id, related_type, payload, read, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?)",
            (
                notification_data["notification_id"],
                notification_data["user_id"],
                notification_data["type"],
                notification_data["title"],
                notification_data["message"],
                notification_data["related_id"],
                notification_data["related_type"],
                json.dumps(notification_data["metadata"]),
                notification_data["created_at"],
            ),
        )

    def list_notifications(
        self, user_id: str, *, unread_only: bool, limit: int
    ) -> list[dict[str, Any]]:
        """List a user's notifications, newest first."""
        query = "SELECT * FROM notifications WHERE user_id = ?"
        if unread_only:
            query += " AND read = 0"
        query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        rows = self._fetchall(query, (user_id, limit))
        return [self._row_to_notification(row) for row in rows]

    def get_notification(self, user_id: str, notification_id: str) -> dict[str, Any] | None:
        """Fetch one of a user's notifications."""
        row = self._fetchone(
            "SELECT * FROM notifications WHERE notification_id = ? AND user_id = ?",
            (notification_id, user_id),
        )
        return None if row is None else self._row_to_notification(row)

    def mark_notifications_read(self, user_id: str, notification_id: str | None) -> int:
        """Mark one (or, with None, every) unread notification of a user as read."""
        if notification_id is None:
            return self._write(
                "UPDATE notifications SET read = 1 WHERE user_id = ? AND read = 0", (user_id,)
            )
        return self._write(
            "UPDATE notifications SET read = 1 WHERE user_id = ? AND notification_id = ?",
            (user_id, notification_id),
        )

    def count_unread_notifications(self, user_id: str) -> int:
        """Count a user's unread notifications."""
        row = self._fetchone(
            "SELECT COUNT(*) FROM notifications WHERE user_id = ? AND read = 0", (user_id,)
        )
        return 0 if row is None else int(row[0])

    # ------------------------------------------------------------------
    # Saved tasks
    # ------------------------------------------------------------------

    def toggle_saved_task(self, user_id: str, task_id: str, saved_at: str) -> bool:
        """Save the task for the user, or unsave it if already saved. Returns the new state."""
        with self._lock:
            removed = self._write(
                "DELETE FROM saved_tasks WHERE user_id = ? AND task_id = ?", (user_id, task_id)
            )
            if removed:
                return False
            self._write(
                "INSERT INTO saved_tasks (user_id, task_id, saved_at) VALUES (?, ?, ?)",
                (user_id, task_id, saved_at),
            )
        return True

    def list_saved_tasks(self, user_id: str) -> list[dict[str, Any]]:
        """Tasks saved by a user, most recently saved first."""
        rows = self._fetchall(
            "SELECT tasks.* FROM saved_tasks JOIN tasks ON tasks.task_id = saved_tasks.task_id "
            "WHERE saved_tasks.user_id = ? ORDER BY saved_tasks.saved_at DESC",
            (user_id,),
        )
        return [self._row_to_task(row) for row in rows]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
