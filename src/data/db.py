"""
MindArsenal Coach — Snapshot Database.

Durable state is two JSON documents kept in SQLite: the user table and the
runtime record (job heartbeats, send counters). Every save overwrites the
whole document in one transaction, so readers never see a partial snapshot.
"""

from __future__ import annotations

import copy
import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from src.data.models import UserRecord, UserSeed

logger = logging.getLogger(__name__)

USERS_DOC = "users"
RUNTIME_DOC = "runtime"


class SnapshotDB:
    """SQLite-backed key/value store of whole-document snapshots."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._memory_conn: sqlite3.Connection | None = None
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        if self._db_path == ":memory:":
            # A fresh :memory: connection would be an empty database.
            if self._memory_conn is None:
                self._memory_conn = sqlite3.connect(":memory:", check_same_thread=False)
            return self._memory_conn
        return sqlite3.connect(self._db_path)

    def _init_db(self) -> None:
        """Create the snapshots table if it doesn't exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS snapshots (
                    name       TEXT PRIMARY KEY,
                    body       TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
        logger.debug("Snapshots table initialized at %s", self._db_path)

    def load(self, name: str) -> dict | None:
        """Return the stored document, or None if absent or unreadable."""
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT body FROM snapshots WHERE name = ?", (name,)
                ).fetchone()
        except sqlite3.Error as exc:
            logger.warning("snapshot_load_fail name=%s err=%s", name, exc)
            return None
        if row is None:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as exc:
            logger.warning("snapshot_load_fail name=%s err=%s", name, exc)
            return None

    def save(self, name: str, document: dict) -> bool:
        """Overwrite the whole document. Returns False (and logs) on failure."""
        try:
            body = json.dumps(document, ensure_ascii=False)
            with self._connect() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO snapshots (name, body, updated_at) VALUES (?, ?, ?)",
                    (name, body, datetime.now().isoformat(timespec="seconds")),
                )
        except (sqlite3.Error, OSError, TypeError, ValueError) as exc:
            logger.error("snapshot_save_fail name=%s err=%s", name, exc)
            return False
        return True


class UserStore:
    """In-memory user table mirrored to the 'users' snapshot on every mutation.

    All mutation goes through mutate(), which holds a process-wide lock for the
    state change and the snapshot write. Never await while inside mutate().
    """

    def __init__(self, db: SnapshotDB) -> None:
        self._db = db
        self._lock = threading.RLock()
        self._users: dict[str, UserRecord] = {}
        data = db.load(USERS_DOC) or {}
        for key, raw in data.items():
            try:
                self._users[key] = UserRecord.from_dict(raw)
            except (KeyError, TypeError, ValueError) as exc:
                logger.error("users_load_fail user=%s err=%s", key, exc)
        logger.info("users_load count=%d", len(self._users))

    def get(self, identity_key: str) -> UserRecord | None:
        """Return a detached copy of the user, or None."""
        with self._lock:
            user = self._users.get(identity_key)
            return copy.deepcopy(user) if user is not None else None

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._users)

    def list_users(self) -> list[UserRecord]:
        with self._lock:
            return [copy.deepcopy(u) for u in self._users.values()]

    def get_or_create(self, identity_key: str, seed: UserSeed | None = None) -> UserRecord:
        """Return a copy of the user, creating it with defaults if absent."""
        with self.mutate(identity_key, seed) as user:
            return copy.deepcopy(user)

    @contextmanager
    def mutate(
        self, identity_key: str, seed: UserSeed | None = None, create: bool = True,
    ) -> Iterator[UserRecord]:
        """Yield the live record; persist the table afterwards if anything changed.

        Raises KeyError if the user is absent and create is False.
        """
        with self._lock:
            user, created = self._resolve(identity_key, seed, create)
            before = user.to_dict()
            try:
                yield user
            except BaseException:
                # Roll back the half-applied change.
                if created:
                    del self._users[identity_key]
                else:
                    self._users[identity_key] = UserRecord.from_dict(before)
                raise
            if created or user.to_dict() != before:
                self.persist()

    def persist(self) -> bool:
        with self._lock:
            document = {key: u.to_dict() for key, u in self._users.items()}
            saved = self._db.save(USERS_DOC, document)
        if saved:
            logger.debug("users_save count=%d", len(document))
        return saved

    def _resolve(
        self, identity_key: str, seed: UserSeed | None, create: bool,
    ) -> tuple[UserRecord, bool]:
        user = self._users.get(identity_key)
        if user is None:
            if not create:
                raise KeyError(identity_key)
            user = UserRecord(
                identity_key=identity_key,
                created_at=datetime.now().isoformat(timespec="seconds"),
            )
            if seed is not None:
                user.first_name = seed.first_name
                user.channels[seed.channel] = seed.address
            self._users[identity_key] = user
            logger.info("user_new user=%s", identity_key)
            return user, True

        if seed is not None:
            # Fill in linkage that is still unset; never overwrite.
            user.channels.setdefault(seed.channel, seed.address)
            if not user.first_name and seed.first_name:
                user.first_name = seed.first_name
        return user, False


class RuntimeState:
    """Job heartbeats and aggregate send counters ('runtime' snapshot)."""

    def __init__(self, db: SnapshotDB) -> None:
        self._db = db
        self._lock = threading.Lock()
        data = db.load(RUNTIME_DOC) or {}
        self.started_at: str = datetime.now().isoformat(timespec="seconds")
        self.jobs: dict[str, dict] = dict(data.get("jobs", {}))
        counters = data.get("counters", {})
        self.counters: dict[str, int] = {
            "send_ok": int(counters.get("send_ok", 0)),
            "send_err": int(counters.get("send_err", 0)),
        }

    def mark_job(self, job_name: str, status: str, at: datetime | None = None, **extra) -> None:
        at = at or datetime.now()
        with self._lock:
            self.jobs[job_name] = {
                **self.jobs.get(job_name, {}),
                "last_status": status,
                "last_at": at.isoformat(timespec="seconds"),
                **extra,
            }
            self._save()

    def last_run(self, job_name: str) -> datetime | None:
        with self._lock:
            last = self.jobs.get(job_name, {}).get("last_at")
        if not last:
            return None
        try:
            return datetime.fromisoformat(last)
        except ValueError:
            return None

    def record_send(self, ok: bool) -> None:
        with self._lock:
            self.counters["send_ok" if ok else "send_err"] += 1
            self._save()

    def _save(self) -> None:
        self._db.save(RUNTIME_DOC, {
            "started_at": self.started_at,
            "jobs": self.jobs,
            "counters": self.counters,
        })
