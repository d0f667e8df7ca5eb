"""
User/link store.

One record per Telegram user: the optionally linked Instagram account and
the ordered history of downloaded source URLs. Backed by SQLite; all
access is serialized through a lock, last write wins.
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import List, Optional

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    requester_id INTEGER PRIMARY KEY,
    linked_external_account_id TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_users_external ON users (linked_external_account_id);
CREATE TABLE IF NOT EXISTS downloads (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    requester_id INTEGER NOT NULL REFERENCES users (requester_id),
    url TEXT NOT NULL,
    created_at TEXT NOT NULL
);
"""


@dataclass
class UserLink:
    requester_id: int
    linked_external_account_id: Optional[str] = None
    downloads: List[str] = field(default_factory=list)
    created_at: Optional[str] = None


class UserStore:
    """SQLite-backed user records."""

    def __init__(self, path: str = "relay.db"):
        """
        Open (and create if needed) the database.

        Args:
            path: SQLite file path, or ":memory:"
        """
        self.path = path
        self.lock = Lock()
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self.lock:
            self._conn.executescript(SCHEMA)
            self._conn.commit()
        logger.info(f"[STORE] UserStore opened at {path}")

    def close(self) -> None:
        with self.lock:
            self._conn.close()

    def _load(self, row: Optional[sqlite3.Row]) -> Optional[UserLink]:
        if row is None:
            return None
        urls = self._conn.execute(
            "SELECT url FROM downloads WHERE requester_id = ? ORDER BY id ASC",
            (row["requester_id"],),
        ).fetchall()
        return UserLink(
            requester_id=row["requester_id"],
            linked_external_account_id=row["linked_external_account_id"],
            downloads=[u["url"] for u in urls],
            created_at=row["created_at"],
        )

    def _insert_if_missing(self, requester_id: int) -> None:
        self._conn.execute(
            "INSERT OR IGNORE INTO users (requester_id, created_at) VALUES (?, ?)",
            (requester_id, datetime.now().isoformat()),
        )

    def ensure_user(self, requester_id: int) -> UserLink:
        """Create the record on first contact; return it either way."""
        with self.lock:
            self._insert_if_missing(requester_id)
            self._conn.commit()
            row = self._conn.execute("SELECT * FROM users WHERE requester_id = ?", (requester_id,)).fetchone()
            return self._load(row)

    def find_by_requester(self, requester_id: int) -> Optional[UserLink]:
        with self.lock:
            row = self._conn.execute("SELECT * FROM users WHERE requester_id = ?", (requester_id,)).fetchone()
            return self._load(row)

    def find_by_external_account(self, *account_ids: str) -> Optional[UserLink]:
        """
        Find the user linked to any of the given external ids.

        Links are stored lower-cased, so usernames match case-insensitively.
        """
        candidates = [str(a).lower() for a in account_ids if a]
        if not candidates:
            return None
        placeholders = ",".join("?" for _ in candidates)
        with self.lock:
            row = self._conn.execute(
                f"SELECT * FROM users WHERE linked_external_account_id IN ({placeholders}) "
                f"ORDER BY created_at DESC LIMIT 1",
                candidates,
            ).fetchone()
            return self._load(row)

    def upsert_link(self, requester_id: int, external_account_id: str) -> UserLink:
        account = external_account_id.strip().lstrip('@').lower()
        with self.lock:
            self._insert_if_missing(requester_id)
            self._conn.execute(
                "UPDATE users SET linked_external_account_id = ? WHERE requester_id = ?",
                (account, requester_id),
            )
            self._conn.commit()
            logger.info(f"[STORE] Linked requester {requester_id} to external account {account}")
            row = self._conn.execute("SELECT * FROM users WHERE requester_id = ?", (requester_id,)).fetchone()
            return self._load(row)

    def append_download_record(self, requester_id: int, url: str) -> None:
        with self.lock:
            self._insert_if_missing(requester_id)
            self._conn.execute(
                "INSERT INTO downloads (requester_id, url, created_at) VALUES (?, ?, ?)",
                (requester_id, url, datetime.now().isoformat()),
            )
            self._conn.commit()
            logger.debug(f"[STORE] Recorded download for {requester_id}: {url}")

    def get_stats(self) -> dict:
        with self.lock:
            users = self._conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
            linked = self._conn.execute(
                "SELECT COUNT(*) FROM users WHERE linked_external_account_id IS NOT NULL"
            ).fetchone()[0]
            downloads = self._conn.execute("SELECT COUNT(*) FROM downloads").fetchone()[0]
            return {"total_users": users, "linked_users": linked, "total_downloads": downloads}
