"""Durable queue of offline submissions and their background replay."""

import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from urllib.parse import urljoin

from .database import DatabaseError, db_lock
from .models import DONATION_SUBMISSION, FORM_SUBMISSION, PendingSubmission, Request
from .network import Fetcher, NetworkError

logger = logging.getLogger(__name__)

FORM_SYNC_TAG = "form-submission"
DONATION_SYNC_TAG = "donation-submission"

# Background sync tag -> queued submission kind
SYNC_TAGS = {
    FORM_SYNC_TAG: FORM_SUBMISSION,
    DONATION_SYNC_TAG: DONATION_SUBMISSION,
}

DEFAULT_DONATION_ENDPOINT = "/api/donations"


class SubmissionQueue:
    """SQLite-backed queue of submissions captured while offline.

    Delivery is at-least-once: a record stays queued until it is explicitly
    removed after a successful replay.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def enqueue(self, record: PendingSubmission) -> int:
        """Persist a submission and return its queue id.

        Raises:
            DatabaseError: If the insert fails.
        """
        try:
            with db_lock:
                cursor = self._conn.execute(
                    """
                    INSERT INTO pending_submissions (kind, url, headers, body, data, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.kind,
                        record.url,
                        json.dumps(dict(record.headers)),
                        record.body,
                        json.dumps(record.data) if record.data is not None else None,
                        record.created_at.isoformat(),
                    ),
                )
                self._conn.commit()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to enqueue {record.kind} submission: {e}")
        return int(cursor.lastrowid)

    def list_pending(self, kind: str) -> list[PendingSubmission]:
        """Return queued submissions of one kind, oldest first.

        Raises:
            DatabaseError: If the query fails.
        """
        try:
            with db_lock:
                rows = self._conn.execute(
                    """
                    SELECT id, kind, url, headers, body, data, created_at
                    FROM pending_submissions
                    WHERE kind = ?
                    ORDER BY id
                    """,
                    (kind,),
                ).fetchall()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to list pending {kind} submissions: {e}")

        return [
            PendingSubmission(
                id=row["id"],
                kind=row["kind"],
                url=row["url"],
                headers=json.loads(row["headers"]),
                body=bytes(row["body"]) if row["body"] is not None else None,
                data=json.loads(row["data"]) if row["data"] is not None else None,
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    def remove(self, submission_id: int) -> bool:
        """Delete a submission. Returns True if it was still queued.

        Raises:
            DatabaseError: If the delete fails.
        """
        try:
            with db_lock:
                cursor = self._conn.execute("DELETE FROM pending_submissions WHERE id = ?", (submission_id,))
                self._conn.commit()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to remove submission {submission_id}: {e}")
        return cursor.rowcount > 0

    def count(self, kind: str | None = None) -> int:
        try:
            with db_lock:
                if kind is None:
                    row = self._conn.execute("SELECT COUNT(*) FROM pending_submissions").fetchone()
                else:
                    row = self._conn.execute(
                        "SELECT COUNT(*) FROM pending_submissions WHERE kind = ?", (kind,)
                    ).fetchone()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to count pending submissions: {e}")
        return int(row[0])


@dataclass(frozen=True)
class SyncReport:
    """Outcome of one background sync run.

    Attributes:
        tag: Sync tag that triggered the run.
        attempted: Number of queued submissions tried.
        replayed: Number delivered and removed from the queue.
        failed: Number left queued for the next sync.
    """

    tag: str
    attempted: int = 0
    replayed: int = 0
    failed: int = 0


class BackgroundSync:
    """Replays queued submissions when connectivity returns.

    Retry timing belongs to whoever triggers the sync; a failed record simply
    stays queued.
    """

    def __init__(
        self,
        queue: SubmissionQueue,
        fetcher: Fetcher,
        origin: str,
        donation_endpoint: str = DEFAULT_DONATION_ENDPOINT,
    ) -> None:
        self._queue = queue
        self._fetch = fetcher
        self._base = origin.rstrip("/") + "/"
        self._donation_url = urljoin(self._base, donation_endpoint)

    def _replay_request(self, record: PendingSubmission) -> Request:
        if record.kind == DONATION_SUBMISSION:
            return Request(
                self._donation_url,
                method="POST",
                headers={"Content-Type": "application/json"},
                body=json.dumps(record.data).encode("utf-8"),
            )
        return Request(
            urljoin(self._base, record.url),
            method="POST",
            headers=record.headers,
            body=record.body,
        )

    def replay(self, tag: str) -> SyncReport:
        """Replay every queued submission for a sync tag.

        Each record is independent: a failure is logged and the remaining
        records are still attempted.
        """
        kind = SYNC_TAGS.get(tag)
        if kind is None:
            logger.warning("Ignoring background sync with unknown tag: %s", tag)
            return SyncReport(tag=tag)

        try:
            pending = self._queue.list_pending(kind)
        except DatabaseError as e:
            logger.error("Background sync failed: %s", e)
            return SyncReport(tag=tag)

        replayed = 0
        for record in pending:
            try:
                response = self._fetch(self._replay_request(record))
                if response.ok:
                    self._queue.remove(record.id)
                    replayed += 1
                    logger.info("%s submission %s synced successfully", kind.capitalize(), record.id)
                else:
                    logger.warning("%s submission %s rejected with status %d", kind.capitalize(), record.id, response.status)
            except (NetworkError, DatabaseError) as e:
                logger.error("Failed to sync %s submission %s: %s", kind, record.id, e)

        return SyncReport(
            tag=tag,
            attempted=len(pending),
            replayed=replayed,
            failed=len(pending) - replayed,
        )
