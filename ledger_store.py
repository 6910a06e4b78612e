import sqlite3
from datetime import datetime, timezone
from typing import Callable, List, Optional

from errors import AlreadyReturnedError, NotFoundError
from models import IssueRecord

_ISSUE_COLUMNS = "id, user_id, book_id, issue_date, return_date"
# Most recent first; id breaks ties between loans issued in the same instant
_NEWEST_FIRST = "ORDER BY issue_date DESC, id DESC"


def utc_now() -> str:
    # fixed width keeps lexical order equal to time order
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class LedgerStore:
    """Append-only issue/return history.

    Records are inserted by :meth:`create` and closed once by
    :meth:`mark_returned`; nothing is ever deleted. Like the catalog store it
    runs on a caller-owned connection.
    """

    def __init__(self, conn: sqlite3.Connection, clock: Callable[[], str] = utc_now) -> None:
        self.conn = conn
        self.clock = clock

    def create(self, user_id: int, book_id: int) -> IssueRecord:
        issue_date = self.clock()
        cursor = self.conn.execute(
            "INSERT INTO issues (user_id, book_id, issue_date, return_date) VALUES (?, ?, ?, NULL)",
            (user_id, book_id, issue_date),
        )
        return IssueRecord(id=cursor.lastrowid, user_id=user_id, book_id=book_id, issue_date=issue_date)

    def find(self, issue_id: int) -> Optional[IssueRecord]:
        row = self.conn.execute(f"SELECT {_ISSUE_COLUMNS} FROM issues WHERE id = ?", (issue_id,)).fetchone()
        return IssueRecord.from_row(row) if row else None

    def get(self, issue_id: int) -> IssueRecord:
        record = self.find(issue_id)
        if record is None:
            raise NotFoundError(f"Issue record {issue_id} not found.")
        return record

    def find_active(self, user_id: int, book_id: int) -> Optional[IssueRecord]:
        row = self.conn.execute(
            f"SELECT {_ISSUE_COLUMNS} FROM issues WHERE user_id = ? AND book_id = ? AND return_date IS NULL",
            (user_id, book_id),
        ).fetchone()
        return IssueRecord.from_row(row) if row else None

    def has_active_for_book(self, book_id: int) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM issues WHERE book_id = ? AND return_date IS NULL LIMIT 1", (book_id,)
        ).fetchone()
        return row is not None

    def mark_returned(self, issue_id: int) -> IssueRecord:
        record = self.get(issue_id)
        if not record.is_active:
            raise AlreadyReturnedError(f"Issue record {issue_id} was already returned on {record.return_date}.")
        record.return_date = self.clock()
        self.conn.execute(
            "UPDATE issues SET return_date = ? WHERE id = ? AND return_date IS NULL",
            (record.return_date, issue_id),
        )
        return record

    def list_for_user(self, user_id: int) -> List[IssueRecord]:
        rows = self.conn.execute(
            f"SELECT {_ISSUE_COLUMNS} FROM issues WHERE user_id = ? {_NEWEST_FIRST}", (user_id,)
        ).fetchall()
        return [IssueRecord.from_row(row) for row in rows]

    def list_all(self) -> List[IssueRecord]:
        rows = self.conn.execute(f"SELECT {_ISSUE_COLUMNS} FROM issues {_NEWEST_FIRST}").fetchall()
        return [IssueRecord.from_row(row) for row in rows]
