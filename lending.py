"""The lending ledger: book stock, issues and returns.

:class:`LendingLedger` is the only writer of catalog and issue state. Every
mutation runs under the lock of the book it touches and inside a single
SQLite write transaction, so the stock counter and the set of active loans
change together or not at all. Reads open a deferred transaction and see
one consistent snapshot.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

from catalog_store import CatalogStore
from config import settings
from database import get_db_connection, initialize_database, transaction
from errors import (
    BookInUseError,
    DuplicateLoanError,
    InvalidArgumentError,
    LendingError,
    OutOfStockError,
)
from identity_store import IdentityStore
from ledger_store import LedgerStore, utc_now
from models import Book, IssueRecord

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"
DELETED_BOOK = "Deleted Book"


class BookLocks:
    """A fixed set of striped locks; a book id always maps to the same stripe.

    Two books may share a stripe and then serialize against each other. Every
    operation holds a single stripe, so sharing cannot deadlock.
    """

    def __init__(self, stripes: int = 64) -> None:
        self._stripes = [threading.Lock() for _ in range(stripes)]

    def __len__(self) -> int:
        return len(self._stripes)

    @contextmanager
    def hold(self, book_id: int) -> Iterator[None]:
        with self._stripes[hash(book_id) % len(self._stripes)]:
            yield


class LendingLedger:
    """Manages book stock and loans on top of one SQLite file.

    Construct one per process and pass it to whoever needs it. Returned
    objects are fresh copies; changing them does not change the ledger.
    """

    def __init__(
        self,
        db_file: Optional[str] = None,
        *,
        seed: Optional[bool] = None,
        clock: Callable[[], str] = utc_now,
    ) -> None:
        self.db_file = db_file or settings.database_file
        self._clock = clock
        self._locks = BookLocks()
        initialize_database(self.db_file, seed=seed)
        logger.info("Lending ledger opened | db_file=%s", self.db_file)

    @contextmanager
    def _session(self, write: bool = True) -> Iterator[Any]:
        conn = get_db_connection(self.db_file)
        try:
            with transaction(conn, immediate=write):
                yield conn
        finally:
            conn.close()

    # ------------------------- Catalog ------------------------- #
    def list_books(self) -> List[Book]:
        with self._session(write=False) as conn:
            return CatalogStore(conn).list()

    def get_book(self, book_id: int) -> Book:
        with self._session(write=False) as conn:
            return CatalogStore(conn).get(book_id)

    def add_book(self, title: str, author: str, quantity: int) -> Book:
        try:
            with self._session() as conn:
                book = CatalogStore(conn).create(title, author, quantity)
        except LendingError as e:
            logger.warning("add_book rejected | title=%r reason=%s", title, e)
            raise
        logger.info("Book added | book_id=%s title=%r quantity=%s", book.id, book.title, book.quantity)
        return book

    def update_book(
        self,
        book_id: int,
        *,
        title: Optional[str] = None,
        author: Optional[str] = None,
        quantity: Optional[int] = None,
    ) -> Book:
        try:
            with self._locks.hold(book_id), self._session() as conn:
                book = CatalogStore(conn).update(book_id, title=title, author=author, quantity=quantity)
        except LendingError as e:
            logger.warning("update_book rejected | book_id=%s reason=%s", book_id, e)
            raise
        logger.info("Book updated | book_id=%s quantity=%s available=%s", book.id, book.quantity, book.available)
        return book

    def delete_book(self, book_id: int) -> None:
        """Delete a book that has no copies out on loan.

        The loan check and the delete share the book lock and one write
        transaction, so no issue can slip in between them.
        """
        try:
            with self._locks.hold(book_id), self._session() as conn:
                catalog = CatalogStore(conn)
                catalog.get(book_id)
                if LedgerStore(conn).has_active_for_book(book_id):
                    raise BookInUseError(f"Cannot delete book {book_id} while copies are issued.")
                catalog.delete(book_id)
        except LendingError as e:
            logger.warning("delete_book rejected | book_id=%s reason=%s", book_id, e)
            raise
        logger.info("Book deleted | book_id=%s", book_id)

    # ------------------------- Loans ------------------------- #
    def issue_book(self, user_id: int, book_id: int) -> IssueRecord:
        """Lend one copy of ``book_id`` to ``user_id``.

        Raises NotFoundError, OutOfStockError or DuplicateLoanError before
        writing anything. The new record and the decrement of ``available``
        commit together.
        """
        try:
            with self._locks.hold(book_id), self._session() as conn:
                catalog = CatalogStore(conn)
                ledger = LedgerStore(conn, self._clock)
                book = catalog.get(book_id)
                if book.available <= 0:
                    raise OutOfStockError(f"No copies of book {book_id} available.")
                if ledger.find_active(user_id, book_id) is not None:
                    raise DuplicateLoanError(f"User {user_id} already has a copy of book {book_id}.")
                record = ledger.create(user_id, book_id)
                catalog.adjust_available(book_id, -1)
        except LendingError as e:
            logger.warning("issue_book rejected | user_id=%s book_id=%s reason=%s", user_id, book_id, e)
            raise
        logger.info("Book issued | issue_id=%s user_id=%s book_id=%s", record.id, user_id, book_id)
        return record

    def return_book(self, issue_id: int) -> None:
        """Close an active loan and put the copy back in stock.

        If the book has been deleted meanwhile the record is still closed and
        the stock update is skipped.
        """
        try:
            # The issue's book id never changes, so it is safe to read it
            # before taking that book's lock.
            book_id = self.get_issue(issue_id).book_id
            with self._locks.hold(book_id), self._session() as conn:
                catalog = CatalogStore(conn)
                LedgerStore(conn, self._clock).mark_returned(issue_id)
                if catalog.find(book_id) is not None:
                    catalog.adjust_available(book_id, +1)
                else:
                    logger.warning("Returned issue for missing book | issue_id=%s book_id=%s", issue_id, book_id)
        except LendingError as e:
            logger.warning("return_book rejected | issue_id=%s reason=%s", issue_id, e)
            raise
        logger.info("Book returned | issue_id=%s book_id=%s", issue_id, book_id)

    def get_issue(self, issue_id: int) -> IssueRecord:
        with self._session(write=False) as conn:
            return LedgerStore(conn).get(issue_id)

    # ------------------------- Queries ------------------------- #
    def list_issues_for_user(self, user_id: int) -> List[IssueRecord]:
        """A user's loans, newest first, with book title and author."""
        with self._session(write=False) as conn:
            records = LedgerStore(conn).list_for_user(user_id)
            books = {book.id: book for book in CatalogStore(conn).list()}
        for record in records:
            book = books.get(record.book_id)
            record.book_title = book.title if book else UNKNOWN
            record.book_author = book.author if book else UNKNOWN
        return records

    def list_all_issues(self) -> List[IssueRecord]:
        """Every loan, newest first, with book title/author and username."""
        with self._session(write=False) as conn:
            records = LedgerStore(conn).list_all()
            books = {book.id: book for book in CatalogStore(conn).list()}
            users = {user.id: user for user in IdentityStore(conn).list()}
        for record in records:
            book = books.get(record.book_id)
            user = users.get(record.user_id)
            record.book_title = book.title if book else DELETED_BOOK
            record.book_author = book.author if book else UNKNOWN
            record.username = user.username if user else UNKNOWN
        return records

    def recent_issues(self, limit: Optional[int] = None) -> List[IssueRecord]:
        if limit is None:
            limit = settings.recent_issues_limit
        if limit < 0:
            raise InvalidArgumentError("limit cannot be negative.")
        return self.list_all_issues()[:limit]

    def get_statistics(self) -> Dict[str, int]:
        """Dashboard counters.

        ``active_borrowers`` counts every user that appears anywhere in the
        issue history, including users whose loans are all returned.
        """
        with self._session(write=False) as conn:
            total_copies, available = CatalogStore(conn).totals()
            total_titles = conn.execute("SELECT COUNT(*) FROM books").fetchone()[0]
            borrowers = {record.user_id for record in LedgerStore(conn).list_all()}
        return {
            "total_titles": total_titles,
            "total_copies": total_copies,
            "issued_copies": total_copies - available,
            "active_borrowers": len(borrowers),
        }
