import logging
import sqlite3
from typing import List, Optional

from errors import InvariantViolationError, NotFoundError
from models import Book
from utils.validators import QuantityValidator, TextValidator

logger = logging.getLogger(__name__)

_BOOK_COLUMNS = "id, title, author, quantity, available"


class CatalogStore:
    """Book records and their ``quantity``/``available`` counters.

    The store works on a connection owned by the caller, so several store
    calls can share one transaction. It does not open or commit transactions
    itself.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def create(self, title: str, author: str, quantity: int) -> Book:
        """Insert a new book with every copy available."""
        title = TextValidator.require(title, "title")
        author = TextValidator.require(author, "author")
        quantity = QuantityValidator.validate_quantity(quantity)
        cursor = self.conn.execute(
            "INSERT INTO books (title, author, quantity, available) VALUES (?, ?, ?, ?)",
            (title, author, quantity, quantity),
        )
        return Book(id=cursor.lastrowid, title=title, author=author, quantity=quantity, available=quantity)

    def find(self, book_id: int) -> Optional[Book]:
        row = self.conn.execute(f"SELECT {_BOOK_COLUMNS} FROM books WHERE id = ?", (book_id,)).fetchone()
        return Book.from_row(row) if row else None

    def get(self, book_id: int) -> Book:
        book = self.find(book_id)
        if book is None:
            raise NotFoundError(f"Book {book_id} not found.")
        return book

    def list(self) -> List[Book]:
        # AUTOINCREMENT ids are monotonic, so id order is insertion order
        rows = self.conn.execute(f"SELECT {_BOOK_COLUMNS} FROM books ORDER BY id").fetchall()
        return [Book.from_row(row) for row in rows]

    def update(
        self,
        book_id: int,
        *,
        title: Optional[str] = None,
        author: Optional[str] = None,
        quantity: Optional[int] = None,
    ) -> Book:
        """Change title, author and/or quantity of a book.

        A quantity change shifts ``available`` by the same delta, so copies on
        loan stay on loan. Shrinking below the number of copies on loan raises
        :class:`InvariantViolationError`.
        """
        book = self.get(book_id)
        if title is not None:
            book.title = TextValidator.require(title, "title")
        if author is not None:
            book.author = TextValidator.require(author, "author")
        if quantity is not None:
            quantity = QuantityValidator.validate_quantity(quantity)
            new_available = book.available + (quantity - book.quantity)
            if new_available < 0:
                raise InvariantViolationError(
                    f"Cannot reduce quantity of book {book_id} to {quantity}: "
                    f"{book.on_loan} copies are currently issued."
                )
            book.quantity = quantity
            book.available = new_available

        self.conn.execute(
            "UPDATE books SET title = ?, author = ?, quantity = ?, available = ? WHERE id = ?",
            (book.title, book.author, book.quantity, book.available, book_id),
        )
        return book

    def adjust_available(self, book_id: int, delta: int) -> Book:
        book = self.get(book_id)
        new_available = book.available + delta
        if not 0 <= new_available <= book.quantity:
            raise InvariantViolationError(
                f"available for book {book_id} would become {new_available} "
                f"(quantity {book.quantity})."
            )
        self.conn.execute("UPDATE books SET available = ? WHERE id = ?", (new_available, book_id))
        book.available = new_available
        return book

    def delete(self, book_id: int) -> None:
        cursor = self.conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
        if cursor.rowcount == 0:
            raise NotFoundError(f"Book {book_id} not found.")

    def totals(self) -> tuple:
        """Return ``(sum of quantity, sum of available)`` over all books."""
        row = self.conn.execute(
            "SELECT COALESCE(SUM(quantity), 0), COALESCE(SUM(available), 0) FROM books"
        ).fetchone()
        return row[0], row[1]
