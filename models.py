from __future__ import annotations

from dataclasses import asdict, dataclass

ROLE_ADMIN = "admin"
ROLE_BORROWER = "borrower"


@dataclass
class Book:
    """A catalog entry and its stock counters."""

    id: int
    title: str
    author: str
    quantity: int
    available: int

    @property
    def on_loan(self) -> int:
        return self.quantity - self.available

    def to_dict(self) -> dict:
        return asdict(self)

    @staticmethod
    def from_row(row) -> "Book":
        return Book(
            id=row["id"],
            title=row["title"],
            author=row["author"],
            quantity=row["quantity"],
            available=row["available"],
        )


@dataclass
class IssueRecord:
    """One loan of one book to one user.

    ``return_date`` is None while the loan is active. The ``book_title``,
    ``book_author`` and ``username`` fields are only filled in by the query
    views that join against the catalog and the identity store.
    """

    id: int
    user_id: int
    book_id: int
    issue_date: str
    return_date: str | None = None
    book_title: str | None = None
    book_author: str | None = None
    username: str | None = None

    @property
    def is_active(self) -> bool:
        return self.return_date is None

    def to_dict(self) -> dict:
        return asdict(self)

    @staticmethod
    def from_row(row) -> "IssueRecord":
        return IssueRecord(
            id=row["id"],
            user_id=row["user_id"],
            book_id=row["book_id"],
            issue_date=row["issue_date"],
            return_date=row["return_date"],
        )


@dataclass
class User:
    id: int
    username: str
    role: str
    full_name: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def to_dict(self) -> dict:
        return asdict(self)

    @staticmethod
    def from_row(row) -> "User":
        return User(id=row["id"], username=row["username"], role=row["role"], full_name=row["full_name"])
