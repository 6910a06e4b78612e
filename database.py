import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from dotenv import load_dotenv

# Make sure .env is loaded before config reads os.environ, whatever the import order.
load_dotenv()

from config import settings  # noqa: E402

logger = logging.getLogger(__name__)

SEED_USERS = [
    # (username, password, role, full_name)
    ("admin", "admin123", "admin", "Chief Librarian"),
    ("student", "user123", "borrower", "John Doe"),
]

SEED_BOOKS = [
    # (title, author, quantity)
    ("The Great Gatsby", "F. Scott Fitzgerald", 5),
    ("Clean Code", "Robert C. Martin", 3),
    ("The Pragmatic Programmer", "Andy Hunt", 4),
    ("Introduction to Algorithms", "Thomas H. Cormen", 2),
]


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection to the ledger database.

    Connections run in autocommit mode; callers group writes with
    :func:`transaction`. One connection is opened per operation, so each
    thread works on its own connection.
    """
    conn = sqlite3.connect(
        db_file or settings.database_file,
        timeout=settings.sqlite_busy_timeout,
        isolation_level=None,
    )
    conn.row_factory = sqlite3.Row
    # WAL lets snapshot reads proceed while a writer holds the lock
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute(f"PRAGMA synchronous={settings.sqlite_synchronous};")
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection, immediate: bool = True) -> Iterator[sqlite3.Connection]:
    """Run the enclosed statements as one SQLite transaction.

    ``immediate`` takes the write lock up front so that the checks made inside
    the block still hold when the writes happen. Read-only callers pass
    ``immediate=False`` and get a consistent snapshot without blocking writers.
    Any exception rolls the whole block back.
    """
    conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
    try:
        yield conn
    except BaseException:
        # SQLite may already have rolled back on its own (e.g. SQLITE_FULL)
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    else:
        conn.execute("COMMIT")


def create_tables(db_file: Optional[str] = None) -> None:
    """Create the ledger tables and indexes if they do not exist."""
    conn = get_db_connection(db_file)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS books (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                quantity INTEGER NOT NULL CHECK(quantity >= 1),
                available INTEGER NOT NULL CHECK(available >= 0 AND available <= quantity),
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            -- No foreign key on book_id: history outlives deleted books.
            CREATE TABLE IF NOT EXISTS issues (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                book_id INTEGER NOT NULL,
                issue_date TEXT NOT NULL,
                return_date TEXT
            );

            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT UNIQUE NOT NULL,
                password_hash TEXT NOT NULL,
                role TEXT NOT NULL CHECK(role IN ('admin', 'borrower')),
                full_name TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            -- At most one active loan per (user, book)
            CREATE UNIQUE INDEX IF NOT EXISTS idx_issues_one_active
                ON issues(user_id, book_id) WHERE return_date IS NULL;
            CREATE INDEX IF NOT EXISTS idx_issues_user_id ON issues(user_id);
            CREATE INDEX IF NOT EXISTS idx_issues_book_id ON issues(book_id);
            CREATE INDEX IF NOT EXISTS idx_issues_issue_date ON issues(issue_date DESC);
        """)
    finally:
        conn.close()


def seed_demo_data(db_file: Optional[str] = None) -> None:
    """Load the demo users and books into an empty database.

    Does nothing when either table already holds rows, so it is safe to run
    on every start.
    """
    from catalog_store import CatalogStore
    from identity_store import IdentityStore

    conn = get_db_connection(db_file)
    try:
        with transaction(conn):
            book_count = conn.execute("SELECT COUNT(*) FROM books").fetchone()[0]
            user_count = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
            if book_count or user_count:
                return
            identity = IdentityStore(conn)
            for username, password, role, full_name in SEED_USERS:
                identity.create(username, password, full_name, role=role)
            catalog = CatalogStore(conn)
            for title, author, quantity in SEED_BOOKS:
                catalog.create(title, author, quantity)
        logger.info("Seeded %d users and %d books", len(SEED_USERS), len(SEED_BOOKS))
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None, seed: Optional[bool] = None) -> None:
    """Create tables and, if enabled, seed an empty database with demo data."""
    create_tables(db_file)
    if settings.seed_demo_data if seed is None else seed:
        seed_demo_data(db_file)
