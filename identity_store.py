import hashlib
import hmac
import logging
import os
import sqlite3
from typing import List, Optional

from database import get_db_connection, transaction
from errors import InvalidArgumentError, InvalidCredentialsError, UsernameTakenError
from models import ROLE_ADMIN, ROLE_BORROWER, User
from utils.validators import TextValidator

logger = logging.getLogger(__name__)

_HASH_ITERATIONS = 120_000


def hash_password(password: str, salt: Optional[bytes] = None) -> str:
    salt = salt or os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, _HASH_ITERATIONS)
    return f"{salt.hex()}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    salt_hex, _, digest_hex = stored.partition("$")
    expected = hash_password(password, bytes.fromhex(salt_hex)).partition("$")[2]
    return hmac.compare_digest(expected, digest_hex)


class IdentityStore:
    """User records for the auth layer in front of the ledger.

    The ledger itself only reads usernames from here for its display joins.
    Password hashes never leave this class.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def create(self, username: str, password: str, full_name: str, role: str = ROLE_BORROWER) -> User:
        """Insert a user unless the username is already taken."""
        username = TextValidator.validate_username(username)
        full_name = TextValidator.require(full_name, "full name")
        if not password:
            raise InvalidArgumentError("password cannot be empty.")
        if role not in (ROLE_ADMIN, ROLE_BORROWER):
            raise InvalidArgumentError(f"Unknown role: {role}")
        if self.find_by_username(username) is not None:
            raise UsernameTakenError(f"Username {username} already exists.")
        try:
            cursor = self.conn.execute(
                "INSERT INTO users (username, password_hash, role, full_name) VALUES (?, ?, ?, ?)",
                (username, hash_password(password), role, full_name),
            )
        except sqlite3.IntegrityError as e:
            raise UsernameTakenError(f"Username {username} already exists.") from e
        return User(id=cursor.lastrowid, username=username, role=role, full_name=full_name)

    def authenticate(self, username: str, password: str) -> User:
        row = self.conn.execute(
            "SELECT id, username, role, full_name, password_hash FROM users WHERE username = ?",
            ((username or "").strip(),),
        ).fetchone()
        if row is None or not verify_password(password or "", row["password_hash"]):
            raise InvalidCredentialsError("Invalid credentials")
        return User.from_row(row)

    def find_by_username(self, username: str) -> Optional[User]:
        row = self.conn.execute(
            "SELECT id, username, role, full_name FROM users WHERE username = ?", (username,)
        ).fetchone()
        return User.from_row(row) if row else None

    def get(self, user_id: int) -> Optional[User]:
        row = self.conn.execute(
            "SELECT id, username, role, full_name FROM users WHERE id = ?", (user_id,)
        ).fetchone()
        return User.from_row(row) if row else None

    def list(self) -> List[User]:
        rows = self.conn.execute("SELECT id, username, role, full_name FROM users ORDER BY id").fetchall()
        return [User.from_row(row) for row in rows]


class AccountService:
    """Login and registration on the ledger's database file.

    Opens a connection per call, the same way the ledger does.
    """

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    def authenticate(self, username: str, password: str) -> User:
        conn = get_db_connection(self.db_file)
        try:
            return IdentityStore(conn).authenticate(username, password)
        finally:
            conn.close()

    def register(self, username: str, password: str, full_name: str) -> User:
        """Create a borrower account; raises UsernameTakenError on a clash."""
        conn = get_db_connection(self.db_file)
        try:
            with transaction(conn):
                user = IdentityStore(conn).create(username, password, full_name)
        finally:
            conn.close()
        logger.info("User registered | user_id=%s username=%s", user.id, user.username)
        return user

    def get_user(self, user_id: int) -> Optional[User]:
        conn = get_db_connection(self.db_file)
        try:
            return IdentityStore(conn).get(user_id)
        finally:
            conn.close()
