class LendingError(Exception):
    """Base exception for lending ledger errors."""

    code = "lending_error"


class NotFoundError(LendingError, LookupError):
    """Referenced book or issue id does not exist."""

    code = "not_found"


class InvalidArgumentError(LendingError, ValueError):
    """Malformed creation or update input."""

    code = "invalid_argument"


class InvariantViolationError(LendingError):
    """A change would drive ``available`` outside ``[0, quantity]``."""

    code = "invariant_violation"


class OutOfStockError(LendingError):
    """Issue attempted with zero available copies."""

    code = "out_of_stock"


class DuplicateLoanError(LendingError):
    """User already holds an active loan of the book."""

    code = "duplicate_loan"


class BookInUseError(LendingError):
    """Delete attempted while loans of the book are outstanding."""

    code = "book_in_use"


class AlreadyReturnedError(LendingError):
    """Return attempted on a record that is already closed."""

    code = "already_returned"


class InvalidCredentialsError(LendingError):
    code = "invalid_credentials"


class UsernameTakenError(LendingError):
    code = "username_taken"
