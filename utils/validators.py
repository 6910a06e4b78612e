import re
from typing import Any, Optional

from errors import InvalidArgumentError

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{3,32}$")


class TextValidator:
    """Basic text checks for catalog and user fields."""

    @staticmethod
    def clean(text: Optional[str]) -> str:
        if text is None:
            return ""
        return " ".join(str(text).split())

    @staticmethod
    def require(text: Optional[str], field: str) -> str:
        """Return the trimmed text, or raise if nothing is left."""
        cleaned = TextValidator.clean(text)
        if not cleaned:
            raise InvalidArgumentError(f"{field} cannot be empty.")
        return cleaned

    @staticmethod
    def validate_username(username: Optional[str]) -> str:
        cleaned = (username or "").strip()
        if not USERNAME_PATTERN.match(cleaned):
            raise InvalidArgumentError(
                "username must be 3-32 characters of letters, digits, '.', '_' or '-'."
            )
        return cleaned


class QuantityValidator:
    @staticmethod
    def validate_quantity(quantity: Any) -> int:
        # bool is an int subclass; True is not a quantity
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise InvalidArgumentError("quantity must be an integer.")
        if quantity < 1:
            raise InvalidArgumentError("quantity must be at least 1.")
        return quantity
