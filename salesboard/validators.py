"""
Input validation functions for query parameters.

All validators raise ValidationError on invalid input, except
validate_period which falls back to all-time for unknown names.
"""

from typing import Optional

from salesboard.config import config
from salesboard.exceptions import ValidationError
from salesboard.models import Period


# Sort keys accepted by the invoice listing, mapped to store columns
SORT_KEYS = {
    "invoiceDate": "invoice_date",
    "invoice_date": "invoice_date",
    "date": "invoice_date",
    "creationDate": "created_at",
    "created": "created_at",
    "createdAt": "created_at",
    "created_at": "created_at",
}
DEFAULT_SORT_KEY = "invoiceDate"

MIN_YEAR = 2000
MAX_YEAR = 2100


def validate_page(value: int, field: str = "page") -> int:
    """
    Validate a 1-based page number.

    Raises:
        ValidationError: If page is not a positive integer
    """
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(field, "Must be an integer", value)

    if value < 1:
        raise ValidationError(field, "Must be at least 1", value)

    return value


def validate_page_size(
    value: int,
    field: str = "page_size",
    max_value: int = None,
    allow_all: bool = True
) -> int:
    """
    Validate a page size.

    Args:
        value: Page size to validate
        field: Field name for error messages
        max_value: Maximum allowed value (defaults to config)
        allow_all: Whether the all-records sentinel (-1) is accepted

    Returns:
        Validated page size

    Raises:
        ValidationError: If page size is out of range
    """
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(field, "Must be an integer", value)

    if allow_all and value == config.query.all_records:
        return value

    max_value = max_value or config.query.max_page_size

    if value < 1:
        raise ValidationError(field, "Must be at least 1", value)

    if value > max_value:
        raise ValidationError(field, f"Cannot exceed {max_value}", value)

    return value


def validate_sort_key(value: Optional[str], field: str = "sort_by") -> str:
    """
    Validate an invoice sort key and return the store column it maps to.

    Raises:
        ValidationError: If the sort key is unknown
    """
    if value is None or value == "":
        return SORT_KEYS[DEFAULT_SORT_KEY]

    if not isinstance(value, str):
        raise ValidationError(field, "Must be a string", value)

    column = SORT_KEYS.get(value.strip())
    if column is None:
        raise ValidationError(
            field,
            f"Must be one of: {', '.join(sorted(SORT_KEYS))}",
            value
        )
    return column


def validate_currency(value: Optional[str], field: str = "currency") -> Optional[str]:
    """
    Validate an optional currency filter. "All" means no filter.

    Returns:
        Upper-cased currency code or None

    Raises:
        ValidationError: If currency is not supported
    """
    if value is None or value == "":
        return None

    if not isinstance(value, str):
        raise ValidationError(field, "Must be a string", value)

    code = value.strip().upper()
    if code == "ALL":
        return None
    if code not in config.currency.supported:
        raise ValidationError(
            field,
            f"Must be one of: {', '.join(sorted(config.currency.supported))}",
            value
        )
    return code


def validate_period(value: Optional[str]) -> Period:
    """Parse a period; unrecognized values mean all-time."""
    return Period.parse(value)


def validate_year(value: Optional[int], field: str = "year") -> int:
    """
    Validate a year filter. 0 or None means current year.

    Raises:
        ValidationError: If year is out of range
    """
    if value is None or value == 0:
        return 0

    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(field, "Must be an integer", value)

    if not MIN_YEAR <= value <= MAX_YEAR:
        raise ValidationError(field, f"Must be between {MIN_YEAR} and {MAX_YEAR}", value)

    return value


def validate_month(value: Optional[int], field: str = "month") -> int:
    """
    Validate a month filter. 0 or None means current month.

    Raises:
        ValidationError: If month is not 1-12
    """
    if value is None or value == 0:
        return 0

    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(field, "Must be an integer", value)

    if not 1 <= value <= 12:
        raise ValidationError(field, "Must be between 1 and 12", value)

    return value


def validate_quarter(value: Optional[int], field: str = "quarter") -> int:
    """
    Validate a quarter filter. 0 or None means current quarter.

    Raises:
        ValidationError: If quarter is not 1-4
    """
    if value is None or value == 0:
        return 0

    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(field, "Must be an integer", value)

    if not 1 <= value <= 4:
        raise ValidationError(field, "Must be between 1 and 4", value)

    return value

