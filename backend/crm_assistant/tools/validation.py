import re
from typing import Any, Dict, Iterable, List, Optional

from ..errors import ValidationError

CANONICAL_ID_PATTERN = re.compile(
    r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$',
    re.IGNORECASE
)

# Same shape, unanchored, for pulling an identifier out of free text
CANONICAL_ID_SEARCH = re.compile(
    r'[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}',
    re.IGNORECASE
)


def is_canonical_id(value: Any) -> bool:
    return isinstance(value, str) and bool(CANONICAL_ID_PATTERN.match(value))


def require_canonical_id(value: Any, label: str, hint: Optional[str] = None) -> str:
    """Reject anything that is not a UUID-shaped identifier.

    Args:
        value: Identifier supplied by the model or the user
        label: Field name shown in the error, e.g. ``contact_id``
        hint: Extra guidance appended to the error message

    Returns:
        The identifier, unchanged
    """
    if not value:
        raise ValidationError(f"A {label} is required for this operation.")

    if not is_canonical_id(value):
        message = f"Invalid {label} format: '{value}'. A {label} must be a UUID such as 123e4567-e89b-12d3-a456-426614174000."
        if hint:
            message = f"{message} {hint}"
        raise ValidationError(message)

    return value


def compact(data: Optional[Dict[str, Any]], allowed_fields: Optional[Iterable[str]] = None) -> Dict[str, Any]:
    """Drop null and empty-string values, optionally keeping only known fields."""
    if not data:
        return {}

    allowed = set(allowed_fields) if allowed_fields is not None else None
    return {
        k: v for k, v in data.items()
        if v is not None and v != "" and (allowed is None or k in allowed)
    }


def missing_fields(data: Dict[str, Any], required: Iterable[str]) -> List[str]:
    return [field for field in required if data.get(field) in (None, "")]


def require_fields(data: Dict[str, Any], required: Iterable[str], entity: str) -> None:
    missing = missing_fields(data, required)
    if missing:
        raise ValidationError(f"Missing required {entity} fields: {', '.join(missing)}")
