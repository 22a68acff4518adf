"""
Enum Utilities for Status Fields

STANDARD:
━━━━━━━━━
• Database: VARCHAR(50) via SQLAlchemy Enum(native_enum=False)
• SQLAlchemy: Mapped[<StrEnum>] so status comparisons are type-checked
• Pydantic: the same Python Enum for API validation
• Case: All enum values stored in UPPERCASE

INPUT (API Request):
    "weekly" → normalize_to_uppercase → "WEEKLY" → PayoutFrequency.WEEKLY

OUTPUT (API Response):
    PayoutStatus.COMPLETED → "COMPLETED"
"""

from enum import Enum
from typing import Any, Optional, TypeVar, Type, Set

T = TypeVar('T', bound=Enum)


def to_enum(value: Any, enum_class: Type[T]) -> Optional[T]:
    """
    Convert a string value to an enum instance, None if not a member.

    Examples:
        >>> to_enum("FLAT", RateType)
        RateType.FLAT
        >>> to_enum("INVALID", RateType)
        None
    """
    if value is None:
        return None
    if isinstance(value, enum_class):
        return value
    try:
        return enum_class(value)
    except (ValueError, KeyError):
        return None


def enum_values(enum_class: Type[Enum]) -> Set[str]:
    """All values of an enum class."""
    return {e.value for e in enum_class}


def enum_comment(enum_class: Type[Enum]) -> str:
    """
    Generate a comment string for a status column.

    Examples:
        >>> enum_comment(PayoutFrequency)
        'DAILY, WEEKLY, MONTHLY'
    """
    return ", ".join(e.value for e in enum_class)


# =============================================================================
# CASE NORMALIZATION FOR PYDANTIC SCHEMAS
# =============================================================================


def normalize_to_uppercase(value: Any, valid_values: Set[str]) -> Any:
    """
    Normalize a string value to UPPERCASE if it's a valid enum value.

    Returns the original value otherwise so Pydantic raises the
    validation error.

    Examples:
        >>> normalize_to_uppercase('weekly', {'DAILY', 'WEEKLY'})
        'WEEKLY'
        >>> normalize_to_uppercase('yearly', {'DAILY', 'WEEKLY'})
        'yearly'
    """
    if value is None:
        return value
    if isinstance(value, str):
        upper_v = value.strip().upper()
        if upper_v in valid_values:
            return upper_v
    return value


def create_uppercase_validator(field_name: str, valid_values: Set[str]) -> classmethod:
    """
    Create a Pydantic field_validator that normalizes values to UPPERCASE.

    Usage:
        class MySchema(BaseModel):
            frequency: PayoutFrequency

            _normalize_frequency = create_uppercase_validator('frequency', VALID_PAYOUT_FREQUENCIES)
    """
    from pydantic import field_validator

    @field_validator(field_name, mode='before')
    @classmethod
    def validate(cls, v):
        return normalize_to_uppercase(v, valid_values)

    return validate
