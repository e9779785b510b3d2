"""
Input validators -- checks applied to user text where it enters the engine.

The HTTP models already bound field sizes; these run again inside the state
machine so the CLI and direct library callers get the same rules.
"""

import logging

logger = logging.getLogger(__name__)


class ValidationError(ValueError):
    """User input was rejected. The message is safe to show to the user."""


def validate_not_empty(value: str, field_name: str = "input") -> str:
    """Reject None, empty and whitespace-only strings. Returns the stripped value."""
    if not value or not value.strip():
        raise ValidationError(f"{field_name} cannot be empty")
    return value.strip()


def validate_length(
    value: str,
    field_name: str = "input",
    min_length: int = 0,
    max_length: int = 10_000,
) -> str:
    if len(value) < min_length:
        raise ValidationError(f"{field_name} must be at least {min_length} characters")
    if len(value) > max_length:
        logger.info(f"[Validators] {field_name} rejected: {len(value)} chars")
        raise ValidationError(f"{field_name} must be at most {max_length} characters")
    return value
