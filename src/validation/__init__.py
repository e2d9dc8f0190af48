"""Form validation package."""

from src.validation.validator import (
    EMAIL_PATTERN,
    CredentialValidationError,
    TransactionValidator,
    clean_amount,
    describe_auth_error,
    validate_email,
    validate_password,
)

__all__ = [
    "EMAIL_PATTERN",
    "CredentialValidationError",
    "TransactionValidator",
    "clean_amount",
    "describe_auth_error",
    "validate_email",
    "validate_password",
]
