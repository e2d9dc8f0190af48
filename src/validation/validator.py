"""
Form Validation

DESIGN DECISION: Raw form input is checked before anything reaches the
hosted backend:

ENTRY FORM:
- Amount: thousands separators stripped, must be a number above zero
- Source: required
- Reference id: required for every non-cash mode, stored upper-cased
- All field problems are reported together, one per field

CREDENTIALS:
- Email shape and password length are checked locally
- The provider still has the final say; its errors are mapped to
  readable messages

IMPORTANT: Validation NEVER silently fixes issues beyond the documented
normalisation (separator stripping, trimming, upper-casing references).
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Optional

from pydantic import ValidationError

from src.models.transaction import (
    FieldError,
    NewTransactionForm,
    PaymentMode,
    TransactionCreate,
)


EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

MIN_PASSWORD_LENGTH = 6
MAX_PASSWORD_LENGTH = 72

# Provider message fragment -> what we show
_AUTH_ERROR_MESSAGES = (
    ("Invalid login credentials", "Invalid email or password."),
    ("Email not confirmed", "Please confirm your email address before logging in."),
    ("User already registered", "This email is already registered. Please sign in."),
    ("Rate limit exceeded", "Too many requests. Please try again later."),
)


class CredentialValidationError(ValueError):
    """Credential input rejected before contacting the provider."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


def clean_amount(raw: str) -> Optional[Decimal]:
    """
    Parse a typed amount such as "1,25,000.50".

    Returns None when the text is not a finite number.
    """
    text = (raw or "").replace(",", "").strip()
    if not text:
        return None
    try:
        value = Decimal(text)
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return value


class TransactionValidator:
    """Turns entry-form input into an insertable transaction."""

    def check(self, form: NewTransactionForm) -> list[FieldError]:
        """Field problems in the form; empty when it can be submitted."""
        errors = []

        amount = clean_amount(form.amount)
        if amount is None or amount <= 0:
            errors.append(FieldError(
                field="amount",
                message="Valid settlement value required",
            ))

        if not form.source.strip():
            errors.append(FieldError(
                field="source",
                message="Entity source required",
            ))

        if form.payment_mode.needs_reference and not form.reference_id.strip():
            errors.append(FieldError(
                field="reference_id",
                message="Network UTR/Ref ID required",
            ))

        return errors

    def validate(
        self,
        form: NewTransactionForm,
        created_by: str,
    ) -> tuple[Optional[TransactionCreate], list[FieldError]]:
        """
        Validate the form and build the transaction.

        Args:
            form: Raw entry-form input
            created_by: Identity id of the signed-in user

        Returns:
            (transaction, []) when valid, (None, errors) otherwise
        """
        errors = self.check(form)
        if errors:
            return None, errors

        reference = None
        if form.payment_mode is not PaymentMode.CASH:
            reference = form.reference_id.strip()

        try:
            transaction = TransactionCreate(
                amount=clean_amount(form.amount),
                payment_mode=form.payment_mode,
                source=form.source.strip(),
                reference_id=reference,
                created_by=created_by,
            )
        except ValidationError as e:
            return None, [
                FieldError(
                    field=str(err["loc"][0]) if err["loc"] else "form",
                    message=err["msg"],
                )
                for err in e.errors()
            ]

        return transaction, []


def validate_email(email: str) -> str:
    """
    Return the trimmed email.

    Raises:
        CredentialValidationError: If it is not shaped like an address
    """
    email = (email or "").strip()
    if not EMAIL_PATTERN.match(email):
        raise CredentialValidationError("email", "Please enter a valid email address")
    return email


def validate_password(password: str) -> str:
    """
    Return the password unchanged.

    Raises:
        CredentialValidationError: If it is too short or too long
    """
    password = password or ""
    if len(password) < MIN_PASSWORD_LENGTH:
        raise CredentialValidationError(
            "password",
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
        )
    if len(password) > MAX_PASSWORD_LENGTH:
        raise CredentialValidationError(
            "password",
            f"Password must be less than {MAX_PASSWORD_LENGTH} characters",
        )
    return password


def describe_auth_error(message: Optional[str]) -> str:
    """Readable text for a provider error message."""
    if not message:
        return "Authentication failed."
    for fragment, friendly in _AUTH_ERROR_MESSAGES:
        if fragment in message:
            return friendly
    return message
