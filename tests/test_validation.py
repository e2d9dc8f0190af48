"""
Tests for form validation.

Test strategy:
- Entry form: every field error reported together
- Amount parsing with Indian thousands separators
- Credential checks and provider error mapping
"""

from decimal import Decimal

import pytest

from src.models.transaction import NewTransactionForm, PaymentMode
from src.validation import (
    CredentialValidationError,
    TransactionValidator,
    clean_amount,
    describe_auth_error,
    validate_email,
    validate_password,
)


class TestCleanAmount:
    """Tests for clean_amount."""

    def test_separators_stripped(self):
        """Test lakh-style separators are removed."""
        assert clean_amount("1,25,000.50") == Decimal("125000.50")

    @pytest.mark.parametrize("raw", ["", "   ", "abc", "12..5", "NaN", "Infinity"])
    def test_invalid_amounts(self, raw):
        """Test non-numbers parse to None."""
        assert clean_amount(raw) is None


class TestTransactionValidator:
    """Tests for TransactionValidator."""

    @pytest.fixture
    def validator(self):
        return TransactionValidator()

    def test_empty_form_reports_all_errors(self, validator):
        """Test missing amount, source and reference are reported at once."""
        form = NewTransactionForm(payment_mode=PaymentMode.UPI)
        errors = {e.field: e.message for e in validator.check(form)}
        assert errors == {
            "amount": "Valid settlement value required",
            "source": "Entity source required",
            "reference_id": "Network UTR/Ref ID required",
        }

    def test_cash_needs_no_reference(self, validator):
        """Test cash entries skip the reference check."""
        form = NewTransactionForm(amount="500", payment_mode=PaymentMode.CASH, source="Shop")
        assert validator.check(form) == []

    def test_negative_amount_rejected(self, validator):
        """Test amounts must be above zero."""
        form = NewTransactionForm(amount="-5", payment_mode=PaymentMode.CASH, source="Shop")
        assert [e.field for e in validator.check(form)] == ["amount"]

    def test_validate_builds_transaction(self, validator):
        """Test a valid form becomes a normalised transaction."""
        form = NewTransactionForm(
            amount="2,500",
            payment_mode=PaymentMode.BANK,
            source="  Acme Traders ",
            reference_id=" neft-991 ",
        )
        transaction, errors = validator.validate(form, created_by="admin-1")
        assert errors == []
        assert transaction.amount == Decimal("2500")
        assert transaction.source == "Acme Traders"
        assert transaction.reference_id == "NEFT-991"
        assert transaction.created_by == "admin-1"

    def test_validate_cash_ignores_typed_reference(self, validator):
        """Test a reference typed for cash is not stored."""
        form = NewTransactionForm(
            amount="10", payment_mode=PaymentMode.CASH, source="Shop", reference_id="X1"
        )
        transaction, _ = validator.validate(form, created_by="admin-1")
        assert transaction.reference_id is None

    def test_validate_returns_errors(self, validator):
        """Test invalid forms return no transaction."""
        transaction, errors = validator.validate(NewTransactionForm(), created_by="admin-1")
        assert transaction is None
        assert len(errors) == 2


class TestCredentials:
    """Tests for credential checks."""

    def test_valid_email_trimmed(self):
        """Test surrounding whitespace is removed."""
        assert validate_email("  a@b.co ") == "a@b.co"

    @pytest.mark.parametrize("email", ["", "plain", "a@b", "a b@c.d"])
    def test_invalid_email(self, email):
        """Test malformed addresses are rejected."""
        with pytest.raises(CredentialValidationError) as exc:
            validate_email(email)
        assert exc.value.field == "email"

    def test_password_length_bounds(self):
        """Test 6 to 72 characters are accepted."""
        assert validate_password("secret") == "secret"
        with pytest.raises(CredentialValidationError, match="at least 6"):
            validate_password("12345")
        with pytest.raises(CredentialValidationError, match="less than 72"):
            validate_password("x" * 73)

    def test_credential_error_is_value_error(self):
        """Test callers can catch it as ValueError."""
        with pytest.raises(ValueError):
            validate_password("")


class TestDescribeAuthError:
    """Tests for provider error mapping."""

    def test_known_messages_mapped(self):
        """Test provider messages become readable text."""
        assert describe_auth_error("Invalid login credentials") == "Invalid email or password."
        assert "confirm your email" in describe_auth_error("Email not confirmed")

    def test_unknown_message_passed_through(self):
        """Test other messages are shown as-is."""
        assert describe_auth_error("Something odd") == "Something odd"

    def test_empty_message(self):
        """Test a generic fallback for empty errors."""
        assert describe_auth_error("") == "Authentication failed."
        assert describe_auth_error(None) == "Authentication failed."


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
