"""Tests for form validation."""

from datetime import datetime, timedelta
from decimal import Decimal

from ledesc.models.benefit import BenefitSettings, ContactReason
from ledesc.validation import FormValidator


class TestPurchaseForm:
    """Tests for the purchase form."""

    def test_valid_purchase(self):
        """Test that a complete form validates."""
        result = FormValidator().validate_purchase({
            "amount": "1500",
            "date": datetime(2025, 3, 10, 13, 0),
            "merchant_name": "Café",
        })
        assert result.is_valid
        assert result.value.amount == Decimal("1500")

    def test_errors_are_reported_per_field(self):
        """Test that each invalid field gets its own Spanish message."""
        result = FormValidator().validate_purchase({"amount": "0", "merchant_name": ""})
        errors = result.errors_by_field()

        assert not result.is_valid
        assert errors["amount"] == "El monto debe ser mayor a 0."
        assert "merchant_name" in errors

    def test_semantic_warnings_do_not_block(self):
        """Test future date and over-allowance warnings."""
        now = datetime(2025, 3, 10, 12, 0)
        validator = FormValidator(BenefitSettings(monthly_allowance=Decimal("1000")))
        result = validator.validate_purchase(
            {"amount": "5000", "date": now + timedelta(days=3), "merchant_name": "Bar"},
            now=now,
        )

        assert result.is_valid
        assert {issue.field for issue in result.issues} == {"date", "amount"}
        assert all(issue.severity == "warning" for issue in result.issues)


class TestOtherForms:
    """Tests for merchant, settings and contact forms."""

    def test_merchant_requires_name(self):
        result = FormValidator().validate_merchant({"name": "  ", "location": "Centro"})
        assert not result.is_valid
        assert "name" in result.errors_by_field()

    def test_settings_merge_over_current(self):
        """Test that a partial settings form keeps the other values."""
        current = BenefitSettings(monthly_allowance=Decimal("90000"))
        result = FormValidator(current).validate_settings({"discount_percentage": "50"})

        assert result.is_valid
        assert result.value.monthly_allowance == Decimal("90000")
        assert result.value.discount_percentage == Decimal("50")

    def test_settings_out_of_range(self):
        result = FormValidator().validate_settings({"days_before_end_of_month_to_remind": 20})
        assert result.errors_by_field() == {
            "days_before_end_of_month_to_remind": "Debe ser entre 1 y 15 días.",
        }

    def test_contact_form(self):
        """Test contact form email and message rules."""
        validator = FormValidator()
        ok = validator.validate_contact({
            "reason": ContactReason.QUESTIONS,
            "email": "ana@example.com",
            "message": "¿Cómo cambio el porcentaje?",
        })
        bad = validator.validate_contact({"reason": "consultas", "email": "ana", "message": "hola"})

        assert ok.is_valid
        assert set(bad.errors_by_field()) == {"email", "message"}

    def test_user_friendly_summary(self):
        """Test the toast summary text."""
        result = FormValidator().validate_merchant({"name": ""})
        summary = FormValidator.get_user_friendly_summary(result)
        assert summary.startswith("❌ Revisa los siguientes campos:")
