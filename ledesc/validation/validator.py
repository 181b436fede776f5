"""
Form Validation

Forms are validated in two stages, the same way for every form:

STAGE 1 - SCHEMA VALIDATION:
- Types, required fields, lengths and ranges
- Driven by the pydantic draft models
- Errors are reported per field, in Spanish, for inline display

STAGE 2 - SEMANTIC VALIDATION (purchases only):
- Purchase dated in the future
- Purchase larger than the whole monthly allowance
- These are warnings; the user may still submit

IMPORTANT: Validation NEVER silently fixes input.
It reports issues and lets the form show them next to the field.
"""

from datetime import datetime, timedelta
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, Field, ValidationError

from ledesc.models.benefit import (
    BenefitSettings,
    ContactMessage,
    MerchantDraft,
    PurchaseDraft,
    ValidationIssue,
)

T = TypeVar("T", bound=BaseModel)

# Field-level messages shown next to the input, keyed by (form, field).
FIELD_MESSAGES: dict[tuple[str, str], str] = {
    ("purchase", "amount"): "El monto debe ser mayor a 0.",
    ("purchase", "date"): "La fecha es requerida.",
    ("purchase", "merchant_name"): "El nombre del comercio es requerido (máximo 100 caracteres).",
    ("purchase", "merchant_location"): "La ubicación del comercio no puede exceder los 150 caracteres.",
    ("purchase", "description"): "La descripción no puede exceder los 250 caracteres.",
    ("merchant", "name"): "El nombre del comercio es requerido (máximo 100 caracteres).",
    ("merchant", "location"): "La ubicación no puede exceder los 150 caracteres.",
    ("settings", "monthly_allowance"): "El beneficio mensual debe ser mayor a 0.",
    ("settings", "discount_percentage"): "El porcentaje debe estar entre 0 y 100.",
    ("settings", "alert_threshold_percentage"): "El umbral debe estar entre 0 y 100.",
    ("settings", "days_before_end_of_month_to_remind"): "Debe ser entre 1 y 15 días.",
    ("contact", "reason"): "Debes seleccionar un motivo.",
    ("contact", "email"): "Por favor, ingresa un email válido.",
    ("contact", "message"): "El mensaje debe tener entre 10 y 1000 caracteres.",
}

FUTURE_DATE_TOLERANCE = timedelta(days=1)


class FormResult(BaseModel, Generic[T]):
    """Outcome of validating one form submission."""

    value: Optional[T] = None
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.value is not None and not self.has_errors

    @property
    def has_errors(self) -> bool:
        return any(issue.severity == "error" for issue in self.issues)

    def errors_by_field(self) -> dict[str, str]:
        """First error per field, ready for inline display."""
        out: dict[str, str] = {}
        for issue in self.issues:
            if issue.severity == "error":
                out.setdefault(issue.field, issue.message)
        return out


def _schema_issues(form: str, exc: ValidationError) -> list[ValidationIssue]:
    issues = []
    seen = set()
    for error in exc.errors():
        loc = error.get("loc") or ("__root__",)
        field = str(loc[0])
        if field in seen:
            continue
        seen.add(field)
        issues.append(ValidationIssue(
            field=field,
            message=FIELD_MESSAGES.get((form, field), error.get("msg", "Valor inválido.")),
            severity="error",
        ))
    return issues


def _validate(form: str, model: type[T], data: dict[str, Any]) -> FormResult[T]:
    try:
        return FormResult[model](value=model.model_validate(data))
    except ValidationError as e:
        return FormResult[model](issues=_schema_issues(form, e))


class FormValidator:
    """
    Validates the purchase, merchant, settings and contact forms.

    Semantic purchase checks need the current settings; pass them in
    when available.
    """

    def __init__(self, settings: Optional[BenefitSettings] = None):
        self._settings = settings

    def _purchase_semantic_issues(
        self,
        draft: PurchaseDraft,
        now: Optional[datetime] = None,
    ) -> list[ValidationIssue]:
        issues = []
        now = now or datetime.now(draft.date.tzinfo)

        if draft.date > now + FUTURE_DATE_TOLERANCE:
            issues.append(ValidationIssue(
                field="date",
                message="La fecha de la compra está en el futuro.",
                severity="warning",
            ))

        if self._settings and draft.amount > self._settings.monthly_allowance:
            issues.append(ValidationIssue(
                field="amount",
                message="El monto supera el beneficio mensual completo.",
                severity="warning",
            ))

        return issues

    def validate_purchase(
        self,
        data: dict[str, Any],
        now: Optional[datetime] = None,
    ) -> FormResult[PurchaseDraft]:
        result = _validate("purchase", PurchaseDraft, data)
        if result.value is not None:
            result.issues.extend(self._purchase_semantic_issues(result.value, now))
        return result

    def validate_merchant(self, data: dict[str, Any]) -> FormResult[MerchantDraft]:
        return _validate("merchant", MerchantDraft, data)

    def validate_settings(self, data: dict[str, Any]) -> FormResult[BenefitSettings]:
        """Validate a settings form merged over the current settings."""
        base = self._settings.model_dump() if self._settings else {}
        base.update(data)
        return _validate("settings", BenefitSettings, base)

    def validate_contact(self, data: dict[str, Any]) -> FormResult[ContactMessage]:
        return _validate("contact", ContactMessage, data)

    @staticmethod
    def get_user_friendly_summary(result: FormResult) -> str:
        """One message summarizing a form result, for a toast."""
        if result.is_valid and not result.issues:
            return "✅ Todo listo."

        lines = []
        errors = [i for i in result.issues if i.severity == "error"]
        warnings = [i for i in result.issues if i.severity == "warning"]
        if errors:
            lines.append("❌ Revisa los siguientes campos:")
            lines.extend(f"   • {issue.message}" for issue in errors)
        if warnings:
            if lines:
                lines.append("")
            lines.append("⚠️ Verifica lo siguiente:")
            lines.extend(f"   • {issue.message}" for issue in warnings)
        return "\n".join(lines)
