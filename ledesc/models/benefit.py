"""
Core Data Models for LEDESC

These models define the schemas for everything the state manager owns.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Serialize to the same camelCase JSON the web version of the app wrote
4. Keep money as Decimal end to end

DESIGN DECISION: Stored records (Purchase, Merchant) are permissive because
restores must accept whatever an old backup contains. Form inputs
(PurchaseDraft, MerchantDraft) carry the strict rules.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    field_validator,
)
from pydantic.alias_generators import to_camel


# Money and percentages are Decimal in Python and plain numbers in JSON.
Money = Annotated[
    Decimal,
    PlainSerializer(float, return_type=float, when_used="json"),
]
Percentage = Annotated[
    Decimal,
    Field(ge=0, le=100),
    PlainSerializer(float, return_type=float, when_used="json"),
]

MONTH_MARKER_PATTERN = r"^\d{4}-\d{2}$"


def _to_decimal(value: Any) -> Any:
    """Floats go through str() so 0.1 stays 0.1."""
    if isinstance(value, float):
        return Decimal(str(value))
    return value


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def merchant_key(name: str, location: Optional[str]) -> tuple[str, str]:
    """
    Uniqueness key for a merchant.

    Name and location are compared trimmed and case-insensitively.
    A missing location is the same as an empty one.
    """
    return (name or "").strip().lower(), (location or "").strip().lower()


class LedescModel(BaseModel):
    """Base model: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        loc_by_alias=False,
        str_strip_whitespace=True,
    )


# =============================================================================
# ENUMS
# =============================================================================

class PersistenceMode(str, Enum):
    """Where the live AppState comes from."""
    LOCAL = "local"
    CLOUD = "cloud"


class ContactReason(str, Enum):
    """Reasons offered by the contact form."""
    SUGGESTIONS = "sugerencias"
    BUGS = "errores"
    QUESTIONS = "consultas"


# =============================================================================
# STORED RECORDS
# =============================================================================

class Purchase(LedescModel):
    """
    A recorded purchase.

    discount_applied and final_amount are computed by the calculator when the
    purchase is created or edited, never partially updated afterwards.
    """

    id: str = Field(..., min_length=1)
    amount: Annotated[Money, Field(ge=0)]
    date: datetime
    merchant_name: str = ""
    merchant_location: Optional[str] = None
    description: Optional[str] = None
    receipt_image_url: Optional[str] = None
    discount_applied: Money = Decimal("0")
    final_amount: Annotated[Money, Field(ge=0)] = Decimal("0")

    @field_validator("amount", "discount_applied", "final_amount", mode="before")
    @classmethod
    def coerce_money(cls, v: Any) -> Any:
        return _to_decimal(v)

    @field_validator("merchant_location", "description", "receipt_image_url", mode="before")
    @classmethod
    def blank_optional_text(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @property
    def merchant_key(self) -> tuple[str, str]:
        return merchant_key(self.merchant_name, self.merchant_location)


class Merchant(LedescModel):
    """A place where purchases happen. Unique by (name, location)."""

    id: str = Field(..., min_length=1)
    name: str = ""
    location: Optional[str] = None

    @field_validator("location", mode="before")
    @classmethod
    def blank_location(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @property
    def key(self) -> tuple[str, str]:
        return merchant_key(self.name, self.location)


class BenefitSettings(LedescModel):
    """
    The benefit configuration. Exactly one per user.

    The storage layer always writes the whole record; callers merge
    partial changes with merged() first.
    """

    monthly_allowance: Annotated[Money, Field(gt=0)] = Decimal("68500")
    discount_percentage: Percentage = Decimal("70")
    alert_threshold_percentage: Percentage = Decimal("80")

    enable_weekly_reminders: bool = False
    enable_end_of_month_reminder: bool = False
    days_before_end_of_month_to_remind: int = Field(default=3, ge=1, le=15)
    auto_backup_to_drive: bool = False

    last_end_of_month_reminder_shown_for_month: Optional[str] = Field(
        default=None,
        pattern=MONTH_MARKER_PATTERN,
        description="YYYY-MM of the last month the reminder fired",
    )
    last_local_save_timestamp: Optional[datetime] = None
    last_backup_timestamp: Optional[datetime] = None

    @field_validator(
        "monthly_allowance",
        "discount_percentage",
        "alert_threshold_percentage",
        mode="before",
    )
    @classmethod
    def coerce_numbers(cls, v: Any) -> Any:
        return _to_decimal(v)

    @field_validator("last_local_save_timestamp", "last_backup_timestamp", mode="before")
    @classmethod
    def from_epoch_millis(cls, v: Any) -> Any:
        """The web version stored these as epoch milliseconds, 0 meaning never."""
        if isinstance(v, bool):
            return v
        if isinstance(v, (int, float)):
            return datetime.fromtimestamp(v / 1000) if v > 0 else None
        return v

    @field_validator("last_end_of_month_reminder_shown_for_month", mode="before")
    @classmethod
    def blank_month(cls, v: Any) -> Any:
        return _blank_to_none(v)

    def merged(self, **changes: Any) -> "BenefitSettings":
        """Return a validated copy with the given fields replaced."""
        data = self.model_dump()
        data.update(changes)
        return BenefitSettings.model_validate(data)


class AppState(LedescModel):
    """
    Everything the UI renders: one settings record, purchases, merchants.

    Purchases are kept newest first, merchants by name.
    """

    settings: BenefitSettings = Field(default_factory=BenefitSettings)
    purchases: list[Purchase] = Field(default_factory=list)
    merchants: list[Merchant] = Field(default_factory=list)

    def find_merchant(self, name: str, location: Optional[str]) -> Optional[Merchant]:
        key = merchant_key(name, location)
        for merchant in self.merchants:
            if merchant.key == key:
                return merchant
        return None

    def find_purchase(self, purchase_id: str) -> Optional[Purchase]:
        for purchase in self.purchases:
            if purchase.id == purchase_id:
                return purchase
        return None


def sort_purchases(purchases: list[Purchase]) -> list[Purchase]:
    """Newest first. timestamp() handles naive and aware datetimes alike."""
    return sorted(purchases, key=lambda p: p.date.timestamp(), reverse=True)


def sort_merchants(merchants: list[Merchant]) -> list[Merchant]:
    return sorted(merchants, key=lambda m: (m.name.lower(), (m.location or "").lower()))


# =============================================================================
# IDENTITY
# =============================================================================

class Identity(BaseModel):
    """
    A signed-in user.

    The OAuth access token is only needed for Drive and Sheets backups;
    the remote document store is reached with server credentials.
    """

    uid: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    display_name: Optional[str] = None
    access_token: Optional[str] = None
    token_expires_at: Optional[datetime] = None

    def has_valid_token(self, now: Optional[datetime] = None) -> bool:
        if not self.access_token:
            return False
        if self.token_expires_at is None:
            return True
        now = now or datetime.now(self.token_expires_at.tzinfo)
        return now < self.token_expires_at


# =============================================================================
# FORM INPUTS
# =============================================================================

class PurchaseDraft(LedescModel):
    """What the purchase form submits. Strict rules live here."""

    amount: Decimal = Field(..., ge=Decimal("0.01"))
    date: datetime = Field(default_factory=datetime.now)
    merchant_name: str = Field(..., min_length=1, max_length=100)
    merchant_location: Optional[str] = Field(default=None, max_length=150)
    description: Optional[str] = Field(default=None, max_length=250)
    receipt_image_url: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> Any:
        return _to_decimal(v)

    @field_validator("merchant_location", "description", "receipt_image_url", mode="before")
    @classmethod
    def blank_optional_text(cls, v: Any) -> Any:
        return _blank_to_none(v)


class MerchantDraft(LedescModel):
    """What the add-merchant form submits."""

    name: str = Field(..., min_length=1, max_length=100)
    location: Optional[str] = Field(default=None, max_length=150)

    @field_validator("location", mode="before")
    @classmethod
    def blank_location(cls, v: Any) -> Any:
        return _blank_to_none(v)


class ContactMessage(LedescModel):
    """What the contact form submits."""

    reason: ContactReason
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    message: str = Field(..., min_length=10, max_length=1000)


# =============================================================================
# VALIDATION / IMPORT / EXPORT
# =============================================================================

class ValidationIssue(BaseModel):
    """A single problem with a form field or an imported cell."""

    field: str = Field(..., description="Field with the issue")
    message: str = Field(..., description="Human-readable description")
    severity: str = Field(
        default="error",
        pattern="^(error|warning|info)$",
    )


class ImportIssue(ValidationIssue):
    """A validation issue tied to a workbook row (1-based, header is row 1)."""

    sheet: str
    row: int = Field(..., ge=1)


class ImportReport(BaseModel):
    """Records parsed from a workbook plus everything that had to be defaulted."""

    purchases: list[Purchase] = Field(default_factory=list)
    merchants: list[Merchant] = Field(default_factory=list)
    settings: Optional[BenefitSettings] = None
    issues: list[ImportIssue] = Field(default_factory=list)

    @property
    def warnings(self) -> list[ImportIssue]:
        return [issue for issue in self.issues if issue.severity == "warning"]

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)


class ExportFile(BaseModel):
    """A generated file ready to be handed to the user as a download."""

    filename: str
    content: bytes
    mime_type: str
