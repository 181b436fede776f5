"""
Data Models Package

This package contains all Pydantic models used in LEDESC.
All data flowing through the state manager must conform to these schemas.
"""

from ledesc.models.benefit import (
    AppState,
    BenefitSettings,
    ContactMessage,
    ContactReason,
    ExportFile,
    Identity,
    ImportIssue,
    ImportReport,
    Merchant,
    MerchantDraft,
    PersistenceMode,
    Purchase,
    PurchaseDraft,
    ValidationIssue,
    merchant_key,
    sort_merchants,
    sort_purchases,
)
from ledesc.models.notification import (
    Notification,
    NotificationBuilder,
    NotificationSeverity,
    NotificationType,
)

__all__ = [
    # Benefit models
    "AppState",
    "BenefitSettings",
    "ContactMessage",
    "ContactReason",
    "ExportFile",
    "Identity",
    "ImportIssue",
    "ImportReport",
    "Merchant",
    "MerchantDraft",
    "PersistenceMode",
    "Purchase",
    "PurchaseDraft",
    "ValidationIssue",
    "merchant_key",
    "sort_merchants",
    "sort_purchases",
    # Notification models
    "Notification",
    "NotificationBuilder",
    "NotificationSeverity",
    "NotificationType",
]
