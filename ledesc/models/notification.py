"""
Notification Models for LEDESC

Every user-visible outcome of the state manager is a Notification:
toasts for routine results, persistent banners for failures that the
user must not miss (a broken cloud subscription, an expired token).

DESIGN DECISION: Notifications are data, not UI calls. The session
publishes them; whichever front end is attached decides how to show them.
Messages are in Spanish because the product is.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class NotificationType(str, Enum):
    """Types of notifications the session can publish."""
    # Purchases and merchants
    PURCHASE_ADDED = "purchase_added"
    PURCHASE_UPDATED = "purchase_updated"
    PURCHASE_DELETED = "purchase_deleted"
    MERCHANT_ADDED = "merchant_added"
    MERCHANT_DUPLICATE = "merchant_duplicate"
    SETTINGS_UPDATED = "settings_updated"

    # Export / backup / restore
    EXPORT_EMPTY = "export_empty"
    CSV_EXPORTED = "csv_exported"
    WORKBOOK_EXPORTED = "workbook_exported"
    RESTORE_COMPLETED = "restore_completed"
    RESTORE_FAILED = "restore_failed"
    DRIVE_BACKUP_COMPLETED = "drive_backup_completed"
    DRIVE_RESTORE_COMPLETED = "drive_restore_completed"
    SHEETS_BACKUP_COMPLETED = "sheets_backup_completed"
    BACKUP_FAILED = "backup_failed"
    REAUTHENTICATION_REQUIRED = "reauthentication_required"

    # Reminders and alerts
    END_OF_MONTH_REMINDER = "end_of_month_reminder"
    ALLOWANCE_THRESHOLD_REACHED = "allowance_threshold_reached"

    # Sync
    SYNC_ERROR = "sync_error"
    STATE_NOT_READY = "state_not_ready"

    # Contact
    CONTACT_SENT = "contact_sent"
    CONTACT_FAILED = "contact_failed"

    # Catch-all
    UNEXPECTED_FAILURE = "unexpected_failure"


class NotificationSeverity(str, Enum):
    """Severity level, also used as the log level."""
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Notification(BaseModel):
    """
    A single user-visible message.

    Persistent notifications stay until dismissed; the rest auto-dismiss
    after duration_seconds.
    """

    notification_id: UUID = Field(default_factory=uuid4)
    created_at: datetime = Field(default_factory=datetime.now)

    notification_type: NotificationType
    severity: NotificationSeverity = NotificationSeverity.INFO

    title: str = Field(..., max_length=120)
    description: str = Field(..., max_length=1000)

    persistent: bool = False
    duration_seconds: Optional[float] = Field(default=4.0, gt=0)

    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "notification_id": str(self.notification_id),
            "created_at": self.created_at.isoformat(),
            "notification_type": self.notification_type.value,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "persistent": self.persistent,
            "details": self.details,
            "error_message": self.error_message,
        }


class NotificationBuilder:
    """
    Helper class to build notifications with common patterns.

    Usage:
        note = NotificationBuilder.purchase_added("Café Tortoni", Decimal("850.00"))
        note = NotificationBuilder.sync_error("permission denied")
    """

    @staticmethod
    def purchase_added(merchant_name: str, final_amount: Any) -> Notification:
        return Notification(
            notification_type=NotificationType.PURCHASE_ADDED,
            severity=NotificationSeverity.SUCCESS,
            title="Éxito",
            description=f"Compra en {merchant_name} registrada por ${final_amount}.",
            details={"merchant_name": merchant_name, "final_amount": str(final_amount)},
        )

    @staticmethod
    def purchase_updated(purchase_id: str) -> Notification:
        return Notification(
            notification_type=NotificationType.PURCHASE_UPDATED,
            severity=NotificationSeverity.SUCCESS,
            title="Compra Actualizada",
            description="Los cambios se guardaron correctamente.",
            details={"purchase_id": purchase_id},
        )

    @staticmethod
    def purchase_deleted(purchase_id: str) -> Notification:
        return Notification(
            notification_type=NotificationType.PURCHASE_DELETED,
            title="Compra Eliminada",
            description="La compra fue eliminada.",
            details={"purchase_id": purchase_id},
        )

    @staticmethod
    def merchant_added(name: str) -> Notification:
        return Notification(
            notification_type=NotificationType.MERCHANT_ADDED,
            severity=NotificationSeverity.SUCCESS,
            title="Comercio Agregado",
            description=f"{name} se agregó a tu lista de comercios.",
            details={"name": name},
        )

    @staticmethod
    def merchant_duplicate(name: str, location: Optional[str]) -> Notification:
        return Notification(
            notification_type=NotificationType.MERCHANT_DUPLICATE,
            severity=NotificationSeverity.ERROR,
            title="Comercio Duplicado",
            description="Este comercio ya existe.",
            details={"name": name, "location": location},
        )

    @staticmethod
    def settings_updated() -> Notification:
        return Notification(
            notification_type=NotificationType.SETTINGS_UPDATED,
            severity=NotificationSeverity.SUCCESS,
            title="Configuración Guardada",
            description="Tu configuración del beneficio fue actualizada.",
        )

    @staticmethod
    def export_empty() -> Notification:
        return Notification(
            notification_type=NotificationType.EXPORT_EMPTY,
            title="Sin Datos",
            description="No hay transacciones para exportar.",
        )

    @staticmethod
    def csv_exported(filename: str, rows: int) -> Notification:
        return Notification(
            notification_type=NotificationType.CSV_EXPORTED,
            severity=NotificationSeverity.SUCCESS,
            title="Exportación Exitosa",
            description="Datos exportados a CSV.",
            details={"filename": filename, "rows": rows},
        )

    @staticmethod
    def workbook_exported(filename: str) -> Notification:
        return Notification(
            notification_type=NotificationType.WORKBOOK_EXPORTED,
            severity=NotificationSeverity.SUCCESS,
            title="Backup Exitoso",
            description="Datos exportados a Excel.",
            details={"filename": filename},
        )

    @staticmethod
    def restore_completed(purchases: int, merchants: int, warnings: int) -> Notification:
        description = f"Se restauraron {purchases} compras y {merchants} comercios."
        if warnings:
            description += f" {warnings} valores no se pudieron leer y se completaron por defecto."
        return Notification(
            notification_type=NotificationType.RESTORE_COMPLETED,
            severity=NotificationSeverity.WARNING if warnings else NotificationSeverity.SUCCESS,
            title="Restauración Exitosa",
            description=description,
            details={"purchases": purchases, "merchants": merchants, "warnings": warnings},
        )

    @staticmethod
    def restore_failed(error_message: str) -> Notification:
        return Notification(
            notification_type=NotificationType.RESTORE_FAILED,
            severity=NotificationSeverity.ERROR,
            title="Error de Restauración",
            description=f"No se pudo restaurar: {error_message}",
            error_message=error_message,
            duration_seconds=10.0,
        )

    @staticmethod
    def drive_backup_completed(file_id: str) -> Notification:
        return Notification(
            notification_type=NotificationType.DRIVE_BACKUP_COMPLETED,
            severity=NotificationSeverity.SUCCESS,
            title="Sincronización Completa",
            description="Tus datos se guardaron en Google Drive.",
            details={"file_id": file_id},
        )

    @staticmethod
    def drive_restore_completed() -> Notification:
        return Notification(
            notification_type=NotificationType.DRIVE_RESTORE_COMPLETED,
            severity=NotificationSeverity.SUCCESS,
            title="Restauración Exitosa",
            description="Datos restaurados exitosamente desde Google Drive.",
        )

    @staticmethod
    def sheets_backup_completed(url: str) -> Notification:
        return Notification(
            notification_type=NotificationType.SHEETS_BACKUP_COMPLETED,
            severity=NotificationSeverity.SUCCESS,
            title="Backup en Google Sheets",
            description="Datos respaldados en una hoja de cálculo de Google.",
            details={"url": url},
        )

    @staticmethod
    def backup_failed(service: str, error_message: str) -> Notification:
        return Notification(
            notification_type=NotificationType.BACKUP_FAILED,
            severity=NotificationSeverity.ERROR,
            title="Fallo de Sincronización",
            description=f"No se pudo completar la operación con {service}: {error_message}",
            details={"service": service},
            error_message=error_message,
            duration_seconds=10.0,
        )

    @staticmethod
    def reauthentication_required(error_message: str) -> Notification:
        return Notification(
            notification_type=NotificationType.REAUTHENTICATION_REQUIRED,
            severity=NotificationSeverity.ERROR,
            title="Inicia Sesión Nuevamente",
            description=(
                "Tu sesión de Google expiró o no tiene permisos. "
                "Cierra sesión y vuelve a iniciarla con Google para continuar."
            ),
            persistent=True,
            duration_seconds=None,
            error_message=error_message,
        )

    @staticmethod
    def end_of_month_reminder(remaining_balance: Any, days_remaining: int) -> Notification:
        days = "día" if days_remaining == 1 else "días"
        return Notification(
            notification_type=NotificationType.END_OF_MONTH_REMINDER,
            severity=NotificationSeverity.WARNING,
            title="Recordatorio de Fin de Mes",
            description=(
                f"Te quedan ${remaining_balance} de tu beneficio y "
                f"{days_remaining} {days} para usarlo."
            ),
            duration_seconds=8.0,
            details={
                "remaining_balance": str(remaining_balance),
                "days_remaining": days_remaining,
            },
        )

    @staticmethod
    def allowance_threshold_reached(percentage_used: Any, threshold: Any) -> Notification:
        return Notification(
            notification_type=NotificationType.ALLOWANCE_THRESHOLD_REACHED,
            severity=NotificationSeverity.WARNING,
            title="Umbral de Alerta Alcanzado",
            description=f"Ya utilizaste el {percentage_used}% de tu beneficio mensual.",
            duration_seconds=8.0,
            details={"percentage_used": str(percentage_used), "threshold": str(threshold)},
        )

    @staticmethod
    def sync_error(error_message: str) -> Notification:
        return Notification(
            notification_type=NotificationType.SYNC_ERROR,
            severity=NotificationSeverity.ERROR,
            title="Error de Sincronización",
            description=(
                "No se pudo conectar con la base de datos en la nube: "
                f"{error_message}. Los datos mostrados pueden no estar actualizados."
            ),
            persistent=True,
            duration_seconds=None,
            error_message=error_message,
        )

    @staticmethod
    def state_not_ready() -> Notification:
        return Notification(
            notification_type=NotificationType.STATE_NOT_READY,
            title="Cargando Datos",
            description="Espera a que terminen de cargarse tus datos e intenta nuevamente.",
        )

    @staticmethod
    def contact_sent(reason: str) -> Notification:
        return Notification(
            notification_type=NotificationType.CONTACT_SENT,
            severity=NotificationSeverity.SUCCESS,
            title="Mensaje Enviado",
            description=f'Tu mensaje sobre "{reason}" ha sido enviado correctamente.',
        )

    @staticmethod
    def contact_failed(error_message: str) -> Notification:
        return Notification(
            notification_type=NotificationType.CONTACT_FAILED,
            severity=NotificationSeverity.ERROR,
            title="Error",
            description=error_message,
            error_message=error_message,
        )

    @staticmethod
    def unexpected_failure(operation: str, error_message: str) -> Notification:
        return Notification(
            notification_type=NotificationType.UNEXPECTED_FAILURE,
            severity=NotificationSeverity.ERROR,
            title="Error Inesperado",
            description=f"Ocurrió un error al {operation}. Intenta nuevamente.",
            details={"operation": operation},
            error_message=error_message,
        )
