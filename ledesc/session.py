"""
Benefit Session

This module is the state manager. It ties together the store, the state
container, the backup services and the notifier, and defines every
operation the UI can trigger.

DESIGN DECISION: The session enforces the boundaries:
- Exactly one store is active; it is picked once per identity and
  swapped as a whole on sign-in / sign-out
- State only changes through store events, so local and cloud behave
  the same from the UI's point of view
- No operation raises into the UI: failures become notifications

Persistence modes:
    no identity -> LocalStateStore   (files on this machine)
    identity    -> FirestoreStateStore (live listeners on the user's data)
"""

import asyncio
import functools
import json
from datetime import date, datetime
from functools import lru_cache
from typing import Any, Callable, Optional

from pydantic import ValidationError

from ledesc.finance import calculate_discount
from ledesc.models.benefit import (
    AppState,
    BenefitSettings,
    ContactMessage,
    ExportFile,
    Identity,
    ImportReport,
    Merchant,
    MerchantDraft,
    PersistenceMode,
    Purchase,
    PurchaseDraft,
)
from ledesc.models.notification import NotificationBuilder
from ledesc.notifications import NotificationInbox, Notifier, get_logger
from ledesc.services.backup import (
    BackupError,
    DriveAuthError,
    DriveBackupService,
    DriveFileNotFoundError,
    DriveRestoreResult,
    SheetsBackupService,
    WorkbookFormatError,
    export_csv,
    export_workbook,
    import_workbook,
)
from ledesc.services.mail import ContactRelay, ContactResult
from ledesc.services.storage import (
    DuplicateError,
    FirestoreStateStore,
    LocalStateStore,
    NotFoundError,
    StateStore,
    StorageConnectionError,
    StoragePermissionError,
    StoreEvent,
    Subscription,
    SubscriptionFailed,
    create_firestore_client,
)
from ledesc.state import (
    StateContainer,
    crossed_alert_threshold,
    evaluate_end_of_month_reminder,
)
from ledesc.validation import FormValidator

# Same debounce the web version used before pushing changes to Drive.
AUTO_BACKUP_DELAY_SECONDS = 2.5

StoreFactory = Callable[[Optional[Identity]], StateStore]


class StateNotReadyError(Exception):
    """An operation needs state that has not finished loading."""
    pass


@lru_cache()
def _shared_firestore_client():
    return create_firestore_client()


def default_store_factory(identity: Optional[Identity]) -> StateStore:
    if identity is None:
        return LocalStateStore()
    return FirestoreStateStore(_shared_firestore_client(), identity.uid)


def guarded(operation: str):
    """
    Session boundary for an async operation.

    Anything the operation raises is logged and turned into a notification;
    the caller gets None instead of an exception.
    """
    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(self: "BenefitSession", *args, **kwargs):
            try:
                return await fn(self, *args, **kwargs)
            except StateNotReadyError:
                self._notifier.notify(NotificationBuilder.state_not_ready())
            except DriveAuthError as e:
                self._logger.warning("reauthentication_required", operation=operation, error=str(e))
                self._notifier.notify(NotificationBuilder.reauthentication_required(str(e)))
            except (StorageConnectionError, StoragePermissionError) as e:
                self._logger.error("remote_store_failed", operation=operation, error=str(e))
                self._notifier.notify(NotificationBuilder.sync_error(str(e)))
            except Exception as e:
                self._logger.exception("operation_failed", operation=operation, error=str(e))
                self._notifier.notify(NotificationBuilder.unexpected_failure(operation, str(e)))
            return None
        return wrapper
    return decorator


class BenefitSession:
    """
    One user's session with the benefit tracker.

    Usage:
        session = create_session(inbox)
        await session.start()                 # local mode
        await session.add_purchase(draft)
        await session.sign_in(identity)       # switches to cloud mode
    """

    def __init__(
        self,
        store_factory: StoreFactory = default_store_factory,
        notifier: Optional[Notifier] = None,
        container: Optional[StateContainer] = None,
        drive: Optional[DriveBackupService] = None,
        sheets: Optional[SheetsBackupService] = None,
        contact_relay: Optional[ContactRelay] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._store_factory = store_factory
        self._notifier = notifier or Notifier()
        self._container = container or StateContainer()
        self._drive = drive or DriveBackupService()
        self._sheets = sheets or SheetsBackupService()
        self._contact_relay = contact_relay or ContactRelay()
        self._clock = clock
        self._logger = get_logger("ledesc.session")

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._identity: Optional[Identity] = None
        self._store: Optional[StateStore] = None
        self._subscription: Optional[Subscription] = None
        self._unobserve: Optional[Callable[[], None]] = None

        self._reminder_handle: Optional[asyncio.Handle] = None
        self._reminder_shown_for: Optional[str] = None
        self._auto_backup_handle: Optional[asyncio.TimerHandle] = None
        self._tasks: set[asyncio.Task] = set()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def state(self) -> AppState:
        return self._container.state

    @property
    def container(self) -> StateContainer:
        return self._container

    @property
    def notifier(self) -> Notifier:
        return self._notifier

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def mode(self) -> PersistenceMode:
        return PersistenceMode.CLOUD if self._identity else PersistenceMode.LOCAL

    @property
    def is_ready(self) -> bool:
        return self._store is not None and self._container.is_ready

    @property
    def error(self) -> Optional[str]:
        return self._container.error

    def validator(self) -> FormValidator:
        """Form validator bound to the current settings."""
        return FormValidator(self.state.settings)

    def _today(self) -> date:
        return self._clock().date()

    # =========================================================================
    # LIFECYCLE / PERSISTENCE MODE
    # =========================================================================

    async def start(self, identity: Optional[Identity] = None) -> None:
        """Attach to the event loop and load state for the given identity."""
        self._loop = asyncio.get_running_loop()
        if self._unobserve is None:
            self._unobserve = self._container.subscribe(self._on_state_change)
        await self._switch(identity)

    async def sign_in(self, identity: Identity) -> None:
        """Local -> Cloud. The local store is detached and cloud listeners attached."""
        await self._switch(identity)

    async def sign_out(self) -> None:
        """Cloud -> Local. Every listener is torn down before local state reloads."""
        await self._switch(None)

    def update_access_token(self, access_token: str, expires_at: Optional[datetime] = None) -> None:
        """Swap in a refreshed OAuth token without touching the store."""
        if self._identity is None:
            return
        self._identity = self._identity.model_copy(
            update={"access_token": access_token, "token_expires_at": expires_at}
        )

    async def _detach(self) -> None:
        self._cancel_timers()
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        if self._store is not None:
            await self._store.close()
            self._store = None

    async def _switch(self, identity: Optional[Identity]) -> None:
        await self._detach()
        self._identity = identity
        self._reminder_shown_for = None
        generation = self._container.reset()

        mode = PersistenceMode.CLOUD if identity else PersistenceMode.LOCAL
        log = self._logger.bind(generation=generation, mode=mode.value)
        try:
            store = self._store_factory(identity)
            self._store = store
            self._subscription = await store.subscribe(self._on_store_event, generation)
        except Exception as e:
            # Reported like any other broken subscription: container error plus banner.
            log.exception("store_attach_failed", error=str(e))
            self._on_store_event(SubscriptionFailed(generation=generation, error_message=str(e)))
            return
        log.info("store_attached", uid=identity.uid if identity else None)

    async def close(self) -> None:
        await self._detach()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._unobserve is not None:
            self._unobserve()
            self._unobserve = None

    # =========================================================================
    # EVENTS AND DEFERRED WORK
    # =========================================================================

    def _on_store_event(self, event: StoreEvent) -> None:
        applied = self._container.apply(event)
        if applied and isinstance(event, SubscriptionFailed):
            self._notifier.notify(NotificationBuilder.sync_error(event.error_message))

    def _on_state_change(self, state: AppState) -> None:
        if self._container.is_ready and state.settings.enable_end_of_month_reminder:
            self._schedule_reminder_check()

    def _spawn(self, coro) -> asyncio.Task:
        task = self._loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _schedule_reminder_check(self) -> None:
        """Defer one reminder check to the next loop iteration."""
        if self._loop is None or self._reminder_handle is not None:
            return
        self._reminder_handle = self._loop.call_soon(self._run_reminder_check)

    def _run_reminder_check(self) -> None:
        self._reminder_handle = None
        self._spawn(self.check_end_of_month_reminder())

    def _schedule_auto_backup(self) -> None:
        identity = self._identity
        if (
            self._loop is None
            or identity is None
            or not self.state.settings.auto_backup_to_drive
            or not identity.has_valid_token()
        ):
            return
        if self._auto_backup_handle is not None:
            self._auto_backup_handle.cancel()
        self._auto_backup_handle = self._loop.call_later(
            AUTO_BACKUP_DELAY_SECONDS,
            lambda: self._spawn(self.backup_to_drive(auto=True)),
        )

    def _cancel_timers(self) -> None:
        for handle in (self._reminder_handle, self._auto_backup_handle):
            if handle is not None:
                handle.cancel()
        self._reminder_handle = None
        self._auto_backup_handle = None

    def _after_mutation(self) -> None:
        self._schedule_auto_backup()

    def _require_store(self) -> StateStore:
        if self._store is None or not self._container.is_ready:
            raise StateNotReadyError("State is still loading")
        return self._store

    def _require_identity(self) -> Identity:
        if self._identity is None:
            raise DriveAuthError("Debes iniciar sesión con Google para usar Google Drive.")
        return self._identity

    @guarded("mostrar el recordatorio de fin de mes")
    async def check_end_of_month_reminder(self) -> bool:
        """
        Show the end-of-month reminder if it is due.

        The in-memory guard stops a second firing while the marker write
        is still on its way back from the store.
        """
        if self._store is None or not self._container.is_ready:
            return False
        settings = self.state.settings
        decision = evaluate_end_of_month_reminder(settings, self.state.purchases, self._today())
        if not decision.should_remind or self._reminder_shown_for == decision.month:
            return False

        self._reminder_shown_for = decision.month
        self._notifier.notify(NotificationBuilder.end_of_month_reminder(
            decision.remaining_balance,
            decision.days_remaining,
        ))
        await self._store.save_settings(
            settings.merged(last_end_of_month_reminder_shown_for_month=decision.month)
        )
        return True

    # =========================================================================
    # PURCHASES, MERCHANTS, SETTINGS
    # =========================================================================

    @guarded("guardar la compra")
    async def add_purchase(self, draft: PurchaseDraft) -> Optional[Purchase]:
        """
        Record a purchase, creating its merchant if the (name, location)
        pair has not been seen before.
        """
        store = self._require_store()
        state = self.state
        breakdown = calculate_discount(draft.amount, state.settings.discount_percentage)

        merchant = None
        if state.find_merchant(draft.merchant_name, draft.merchant_location) is None:
            merchant = Merchant(
                id=store.new_merchant_id(),
                name=draft.merchant_name,
                location=draft.merchant_location,
            )

        purchase = Purchase(
            id=store.new_purchase_id(),
            amount=breakdown.amount,
            date=draft.date,
            merchant_name=draft.merchant_name,
            merchant_location=draft.merchant_location,
            description=draft.description,
            receipt_image_url=draft.receipt_image_url,
            discount_applied=breakdown.discount_applied,
            final_amount=breakdown.final_amount,
        )
        before = list(state.purchases)

        await store.add_purchase(purchase, merchant)
        self._logger.info(
            "purchase_added",
            purchase_id=purchase.id,
            new_merchant=merchant is not None,
            mode=store.mode.value,
        )
        self._notifier.notify(NotificationBuilder.purchase_added(
            purchase.merchant_name, purchase.final_amount
        ))

        crossed = crossed_alert_threshold(
            state.settings, before, [*before, purchase], self._today()
        )
        if crossed is not None:
            self._notifier.notify(NotificationBuilder.allowance_threshold_reached(
                crossed, state.settings.alert_threshold_percentage
            ))

        self._after_mutation()
        return purchase

    @guarded("actualizar la compra")
    async def edit_purchase(self, purchase_id: str, draft: PurchaseDraft) -> Optional[Purchase]:
        """
        Replace a purchase's fields. The discount is recomputed with the
        current discount percentage, not the one in force at creation.
        """
        store = self._require_store()
        existing = self.state.find_purchase(purchase_id)
        if existing is None:
            raise NotFoundError(f"Purchase not found: {purchase_id}")

        breakdown = calculate_discount(draft.amount, self.state.settings.discount_percentage)
        updated = Purchase(
            id=existing.id,
            amount=breakdown.amount,
            date=draft.date,
            merchant_name=draft.merchant_name,
            merchant_location=draft.merchant_location,
            description=draft.description,
            receipt_image_url=draft.receipt_image_url or existing.receipt_image_url,
            discount_applied=breakdown.discount_applied,
            final_amount=breakdown.final_amount,
        )
        await store.update_purchase(updated)
        self._notifier.notify(NotificationBuilder.purchase_updated(purchase_id))
        self._after_mutation()
        return updated

    @guarded("eliminar la compra")
    async def delete_purchase(self, purchase_id: str) -> Optional[bool]:
        store = self._require_store()
        deleted = await store.delete_purchase(purchase_id)
        if deleted:
            self._notifier.notify(NotificationBuilder.purchase_deleted(purchase_id))
            self._after_mutation()
        else:
            self._logger.warning("purchase_delete_missing", purchase_id=purchase_id)
        return deleted

    @guarded("guardar la configuración")
    async def update_settings(self, changes: dict[str, Any]) -> Optional[BenefitSettings]:
        """Merge changes into the current settings and write the whole record."""
        store = self._require_store()
        merged = self.state.settings.merged(**changes)
        await store.save_settings(merged)
        self._notifier.notify(NotificationBuilder.settings_updated())
        self._after_mutation()
        return merged

    @guarded("agregar el comercio")
    async def add_merchant(self, draft: MerchantDraft) -> Optional[Merchant]:
        store = self._require_store()
        if self.state.find_merchant(draft.name, draft.location) is not None:
            self._notifier.notify(NotificationBuilder.merchant_duplicate(draft.name, draft.location))
            return None

        merchant = Merchant(id=store.new_merchant_id(), name=draft.name, location=draft.location)
        try:
            await store.add_merchant(merchant)
        except DuplicateError:
            self._notifier.notify(NotificationBuilder.merchant_duplicate(draft.name, draft.location))
            return None

        self._notifier.notify(NotificationBuilder.merchant_added(merchant.name))
        self._after_mutation()
        return merchant

    # =========================================================================
    # EXPORT / IMPORT
    # =========================================================================

    @guarded("exportar a CSV")
    async def export_csv(self) -> Optional[ExportFile]:
        purchases = self.state.purchases
        export = export_csv(purchases, self._clock())
        if export is None:
            self._notifier.notify(NotificationBuilder.export_empty())
            return None
        self._notifier.notify(NotificationBuilder.csv_exported(export.filename, len(purchases)))
        return export

    @guarded("exportar a Excel")
    async def export_workbook(self) -> Optional[ExportFile]:
        store = self._require_store()
        now = self._clock()
        state = self.state
        export = await asyncio.to_thread(
            export_workbook, state.purchases, state.merchants, now, state.settings
        )
        await store.save_settings(state.settings.merged(last_backup_timestamp=now))
        self._notifier.notify(NotificationBuilder.workbook_exported(export.filename))
        return export

    @guarded("restaurar desde Excel")
    async def restore_workbook(self, data: bytes) -> Optional[ImportReport]:
        """
        Replace all purchases and merchants with the workbook's contents.

        Destructive: nothing is merged. Settings are replaced too when the
        workbook carries a valid settings sheet. A workbook without both
        record sheets changes nothing.
        """
        store = self._require_store()
        try:
            report = await asyncio.to_thread(import_workbook, data, self._clock())
        except WorkbookFormatError as e:
            self._notifier.notify(NotificationBuilder.restore_failed(str(e)))
            return None

        await store.replace_all(report.purchases, report.merchants)
        if report.settings is not None:
            await store.save_settings(report.settings)
        self._logger.info(
            "workbook_restored",
            purchases=len(report.purchases),
            merchants=len(report.merchants),
            settings_restored=report.settings is not None,
            issues=len(report.issues),
        )
        self._notifier.notify(NotificationBuilder.restore_completed(
            len(report.purchases), len(report.merchants), len(report.warnings)
        ))
        self._after_mutation()
        return report

    # =========================================================================
    # GOOGLE DRIVE / SHEETS
    # =========================================================================

    @guarded("sincronizar con Google Drive")
    async def backup_to_drive(self, auto: bool = False) -> Optional[str]:
        store = self._require_store()
        identity = self._require_identity()
        now = self._clock()
        state = self.state
        try:
            file_id = await asyncio.to_thread(self._drive.backup, identity, state, now)
        except DriveAuthError:
            raise
        except BackupError as e:
            self._notifier.notify(NotificationBuilder.backup_failed("Google Drive", str(e)))
            return None

        await store.save_settings(self.state.settings.merged(last_backup_timestamp=now))
        if auto:
            self._logger.info("auto_backup_completed", file_id=file_id)
        else:
            self._notifier.notify(NotificationBuilder.drive_backup_completed(file_id))
        return file_id

    def _parse_drive_backup(
        self, result: DriveRestoreResult
    ) -> tuple[list[Purchase], list[Merchant], BenefitSettings]:
        purchases = []
        for item in json.loads(result.purchases_data):
            try:
                purchases.append(Purchase.model_validate(item))
            except ValidationError as e:
                self._logger.warning("drive_purchase_skipped", error=str(e))

        merchants = []
        for item in json.loads(result.merchants_data):
            try:
                merchants.append(Merchant.model_validate(item))
            except ValidationError as e:
                self._logger.warning("drive_merchant_skipped", error=str(e))

        try:
            settings = BenefitSettings.model_validate(json.loads(result.settings_data))
        except ValidationError as e:
            self._logger.warning("drive_settings_invalid", error=str(e))
            settings = self.state.settings

        return purchases, merchants, settings

    @guarded("restaurar desde Google Drive")
    async def restore_from_drive(self) -> Optional[bool]:
        """Replace purchases, merchants and settings with the Drive backup."""
        store = self._require_store()
        identity = self._require_identity()
        try:
            result = await asyncio.to_thread(self._drive.restore, identity)
        except DriveFileNotFoundError as e:
            self._notifier.notify(NotificationBuilder.restore_failed(str(e)))
            return False
        except DriveAuthError:
            raise
        except BackupError as e:
            self._notifier.notify(NotificationBuilder.backup_failed("Google Drive", str(e)))
            return False

        purchases, merchants, settings = self._parse_drive_backup(result)
        await store.replace_all(purchases, merchants)
        await store.save_settings(settings)
        self._logger.info(
            "drive_restored",
            purchases=len(purchases),
            merchants=len(merchants),
        )
        self._notifier.notify(NotificationBuilder.drive_restore_completed())
        return True

    @guarded("respaldar en Google Sheets")
    async def backup_to_sheets(self) -> Optional[str]:
        self._require_store()
        identity = self._require_identity()
        try:
            url = await asyncio.to_thread(self._sheets.backup, identity, self.state, self._clock())
        except DriveAuthError:
            raise
        except BackupError as e:
            self._notifier.notify(NotificationBuilder.backup_failed("Google Sheets", str(e)))
            return None
        self._notifier.notify(NotificationBuilder.sheets_backup_completed(url))
        return url

    # =========================================================================
    # CONTACT
    # =========================================================================

    @guarded("enviar el mensaje")
    async def send_contact(self, message: ContactMessage) -> Optional[ContactResult]:
        result = await asyncio.to_thread(self._contact_relay.send, message)
        if result.success:
            self._notifier.notify(NotificationBuilder.contact_sent(message.reason.value))
        else:
            self._notifier.notify(NotificationBuilder.contact_failed(result.message))
        return result


def create_session(
    inbox: Optional[NotificationInbox] = None,
    **kwargs: Any,
) -> BenefitSession:
    """
    Build a session whose notifications land in `inbox`.

    Extra keyword arguments are passed to BenefitSession.
    """
    notifier = Notifier([inbox] if inbox is not None else [])
    return BenefitSession(notifier=notifier, **kwargs)
