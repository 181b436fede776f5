"""
Cloud Firestore Storage Implementation

DESIGN DECISION: Firestore is the cloud backend because:
1. Live listeners push every change, including changes from other devices
2. Per-user subcollections keep one user's data isolated
3. Batched writes give an all-or-nothing restore

TRADEOFFS:
- No optimistic updates: state only changes when a snapshot arrives
- Last write wins per document; there is no conflict resolution
- Listener callbacks arrive on background threads and must be handed
  to the event loop before they touch any state

Layout per identity:
    users/{uid}/settings/current
    users/{uid}/purchases/{purchaseId}    (listened ordered by date desc)
    users/{uid}/merchants/{merchantId}    (listened ordered by name asc)
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

from google.api_core import exceptions as gexc
from google.cloud import firestore
from google.oauth2 import service_account
from pydantic import ValidationError

from ledesc.config import get_settings
from ledesc.models.benefit import (
    BenefitSettings,
    Merchant,
    PersistenceMode,
    Purchase,
    merchant_key,
)
from ledesc.notifications import get_logger
from ledesc.services.storage.interface import (
    DuplicateError,
    MerchantsSnapshot,
    NotFoundError,
    PurchasesSnapshot,
    SettingsSnapshot,
    StateStore,
    StorageConnectionError,
    StorageError,
    StoragePermissionError,
    StoreDetachedError,
    StoreEvent,
    StoreListener,
    Subscription,
    SubscriptionFailed,
)


SETTINGS_COLLECTION = "settings"
SETTINGS_DOCUMENT = "current"
PURCHASES_COLLECTION = "purchases"
MERCHANTS_COLLECTION = "merchants"

Dispatcher = Callable[[Callable[[], None]], None]


def create_firestore_client() -> firestore.Client:
    """
    Build a Firestore client from settings.

    Uses the service account file when configured, application default
    credentials otherwise.
    """
    settings = get_settings().firestore
    credentials = None
    if settings.credentials_path:
        credentials = service_account.Credentials.from_service_account_file(
            settings.credentials_path
        )
    return firestore.Client(project=settings.project_id, credentials=credentials)


def to_document(value: Any) -> Any:
    """Firestore stores floats, not Decimals."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {k: to_document(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_document(v) for v in value]
    return value


def from_document(data: Optional[dict[str, Any]]) -> dict[str, Any]:
    """
    Undo the timestamp conversion of a stored document.

    Dates are wall-clock times without a timezone. The client writes such a
    value as if it were UTC and reads it back as an aware UTC timestamp, so
    converting to UTC and dropping the tzinfo returns exactly what was saved.
    """
    def convert(value: Any) -> Any:
        if isinstance(value, datetime) and value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        if isinstance(value, dict):
            return {k: convert(v) for k, v in value.items()}
        if isinstance(value, list):
            return [convert(v) for v in value]
        return value

    return convert(data or {})


def _record_data(model: Purchase | Merchant) -> dict[str, Any]:
    """Document body for a record; the id lives in the document path."""
    return to_document(model.model_dump(by_alias=True, exclude={"id"}))


def _settings_data(settings: BenefitSettings) -> dict[str, Any]:
    return to_document(settings.model_dump(by_alias=True))


class FirestoreStateStore(StateStore):
    """
    StateStore backed by one user's Firestore subtree.

    All blocking client calls run in a worker thread and carry an explicit
    timeout. Errors from the client are mapped onto the storage exceptions.
    """

    mode = PersistenceMode.CLOUD

    def __init__(
        self,
        client: Any,
        uid: str,
        root_collection: Optional[str] = None,
        timeout: Optional[float] = None,
        dispatcher: Optional[Dispatcher] = None,
    ):
        settings = get_settings()
        self._client = client
        self._uid = uid
        self._timeout = timeout if timeout is not None else settings.app.remote_timeout_seconds
        self._dispatcher = dispatcher
        self._logger = get_logger("ledesc.storage.firestore").bind(uid=uid)
        self._subscription: Optional[Subscription] = None
        self._closed = False

        user_doc = client.collection(root_collection or settings.firestore.root_collection).document(uid)
        self._settings_ref = user_doc.collection(SETTINGS_COLLECTION).document(SETTINGS_DOCUMENT)
        self._purchases_ref = user_doc.collection(PURCHASES_COLLECTION)
        self._merchants_ref = user_doc.collection(MERCHANTS_COLLECTION)

    # -- helpers -----------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise StoreDetachedError(f"Cloud store for {self._uid} is closed")

    async def _call(self, operation: str, fn: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking client call off the loop and translate its errors."""
        try:
            return await asyncio.to_thread(fn, *args)
        except (gexc.PermissionDenied, gexc.Unauthenticated) as e:
            self._logger.error("firestore_permission_denied", operation=operation, error=str(e))
            raise StoragePermissionError(f"Permission denied during {operation}: {e}") from e
        except gexc.NotFound as e:
            raise NotFoundError(f"Document not found during {operation}: {e}") from e
        except (gexc.DeadlineExceeded, gexc.ServiceUnavailable, gexc.RetryError) as e:
            self._logger.error("firestore_unreachable", operation=operation, error=str(e))
            raise StorageConnectionError(f"Firestore unreachable during {operation}: {e}") from e
        except gexc.GoogleAPICallError as e:
            self._logger.error("firestore_call_failed", operation=operation, error=str(e))
            raise StorageError(f"Firestore call failed during {operation}: {e}") from e

    def _decode_records(self, docs: list[Any], model: type) -> list[Any]:
        records = []
        for doc in docs:
            try:
                records.append(model.model_validate({**from_document(doc.to_dict()), "id": doc.id}))
            except ValidationError as e:
                self._logger.warning(
                    "firestore_document_skipped",
                    model=model.__name__,
                    document_id=doc.id,
                    error=str(e),
                )
        return records

    def _decode_settings(self, docs: list[Any]) -> BenefitSettings:
        doc = docs[0] if docs else None
        if doc is None or not doc.exists:
            return BenefitSettings()
        try:
            return BenefitSettings.model_validate(from_document(doc.to_dict()))
        except ValidationError as e:
            self._logger.warning("firestore_settings_invalid", error=str(e))
            return BenefitSettings()

    # -- StateStore --------------------------------------------------------

    def new_purchase_id(self) -> str:
        return self._purchases_ref.document().id

    def new_merchant_id(self) -> str:
        return self._merchants_ref.document().id

    async def subscribe(self, listener: StoreListener, generation: int) -> Subscription:
        self._ensure_open()
        if self._subscription is not None:
            self._subscription.unsubscribe()

        subscription = Subscription(generation)
        self._subscription = subscription

        # A single read up front tells us whether listening can work at all.
        try:
            await self._call("subscribe", lambda: self._settings_ref.get(timeout=self._timeout))
        except StorageError as e:
            subscription.unsubscribe()
            listener(SubscriptionFailed(
                generation=generation,
                error_message=str(e),
                permission_denied=isinstance(e, StoragePermissionError),
            ))
            return subscription

        dispatch = self._dispatcher
        if dispatch is None:
            loop = asyncio.get_running_loop()
            dispatch = loop.call_soon_threadsafe

        def deliver(build: Callable[[], StoreEvent]) -> None:
            # Runs on a Firestore thread.
            if not subscription.active:
                return
            event = build()

            def apply() -> None:
                if subscription.active:
                    listener(event)

            dispatch(apply)

        def on_settings(docs, changes, read_time) -> None:
            deliver(lambda: SettingsSnapshot(
                generation=generation,
                settings=self._decode_settings(docs),
            ))

        def on_purchases(docs, changes, read_time) -> None:
            deliver(lambda: PurchasesSnapshot(
                generation=generation,
                purchases=self._decode_records(docs, Purchase),
            ))

        def on_merchants(docs, changes, read_time) -> None:
            deliver(lambda: MerchantsSnapshot(
                generation=generation,
                merchants=self._decode_records(docs, Merchant),
            ))

        watches = [
            self._settings_ref.on_snapshot(on_settings),
            self._purchases_ref.order_by(
                "date", direction=firestore.Query.DESCENDING
            ).on_snapshot(on_purchases),
            self._merchants_ref.order_by(
                "name", direction=firestore.Query.ASCENDING
            ).on_snapshot(on_merchants),
        ]
        for watch in watches:
            subscription.add(watch.unsubscribe)

        self._logger.info("firestore_listeners_attached", generation=generation)
        return subscription

    async def add_purchase(self, purchase: Purchase, merchant: Optional[Merchant] = None) -> None:
        self._ensure_open()
        batch = self._client.batch()
        batch.set(self._purchases_ref.document(purchase.id), _record_data(purchase))
        if merchant is not None:
            batch.set(self._merchants_ref.document(merchant.id), _record_data(merchant))
        await self._call("add_purchase", lambda: batch.commit(timeout=self._timeout))
        self._logger.info("purchase_written", purchase_id=purchase.id, with_merchant=merchant is not None)

    async def update_purchase(self, purchase: Purchase) -> None:
        self._ensure_open()
        ref = self._purchases_ref.document(purchase.id)
        await self._call(
            "update_purchase",
            lambda: ref.update(_record_data(purchase), timeout=self._timeout),
        )
        self._logger.info("purchase_updated", purchase_id=purchase.id)

    async def delete_purchase(self, purchase_id: str) -> bool:
        self._ensure_open()
        ref = self._purchases_ref.document(purchase_id)
        snapshot = await self._call("delete_purchase", lambda: ref.get(timeout=self._timeout))
        if not snapshot.exists:
            return False
        await self._call("delete_purchase", lambda: ref.delete(timeout=self._timeout))
        self._logger.info("purchase_deleted", purchase_id=purchase_id)
        return True

    async def save_settings(self, settings: BenefitSettings) -> None:
        self._ensure_open()
        await self._call(
            "save_settings",
            lambda: self._settings_ref.set(_settings_data(settings), timeout=self._timeout),
        )

    async def add_merchant(self, merchant: Merchant) -> None:
        self._ensure_open()
        docs = await self._call(
            "add_merchant",
            lambda: list(self._merchants_ref.stream(timeout=self._timeout)),
        )
        key = merchant.key
        for doc in docs:
            data = doc.to_dict() or {}
            if merchant_key(data.get("name", ""), data.get("location")) == key:
                raise DuplicateError(f"Merchant already exists: {merchant.name}")
        await self._call(
            "add_merchant",
            lambda: self._merchants_ref.document(merchant.id).set(
                _record_data(merchant), timeout=self._timeout
            ),
        )

    async def replace_all(self, purchases: list[Purchase], merchants: list[Merchant]) -> None:
        """Delete both collections and write the new records in one batch."""
        self._ensure_open()

        def read_existing() -> tuple[list[Any], list[Any]]:
            return (
                list(self._purchases_ref.stream(timeout=self._timeout)),
                list(self._merchants_ref.stream(timeout=self._timeout)),
            )

        old_purchases, old_merchants = await self._call("replace_all", read_existing)

        batch = self._client.batch()
        for doc in [*old_purchases, *old_merchants]:
            batch.delete(doc.reference)
        for purchase in purchases:
            batch.set(self._purchases_ref.document(purchase.id), _record_data(purchase))
        for merchant in merchants:
            batch.set(self._merchants_ref.document(merchant.id), _record_data(merchant))

        await self._call("replace_all", lambda: batch.commit(timeout=self._timeout))
        self._logger.info(
            "collections_replaced",
            deleted=len(old_purchases) + len(old_merchants),
            purchases=len(purchases),
            merchants=len(merchants),
        )

    async def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self._closed = True
        self._logger.info("firestore_listeners_detached")
