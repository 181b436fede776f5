"""Storage backends for AppState."""

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
    StoreEventKind,
    StoreListener,
    Subscription,
    SubscriptionFailed,
)
from ledesc.services.storage.local import (
    FileLocalStorage,
    LocalStateStore,
    LocalStorageKeys,
)
from ledesc.services.storage.firestore import (
    FirestoreStateStore,
    create_firestore_client,
)

__all__ = [
    "DuplicateError",
    "FileLocalStorage",
    "FirestoreStateStore",
    "LocalStateStore",
    "LocalStorageKeys",
    "MerchantsSnapshot",
    "NotFoundError",
    "PurchasesSnapshot",
    "SettingsSnapshot",
    "StateStore",
    "StorageConnectionError",
    "StorageError",
    "StoragePermissionError",
    "StoreDetachedError",
    "StoreEvent",
    "StoreEventKind",
    "StoreListener",
    "Subscription",
    "SubscriptionFailed",
    "create_firestore_client",
]
