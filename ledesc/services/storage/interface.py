"""
Abstract Storage Interface

DESIGN DECISION: We define one interface for both places state can live.
This allows us to:
1. Pick local-only or cloud storage once per identity, not per call
2. Swap backends atomically on sign-in / sign-out
3. Use in-process fakes for testing
4. Keep the session decoupled from Firestore and the filesystem

Stores never hand state back from mutation calls. They publish snapshot
events to the listener registered with subscribe(); that stream is the only
way state reaches the container, for both backends.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel

from ledesc.models.benefit import (
    BenefitSettings,
    Merchant,
    PersistenceMode,
    Purchase,
)


# =============================================================================
# EVENTS
# =============================================================================

class StoreEventKind(str, Enum):
    SETTINGS = "settings"
    PURCHASES = "purchases"
    MERCHANTS = "merchants"
    FAILURE = "failure"


class StoreEvent(BaseModel):
    """
    Base for everything a store publishes.

    generation identifies the subscription the event belongs to; the
    container drops events whose generation is not the current one.
    """

    generation: int
    kind: StoreEventKind


class SettingsSnapshot(StoreEvent):
    kind: StoreEventKind = StoreEventKind.SETTINGS
    settings: BenefitSettings


class PurchasesSnapshot(StoreEvent):
    """The full purchases collection as of this event."""

    kind: StoreEventKind = StoreEventKind.PURCHASES
    purchases: list[Purchase]


class MerchantsSnapshot(StoreEvent):
    """The full merchants collection as of this event."""

    kind: StoreEventKind = StoreEventKind.MERCHANTS
    merchants: list[Merchant]


class SubscriptionFailed(StoreEvent):
    """The live subscription could not be established or broke."""

    kind: StoreEventKind = StoreEventKind.FAILURE
    error_message: str
    permission_denied: bool = False


StoreListener = Callable[[StoreEvent], None]


class Subscription:
    """
    Handle for a set of live listeners.

    unsubscribe() tears down every listener it holds and is idempotent.
    """

    def __init__(self, generation: int, cancels: Optional[list[Callable[[], None]]] = None):
        self.generation = generation
        self._cancels: list[Callable[[], None]] = list(cancels or [])
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def add(self, cancel: Callable[[], None]) -> None:
        self._cancels.append(cancel)

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        cancels, self._cancels = self._cancels, []
        for cancel in cancels:
            cancel()


# =============================================================================
# STORE INTERFACE
# =============================================================================

class StateStore(ABC):
    """
    Abstract interface for where AppState lives.

    Any backend (local files, Firestore, ...) must implement these methods.
    Mutations return nothing: their effect arrives through the listener.
    """

    mode: PersistenceMode

    @abstractmethod
    def new_purchase_id(self) -> str:
        """Generate an id for a purchase that is about to be written."""
        pass

    @abstractmethod
    def new_merchant_id(self) -> str:
        pass

    @abstractmethod
    async def subscribe(self, listener: StoreListener, generation: int) -> Subscription:
        """
        Start publishing snapshots of settings, purchases and merchants.

        Args:
            listener: Called with every StoreEvent
            generation: Stamped on every event this subscription publishes

        Returns:
            A Subscription whose unsubscribe() stops all publishing
        """
        pass

    @abstractmethod
    async def add_purchase(self, purchase: Purchase, merchant: Optional[Merchant] = None) -> None:
        """
        Store a new purchase, plus the merchant it introduced if any.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def update_purchase(self, purchase: Purchase) -> None:
        """
        Replace an existing purchase wholesale.

        Raises:
            NotFoundError: If no purchase has this id
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete_purchase(self, purchase_id: str) -> bool:
        """
        Delete a purchase by id.

        Returns:
            True if something was deleted
        """
        pass

    @abstractmethod
    async def save_settings(self, settings: BenefitSettings) -> None:
        """Replace the settings record wholesale."""
        pass

    @abstractmethod
    async def add_merchant(self, merchant: Merchant) -> None:
        """
        Store a new merchant.

        Raises:
            DuplicateError: If a merchant with the same (name, location) exists
        """
        pass

    @abstractmethod
    async def replace_all(self, purchases: list[Purchase], merchants: list[Merchant]) -> None:
        """
        Replace both collections in one all-or-nothing write.

        Existing purchases and merchants are discarded, not merged.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Tear down every active subscription and release resources."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class StorageConnectionError(StorageError):
    """Could not reach the storage backend."""
    pass


class StoragePermissionError(StorageError):
    """The backend refused access for this identity."""
    pass


class StoreDetachedError(StorageError):
    """The store was closed because the session switched backends."""
    pass
