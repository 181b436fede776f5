"""
State Container

DESIGN DECISION: Exactly one owner of the live AppState.
This guarantees:
1. State changes only by applying store events, never by direct mutation
2. Events from a previous identity (stale generation) are dropped
3. Observers learn about changes through subscribe(), not by polling

The container is not thread-safe; every call happens on the event loop.
"""

from typing import Callable, Optional

from ledesc.models.benefit import AppState, sort_merchants, sort_purchases
from ledesc.notifications import get_logger
from ledesc.services.storage.interface import (
    MerchantsSnapshot,
    PurchasesSnapshot,
    SettingsSnapshot,
    StoreEvent,
    StoreEventKind,
    SubscriptionFailed,
)

StateObserver = Callable[[AppState], None]

PARTS = (StoreEventKind.SETTINGS, StoreEventKind.PURCHASES, StoreEventKind.MERCHANTS)


class StateContainer:
    """Holds AppState plus readiness and error flags for the current generation."""

    def __init__(self):
        self._state = AppState()
        self._generation = 0
        self._ready: set[StoreEventKind] = set()
        self._error: Optional[str] = None
        self._observers: list[StateObserver] = []
        self._logger = get_logger("ledesc.state")

    @property
    def state(self) -> AppState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def is_ready(self) -> bool:
        """True once settings, purchases and merchants have all reported."""
        return all(part in self._ready for part in PARTS)

    def part_ready(self, kind: StoreEventKind) -> bool:
        return kind in self._ready

    def reset(self) -> int:
        """
        Start a new generation with default state.

        Returns:
            The new generation number; stores must stamp it on their events
        """
        self._generation += 1
        self._state = AppState()
        self._ready.clear()
        self._error = None
        self._logger.info("state_reset", generation=self._generation)
        self._notify()
        return self._generation

    def apply(self, event: StoreEvent) -> bool:
        """
        Apply one store event.

        Returns:
            False if the event belonged to another generation and was dropped
        """
        if event.generation != self._generation:
            self._logger.debug(
                "stale_event_dropped",
                event_generation=event.generation,
                generation=self._generation,
                kind=event.kind.value,
            )
            return False

        if isinstance(event, SettingsSnapshot):
            self._state = self._state.model_copy(update={"settings": event.settings})
        elif isinstance(event, PurchasesSnapshot):
            self._state = self._state.model_copy(
                update={"purchases": sort_purchases(event.purchases)}
            )
        elif isinstance(event, MerchantsSnapshot):
            self._state = self._state.model_copy(
                update={"merchants": sort_merchants(event.merchants)}
            )
        elif isinstance(event, SubscriptionFailed):
            self._error = event.error_message
            self._logger.error(
                "subscription_failed",
                generation=self._generation,
                error=event.error_message,
                permission_denied=event.permission_denied,
            )
            self._notify()
            return True

        self._ready.add(event.kind)
        self._notify()
        return True

    def subscribe(self, observer: StateObserver) -> Callable[[], None]:
        """Register an observer. Returns a callable that unregisters it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _notify(self) -> None:
        for observer in list(self._observers):
            try:
                observer(self._state)
            except Exception as e:
                self._logger.error("state_observer_failed", error=str(e))
