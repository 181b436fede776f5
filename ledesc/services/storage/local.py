"""
Local-only Storage Implementation

The desktop counterpart of browser local storage: a small key/value store
on disk, one JSON file per key, namespaced by app name and schema version.

In local mode this store IS the source of truth. Mutations change the
in-memory copy, publish snapshots synchronously, and write the full state
back to disk. Once the session signs in, the store is closed and refuses
to write, so stale local data can never clobber cloud data.
"""

import json
import os
import secrets
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from pydantic import ValidationError

from ledesc.config import get_settings
from ledesc.models.benefit import (
    AppState,
    BenefitSettings,
    Merchant,
    PersistenceMode,
    Purchase,
    sort_merchants,
    sort_purchases,
)
from ledesc.notifications import get_logger
from ledesc.services.storage.interface import (
    DuplicateError,
    MerchantsSnapshot,
    NotFoundError,
    PurchasesSnapshot,
    SettingsSnapshot,
    StateStore,
    StorageError,
    StoreDetachedError,
    StoreListener,
    Subscription,
)


class LocalStorageKeys:
    """Key names, e.g. LEDESC_purchases_v3."""

    def __init__(self, app_name: str, schema_version: int):
        self.settings = f"{app_name}_settings_v{schema_version}"
        self.purchases = f"{app_name}_purchases_v{schema_version}"
        self.merchants = f"{app_name}_merchants_v{schema_version}"
        self.setup_complete = f"{app_name}_setup_complete_v{schema_version}"

    @classmethod
    def from_settings(cls) -> "LocalStorageKeys":
        app = get_settings().app
        return cls(app.app_name, app.schema_version)


class FileLocalStorage:
    """
    Key/value strings persisted as files in one directory.

    Writes go to a temp file in the same directory and are renamed over
    the target, so a crash never leaves a half-written value.
    """

    def __init__(self, directory: Optional[Path] = None):
        self._dir = Path(directory or get_settings().app.local_storage_dir)

    def _path(self, key: str) -> Path:
        return self._dir / f"{key}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Failed to read {key}: {e}") from e

    def set_item(self, key: str, value: str) -> None:
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                suffix=".tmp",
                prefix=f"{key}-",
                dir=self._dir,
                delete=False,
            ) as tf:
                temp_name = tf.name
                tf.write(value)
                tf.flush()
                os.fsync(tf.fileno())
            os.replace(temp_name, self._path(key))
        except OSError as e:
            if "temp_name" in locals() and os.path.exists(temp_name):
                os.unlink(temp_name)
            raise StorageError(f"Failed to write {key}: {e}") from e

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def quarantine(self, key: str) -> Optional[Path]:
        """Move an unreadable value aside instead of overwriting it later."""
        path = self._path(key)
        if not path.exists():
            return None
        target = path.with_suffix(f".corrupt-{datetime.now():%Y%m%d%H%M%S}")
        os.replace(path, target)
        return target


class LocalStateStore(StateStore):
    """
    StateStore backed by FileLocalStorage.

    Publishes snapshots synchronously from inside each mutation.
    """

    mode = PersistenceMode.LOCAL

    def __init__(
        self,
        storage: Optional[FileLocalStorage] = None,
        keys: Optional[LocalStorageKeys] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._storage = storage or FileLocalStorage()
        self._keys = keys or LocalStorageKeys.from_settings()
        self._clock = clock
        self._logger = get_logger("ledesc.storage.local")
        self._state: Optional[AppState] = None
        self._listener: Optional[StoreListener] = None
        self._generation = 0
        self._closed = False

    # -- loading -----------------------------------------------------------

    def _read_json(self, key: str) -> Optional[Any]:
        raw = self._storage.get_item(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            moved = self._storage.quarantine(key)
            self._logger.error("local_value_unreadable", key=key, error=str(e), moved_to=str(moved))
            return None

    def load(self) -> AppState:
        """Read the persisted state, defaulting whatever is missing or unreadable."""
        settings_data = self._read_json(self._keys.settings)
        purchases_data = self._read_json(self._keys.purchases) or []
        merchants_data = self._read_json(self._keys.merchants) or []

        try:
            settings = BenefitSettings.model_validate(settings_data or {})
        except ValidationError as e:
            self._storage.quarantine(self._keys.settings)
            self._logger.error("local_settings_invalid", error=str(e))
            settings = BenefitSettings()

        purchases = []
        for item in purchases_data:
            try:
                purchases.append(Purchase.model_validate(item))
            except ValidationError as e:
                self._logger.warning("local_purchase_skipped", error=str(e), item=item)

        merchants = []
        for item in merchants_data:
            try:
                merchants.append(Merchant.model_validate(item))
            except ValidationError as e:
                self._logger.warning("local_merchant_skipped", error=str(e), item=item)

        self._state = AppState(
            settings=settings,
            purchases=sort_purchases(purchases),
            merchants=sort_merchants(merchants),
        )
        self._logger.info(
            "local_state_loaded",
            purchases=len(purchases),
            merchants=len(merchants),
        )
        return self._state

    @property
    def state(self) -> AppState:
        if self._state is None:
            self.load()
        return self._state

    def is_setup_complete(self) -> bool:
        return self._read_json(self._keys.setup_complete) is True

    def mark_setup_complete(self) -> None:
        self._storage.set_item(self._keys.setup_complete, "true")

    # -- persistence -------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise StoreDetachedError("Local store is detached while signed in")

    def _persist(self, candidate: AppState) -> None:
        """
        Write the full candidate state, then make it current.

        Stamps last_local_save_timestamp. If any write fails the in-memory
        state is left untouched, so a failed mutation never reappears with
        a later save.
        """
        self._ensure_open()
        state = candidate.model_copy(update={
            "settings": candidate.settings.merged(last_local_save_timestamp=self._clock()),
        })

        def dump(value: Any) -> str:
            return json.dumps(value, ensure_ascii=False)

        self._storage.set_item(
            self._keys.settings,
            dump(state.settings.model_dump(mode="json", by_alias=True)),
        )
        self._storage.set_item(
            self._keys.purchases,
            dump([p.model_dump(mode="json", by_alias=True) for p in state.purchases]),
        )
        self._storage.set_item(
            self._keys.merchants,
            dump([m.model_dump(mode="json", by_alias=True) for m in state.merchants]),
        )
        self._state = state

    def _publish(self) -> None:
        if self._listener is None:
            return
        state = self.state
        self._listener(SettingsSnapshot(generation=self._generation, settings=state.settings))
        self._listener(PurchasesSnapshot(generation=self._generation, purchases=list(state.purchases)))
        self._listener(MerchantsSnapshot(generation=self._generation, merchants=list(state.merchants)))

    def _commit(self, candidate: AppState) -> None:
        self._persist(candidate)
        self._publish()

    # -- StateStore --------------------------------------------------------

    def _millis(self) -> int:
        return int(self._clock().timestamp() * 1000)

    def new_purchase_id(self) -> str:
        return f"local_{self._millis()}_{secrets.token_hex(5)[:9]}"

    def new_merchant_id(self) -> str:
        return f"local_m_{self._millis()}_{secrets.token_hex(3)}"

    async def subscribe(self, listener: StoreListener, generation: int) -> Subscription:
        self._ensure_open()
        if not self.is_setup_complete():
            # First run on this machine: write defaults so the files exist.
            self._persist(self.state)
            self.mark_setup_complete()
            self._logger.info("local_setup_completed")
        self._listener = listener
        self._generation = generation
        self._publish()

        def cancel() -> None:
            if self._listener is listener:
                self._listener = None

        return Subscription(generation, [cancel])

    async def add_purchase(self, purchase: Purchase, merchant: Optional[Merchant] = None) -> None:
        self._ensure_open()
        state = self.state
        changes: dict[str, Any] = {"purchases": sort_purchases([*state.purchases, purchase])}
        if merchant is not None and state.find_merchant(merchant.name, merchant.location) is None:
            changes["merchants"] = sort_merchants([*state.merchants, merchant])
        self._commit(state.model_copy(update=changes))

    async def update_purchase(self, purchase: Purchase) -> None:
        self._ensure_open()
        state = self.state
        if state.find_purchase(purchase.id) is None:
            raise NotFoundError(f"Purchase not found: {purchase.id}")
        self._commit(state.model_copy(update={
            "purchases": sort_purchases(
                [purchase if p.id == purchase.id else p for p in state.purchases]
            ),
        }))

    async def delete_purchase(self, purchase_id: str) -> bool:
        self._ensure_open()
        state = self.state
        remaining = [p for p in state.purchases if p.id != purchase_id]
        if len(remaining) == len(state.purchases):
            return False
        self._commit(state.model_copy(update={"purchases": remaining}))
        return True

    async def save_settings(self, settings: BenefitSettings) -> None:
        self._ensure_open()
        self._commit(self.state.model_copy(update={"settings": settings}))

    async def add_merchant(self, merchant: Merchant) -> None:
        self._ensure_open()
        state = self.state
        if state.find_merchant(merchant.name, merchant.location) is not None:
            raise DuplicateError(f"Merchant already exists: {merchant.name}")
        self._commit(state.model_copy(update={
            "merchants": sort_merchants([*state.merchants, merchant]),
        }))

    async def replace_all(self, purchases: list[Purchase], merchants: list[Merchant]) -> None:
        self._ensure_open()
        self._commit(self.state.model_copy(update={
            "purchases": sort_purchases(purchases),
            "merchants": sort_merchants(merchants),
        }))

    async def close(self) -> None:
        self._listener = None
        self._closed = True
        self._logger.info("local_store_detached")
