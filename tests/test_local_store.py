"""Tests for the local-only store."""

import json
from decimal import Decimal

import pytest

from ledesc.models.benefit import BenefitSettings, Merchant
from ledesc.services.storage import (
    DuplicateError,
    LocalStateStore,
    LocalStorageKeys,
    NotFoundError,
    PurchasesSnapshot,
    SettingsSnapshot,
    StorageError,
    StoreDetachedError,
)
from conftest import make_purchase, run


class TestFileLocalStorage:
    """Tests for the key/value files."""

    def test_set_get_remove(self, local_storage):
        local_storage.set_item("k", '{"a": 1}')
        assert local_storage.get_item("k") == '{"a": 1}'
        local_storage.remove_item("k")
        assert local_storage.get_item("k") is None

    def test_quarantine_moves_file_aside(self, local_storage, tmp_path):
        """Test that a corrupt value is kept for inspection."""
        local_storage.set_item("k", "garbage")
        moved = local_storage.quarantine("k")
        assert moved.exists()
        assert ".corrupt-" in moved.name
        assert local_storage.get_item("k") is None


class TestLocalStateStore:
    """Tests for LocalStateStore."""

    def test_keys_are_namespaced(self):
        keys = LocalStorageKeys("LEDESC", 3)
        assert keys.purchases == "LEDESC_purchases_v3"
        assert keys.setup_complete == "LEDESC_setup_complete_v3"

    def test_first_subscribe_writes_defaults(self, local_store, local_storage):
        """Test first run on a machine persists default settings."""
        events = []
        run(local_store.subscribe(events.append, generation=1))

        assert local_store.is_setup_complete()
        saved = json.loads(local_storage.get_item("LEDESC_settings_v3"))
        assert saved["monthlyAllowance"] == 68500.0
        assert [e.kind.value for e in events] == ["settings", "purchases", "merchants"]
        assert all(e.generation == 1 for e in events)

    def test_mutations_publish_and_persist(self, local_store, local_storage):
        """Test that every mutation publishes snapshots and writes to disk."""
        events = []

        async def scenario():
            await local_store.subscribe(events.append, generation=7)
            events.clear()
            merchant = Merchant(id="m1", name="Café", location="Centro")
            await local_store.add_purchase(make_purchase("p1"), merchant)
            await local_store.add_purchase(make_purchase("p2"), Merchant(id="m2", name="café", location="centro"))

        run(scenario())

        purchases_events = [e for e in events if isinstance(e, PurchasesSnapshot)]
        assert {p.id for p in purchases_events[-1].purchases} == {"p1", "p2"}
        assert len(local_store.state.merchants) == 1

        reloaded = LocalStateStore(local_storage, LocalStorageKeys("LEDESC", 3)).load()
        assert len(reloaded.purchases) == 2
        assert reloaded.settings.last_local_save_timestamp is not None

    def test_failed_write_leaves_state_unchanged(self, local_store, local_storage, monkeypatch):
        """Test that a purchase whose write failed never shows up with a later save."""
        events = []
        real_set_item = local_storage.set_item

        def broken_set_item(key, value):
            if key == "LEDESC_purchases_v3":
                raise StorageError(f"Failed to write {key}: disk full")
            real_set_item(key, value)

        async def scenario():
            await local_store.subscribe(events.append, generation=1)
            monkeypatch.setattr(local_storage, "set_item", broken_set_item)
            with pytest.raises(StorageError):
                await local_store.add_purchase(make_purchase("lost"))
            monkeypatch.setattr(local_storage, "set_item", real_set_item)
            events.clear()
            await local_store.save_settings(BenefitSettings(monthly_allowance=Decimal("90000")))

        run(scenario())

        assert local_store.state.purchases == []
        purchases_events = [e for e in events if isinstance(e, PurchasesSnapshot)]
        assert purchases_events[-1].purchases == []
        reloaded = LocalStateStore(local_storage, LocalStorageKeys("LEDESC", 3)).load()
        assert reloaded.purchases == []
        assert reloaded.settings.monthly_allowance == Decimal("90000")

    def test_update_delete_and_missing(self, local_store):
        async def scenario():
            await local_store.subscribe(lambda e: None, generation=1)
            await local_store.add_purchase(make_purchase("p1"))
            await local_store.update_purchase(make_purchase("p1", amount="999", final_amount="100"))
            with pytest.raises(NotFoundError):
                await local_store.update_purchase(make_purchase("ghost"))
            assert await local_store.delete_purchase("p1") is True
            assert await local_store.delete_purchase("p1") is False

        run(scenario())
        assert local_store.state.purchases == []

    def test_add_merchant_rejects_duplicates(self, local_store):
        async def scenario():
            await local_store.subscribe(lambda e: None, generation=1)
            await local_store.add_merchant(Merchant(id="m1", name="Café", location=None))
            with pytest.raises(DuplicateError):
                await local_store.add_merchant(Merchant(id="m2", name=" CAFÉ", location=""))

        run(scenario())

    def test_save_settings_publishes(self, local_store):
        events = []

        async def scenario():
            await local_store.subscribe(events.append, generation=1)
            await local_store.save_settings(BenefitSettings(monthly_allowance=Decimal("1000")))

        run(scenario())
        last_settings = [e for e in events if isinstance(e, SettingsSnapshot)][-1]
        assert last_settings.settings.monthly_allowance == Decimal("1000")

    def test_closed_store_refuses_writes(self, local_store):
        """Test that a detached store never writes again."""
        events = []

        async def scenario():
            await local_store.subscribe(events.append, generation=1)
            await local_store.close()
            events.clear()
            with pytest.raises(StoreDetachedError):
                await local_store.add_purchase(make_purchase())

        run(scenario())
        assert events == []

    def test_corrupt_file_is_quarantined_on_load(self, local_store, local_storage):
        """Test that unreadable JSON falls back to empty state."""
        local_storage.set_item("LEDESC_purchases_v3", "{not json")
        state = local_store.load()

        assert state.purchases == []
        assert local_storage.get_item("LEDESC_purchases_v3") is None

    def test_invalid_records_are_skipped(self, local_store, local_storage):
        local_storage.set_item("LEDESC_purchases_v3", json.dumps([
            {"id": "ok", "amount": 10, "date": "2025-03-01T10:00:00"},
            {"id": "bad", "amount": -5, "date": "2025-03-01T10:00:00"},
        ]))
        assert [p.id for p in local_store.load().purchases] == ["ok"]

    def test_generated_ids(self, local_store):
        assert local_store.new_purchase_id().startswith("local_")
        assert local_store.new_merchant_id().startswith("local_m_")
        assert local_store.new_purchase_id() != local_store.new_purchase_id()
