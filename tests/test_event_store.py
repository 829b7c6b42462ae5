"""Tests for the event store."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from bhandara.event_store import EventStore, start_of_day
from bhandara.exceptions import PersistenceWarning, StorageReadError
from bhandara.storage import MemoryStorage


IST = timezone(timedelta(hours=5, minutes=30))


def stored_ids(storage, key="bhandaras"):
    return [record["id"] for record in json.loads(storage.get(key))]


class TestStartOfDay:

    def test_keeps_timezone(self):
        moment = datetime(2024, 6, 1, 12, 34, 56, 789, tzinfo=IST)
        assert start_of_day(moment) == datetime(2024, 6, 1, tzinfo=IST)

    def test_naive_is_local(self):
        boundary = start_of_day(datetime(2024, 6, 1, 12, 0))
        assert boundary.tzinfo is not None
        assert (boundary.hour, boundary.minute) == (0, 0)

    def test_store_boundary_uses_clock(self, store):
        assert store.start_of_today() == datetime(2024, 6, 1, tzinfo=IST)


class TestLoad:
    """Loading, the expiry sweep and compaction"""

    def test_empty_storage(self, store, storage):
        assert store.load() == []
        assert storage.get("bhandaras") is None

    def test_drops_past_events_and_rewrites(self, store, storage, make_event):
        old = make_event(id="1", event_time=datetime(2020, 1, 1, 10, 0, tzinfo=timezone.utc))
        upcoming = make_event(id="2", event_time=datetime(2024, 6, 2, 10, 0, tzinfo=timezone.utc))
        storage.set("bhandaras", json.dumps([old.to_record(), upcoming.to_record()]))

        events = store.load()

        assert [event.id for event in events] == ["2"]
        assert stored_ids(storage) == ["2"]

    def test_numeric_ids_survive_expiry_sweep(self, store, storage, png_data_uri):
        records = [
            {"id": 1, "title": "Old langar", "description": "", "location": "Ram Ghat",
             "image_url": png_data_uri, "date_time": "2020-01-01T10:00:00Z", "owner_id": "owner-a"},
            {"id": 2, "title": "Sunday bhandara", "description": "", "location": "Ram Ghat",
             "image_url": png_data_uri, "date_time": "2024-06-02T10:00:00Z", "owner_id": "owner-a"},
        ]
        storage.set("bhandaras", json.dumps(records))

        events = store.load()

        assert [event.id for event in events] == ["2"]
        assert stored_ids(storage) == ["2"]

    def test_sparse_records_are_kept(self, store, storage):
        storage.set("bhandaras", json.dumps([
            {"id": "bare", "date_time": "2024-06-02T10:00:00Z", "description": None},
        ]))

        events = store.load()

        assert [event.id for event in events] == ["bare"]
        assert events[0].title == ""
        assert events[0].description == ""
        assert storage.get("bhandaras") == json.dumps([
            {"id": "bare", "date_time": "2024-06-02T10:00:00Z", "description": None},
        ])

    def test_unreadable_date_dropped(self, store, storage, make_event):
        good = make_event(id="good")
        storage.set("bhandaras", json.dumps([
            good.to_record(),
            {"id": "no-date", "title": "Langar"},
            {"id": "bad-date", "title": "Langar", "date_time": "someday"},
        ]))

        assert store.load() == [good]
        assert stored_ids(storage) == ["good"]

    def test_earlier_today_is_kept(self, store, storage, make_event):
        this_morning = make_event(event_time=datetime(2024, 6, 1, 0, 0, tzinfo=IST))
        yesterday_night = make_event(event_time=datetime(2024, 5, 31, 23, 59, tzinfo=IST))
        storage.set("bhandaras", json.dumps([this_morning.to_record(), yesterday_night.to_record()]))

        assert store.load() == [this_morning]

    def test_no_rewrite_when_nothing_expired(self, store, storage, make_event):
        payload = json.dumps([make_event().to_record()])
        storage.set("bhandaras", payload)

        with patch.object(storage, "set", wraps=storage.set) as mock_set:
            store.load()

        mock_set.assert_not_called()
        assert storage.get("bhandaras") == payload

    def test_preserves_insertion_order(self, store, storage, make_event):
        later = make_event(id="later", event_time=datetime(2024, 6, 9, tzinfo=IST))
        sooner = make_event(id="sooner", event_time=datetime(2024, 6, 2, tzinfo=IST))
        storage.set("bhandaras", json.dumps([later.to_record(), sooner.to_record()]))

        assert [event.id for event in store.load()] == ["later", "sooner"]

    def test_load_is_idempotent(self, store, storage, make_event):
        records = [
            make_event(id="old", event_time=datetime(2023, 1, 1, tzinfo=IST)).to_record(),
            make_event(id="new").to_record(),
        ]
        storage.set("bhandaras", json.dumps(records))

        first = store.load()
        first_payload = storage.get("bhandaras")
        second = store.load()

        assert first == second
        assert storage.get("bhandaras") == first_payload

    def test_unparsable_payload_is_empty(self, store, storage):
        storage.set("bhandaras", "{not json")

        assert store.load() == []
        assert storage.get("bhandaras") == "{not json"

    def test_non_list_payload_is_empty(self, store, storage):
        storage.set("bhandaras", '{"id": "1"}')
        assert store.load() == []

    def test_malformed_records_dropped(self, store, storage, make_event):
        good = make_event(id="good")
        storage.set("bhandaras", json.dumps([good.to_record(), {"id": "broken"}, "junk"]))

        assert store.load() == [good]
        assert stored_ids(storage) == ["good"]

    def test_unreadable_storage_is_empty(self, store, storage):
        with patch.object(storage, "get", side_effect=StorageReadError("disk gone")):
            assert store.load() == []

    def test_load_replaces_memory(self, store, storage, make_event):
        store.add(make_event(id="local"))
        storage.set("bhandaras", json.dumps([make_event(id="remote").to_record()]))

        assert [event.id for event in store.load()] == ["remote"]


class TestAddRemove:

    def test_add_persists(self, store, storage, make_event):
        event = make_event(id="1")
        events = store.add(event)

        assert events == [event]
        assert stored_ids(storage) == ["1"]

    def test_add_appends(self, store, make_event):
        store.add(make_event(id="1"))
        events = store.add(make_event(id="2"))

        assert [event.id for event in events] == ["1", "2"]

    def test_returned_list_is_a_copy(self, store, make_event):
        events = store.add(make_event(id="1"))
        events.clear()

        assert len(store.events) == 1

    def test_remove(self, store, storage, make_event):
        store.add(make_event(id="1"))
        store.add(make_event(id="2"))

        events = store.remove("1")

        assert [event.id for event in events] == ["2"]
        assert stored_ids(storage) == ["2"]

    def test_remove_unknown_is_noop(self, store, storage, make_event):
        store.add(make_event(id="1"))

        with patch.object(storage, "set", wraps=storage.set) as mock_set:
            events = store.remove("missing")

        assert [event.id for event in events] == ["1"]
        mock_set.assert_not_called()

    def test_add_remove_round_trip(self, store, storage, make_event):
        storage.set("bhandaras", json.dumps([make_event(id="existing").to_record()]))
        before = store.load()

        event = make_event(id="temp")
        after = store.remove(store.add(event)[-1].id)

        assert after == before
        assert stored_ids(storage) == ["existing"]

    def test_get(self, store, make_event):
        event = make_event(id="1")
        store.add(event)

        assert store.get("1") == event
        assert store.get("2") is None


class TestPersistenceFailure:
    """Quota and write errors keep memory authoritative"""

    def test_quota_exceeded_warns_and_keeps_memory(self, clock, make_event):
        storage = MemoryStorage(quota_bytes=100)
        store = EventStore(storage, clock=clock)
        event = make_event(description="x" * 500)

        with pytest.warns(PersistenceWarning, match="Changes may not be saved"):
            events = store.add(event)

        assert events == [event]
        assert store.events == [event]
        assert storage.get("bhandaras") is None

    def test_remove_after_failed_write_uses_memory(self, clock, make_event):
        storage = MemoryStorage(quota_bytes=100)
        store = EventStore(storage, clock=clock)

        with pytest.warns(PersistenceWarning):
            store.add(make_event(id="1", description="x" * 500))

        assert store.remove("1") == []
        assert json.loads(storage.get("bhandaras")) == []

    def test_last_persist_ok_tracks_every_write(self, clock, make_event):
        storage = MemoryStorage(quota_bytes=100)
        store = EventStore(storage, clock=clock)
        assert store.last_persist_ok is True

        with pytest.warns(PersistenceWarning):
            store.add(make_event(id="1", description="x" * 500))
        assert store.last_persist_ok is False

        with pytest.warns(PersistenceWarning):
            store.add(make_event(id="2"))
        assert store.last_persist_ok is False

        with pytest.warns(PersistenceWarning):
            store.remove("1")
        assert store.last_persist_ok is False

        store.remove("2")
        assert store.last_persist_ok is True
        assert json.loads(storage.get("bhandaras")) == []


class TestListeners:

    def test_listener_called_on_change(self, store, make_event):
        listener = MagicMock()
        store.add_listener(listener)

        event = make_event(id="1")
        store.add(event)
        store.remove("missing")
        store.remove("1")

        assert listener.call_count == 2
        listener.assert_called_with([])

    def test_failing_listener_does_not_block_write(self, store, storage, make_event):
        failing = MagicMock(side_effect=RuntimeError("render failed"))
        healthy = MagicMock()
        store.add_listener(failing)
        store.add_listener(healthy)

        events = store.add(make_event(id="1"))

        assert [event.id for event in events] == ["1"]
        assert stored_ids(storage) == ["1"]
        healthy.assert_called_once()

        store.remove("1")
        assert stored_ids(storage) == []

    def test_listener_sees_stored_collection(self, store, storage, make_event):
        seen = []
        store.add_listener(lambda events: seen.append(storage.get("bhandaras")))

        store.add(make_event(id="1"))

        assert [record["id"] for record in json.loads(seen[0])] == ["1"]

    def test_removed_listener_not_called(self, store, make_event):
        listener = MagicMock()
        store.add_listener(listener)
        store.remove_listener(listener)

        store.add(make_event())

        listener.assert_not_called()


class TestLastWriterWins:
    """Two stores on one storage key, like two tabs of one profile"""

    def test_second_writer_overwrites_first(self, storage, clock, make_event):
        tab_a = EventStore(storage, clock=clock)
        tab_b = EventStore(storage, clock=clock)
        tab_a.load()
        tab_b.load()

        tab_a.add(make_event(id="from-a"))
        tab_b.add(make_event(id="from-b"))

        assert stored_ids(storage) == ["from-b"]
        assert [event.id for event in tab_a.load()] == ["from-b"]

    def test_stale_remove_drops_concurrent_add(self, storage, clock, make_event):
        tab_a = EventStore(storage, clock=clock)
        tab_a.add(make_event(id="shared"))
        tab_b = EventStore(storage, clock=clock)
        tab_b.load()

        tab_a.add(make_event(id="a-only"))
        tab_b.remove("shared")

        assert json.loads(storage.get("bhandaras")) == []


class TestRefresh:
    """Background refresh task"""

    def test_invalid_interval(self, storage):
        with pytest.raises(ValueError):
            EventStore(storage, refresh_interval_ms=0)

    @pytest.mark.asyncio
    async def test_refresh_prunes_after_midnight(self, storage, clock, make_event):
        store = EventStore(storage, refresh_interval_ms=10, clock=clock)
        store.add(make_event(id="tonight"))

        store.start_refresh()
        try:
            await asyncio.sleep(0.05)
            assert [event.id for event in store.events] == ["tonight"]

            clock.now = datetime(2024, 6, 2, 0, 0, 1, tzinfo=IST)
            await asyncio.sleep(0.05)

            assert store.events == []
            assert json.loads(storage.get("bhandaras")) == []
        finally:
            await store.stop_refresh()

    @pytest.mark.asyncio
    async def test_stop_cancels_task(self, storage, clock, make_event):
        store = EventStore(storage, refresh_interval_ms=10, clock=clock)
        store.add(make_event(id="tonight"))

        task = store.start_refresh()
        assert store.refreshing
        await store.stop_refresh()

        assert task.cancelled()
        assert not store.refreshing

        clock.now = datetime(2024, 6, 3, tzinfo=IST)
        await asyncio.sleep(0.05)
        assert [event.id for event in store.events] == ["tonight"]

    @pytest.mark.asyncio
    async def test_start_twice_returns_same_task(self, store):
        first = store.start_refresh()
        second = store.start_refresh()
        try:
            assert first is second
        finally:
            await store.stop_refresh()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, store):
        await store.stop_refresh()
        assert not store.refreshing

    @pytest.mark.asyncio
    async def test_failed_tick_keeps_running(self, storage, clock):
        store = EventStore(storage, refresh_interval_ms=10, clock=clock)

        with patch.object(store, "load", side_effect=[RuntimeError("boom"), [], [], [], [], []]) as mock_load:
            store.start_refresh()
            await asyncio.sleep(0.05)
            assert store.refreshing
            await store.stop_refresh()

        assert mock_load.call_count >= 2
