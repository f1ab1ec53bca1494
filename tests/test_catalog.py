"""Tests for the availability catalog."""

from datetime import date

import pytest
from pydantic import ValidationError as PydanticValidationError

from agenda.config import DEFAULT_AVAILABILITY_TYPES
from agenda.errors import InvariantError, NotFoundError, PersistenceError, ValidationError
from agenda.schemas.availability_schema import SlotFilter
from agenda.scheduling.catalog import AvailabilityCatalog
from agenda.scheduling.transaction import OptimisticTransaction
from agenda.storage.memory import InMemoryStorage
from tests.conftest import DAY, TYPE_ID, make_slot, make_type


class TestLoad:
    @pytest.mark.asyncio
    async def test_seeds_default_types_when_empty(self):
        storage = InMemoryStorage()
        catalog = AvailabilityCatalog(storage)
        await catalog.load()
        names = [t.name for t in catalog.list_types()]
        assert names == [name for name, _ in DEFAULT_AVAILABILITY_TYPES]
        assert len(storage.types) == len(DEFAULT_AVAILABILITY_TYPES)

    @pytest.mark.asyncio
    async def test_keeps_existing_types(self, catalog):
        assert [t.id for t in catalog.list_types()] == [TYPE_ID]

    @pytest.mark.asyncio
    async def test_ignores_stored_duplicate_slots(self):
        storage = InMemoryStorage(
            types=[make_type()],
            slots=[make_slot(DAY, "09:00", slot_id="a"), make_slot(DAY, "09:00", slot_id="b")],
        )
        catalog = AvailabilityCatalog(storage)
        await catalog.load()
        assert len(catalog.slots_for_date(DAY)) == 1


class TestTypes:
    @pytest.mark.asyncio
    async def test_add_type(self, catalog, storage):
        added = await catalog.add_type(" Externo ", "#f59e0b")
        assert added.name == "Externo"
        assert added.id in storage.types

    @pytest.mark.asyncio
    async def test_add_type_requires_name(self, catalog):
        with pytest.raises(ValidationError):
            await catalog.add_type("  ", "#fff")

    @pytest.mark.asyncio
    async def test_update_type(self, catalog, storage):
        updated = await catalog.update_type(TYPE_ID, {"name": "Estúdio A"})
        assert updated.name == "Estúdio A"
        assert storage.types[TYPE_ID].name == "Estúdio A"

    @pytest.mark.asyncio
    async def test_update_type_rejects_unknown_fields(self, catalog):
        with pytest.raises(ValidationError):
            await catalog.update_type(TYPE_ID, {"id": "other"})

    @pytest.mark.asyncio
    async def test_rename_does_not_touch_existing_slots(self, catalog):
        slot = await catalog.add_slot(DAY, "09:00", TYPE_ID)
        await catalog.update_type(TYPE_ID, {"name": "Renomeado"})
        assert catalog.get_slot(slot.id).label == "Estúdio"

    @pytest.mark.asyncio
    async def test_cannot_delete_last_type(self, catalog):
        with pytest.raises(InvariantError):
            await catalog.delete_type(TYPE_ID)
        assert len(catalog.list_types()) == 1

    @pytest.mark.asyncio
    async def test_delete_type(self, catalog):
        extra = await catalog.add_type("Externo", "#f59e0b")
        await catalog.delete_type(extra.id)
        with pytest.raises(NotFoundError):
            catalog.get_type(extra.id)

    @pytest.mark.asyncio
    async def test_failed_type_write_rolls_back(self, catalog, storage):
        storage.fail_next()
        with pytest.raises(PersistenceError):
            await catalog.add_type("Externo", "#f59e0b")
        assert len(catalog.list_types()) == 1


class TestSlots:
    @pytest.mark.asyncio
    async def test_add_slot_copies_type_label_and_color(self, catalog):
        slot = await catalog.add_slot(DAY, "9:00", TYPE_ID)
        assert slot.time == "09:00"
        assert slot.label == "Estúdio"
        assert slot.color == "#10b981"
        assert slot.duration == catalog.default_duration

    @pytest.mark.asyncio
    async def test_add_slot_at_existing_key_is_skipped(self, catalog):
        await catalog.add_slot(DAY, "09:00", TYPE_ID)
        assert await catalog.add_slot(DAY, "09:00", TYPE_ID) is None
        assert len(catalog.slots_for_date(DAY)) == 1

    @pytest.mark.asyncio
    async def test_batch_dedupes_within_itself(self, catalog, storage):
        studio = catalog.get_type(TYPE_ID)
        batch = [catalog.build_slot(DAY, "09:00", studio), catalog.build_slot(DAY, "09:00", studio)]
        result = await catalog.add_slots(batch)
        assert len(result.added) == 1
        assert result.duplicates == 1
        assert len(storage.slots) == 1

    @pytest.mark.asyncio
    async def test_unpadded_time_counts_as_duplicate(self, catalog):
        await catalog.add_slot(DAY, "09:00", TYPE_ID)
        result = await catalog.add_slots([make_slot(DAY, "9:00", slot_id="late")])
        assert result.added == []
        assert result.duplicates == 1
        assert [s.time for s in catalog.slots_for_date(DAY)] == ["09:00"]

    def test_slot_record_rejects_invalid_time(self):
        with pytest.raises(PydanticValidationError):
            make_slot(DAY, "25:99")

    @pytest.mark.asyncio
    async def test_slots_for_date_sorted_by_time(self, catalog):
        for time in ("14:00", "09:00", "10:30"):
            await catalog.add_slot(DAY, time, TYPE_ID)
        assert [s.time for s in catalog.slots_for_date(DAY)] == ["09:00", "10:30", "14:00"]

    @pytest.mark.asyncio
    async def test_list_slots_filters(self, catalog):
        other = await catalog.add_type("Externo", "#f59e0b")
        await catalog.add_slot(DAY, "09:00", TYPE_ID)
        await catalog.add_slot(date(2024, 6, 11), "09:00", other.id)
        await catalog.add_slot(date(2024, 6, 20), "09:00", TYPE_ID)

        in_range = catalog.list_slots(SlotFilter(start_date=DAY, end_date=date(2024, 6, 11)))
        assert len(in_range) == 2
        by_type = catalog.list_slots(SlotFilter(type_id=other.id))
        assert [s.date for s in by_type] == [date(2024, 6, 11)]

    @pytest.mark.asyncio
    async def test_delete_slot(self, catalog, storage):
        slot = await catalog.add_slot(DAY, "09:00", TYPE_ID)
        await catalog.delete_slot(slot.id)
        assert catalog.slots_for_date(DAY) == []
        assert storage.slots == {}

    @pytest.mark.asyncio
    async def test_delete_unknown_slot(self, catalog):
        with pytest.raises(NotFoundError):
            await catalog.delete_slot("missing")

    @pytest.mark.asyncio
    async def test_clear_slots_for_date(self, catalog):
        await catalog.add_slot(DAY, "09:00", TYPE_ID)
        await catalog.add_slot(DAY, "14:00", TYPE_ID)
        await catalog.add_slot(date(2024, 6, 11), "09:00", TYPE_ID)
        assert await catalog.clear_slots_for_date(DAY) == 2
        assert len(catalog.list_slots()) == 1

    @pytest.mark.asyncio
    async def test_delete_range_rejects_reversed_dates(self, catalog):
        with pytest.raises(ValidationError):
            await catalog.delete_slots_in_range(date(2024, 6, 12), DAY)

    @pytest.mark.asyncio
    async def test_failed_batch_leaves_pool_untouched(self, catalog, storage):
        existing = await catalog.add_slot(DAY, "09:00", TYPE_ID)
        studio = catalog.get_type(TYPE_ID)
        storage.fail_next()
        with pytest.raises(PersistenceError):
            await catalog.add_slots(
                [catalog.build_slot(DAY, "14:00", studio)], removed_ids=[existing.id]
            )
        assert [s.id for s in catalog.slots_for_date(DAY)] == [existing.id]


class TestOccupation:
    @pytest.mark.asyncio
    async def test_occupied_slot_kept_but_not_offered(self, catalog):
        await catalog.add_slot(DAY, "09:00", TYPE_ID)
        catalog.occupy(DAY, "09:00", OptimisticTransaction("test"))
        assert catalog.is_occupied(DAY, "09:00")
        assert catalog.slots_for_date(DAY, include_occupied=False) == []
        assert len(catalog.slots_for_date(DAY)) == 1
        assert catalog.list_slots() == []
        assert len(catalog.list_slots(SlotFilter(include_occupied=True))) == 1

    @pytest.mark.asyncio
    async def test_occupy_rolls_back(self, catalog):
        tx = OptimisticTransaction("test")
        catalog.occupy(DAY, "09:00", tx)
        tx.rollback()
        assert not catalog.is_occupied(DAY, "09:00")

    @pytest.mark.asyncio
    async def test_release(self, catalog):
        catalog.sync_occupied({(DAY, "09:00")})
        catalog.release(DAY, "09:00", OptimisticTransaction("test"))
        assert not catalog.is_occupied(DAY, "09:00")


class TestRemoteMerge:
    @pytest.mark.asyncio
    async def test_remote_slot_replaces_local_duplicate(self, catalog):
        local = await catalog.add_slot(DAY, "09:00", TYPE_ID)
        catalog.merge_remote_slot(
            make_slot(DAY, "09:00", slot_id="remote").model_dump(mode="json", by_alias=True)
        )
        slots = catalog.slots_for_date(DAY)
        assert [s.id for s in slots] == ["remote"]
        with pytest.raises(NotFoundError):
            catalog.get_slot(local.id)

    @pytest.mark.asyncio
    async def test_remove_remote_slot_ignores_unknown(self, catalog):
        catalog.remove_remote_slot("missing")  # should not raise
