"""Tests for the next-free-slot search."""

from datetime import date, timedelta

import pytest

from agenda.errors import ValidationError
from agenda.schemas.appointment_schema import AppointmentStatus
from agenda.scheduling.finder import RELOCATION_HORIZON_DAYS
from tests.conftest import DAY, build_service, make_appointment, make_slot


class TestNextSlotFinder:
    @pytest.mark.asyncio
    async def test_earliest_time_first(self):
        service = await build_service(slots=[make_slot(DAY, "15:00"), make_slot(DAY, "09:00")])
        found = service.finder.find(DAY)
        assert (found.date, found.time) == (DAY, "09:00")

    @pytest.mark.asyncio
    async def test_skips_confirmed_slots(self):
        service = await build_service(
            slots=[make_slot(DAY, "09:00"), make_slot(DAY, "15:00")],
            appointments=[make_appointment("ana", time="09:00", status=AppointmentStatus.CONFIRMED)],
        )
        assert service.finder.find(DAY).time == "15:00"

    @pytest.mark.asyncio
    async def test_pending_does_not_block(self):
        service = await build_service(
            slots=[make_slot(DAY, "09:00")],
            appointments=[make_appointment("ana", time="09:00")],
        )
        assert service.finder.find(DAY).time == "09:00"

    @pytest.mark.asyncio
    async def test_moves_to_following_days(self):
        later = DAY + timedelta(days=3)
        service = await build_service(slots=[make_slot(later, "10:00")])
        assert service.finder.find(DAY).date == later

    @pytest.mark.asyncio
    async def test_ignores_earlier_days(self):
        service = await build_service(slots=[make_slot(DAY - timedelta(days=1), "10:00")])
        assert service.finder.find(DAY) is None

    @pytest.mark.asyncio
    async def test_last_day_of_horizon_is_searched(self):
        last = DAY + timedelta(days=RELOCATION_HORIZON_DAYS - 1)
        assert last == date(2024, 7, 9)
        service = await build_service(slots=[make_slot(last, "10:00")])
        assert service.finder.find(DAY).date == last

    @pytest.mark.asyncio
    async def test_beyond_horizon_not_found(self):
        beyond = DAY + timedelta(days=RELOCATION_HORIZON_DAYS)
        service = await build_service(slots=[make_slot(beyond, "10:00")])
        assert service.finder.find(DAY) is None

    @pytest.mark.asyncio
    async def test_exclude_skips_claimed_slots(self):
        service = await build_service(slots=[make_slot(DAY, "09:00"), make_slot(DAY, "10:00")])
        assert service.finder.find(DAY, exclude={(DAY, "09:00")}).time == "10:00"

    @pytest.mark.asyncio
    async def test_horizon_must_be_positive(self):
        service = await build_service()
        with pytest.raises(ValidationError):
            service.finder.find(DAY, horizon_days=0)

    @pytest.mark.asyncio
    async def test_service_wrapper_accepts_iso_string(self):
        service = await build_service(slots=[make_slot(DAY, "09:00")])
        assert service.find_next_free_slot("2024-06-10").key == (DAY, "09:00")
