"""End-to-end tests through the AgendaService facade."""

import asyncio
import logging
from datetime import date, timedelta

import pytest

from agenda.errors import InvariantError, NotFoundError, ValidationError
from agenda.schemas.appointment_schema import RELOCATED_MARKER, AppointmentStatus
from agenda.schemas.package_schema import Package
from agenda.scheduling.resolver import ResolutionOutcome
from agenda.service import AgendaService
from agenda.storage.json_file import JsonFileStorage
from agenda.storage.memory import InMemoryStorage
from agenda.tools.packages import FALLBACK_CATEGORY, PackageDirectory, strip_package_prefix
from main import build_parser, run_command
from tests.conftest import DAY, TYPE_ID, build_service, make_appointment, make_slot, make_type


def booking(**overrides):
    data = {"date": "2024-06-10", "time": "14:00", "title": "Ensaio", "client": "Ana"}
    data.update(overrides)
    return data


class TestBookingFlow:
    @pytest.mark.asyncio
    async def test_expand_one_day_two_times(self, service):
        result = await service.expand_and_create_slots(
            "2024-06-10", "2024-06-10", set(), ["09:00", "10:00"], TYPE_ID, False
        )
        assert result.to_dict() == {"created": 2, "conflicts": 0, "duplicates": 0}

    @pytest.mark.asyncio
    async def test_confirm_moves_collision_to_next_day(self):
        next_day = date(2024, 6, 11)
        service = await build_service(
            slots=[make_slot(DAY, "14:00"), make_slot(next_day, "14:00")],
            appointments=[make_appointment("a"), make_appointment("b", description="Cliente novo")],
        )
        await service.update_appointment("a", {"status": "confirmed"})

        b = service.ledger.get("b")
        assert (b.date, b.time, b.status) == (next_day, "14:00", AppointmentStatus.PENDING)
        assert b.description.endswith("(Reagendado automaticamente)")
        assert service.ledger.get("a").is_confirmed

    @pytest.mark.asyncio
    async def test_generate_book_confirm_and_relocate(self, service):
        await service.expand_and_create_slots(
            "2024-06-10", "2024-06-11", weekdays=[1, 2], times=["14:00", "16:00"], type_id=TYPE_ID
        )
        ana = await service.create_appointment(booking(client="Ana"))
        bia = await service.create_appointment(booking(client="Bia"))
        assert service.conflict_counts() == {(DAY, "14:00"): 2}

        check = service.validate_time_conflict(DAY, "14:00", "confirmed", excluding_id=ana.id)
        assert check.needs_resolution

        resolutions = await service.update_appointment(ana.id, {"status": "confirmed"})
        assert [r.outcome for r in resolutions] == [ResolutionOutcome.RELOCATED]
        moved = service.ledger.get(bia.id)
        assert (moved.date, moved.time) == (DAY, "16:00")
        assert moved.description == RELOCATED_MARKER
        assert [s.time for s in service.availability_for_date(DAY)] == ["16:00"]
        assert service.conflict_counts() == {(DAY, "16:00"): 1}

    @pytest.mark.asyncio
    async def test_add_slot_refused_under_confirmed_booking(self, service):
        await service.create_appointment(booking(status="confirmed"))
        assert await service.add_slot(DAY, "14:00", TYPE_ID) is None
        assert await service.add_slot(DAY, "15:00", TYPE_ID) is not None

    @pytest.mark.asyncio
    async def test_confirming_onto_confirmed_slot_rejected(self, service):
        await service.create_appointment(booking(status="confirmed"))
        with pytest.raises(InvariantError):
            await service.create_appointment(booking(client="Bia", status="confirmed"))

    @pytest.mark.asyncio
    async def test_clear_slots_for_date(self, service):
        await service.expand_and_create_slots(DAY, DAY, [], ["09:00", "10:00"], TYPE_ID)
        assert await service.clear_slots_for_date("2024-06-10") == 2
        assert service.availability_for_date(DAY) == []

    @pytest.mark.asyncio
    async def test_invalid_payload_rejected(self, service):
        with pytest.raises(ValidationError):
            await service.create_appointment({"date": "2024-06-10"})
        with pytest.raises(ValidationError):
            await service.update_appointment(
                (await service.create_appointment(booking())).id, {"status": "cancelled"}
            )

    @pytest.mark.asyncio
    async def test_unknown_appointment(self, service):
        with pytest.raises(NotFoundError):
            await service.update_appointment("missing", {"title": "x"})


class TestConcurrentConfirmations:
    @pytest.mark.asyncio
    async def test_only_one_confirmation_wins(self):
        service = await build_service(
            slots=[make_slot(DAY, "14:00")],
            appointments=[make_appointment("ana"), make_appointment("bia")],
        )
        results = await asyncio.gather(
            service.update_appointment("ana", {"status": "confirmed"}),
            service.update_appointment("bia", {"status": "confirmed"}),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], InvariantError)
        confirmed = service.ledger.by_status(AppointmentStatus.CONFIRMED)
        assert len(confirmed) == 1
        assert len(service.ledger.list_at(DAY, "14:00")) == 2


class TestPackages:
    @pytest.mark.asyncio
    async def test_type_taken_from_package_category(self):
        packages = PackageDirectory([Package(id="42", name="Gestante Premium", category="Gestante")])
        service = AgendaService(InMemoryStorage(types=[make_type()]), packages=packages)
        await service.load()
        created = await service.create_appointment(booking(package_id="orcamento-42"))
        assert created.type == "Gestante"

    @pytest.mark.asyncio
    async def test_unknown_package_falls_back(self, service):
        created = await service.create_appointment(booking(package_id="nope"))
        assert created.type == FALLBACK_CATEGORY

    @pytest.mark.asyncio
    async def test_explicit_type_wins(self, service):
        created = await service.create_appointment(booking(type="Reunião"))
        assert created.type == "Reunião"

    def test_strip_package_prefix(self):
        assert strip_package_prefix("pacote-7") == "7"
        assert strip_package_prefix("7") == "7"


class TestUpcoming:
    @pytest.mark.asyncio
    async def test_upcoming_confirmed_sorted_and_limited(self):
        appointments = [
            make_appointment(f"c{i}", slot_date=DAY + timedelta(days=i), status=AppointmentStatus.CONFIRMED)
            for i in (3, 1, 2)
        ]
        appointments.append(make_appointment("p", slot_date=DAY))
        appointments.append(make_appointment(
            "old", slot_date=DAY - timedelta(days=1), status=AppointmentStatus.CONFIRMED
        ))
        service = await build_service(appointments=appointments)

        upcoming = service.list_upcoming_confirmed(limit=2, today=DAY)
        assert [a.id for a in upcoming] == ["c1", "c2"]
        assert len(service.list_upcoming_confirmed(today=DAY)) == 3


class TestTypes:
    @pytest.mark.asyncio
    async def test_type_lifecycle(self, service):
        extra = await service.add_type("Externo", "#f59e0b")
        renamed = await service.update_type(extra.id, {"color": "#000000"})
        assert renamed.color == "#000000"
        await service.delete_type(extra.id)
        with pytest.raises(InvariantError):
            await service.delete_type(TYPE_ID)


class TestCommandLine:
    @pytest.mark.asyncio
    async def test_expand_book_and_confirm(self, tmp_path):
        data = str(tmp_path / "agenda.json")

        async def run(*argv):
            args = build_parser().parse_args(["--data", data, *argv])
            return await run_command(AgendaService(JsonFileStorage(args.data)), args)

        types = await run("types")
        type_id = types[0].split()[0]
        expanded = await run("expand", "--start", "2024-06-10", "--end", "2024-06-10",
                             "--times", "14:00,16:00", "--type", type_id)
        assert expanded == ["created=2 conflicts=0 duplicates=0"]

        first = (await run("book", "--date", "2024-06-10", "--time", "14:00",
                           "--title", "Ensaio", "--client", "Ana"))[0].split()[1]
        await run("book", "--date", "2024-06-10", "--time", "14:00", "--title", "Ensaio", "--client", "Bia")

        confirmed = await run("confirm", first)
        assert confirmed[0] == f"Confirmed {first}"
        assert confirmed[1] == "  Bia: relocated -> 2024-06-10 16:00"
        open_slots = await run("slots", "2024-06-10")
        assert len(open_slots) == 1
        assert "2024-06-10 16:00" in open_slots[0]
        assert await run("next-free", "2024-06-10") == ["2024-06-10 16:00"]
        assert await run("next-free", "2024-06-11") == ["No free slot within the horizon"]


class TestOperationLogging:
    @pytest.mark.asyncio
    async def test_store_records_carry_operation_id(self, service, caplog):
        with caplog.at_level(logging.INFO, logger="agenda.scheduling"):
            await service.add_slot(DAY, "09:00", TYPE_ID)
            await service.create_appointment(booking(time="09:00"))

        by_module = {r.name: r for r in caplog.records}
        catalog_record = by_module["agenda.scheduling.catalog"]
        ledger_record = by_module["agenda.scheduling.ledger"]
        assert catalog_record.operation_id.startswith("OP-")
        assert ledger_record.operation_id.startswith("OP-")
        assert catalog_record.operation_id != ledger_record.operation_id
