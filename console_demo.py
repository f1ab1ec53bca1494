"""
Offline console demo - walks through slot generation and conflict resolution.

Uses the real catalog, ledger, expander, finder, and resolver on top of the
in-memory storage backend. No files are written.

Usage:
    python console_demo.py
    python console_demo.py --scenario relocate
    python console_demo.py --scenario flag
"""

import argparse
import asyncio
from datetime import date

from agenda.config import settings
from agenda.schemas.appointment_schema import Appointment, AppointmentStatus
from agenda.scheduling.resolver import ResolutionOutcome
from agenda.service import AgendaService
from agenda.storage.memory import InMemoryStorage

BLUE = "\033[94m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"
BOLD = "\033[1m"

DEMO_DAY = date(2024, 6, 10)
NEXT_DAY = date(2024, 6, 11)


class DemoSession:
    """Drives an AgendaService through scripted scenarios in the terminal."""

    def __init__(self) -> None:
        self.service = AgendaService(InMemoryStorage())

    def say(self, text: str) -> None:
        print(f"{GREEN}{BOLD}[{settings.business_name}]{RESET} {GREEN}{text}{RESET}")

    def system_log(self, text: str) -> None:
        print(f"{DIM}  >> {text}{RESET}")

    def show_appointment(self, appointment: Appointment) -> None:
        color = BLUE if appointment.status == AppointmentStatus.CONFIRMED else YELLOW
        print(
            f"{color}  {appointment.client:<10} {appointment.date} {appointment.time} "
            f"{appointment.status.value:<9}{RESET} {appointment.description or ''}"
        )

    async def _book_pair(self) -> tuple[Appointment, Appointment]:
        first = await self.service.create_appointment({
            "date": DEMO_DAY, "time": "14:00", "title": "Ensaio Ana", "client": "Ana",
        })
        second = await self.service.create_appointment({
            "date": DEMO_DAY, "time": "14:00", "title": "Ensaio Bruno", "client": "Bruno",
            "description": "Prefere tarde",
        })
        self.system_log(f"Two pending bookings at {DEMO_DAY} 14:00")
        return first, second

    async def run_scenario(self, scenario: str) -> None:
        await self.service.load()
        type_id = self.service.list_types()[0].id

        if scenario == "relocate":
            result = await self.service.expand_and_create_slots(
                NEXT_DAY, NEXT_DAY, set(), ["14:00"], type_id
            )
            self.system_log(f"Generated slots: {result.to_dict()}")
        else:
            self.system_log("No free slots in the next 30 days")

        first, second = await self._book_pair()
        self.say(f"Confirming {first.client}'s booking...")
        resolutions = await self.service.update_appointment(
            first.id, {"status": AppointmentStatus.CONFIRMED}
        )

        for resolution in resolutions:
            if resolution.outcome == ResolutionOutcome.RELOCATED:
                self.say(
                    f"{resolution.client} moved to {resolution.new_slot.date} "
                    f"{resolution.new_slot.time}."
                )
            else:
                print(f"{RED}{BOLD}  {resolution.client} needs manual rescheduling.{RESET}")

        for appointment in self.service.ledger.list_all():
            self.show_appointment(appointment)

    def run(self, scenario: str) -> None:
        print(f"\n{BOLD}=== {scenario} ==={RESET}")
        asyncio.run(self.run_scenario(scenario))


def main() -> None:
    parser = argparse.ArgumentParser(description="Offline conflict resolution demo")
    parser.add_argument(
        "--scenario",
        choices=["relocate", "flag"],
        default=None,
        help="Play a single scenario instead of both",
    )
    args = parser.parse_args()

    for scenario in [args.scenario] if args.scenario else ["relocate", "flag"]:
        DemoSession().run(scenario)


if __name__ == "__main__":
    main()
