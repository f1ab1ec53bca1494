"""
Command-line entry point over the JSON-file agenda.

Usage:
    python main.py types
    python main.py expand --start 2024-06-10 --end 2024-06-14 --times 09:00,14:00 --type <id>
    python main.py book --date 2024-06-10 --time 14:00 --title "Ensaio" --client "Ana"
    python main.py confirm <appointment-id>
    python main.py upcoming --limit 5
"""

import argparse
import asyncio
import logging
import sys
from typing import Any

from agenda.config import settings
from agenda.errors import AgendaError
from agenda.schemas.appointment_schema import AppointmentStatus
from agenda.service import AgendaService
from agenda.storage.json_file import JsonFileStorage

logger = logging.getLogger(__name__)


def _csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _weekdays(value: str) -> set[int]:
    try:
        return {int(item) for item in _csv(value)}
    except ValueError:
        raise argparse.ArgumentTypeError(f"Weekdays must be integers 0-6, got {value!r}") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage availability and appointments.")
    parser.add_argument(
        "--data",
        default=settings.storage.data_path,
        help="Path to the agenda JSON file (default: AGENDA_DATA_PATH).",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("types", help="List availability types.")

    add_type = commands.add_parser("add-type", help="Create an availability type.")
    add_type.add_argument("name")
    add_type.add_argument("color")

    expand = commands.add_parser("expand", help="Generate slots over a date range.")
    expand.add_argument("--start", required=True)
    expand.add_argument("--end", required=True)
    expand.add_argument("--times", type=_csv, default=list(settings.scheduling.default_time_slots))
    expand.add_argument("--weekdays", type=_weekdays, default=set(),
                        help="Comma separated, 0=Sunday ... 6=Saturday (default: every day).")
    expand.add_argument("--type", dest="type_id", required=True)
    expand.add_argument("--clear", action="store_true", help="Replace slots that already exist.")

    slots = commands.add_parser("slots", help="List open slots for a day.")
    slots.add_argument("date")

    clear = commands.add_parser("clear-date", help="Remove every slot on a day.")
    clear.add_argument("date")

    book = commands.add_parser("book", help="Create a pending appointment.")
    book.add_argument("--date", required=True)
    book.add_argument("--time", required=True)
    book.add_argument("--title", required=True)
    book.add_argument("--client", required=True)
    book.add_argument("--type", dest="type", default="")
    book.add_argument("--package", dest="package_id", default=None)
    book.add_argument("--description", default=None)

    confirm = commands.add_parser("confirm", help="Confirm an appointment and resolve collisions.")
    confirm.add_argument("appointment_id")

    delete = commands.add_parser("delete", help="Delete an appointment.")
    delete.add_argument("appointment_id")
    delete.add_argument("--keep-payments", action="store_true")

    upcoming = commands.add_parser("upcoming", help="List upcoming confirmed appointments.")
    upcoming.add_argument("--limit", type=int, default=None)

    next_free = commands.add_parser("next-free", help="Find the next free slot from a date.")
    next_free.add_argument("date")

    return parser


async def run_command(service: AgendaService, args: argparse.Namespace) -> list[str]:
    """Execute one parsed command and return the lines to print."""
    await service.load()
    lines: list[str] = []

    if args.command == "types":
        lines = [f"{t.id}  {t.name}  {t.color}" for t in service.list_types()]
    elif args.command == "add-type":
        created = await service.add_type(args.name, args.color)
        lines = [f"Created type {created.id}"]
    elif args.command == "expand":
        result = await service.expand_and_create_slots(
            args.start, args.end, args.weekdays, args.times, args.type_id, args.clear
        )
        lines = [
            f"created={result.created} conflicts={result.conflicts} duplicates={result.duplicates}"
        ]
    elif args.command == "slots":
        lines = [f"{s.id}  {s.date} {s.time}  {s.label}" for s in service.availability_for_date(args.date)]
    elif args.command == "clear-date":
        lines = [f"Removed {await service.clear_slots_for_date(args.date)} slot(s)"]
    elif args.command == "book":
        data: dict[str, Any] = {
            "date": args.date, "time": args.time, "title": args.title, "client": args.client,
            "type": args.type, "package_id": args.package_id, "description": args.description,
        }
        appointment = await service.create_appointment(data)
        lines = [f"Booked {appointment.id} ({appointment.status.value})"]
    elif args.command == "confirm":
        resolutions = await service.update_appointment(
            args.appointment_id, {"status": AppointmentStatus.CONFIRMED}
        )
        lines = [f"Confirmed {args.appointment_id}"]
        for r in resolutions:
            target = f"{r.new_slot.date} {r.new_slot.time}" if r.new_slot else "needs rescheduling"
            lines.append(f"  {r.client}: {r.outcome.value} -> {target}")
    elif args.command == "delete":
        await service.delete_appointment(args.appointment_id, preserve_payments=args.keep_payments)
        lines = [f"Deleted {args.appointment_id}"]
    elif args.command == "upcoming":
        lines = [
            f"{a.date} {a.time}  {a.client}  {a.title}"
            for a in service.list_upcoming_confirmed(limit=args.limit)
        ]
    elif args.command == "next-free":
        found = service.find_next_free_slot(args.date)
        lines = [f"{found.date} {found.time}" if found else "No free slot within the horizon"]

    service.close()
    return lines


def main() -> None:
    args = build_parser().parse_args()
    service = AgendaService(JsonFileStorage(args.data))
    try:
        lines = asyncio.run(run_command(service, args))
    except AgendaError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        sys.exit(1)
    for line in lines:
        sys.stdout.write(line + "\n")


if __name__ == "__main__":
    main()
