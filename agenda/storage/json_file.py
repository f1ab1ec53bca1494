"""
JSON-file storage backend.

Keeps the whole agenda in a single JSON document on disk, written through a
temporary file and ``os.replace`` so a crash never leaves a half-written
document behind. Suitable for a single-user local install; the change feed
is never fed by another writer here.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Iterable, Union

from pydantic import ValidationError as PydanticValidationError

from agenda.errors import PersistenceError
from agenda.schemas.appointment_schema import Appointment
from agenda.schemas.availability_schema import AvailabilitySlot, AvailabilityType
from agenda.storage.base import AgendaStorage

logger = logging.getLogger(__name__)


def _empty_document() -> dict[str, Any]:
    return {"types": [], "slots": [], "appointments": [], "preservedPayments": {}}


class JsonFileStorage(AgendaStorage):
    """Stores records in the camelCase layout, one list per record kind."""

    def __init__(self, path: Union[str, Path]) -> None:
        super().__init__()
        self.path = Path(path)

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return _empty_document()
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"Cannot read agenda file {self.path}: {exc}") from exc
        for key, value in _empty_document().items():
            document.setdefault(key, value)
        return document

    def _write(self, document: dict[str, Any]) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            if self.path.parent != Path("."):
                self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(document, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise PersistenceError(f"Cannot write agenda file {self.path}: {exc}") from exc
        logger.debug("Agenda file written: %s", self.path)

    @staticmethod
    def _dump(record: Any) -> dict[str, Any]:
        return record.model_dump(mode="json", by_alias=True)

    @staticmethod
    def _upsert(rows: list[dict[str, Any]], row: dict[str, Any]) -> None:
        for index, existing in enumerate(rows):
            if existing.get("id") == row["id"]:
                rows[index] = row
                return
        rows.append(row)

    def _parse(self, model: Any, rows: list[dict[str, Any]]) -> list[Any]:
        try:
            return [model.model_validate(row) for row in rows]
        except PydanticValidationError as exc:
            raise PersistenceError(f"Corrupt record in {self.path}: {exc}") from exc

    async def load_types(self) -> list[AvailabilityType]:
        return self._parse(AvailabilityType, self._read()["types"])

    async def save_type(self, availability_type: AvailabilityType) -> None:
        document = self._read()
        self._upsert(document["types"], self._dump(availability_type))
        self._write(document)

    async def delete_type(self, type_id: str) -> None:
        document = self._read()
        document["types"] = [row for row in document["types"] if row.get("id") != type_id]
        self._write(document)

    async def load_slots(self) -> list[AvailabilitySlot]:
        return self._parse(AvailabilitySlot, self._read()["slots"])

    async def save_slots(
        self, batch: list[AvailabilitySlot], removed_ids: Iterable[str] = ()
    ) -> None:
        document = self._read()
        removed = set(removed_ids)
        rows = [row for row in document["slots"] if row.get("id") not in removed]
        for slot in batch:
            self._upsert(rows, self._dump(slot))
        document["slots"] = rows
        self._write(document)

    async def load_appointments(self) -> list[Appointment]:
        return self._parse(Appointment, self._read()["appointments"])

    async def save_appointments(self, batch: list[Appointment]) -> None:
        document = self._read()
        for appointment in batch:
            self._upsert(document["appointments"], self._dump(appointment))
        self._write(document)

    async def delete_appointment(
        self, appointment_id: str, preserve_payments: bool = False
    ) -> None:
        document = self._read()
        kept = []
        for row in document["appointments"]:
            if row.get("id") == appointment_id:
                if preserve_payments:
                    document["preservedPayments"][appointment_id] = row.get("paidAmount")
                continue
            kept.append(row)
        document["appointments"] = kept
        self._write(document)
