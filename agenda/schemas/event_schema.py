"""Out-of-band change notifications delivered by the storage layer."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ChangeTable(str, Enum):
    AVAILABILITY_TYPES = "availability_types"
    AVAILABILITY_SLOTS = "availability_slots"
    APPOINTMENTS = "appointments"


class ChangeOperation(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """One row-level change. DELETE events only need ``record["id"]``."""

    table: ChangeTable
    operation: ChangeOperation
    record: dict[str, Any] = Field(default_factory=dict)
