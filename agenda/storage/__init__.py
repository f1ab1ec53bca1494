from agenda.storage.base import AgendaStorage
from agenda.storage.json_file import JsonFileStorage
from agenda.storage.memory import InMemoryStorage

__all__ = ["AgendaStorage", "InMemoryStorage", "JsonFileStorage"]
