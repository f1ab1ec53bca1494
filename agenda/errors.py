"""Error taxonomy shared by the catalog, ledger, and facade."""


class AgendaError(Exception):
    """Base class for every error raised by the scheduling core."""


class ValidationError(AgendaError):
    """Malformed input. Raised before any state is touched."""


class InvariantError(AgendaError):
    """The operation would break a scheduling invariant. Nothing was changed."""


class PersistenceError(AgendaError):
    """Storage failed. The in-memory state has been rolled back."""


class NotFoundError(AgendaError, KeyError):
    """No record with the requested id."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "not found"
