"""Exception hierarchy."""


class CategorizerError(Exception):
    """Base class for all receipt categorizer errors."""


class StorageError(CategorizerError):
    """A read or write against the receipt store failed. Safe to retry."""


class IngestError(CategorizerError):
    """An extraction file could not be turned into a receipt."""


class InvalidTransition(CategorizerError):
    """A receipt status change that the state machine does not allow."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"cannot move receipt from {current!r} to {target!r}")
        self.current = current
        self.target = target
