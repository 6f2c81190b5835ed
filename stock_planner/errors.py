class PlannerError(Exception):
    """Base class for every error raised by the planner."""


class SnapshotUnavailableError(PlannerError):
    """The inventory snapshot could not be fetched; nothing can be planned."""


class PlatformError(PlannerError):
    """The commerce platform rejected or failed a request."""

    def __init__(self, message: str, details=None):
        super().__init__(message)
        self.details = details


class StateStoreError(PlannerError):
    """Alert state could not be read or written."""
