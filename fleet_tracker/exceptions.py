"""
Fleet Tracker exception hierarchy

- InvalidInputError: malformed input, raised before any mutation
- RecordNotFoundError: a referenced record does not exist
- InvalidTransitionError: a delivery stop cannot move to the requested state
- StoreError: record store I/O failed (retry is the caller's decision)
"""


class FleetTrackerError(Exception):
    """Base class for all fleet tracker errors"""


class InvalidInputError(FleetTrackerError, ValueError):
    """Input failed validation (bad coordinates, negative interval, empty id...)"""


class RecordNotFoundError(FleetTrackerError, LookupError):
    """Referenced truck/route/alert does not exist in the store"""

    def __init__(self, entity: str, record_id):
        self.entity = entity
        self.record_id = record_id
        super().__init__(f"{entity} '{record_id}' not found")


class StoreError(FleetTrackerError):
    """Record store read/write failed"""


class InvalidTransitionError(InvalidInputError):
    """Requested state change is not allowed from the record's current state"""
