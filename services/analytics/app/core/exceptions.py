"""Domain exceptions for event tracking and retry processing."""


class EventTrackingError(Exception):
    """An event could be neither stored nor queued for retry."""

    def __init__(self, event_id: str, message: str = "Failed to track event"):
        super().__init__(message)
        self.event_id = event_id


class ClickTrackingError(EventTrackingError):
    """A click could be neither stored nor queued for retry."""

    def __init__(self, event_id: str, message: str = "Failed to track click event"):
        super().__init__(event_id, message)


class RetryReplayError(Exception):
    """A queued item cannot be replayed (malformed payload or unknown type)."""

    def __init__(self, item_id: int | None, message: str):
        super().__init__(message)
        self.item_id = item_id
