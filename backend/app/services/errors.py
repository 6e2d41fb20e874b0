"""Exception taxonomy shared by ingestion and the alarm scheduler."""


class MonitorError(Exception):
    """Base class for monitor errors."""


class MalformedEventError(MonitorError):
    """Presence event cannot be interpreted. The event is dropped."""


class AlarmStateError(MonitorError):
    """Open-when-open or close-when-closed.

    Signals corrupted or racing alarm state; never a normal business outcome.
    """

    def __init__(self, message: str, *, network: str, device: str | None = None):
        self.network = network
        self.device = device
        target = f"{network}/{device}" if device else network
        super().__init__(f"{message} ({target})")


class NotificationError(MonitorError):
    """One or more notifications failed after the alarm state was committed."""

    def __init__(self, failures: list[tuple[str, Exception]]):
        self.failures = failures
        details = "; ".join(f"{subject}: {exc!r}" for subject, exc in failures)
        super().__init__(f"{len(failures)} notification(s) failed: {details}")
