class ThrottleError(Exception):
    """Base class for errors raised inside the throttling core."""


class StoreUnavailable(ThrottleError):
    """A collaborator store could not be read or written."""


class InvalidAlertType(ThrottleError, ValueError):
    """An alert type with no rule was passed to the alert gate."""

    def __init__(self, alert_type: object):
        super().__init__(f"Unknown alert type: {alert_type!r}")
        self.alert_type = alert_type
