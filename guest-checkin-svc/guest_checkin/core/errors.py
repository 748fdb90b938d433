from __future__ import annotations


class CheckinError(Exception):
    """Base class for check-in reconciliation failures."""


class InvalidPayload(CheckinError):
    """No guest code could be extracted from a scanned payload."""

    def __init__(self, raw: str | None, reason: str = "no guest code found"):
        super().__init__(reason)
        self.raw = raw
        self.reason = reason


class StoreUnavailable(CheckinError):
    """The backing check-in store could not confirm a decision.

    The scan is unresolved: neither accepted nor a duplicate.
    """


class DeviceUnavailable(CheckinError):
    """The camera/decode feed could not be acquired or failed mid-stream."""
