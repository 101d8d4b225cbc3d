"""Error taxonomy for discovery, connection and flashing."""

from typing import Optional


class FlasherError(Exception):
    """Base class for all flasher errors.

    Attributes:
        kind: Stable upper-case error code (e.g. "DEVICE_LOST")
        code: Application-level status code used in API responses
    """

    kind = "FLASHER_ERROR"
    code = 500

    def __init__(self, message: str = "", cause: Optional[BaseException] = None):
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.cause = cause

    @property
    def stage(self):
        return None

    def to_dict(self) -> dict:
        """Structured form for API responses and completion events."""
        return {
            "kind": self.kind,
            "stage": self.stage.value if self.stage is not None else None,
            "cause": describe_cause(self.cause) if self.cause else self.message,
        }


class TransportError(FlasherError):
    """Raised by USB backends when a transport call fails."""

    kind = "TRANSPORT_ERROR"


class BackendUnavailable(TransportError):
    """No usable USB backend on this host (e.g. libusb missing)."""

    kind = "TRANSPORT_UNAVAILABLE"


class NoDeviceSelected(FlasherError):
    kind = "NO_DEVICE_SELECTED"
    code = 400


class NoMatchingDevice(FlasherError):
    kind = "NO_MATCHING_DEVICE"
    code = 404


class ConnectionFailed(FlasherError):
    """Connect aborted; ``cause`` holds the underlying error."""

    kind = "CONNECTION_FAILED"
    code = 500

    def __init__(self, cause: BaseException):
        super().__init__(f"{self.kind}: {describe_cause(cause)}", cause=cause)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["cause_kind"] = getattr(self.cause, "kind", type(self.cause).__name__)
        return data


class DeviceAlreadyOpen(FlasherError):
    kind = "DEVICE_ALREADY_OPEN"
    code = 409


class InterfaceClaimDegraded(FlasherError):
    """Interface claim failed; the connection continues in degraded mode.

    Recorded on the handle as a warning, never raised.
    """

    kind = "INTERFACE_CLAIM_DEGRADED"
    code = 200


class DeviceLost(FlasherError):
    kind = "DEVICE_LOST"
    code = 410


class NotReady(FlasherError):
    kind = "NOT_READY"
    code = 409


class SessionBusy(FlasherError):
    kind = "SESSION_BUSY"
    code = 409


class StageFailed(FlasherError):
    kind = "STAGE_FAILED"
    code = 500

    def __init__(self, stage, cause: Optional[BaseException] = None, message: str = ""):
        super().__init__(
            message or f"{self.kind}: {stage.value}: {describe_cause(cause)}",
            cause=cause,
        )
        self._stage = stage

    @property
    def stage(self):
        return self._stage


class StageTimeout(StageFailed):
    kind = "STAGE_TIMEOUT"

    def __init__(self, stage, timeout: float):
        super().__init__(
            stage, message=f"{self.kind}: {stage.value} exceeded {timeout:g}s"
        )
        self.timeout = timeout


class FlashCancelled(FlasherError):
    kind = "CANCELLED"
    code = 409


def describe_cause(cause: Optional[BaseException]) -> str:
    """Short diagnostic for a cause exception."""
    if cause is None:
        return "unknown"
    if isinstance(cause, FlasherError):
        return cause.message
    text = str(cause)
    return f"{type(cause).__name__}: {text}" if text else type(cause).__name__
