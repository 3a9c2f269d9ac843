from enum import Enum
from typing import Any, Optional


class TrackingError(Exception):
    """Base class for failures raised by the tracking core."""


class PersistenceError(TrackingError):
    """The offline store could not be written."""


class SyncError(TrackingError):
    """A reconciliation step could not be carried out."""


class RemoteStorageError(SyncError):
    """The Remote Storage API refused a request or could not be reached.

    `status_code` is None for transport failures (no response at all).
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        errors: Optional[list[Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.errors = errors or []

    @property
    def not_found(self) -> bool:
        return self.status_code == 404


class GeolocationErrorCode(str, Enum):
    permission_denied = "permission_denied"
    position_unavailable = "position_unavailable"
    timeout = "timeout"
    unknown = "unknown"


_GEOLOCATION_MESSAGES = {
    GeolocationErrorCode.permission_denied: "User denied the request for Geolocation",
    GeolocationErrorCode.position_unavailable: "Location information is unavailable",
    GeolocationErrorCode.timeout: "The request to get user location timed out",
    GeolocationErrorCode.unknown: "An unknown error occurred",
}


class GeolocationError(TrackingError):
    """Sensor-side failure reported by a geolocation source."""

    def __init__(self, code: GeolocationErrorCode, message: Optional[str] = None):
        self.code = GeolocationErrorCode(code)
        self.message = message or _GEOLOCATION_MESSAGES[self.code]
        super().__init__(self.message)
