from __future__ import annotations


class CheckinError(Exception):
    """Base exception for the check-in engine. Carries the HTTP status to answer with."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(CheckinError):
    """Raised when the request is malformed or missing required fields."""

    status_code = 400
    default_message = "Invalid request"


class WorkerNotFound(CheckinError):
    status_code = 404
    default_message = "Worker not found"


class MethodNotEnabled(CheckinError):
    """Raised when the worker has not enrolled the requested method."""

    status_code = 403
    default_message = "Attendance method not enabled for this worker"


class NoEnrollment(CheckinError):
    status_code = 404
    default_message = "No face enrollment found for this worker"


class NoCredentials(CheckinError):
    status_code = 404
    default_message = "No fingerprint credentials found"


class CredentialNotFound(CheckinError):
    status_code = 404
    default_message = "Authenticator not found"


class VerificationFailed(CheckinError):
    """Raised on a biometric mismatch. The message never carries scores or thresholds."""

    status_code = 401
    default_message = "Biometric verification failed"


class GeofenceViolation(CheckinError):
    status_code = 403
    default_message = "Outside of the worksite geofence"

    def __init__(self, distance_meters: float, radius_meters: float) -> None:
        self.distance_meters = distance_meters
        self.radius_meters = radius_meters
        super().__init__(
            f"You are {distance_meters:.1f}m away from the worksite. "
            f"Maximum allowed distance is {radius_meters:.0f}m."
        )


class AlreadyCheckedOutToday(CheckinError):
    status_code = 409
    default_message = "Worker has already checked in and out today"


class StorageError(CheckinError):
    """Raised when persisting attendance fails unexpectedly."""

    status_code = 500
    default_message = "Internal server error"
