from typing import Any, Dict, List, Optional


# --- Custom Service Layer Exception Classes ---
class ServiceError(Exception):
    """General exception class for the service layer."""
    code = "SERVICE_ERROR"

    def to_detail(self) -> Dict[str, Any]:
        return {"code": self.code, "message": str(self)}


class NotFoundError(ServiceError):
    code = "NOT_FOUND"


class UserNotFoundError(NotFoundError):
    code = "USER_NOT_FOUND"


class SessionNotFoundError(NotFoundError):
    code = "SESSION_NOT_FOUND"


class ClassNotFoundError(NotFoundError):
    code = "CLASS_NOT_FOUND"


class AuthorizationError(ServiceError):
    """Exception class for authorization-related errors."""
    code = "FORBIDDEN"


class InvalidOrExpiredOtpError(ServiceError):
    code = "INVALID_OR_EXPIRED_OTP"


class ClockInDeadlinePassedError(InvalidOrExpiredOtpError):
    code = "CLOCK_IN_DEADLINE_PASSED"


class NotEnrolledError(ServiceError):
    code = "NOT_ENROLLED"


# --- Anti-proxy policy rejections ---
class AttendanceBlockedError(ServiceError):
    """Raised after the instructor flag has been attempted. Carries the reasons shown to the student."""
    code = "ATTENDANCE_BLOCKED"

    def __init__(self, message: str, reasons: Optional[List[str]] = None):
        super().__init__(message)
        self.reasons = list(reasons or [])

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        detail["reasons"] = self.reasons
        return detail


class CredentialSharingBlockedError(AttendanceBlockedError):
    code = "CREDENTIAL_SHARING_BLOCKED"


class RepeatedSuspiciousAttemptsBlockedError(AttendanceBlockedError):
    code = "REPEATED_SUSPICIOUS_ATTEMPTS_BLOCKED"


class SuspiciousActivityBlockedError(AttendanceBlockedError):
    code = "SUSPICIOUS_ACTIVITY_BLOCKED"


# --- Location ---
class LocationPermissionRequiredError(ServiceError):
    code = "LOCATION_PERMISSION_REQUIRED"


class LocationVerificationFailedError(ServiceError):
    code = "LOCATION_VERIFICATION_FAILED"

    def __init__(self, message: str, distance_meters: float, radius_meters: float):
        super().__init__(message)
        self.distance_meters = distance_meters
        self.radius_meters = radius_meters

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        detail["distance_meters"] = round(self.distance_meters)
        detail["radius_meters"] = self.radius_meters
        return detail


# --- State machine ordering ---
class AlreadyCompletedError(ServiceError):
    code = "ALREADY_COMPLETED"


class MustClockInFirstError(ServiceError):
    code = "MUST_CLOCK_IN_FIRST"


class AlreadyClockedOutError(ServiceError):
    code = "ALREADY_CLOCKED_OUT"


class TooEarlyToClockOutError(ServiceError):
    code = "TOO_EARLY_TO_CLOCK_OUT"

    def __init__(self, message: str, remaining_minutes: int):
        super().__init__(message)
        self.remaining_minutes = remaining_minutes

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        detail["remaining_minutes"] = self.remaining_minutes
        return detail


class NotificationError(Exception):
    """Raised when a notification could not be handed to the delivery webhook."""
    pass
