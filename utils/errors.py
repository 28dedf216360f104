# utils/errors.py
# Error taxonomy shared by the registry, the API layer and the client.


class AttendanceError(Exception):
    """Base for every business-rule failure. Carries the API error code and HTTP status."""

    code = "ATTENDANCE_ERROR"
    status = 400
    default_message = "Attendance request rejected"

    def __init__(self, message=None, **details):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self):
        error = {"code": self.code, "message": self.message}
        error.update(self.details)
        return error


class ValidationError(AttendanceError):
    code = "VALIDATION_ERROR"
    status = 400
    default_message = "Missing required fields"


class NotFound(AttendanceError):
    code = "NOT_FOUND"
    status = 404
    default_message = "Session not found"


class SessionExpired(AttendanceError):
    code = "SESSION_EXPIRED"
    status = 400
    default_message = "Session is not active or has expired"


class AlreadyMarked(AttendanceError):
    code = "ALREADY_MARKED"
    status = 409
    default_message = "Attendance already marked for this session"


class OutOfRange(AttendanceError):
    code = "OUT_OF_RANGE"
    status = 400
    default_message = "Location is outside the allowed radius"

    def __init__(self, message=None, distance=None, radius=None):
        super().__init__(message, distance=distance, radius=radius)
        self.distance = distance
        self.radius = radius


class MalformedToken(AttendanceError):
    code = "MALFORMED_TOKEN"
    status = 400
    default_message = "Invalid QR code"


class Unauthorized(AttendanceError):
    code = "UNAUTHORIZED"
    status = 401
    default_message = "Authentication required"


class InvalidCredentials(Unauthorized):
    code = "INVALID_CREDENTIALS"
    default_message = "Invalid username or password"


ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (ValidationError, NotFound, SessionExpired, AlreadyMarked,
                OutOfRange, MalformedToken, Unauthorized, InvalidCredentials)
}


def error_from_payload(error):
    """Rebuild the matching exception from an API ``error`` object."""
    error = error or {}
    code = error.get("code")
    message = error.get("message")
    if code == OutOfRange.code:
        return OutOfRange(message, distance=error.get("distance"), radius=error.get("radius"))
    cls = ERRORS_BY_CODE.get(code)
    if cls is None:
        exc = AttendanceError(message)
        exc.code = code or AttendanceError.code
        return exc
    extra = {k: v for k, v in error.items() if k not in ("code", "message")}
    return cls(message, **extra)
