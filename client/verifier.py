import logging
import threading
import time
from enum import Enum

from client.api_client import TransportError
from client.devices import CaptureError
from utils.errors import AttendanceError, AlreadyMarked, SessionExpired, OutOfRange, MalformedToken
from utils.geo_utils import is_within_radius, format_distance
from utils.qr_utils import decode_session_token

logger = logging.getLogger(__name__)


class VerifierState(Enum):
    IDLE = "idle"
    ACQUIRING_LOCATION = "acquiring_location"
    LOCATION_ERROR = "location_error"
    SCANNING = "scanning"
    VERIFYING = "verifying"
    SUCCESS = "success"
    EXPIRED = "expired"
    ALREADY_MARKED = "already_marked"
    OUT_OF_RANGE = "out_of_range"
    ERROR = "error"


TERMINAL_STATES = frozenset({
    VerifierState.SUCCESS,
    VerifierState.EXPIRED,
    VerifierState.ALREADY_MARKED,
    VerifierState.OUT_OF_RANGE,
    VerifierState.ERROR,
})

# terminal states whose "try again" needs a fresh location fix
LOCATION_STATES = frozenset({VerifierState.LOCATION_ERROR, VerifierState.OUT_OF_RANGE})

MSG_LOCATION_REQUIRED = "Location access is required to mark attendance"
MSG_CAMERA = "Failed to access camera. Please check permissions."
MSG_INVALID_QR = "Invalid QR code. Please scan a valid attendance QR."
MSG_QR_EXPIRED = "This QR code has expired. Please ask your teacher for a new one."
MSG_SESSION_EXPIRED = "This attendance session has expired or is no longer active."
MSG_ALREADY_MARKED = "You have already marked attendance for this session."
MSG_SUCCESS = "Your attendance has been successfully recorded"


class VerifierStateError(Exception):
    pass


class ScanVerifier:
    """
    Student-side scan flow:

        IDLE -> SCANNING -> VERIFYING -> (SUCCESS | EXPIRED | ALREADY_MARKED | OUT_OF_RANGE | ERROR)

    with ACQUIRING_LOCATION / LOCATION_ERROR around the location fix. Expiry and
    distance are checked locally for quick feedback; the registry has the final say.
    """

    def __init__(self, api, student_id, location_provider, capture, clock=time.time):
        self.api = api
        self.student_id = student_id
        self.location_provider = location_provider
        self.capture = capture
        self.clock = clock

        self.state = VerifierState.IDLE
        self.location = None
        self.location_error = None
        self.descriptor = None
        self.record = None
        self.message = None
        self.distance = None
        self.retryable = False

        self._capturing = False
        self._lock = threading.RLock()

    # -------------------- Location --------------------
    def enter(self):
        """View entry: ask for the location right away."""
        self.request_location()

    def request_location(self):
        with self._lock:
            if self.state in (VerifierState.SCANNING, VerifierState.VERIFYING):
                raise VerifierStateError("Cannot request location while a scan is in progress")
            self.state = VerifierState.ACQUIRING_LOCATION
            self.location_error = None
        self.location_provider.request(self._on_location, self._on_location_error)

    retry_location = request_location

    def _on_location(self, location):
        with self._lock:
            self.location = location
            self.location_error = None
            if self.state in (VerifierState.ACQUIRING_LOCATION, VerifierState.LOCATION_ERROR):
                self.state = VerifierState.IDLE
                self.message = None

    def _on_location_error(self, error):
        with self._lock:
            logger.warning("Student location unavailable: %s", error.message)
            self.location = None
            self.location_error = error.message
            if self.state is VerifierState.ACQUIRING_LOCATION:
                self.state = VerifierState.LOCATION_ERROR
                self.message = error.message

    # -------------------- Scanning --------------------
    def start_scanning(self):
        with self._lock:
            if self.location is None:
                self.state = VerifierState.LOCATION_ERROR
                self.message = MSG_LOCATION_REQUIRED
                return False
            if self.state is not VerifierState.IDLE:
                raise VerifierStateError(f"Cannot start scanning from {self.state.value}")
            self.state = VerifierState.SCANNING
            self.message = None
            self._capturing = True
        try:
            self.capture.start(self.on_scan)
        except CaptureError as exc:
            logger.error("Failed to start scanner: %s", exc)
            with self._lock:
                self._capturing = False
                self._fail(VerifierState.ERROR, MSG_CAMERA)
            return False
        return True

    def cancel_scanning(self):
        with self._lock:
            if self.state is VerifierState.SCANNING:
                self._release_capture()
                self.state = VerifierState.IDLE

    def on_scan(self, text):
        """Capture callback with the raw decoded QR text. Returns the resulting state."""
        with self._lock:
            if self.state is not VerifierState.SCANNING:
                return self.state
            self._release_capture()
            self.state = VerifierState.VERIFYING
            return self._verify(text)

    def _verify(self, text):
        try:
            descriptor = decode_session_token(text)
        except MalformedToken:
            return self._fail(VerifierState.ERROR, MSG_INVALID_QR)
        self.descriptor = descriptor

        if descriptor.is_expired(int(self.clock() * 1000)):
            return self._fail(VerifierState.EXPIRED, MSG_QR_EXPIRED)

        fence = descriptor.geofence
        if fence is not None:
            inside, distance = is_within_radius(self.location, fence)
            self.distance = distance
            if not inside:
                return self._fail(
                    VerifierState.OUT_OF_RANGE,
                    f"You are {format_distance(distance)} away from the classroom. "
                    f"You must be within {format_distance(fence.radius)} to mark attendance.",
                )

        try:
            self.record = self.api.mark_attendance(descriptor.session_id, self.student_id, self.location)
        except AlreadyMarked:
            return self._fail(VerifierState.ALREADY_MARKED, MSG_ALREADY_MARKED)
        except SessionExpired:
            return self._fail(VerifierState.EXPIRED, MSG_SESSION_EXPIRED)
        except OutOfRange as exc:
            self.distance = exc.distance
            return self._fail(VerifierState.OUT_OF_RANGE, exc.message)
        except TransportError as exc:
            self.retryable = True
            return self._fail(VerifierState.ERROR, exc.message)
        except AttendanceError as exc:
            return self._fail(VerifierState.ERROR, f"Failed to mark attendance: {exc.message}")

        self.state = VerifierState.SUCCESS
        self.message = MSG_SUCCESS
        logger.info("Attendance marked for %s in session %s", self.student_id, descriptor.session_id)
        return self.state

    # -------------------- Reset / teardown --------------------
    def reset(self):
        """'Try again': back to IDLE, re-acquiring the location only after a location failure."""
        with self._lock:
            previous = self.state
            self._release_capture()
            self.descriptor = None
            self.record = None
            self.message = None
            self.distance = None
            self.retryable = False
            self.state = VerifierState.IDLE
        if previous in LOCATION_STATES or self.location is None:
            self.request_location()

    def close(self):
        with self._lock:
            self._release_capture()

    @property
    def is_terminal(self):
        return self.state in TERMINAL_STATES

    def _fail(self, state, message):
        self.state = state
        self.message = message
        logger.info("Scan by %s ended in %s: %s", self.student_id, state.value, message)
        return state

    def _release_capture(self):
        if self._capturing:
            self._capturing = False
            self.capture.stop()
