import logging
import math
import threading
import time
from enum import Enum

from client import PRESENT_POLL_SECONDS
from client.timers import Ticker
from utils.errors import AttendanceError
from utils.qr_utils import render_qr_png

logger = logging.getLogger(__name__)

MIN_DURATION_MINUTES = 1
MAX_DURATION_MINUTES = 30


class IssuerState(Enum):
    IDLE = "idle"
    ACQUIRING_LOCATION = "acquiring_location"
    READY = "ready"
    ACTIVE = "active"
    EXPIRED = "expired"
    STOPPED = "stopped"


class IssuerStateError(Exception):
    pass


class SessionIssuer:
    """
    Teacher-side session lifecycle:

        IDLE -> ACQUIRING_LOCATION -> READY -> ACTIVE -> (EXPIRED | STOPPED) -> IDLE

    The registry owns the real session; this object only mirrors it for display:
    the token and its QR image, a per-second countdown, and a polled present count.
    """

    def __init__(self, api, location_provider, duration_minutes=5, allowed_radius=None,
                 poll_interval=PRESENT_POLL_SECONDS, timer_factory=Ticker, render=render_qr_png,
                 monotonic=time.monotonic):
        self.api = api
        self.monotonic = monotonic
        self.location_provider = location_provider
        self.poll_interval = poll_interval
        self.timer_factory = timer_factory
        self.render = render
        self.allowed_radius = allowed_radius
        self.duration_minutes = None
        self.set_duration(duration_minutes)

        self.state = IssuerState.IDLE
        self.subject_id = None
        self.location = None
        self.location_error = None
        self.error = None
        self.session = None
        self.token = None
        self.qr_image = None
        self.time_left = 0
        self.present_count = 0

        self._deadline = None
        self._starting = False
        self._countdown = None
        self._poller = None
        self._lock = threading.RLock()

    # -------------------- Setup --------------------
    def select_subject(self, subject_id):
        with self._lock:
            self._require_not_active("change the subject")
            self.subject_id = subject_id

    def set_duration(self, minutes):
        if not MIN_DURATION_MINUTES <= minutes <= MAX_DURATION_MINUTES:
            raise ValueError(f"Duration must be between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES} minutes")
        if getattr(self, "state", None) is IssuerState.ACTIVE or getattr(self, "_starting", False):
            raise IssuerStateError("Cannot change the duration of a running session")
        self.duration_minutes = minutes

    def request_location(self):
        with self._lock:
            self._require_not_active("re-acquire the location")
            self.state = IssuerState.ACQUIRING_LOCATION
            self.location_error = None
        self.location_provider.request(self._on_location, self._on_location_error)

    def _on_location(self, location):
        with self._lock:
            if self.state is not IssuerState.ACQUIRING_LOCATION:
                return
            self.location = location
            self.state = IssuerState.READY

    def _on_location_error(self, error):
        with self._lock:
            if self.state is not IssuerState.ACQUIRING_LOCATION:
                return
            logger.warning("Teacher location unavailable: %s", error.message)
            self.location = None
            self.location_error = error.message
            self.state = IssuerState.IDLE

    @property
    def can_start(self):
        return self.state is IssuerState.READY and bool(self.subject_id) and self.location is not None

    # -------------------- Session --------------------
    def start(self):
        """Create the session on the registry and begin displaying it. Returns the session or None."""
        with self._lock:
            if not self.can_start or self._starting:
                raise IssuerStateError("Select a subject and capture a location before starting")
            self._starting = True
            self.error = None
            subject_id, minutes, location = self.subject_id, self.duration_minutes, self.location

        # measured from before the request: the countdown never outlasts the registry end_time
        started = self.monotonic()
        try:
            session = self.api.create_session(subject_id, minutes, location=location,
                                              allowed_radius=self.allowed_radius)
            qr_image = self.render(session["qrCode"])
        except AttendanceError as exc:
            logger.error("Failed to create session for %s: %s", subject_id, exc.message)
            with self._lock:
                self._starting = False
                self.error = exc.message
            return None

        with self._lock:
            self._starting = False
            self.session = session
            self.token = session["qrCode"]
            self.qr_image = qr_image
            self._deadline = started + minutes * 60
            self.time_left = self._remaining()
            self.present_count = 0
            self.state = IssuerState.ACTIVE
            self._countdown = self.timer_factory(1, self.tick).start()
            self._poller = self.timer_factory(self.poll_interval, self.refresh_present_count).start()
            logger.info("Session %s active for %s minutes", session["id"], minutes)
            return session

    def tick(self):
        with self._lock:
            if self.state is not IssuerState.ACTIVE:
                return
            self.time_left = self._remaining()
            if self.time_left == 0:
                self._finish(IssuerState.EXPIRED)

    def stop(self):
        with self._lock:
            if self.state is not IssuerState.ACTIVE:
                return
            session_id = self.session["id"]
            self._finish(IssuerState.STOPPED)
        try:
            session = self.api.stop_session(session_id)
        except AttendanceError as exc:
            logger.error("Failed to stop session %s: %s", session_id, exc.message)
            with self._lock:
                self.error = exc.message
            return
        with self._lock:
            if self.session is not None and self.session["id"] == session_id:
                self.session = session

    def refresh_present_count(self):
        """Best effort; a failed poll keeps the last known count."""
        with self._lock:
            if self.state is not IssuerState.ACTIVE:
                return
            session_id = self.session["id"]
        try:
            count = self.api.count_present(session_id)
        except AttendanceError as exc:
            logger.warning("Could not refresh present count for %s: %s", session_id, exc.message)
            return
        with self._lock:
            if self.state is IssuerState.ACTIVE and self.session["id"] == session_id:
                self.present_count = count

    def reset(self):
        with self._lock:
            self._require_not_active("reset")
            self._cancel_timers()
            self.state = IssuerState.IDLE
            self.subject_id = None
            self.location = None
            self.location_error = None
            self.error = None
            self.session = None
            self.present_count = 0

    def close(self):
        with self._lock:
            self._cancel_timers()

    # -------------------- Display --------------------
    @property
    def formatted_time_left(self):
        minutes, seconds = divmod(self.time_left, 60)
        return f"{minutes:02d}:{seconds:02d}"

    @property
    def progress(self):
        total = self.duration_minutes * 60
        return self.time_left / total if total else 0

    # -------------------- Internals --------------------
    def _finish(self, state):
        self._cancel_timers()
        self.token = None
        self.qr_image = None
        self.time_left = 0
        self.state = state
        logger.info("Session %s %s", self.session["id"] if self.session else None, state.value)

    def _cancel_timers(self):
        for timer in (self._countdown, self._poller):
            if timer is not None:
                timer.cancel()
        self._countdown = None
        self._poller = None

    def _remaining(self):
        return max(0, math.ceil(self._deadline - self.monotonic()))

    def _require_not_active(self, action):
        if self.state is IssuerState.ACTIVE or self._starting:
            raise IssuerStateError(f"Cannot {action} while a session is active")
