"""
Seams for the device capabilities the issuer and verifier depend on.

A location provider exposes ``request(on_success, on_error)`` and calls exactly
one of them, possibly later, with a utils.geo_utils.Location or a LocationError.
A QR capture exposes ``start(on_decoded)`` / ``stop()``; ``start`` raises
CaptureError when the camera cannot be opened.
"""
from enum import Enum

from utils.geo_utils import Location


class LocationErrorReason(Enum):
    PERMISSION_DENIED = "permission_denied"
    POSITION_UNAVAILABLE = "position_unavailable"
    TIMEOUT = "timeout"
    UNSUPPORTED = "unsupported"


LOCATION_ERROR_MESSAGES = {
    LocationErrorReason.PERMISSION_DENIED: "Location permission denied. Please enable location access.",
    LocationErrorReason.POSITION_UNAVAILABLE: "Location information unavailable.",
    LocationErrorReason.TIMEOUT: "Location request timed out.",
    LocationErrorReason.UNSUPPORTED: "Geolocation is not supported on this device.",
}


class LocationError(Exception):
    def __init__(self, reason, message=None):
        self.reason = reason
        self.message = message or LOCATION_ERROR_MESSAGES[reason]
        super().__init__(self.message)


class CaptureError(Exception):
    pass


class FixedLocationProvider:
    """Answers every request with the same fix, e.g. a kiosk with known coordinates."""

    def __init__(self, latitude, longitude, accuracy=None):
        self.location = Location(latitude, longitude, accuracy)

    def request(self, on_success, on_error):
        on_success(self.location)


class PastedTokenCapture:
    """Capture that 'decodes' a token typed or pasted by the user."""

    def __init__(self, text):
        self.text = text
        self.running = False

    def start(self, on_decoded):
        self.running = True
        on_decoded(self.text)

    def stop(self):
        self.running = False
