# utils/qr_utils.py
import qrcode, io, base64, json, math
from typing import NamedTuple, Optional

from utils.errors import MalformedToken
from utils.geo_utils import Geofence


class SessionDescriptor(NamedTuple):
    """What a session token carries. Times are epoch milliseconds."""
    session_id: str
    subject_id: str
    issued_at: int
    expires_at: int
    geofence: Optional[Geofence] = None

    @property
    def location_required(self):
        return self.geofence is not None

    def is_expired(self, now_ms):
        return now_ms > self.expires_at


def encode_session_token(descriptor: SessionDescriptor) -> str:
    """
    Serialize a descriptor to the payload shown in the QR code:
      {sessionId, subjectId, timestamp, expiresAt, locationRequired, allowedLocation?}
    wrapped in URL-safe base64 without padding. Not signed.
    """
    payload = {
        "sessionId": descriptor.session_id,
        "subjectId": descriptor.subject_id,
        "timestamp": descriptor.issued_at,
        "expiresAt": descriptor.expires_at,
        "locationRequired": descriptor.location_required,
    }
    if descriptor.geofence is not None:
        payload["allowedLocation"] = {
            "latitude": descriptor.geofence.latitude,
            "longitude": descriptor.geofence.longitude,
            "radius": descriptor.geofence.radius,
        }
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _number(payload, key):
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedToken(f"Invalid QR code: '{key}' must be a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise MalformedToken(f"Invalid QR code: '{key}' must be a number")
    return value


def _text(payload, key):
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (str, int)) or value == "":
        raise MalformedToken(f"Invalid QR code: '{key}' is missing")
    return str(value)


def decode_session_token(token: str) -> SessionDescriptor:
    """
    Inverse of encode_session_token. Standard base64 (with +/ and padding) is
    accepted too. Raises MalformedToken for anything that is not a session payload.
    """
    if not isinstance(token, str) or not token.strip():
        raise MalformedToken("Invalid QR code: empty token")
    token = token.strip()
    padded = token + "=" * (-len(token) % 4)
    try:
        raw = base64.b64decode(padded.replace("-", "+").replace("_", "/"), validate=True)
        payload = json.loads(raw.decode("utf-8"))
    except ValueError as e:
        raise MalformedToken("Invalid QR code. Please scan a valid attendance QR.") from e

    if not isinstance(payload, dict):
        raise MalformedToken("Invalid QR code: payload is not an object")

    geofence = None
    location = payload.get("allowedLocation")
    if location is not None:
        if not isinstance(location, dict):
            raise MalformedToken("Invalid QR code: 'allowedLocation' must be an object")
        geofence = Geofence(
            float(_number(location, "latitude")),
            float(_number(location, "longitude")),
            float(_number(location, "radius")),
        )

    return SessionDescriptor(
        session_id=_text(payload, "sessionId"),
        subject_id=_text(payload, "subjectId"),
        issued_at=int(_number(payload, "timestamp")),
        expires_at=int(_number(payload, "expiresAt")),
        geofence=geofence,
    )


def render_qr_png(data: str, box_size: int = 10, border: int = 4) -> str:
    """Render any text as a QR code; returns the PNG base64-encoded."""
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_H,
        box_size=box_size,
        border=border,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("utf-8")
