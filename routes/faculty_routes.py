from datetime import timedelta

from flask import Blueprint, request, current_app

from routes import get_registry, ok, parse_float, parse_datetime, parse_bool
from utils.errors import ValidationError
from utils.geo_utils import Geofence
from utils.qr_utils import render_qr_png

faculty_bp = Blueprint("faculty", __name__)


def _session_window(data):
    """Resolve (duration, start_time, end_time) from durationMinutes or startTime/endTime."""
    minutes = parse_float(data, "durationMinutes")
    start_time = parse_datetime(data, "startTime")
    end_time = parse_datetime(data, "endTime")

    if minutes is None and end_time is None:
        raise ValidationError("Missing required fields", fields=["durationMinutes", "endTime"])
    if minutes is not None:
        max_minutes = current_app.config["MAX_SESSION_MINUTES"]
        if minutes <= 0 or minutes > max_minutes:
            raise ValidationError(f"durationMinutes must be greater than 0 and at most {max_minutes}",
                                  fields=["durationMinutes"])
        return timedelta(minutes=minutes), start_time, None
    return None, start_time, end_time


def _geofence(data):
    lat = parse_float(data, "locationLat")
    lng = parse_float(data, "locationLng")
    radius = parse_float(data, "allowedRadius")
    if lat is None and lng is None:
        return None
    if lat is None or lng is None:
        raise ValidationError("locationLat and locationLng must be given together",
                              fields=["locationLat", "locationLng"])
    return Geofence(lat, lng, radius)


@faculty_bp.route("/sessions", methods=["POST"])
def create_session():
    data = request.get_json(silent=True) or {}
    subject_id = data.get("subjectId")
    if subject_id is None or str(subject_id).strip() == "":
        raise ValidationError("Missing required fields", fields=["subjectId"])

    duration, start_time, end_time = _session_window(data)
    registry = get_registry()
    session = registry.create_session(
        subject_id,
        geofence=_geofence(data),
        duration=duration,
        start_time=start_time,
        end_time=end_time,
    )
    return ok(session.to_dict(now=registry.clock(), present_count=0), 201,
              message="Attendance session created successfully")


@faculty_bp.route("/sessions", methods=["GET"])
def list_sessions():
    registry = get_registry()
    rows = registry.list_sessions(
        subject_id=request.args.get("subjectId"),
        is_active=parse_bool(request.args.get("isActive")),
    )
    now = registry.clock()
    sessions = [s.to_dict(now=now, present_count=count) for s, count in rows]
    return ok(sessions, count=len(sessions))


@faculty_bp.route("/sessions/<session_id>", methods=["GET"])
def session_detail(session_id):
    registry = get_registry()
    session, records = registry.get_session_detail(session_id)
    data = session.to_dict(now=registry.clock(), present_count=len(records))
    data["studentsPresent"] = [r.to_dict() for r in records]
    data["totalPresent"] = len(records)
    return ok(data)


@faculty_bp.route("/sessions/<session_id>/qr", methods=["GET"])
def session_qr(session_id):
    registry = get_registry()
    session = registry.get_session(session_id)
    remaining = (session.end_time - registry.clock()).total_seconds()
    qr_b64 = render_qr_png(session.token,
                           box_size=current_app.config["QR_BOX_SIZE"],
                           border=current_app.config["QR_BORDER"])
    return ok({
        "qr": qr_b64,
        "token": session.token,
        "expiresIn": max(0, int(remaining)) if session.is_active else 0,
    })


@faculty_bp.route("/sessions/<session_id>/stop", methods=["PATCH"])
def stop_session(session_id):
    registry = get_registry()
    session = registry.stop_session(session_id)
    return ok(session.to_dict(now=registry.clock()), message="Session stopped successfully")
