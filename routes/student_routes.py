from flask import Blueprint, request

from models.session_model import isoformat
from routes import get_registry, ok, parse_float
from utils.errors import ValidationError
from utils.geo_utils import Location

student_bp = Blueprint("student", __name__)


def _location(data):
    lat = parse_float(data, "locationLat")
    lng = parse_float(data, "locationLng")
    if lat is None and lng is None:
        return None
    if lat is None or lng is None:
        raise ValidationError("locationLat and locationLng must be given together",
                              fields=["locationLat", "locationLng"])
    return Location(lat, lng, parse_float(data, "locationAccuracy"))


@student_bp.route("/mark", methods=["POST"])
def mark_attendance():
    data = request.get_json(silent=True) or {}
    session_id = data.get("sessionId")
    student_id = data.get("studentId")
    missing = [key for key, value in (("sessionId", session_id), ("studentId", student_id))
               if value is None or str(value).strip() == ""]
    if missing:
        raise ValidationError("Missing required fields", fields=missing)

    record = get_registry().mark_attendance(str(session_id), str(student_id), _location(data))
    return ok(record.to_dict(), 201, message="Attendance marked successfully")


@student_bp.route("/student/<student_id>", methods=["GET"])
def student_attendance(student_id):
    rows = get_registry().get_student_attendance(student_id, subject_id=request.args.get("subjectId"))
    history = []
    for record, session in rows:
        entry = record.to_dict()
        entry.update({
            "subjectId": session.subject_id,
            "startTime": isoformat(session.start_time),
            "endTime": isoformat(session.end_time),
        })
        history.append(entry)
    return ok(history, count=len(history))
