import uuid
from datetime import datetime, timezone

from models import db
from utils.geo_utils import Geofence


def utc_now():
    # stored timestamps are naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_epoch_ms(dt):
    return int(dt.replace(tzinfo=timezone.utc).timestamp() * 1000)


def isoformat(dt):
    return dt.isoformat() + "Z" if dt else None


class AttendanceSession(db.Model):
    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    subject_id = db.Column(db.String(64), nullable=False, index=True)
    token = db.Column(db.Text, nullable=False)
    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=False)
    location_lat = db.Column(db.Float, nullable=True)
    location_lng = db.Column(db.Float, nullable=True)
    allowed_radius = db.Column(db.Float, nullable=True)  # meters
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=utc_now)

    records = db.relationship(
        "AttendanceRecord", backref="session", lazy="dynamic",
        order_by="AttendanceRecord.marked_at",
    )

    @property
    def geofence(self):
        if self.location_lat is None or self.location_lng is None:
            return None
        return Geofence(self.location_lat, self.location_lng, self.allowed_radius)

    def is_expired(self, now):
        return now >= self.end_time

    def to_dict(self, now=None, present_count=None):
        data = {
            "id": self.id,
            "subjectId": self.subject_id,
            "qrCode": self.token,
            "startTime": isoformat(self.start_time),
            "endTime": isoformat(self.end_time),
            "locationLat": self.location_lat,
            "locationLng": self.location_lng,
            "allowedRadius": self.allowed_radius,
            "isActive": bool(self.is_active),
            "createdAt": isoformat(self.created_at),
        }
        if now is not None:
            data["isExpired"] = self.is_expired(now)
        if present_count is not None:
            data["presentCount"] = present_count
        return data

    def __repr__(self):
        return f"<AttendanceSession {self.id} subject={self.subject_id} active={self.is_active}>"


class AttendanceRecord(db.Model):
    __table_args__ = (
        db.UniqueConstraint("session_id", "student_id", name="uq_attendance_session_student"),
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(36), db.ForeignKey("attendance_session.id"), nullable=False)
    student_id = db.Column(db.String(64), nullable=False, index=True)
    location_lat = db.Column(db.Float, nullable=True)
    location_lng = db.Column(db.Float, nullable=True)
    location_accuracy = db.Column(db.Float, nullable=True)
    marked_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self):
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "studentId": self.student_id,
            "locationLat": self.location_lat,
            "locationLng": self.location_lng,
            "locationAccuracy": self.location_accuracy,
            "markedAt": isoformat(self.marked_at),
        }

    def __repr__(self):
        return f"<AttendanceRecord {self.session_id}:{self.student_id}>"
