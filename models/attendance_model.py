import logging
import math
import uuid
from datetime import timedelta

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from models import db
from models.session_model import AttendanceSession, AttendanceRecord, utc_now, to_epoch_ms
from utils.errors import ValidationError, NotFound, SessionExpired, AlreadyMarked, OutOfRange
from utils.geo_utils import Geofence, is_within_radius, format_distance
from utils.qr_utils import SessionDescriptor, encode_session_token

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_RADIUS = 50  # meters


class AttendanceRegistry:
    """
    Owns attendance sessions and the at-most-once records written against them.
    Every operation works on the Flask-SQLAlchemy session of the current app context.

    ``clock`` returns naive UTC datetimes. With ``enforce_geofence`` on, marks
    against a geofenced session are re-checked against the submitted location.
    """

    def __init__(self, clock=utc_now, enforce_geofence=True, default_radius=DEFAULT_ALLOWED_RADIUS,
                 max_duration=None):
        self.clock = clock
        self.enforce_geofence = enforce_geofence
        self.default_radius = default_radius
        self.max_duration = max_duration

    # -------------------- Sessions --------------------
    def create_session(self, subject_id, geofence=None, duration=None, start_time=None, end_time=None):
        """
        Persist a new active session. Give either ``duration`` (timedelta) or an
        explicit ``end_time``; ``start_time`` defaults to now.
        """
        if subject_id is None or not str(subject_id).strip():
            raise ValidationError("subjectId is required", fields=["subjectId"])
        if duration is None and end_time is None:
            raise ValidationError("A duration or an end time is required", fields=["durationMinutes", "endTime"])
        if duration is not None and duration <= timedelta(0):
            raise ValidationError("Duration must be positive", fields=["durationMinutes"])

        now = self.clock()
        start = start_time or now
        end = end_time if end_time is not None else start + duration
        if end <= start:
            raise ValidationError("endTime must be after startTime", fields=["startTime", "endTime"])
        if self.max_duration is not None and end - start > self.max_duration:
            raise ValidationError(
                f"A session can last at most {int(self.max_duration.total_seconds() // 60)} minutes",
                fields=["durationMinutes", "startTime", "endTime"],
            )
        if end <= now:
            raise ValidationError("The session window has already ended", fields=["startTime", "endTime"])

        if geofence is not None:
            radius = geofence.radius if geofence.radius is not None else self.default_radius
            if not _finite(geofence.latitude, geofence.longitude, radius):
                raise ValidationError("locationLat, locationLng and allowedRadius must be finite numbers",
                                      fields=["locationLat", "locationLng", "allowedRadius"])
            if radius <= 0:
                raise ValidationError("allowedRadius must be positive", fields=["allowedRadius"])
            geofence = Geofence(float(geofence.latitude), float(geofence.longitude), float(radius))

        session_id = str(uuid.uuid4())
        token = encode_session_token(SessionDescriptor(
            session_id=session_id,
            subject_id=str(subject_id),
            issued_at=to_epoch_ms(start),
            expires_at=to_epoch_ms(end),
            geofence=geofence,
        ))

        session = AttendanceSession(
            id=session_id,
            subject_id=str(subject_id),
            token=token,
            start_time=start,
            end_time=end,
            location_lat=geofence.latitude if geofence else None,
            location_lng=geofence.longitude if geofence else None,
            allowed_radius=geofence.radius if geofence else None,
            is_active=True,
            created_at=now,
        )
        db.session.add(session)
        db.session.commit()
        logger.info("Created attendance session %s for subject %s (until %s, geofence=%s)",
                    session.id, session.subject_id, session.end_time, geofence)
        return session

    def get_session(self, session_id):
        session = db.session.get(AttendanceSession, session_id) if session_id else None
        if session is None:
            raise NotFound("Session not found")
        return session

    def stop_session(self, session_id):
        """Deactivate a session. Stopping an already stopped session is a no-op."""
        session = self.get_session(session_id)
        if session.is_active:
            session.is_active = False
            db.session.commit()
            logger.info("Stopped attendance session %s", session.id)
        return session

    def list_sessions(self, subject_id=None, is_active=None):
        """Returns [(session, present_count)] newest first."""
        present = func.count(AttendanceRecord.id)
        query = (
            db.session.query(AttendanceSession, present)
            .outerjoin(AttendanceRecord, AttendanceRecord.session_id == AttendanceSession.id)
            .group_by(AttendanceSession.id)
        )
        if subject_id:
            query = query.filter(AttendanceSession.subject_id == str(subject_id))
        if is_active is not None:
            query = query.filter(AttendanceSession.is_active == is_active)
        return [(s, count) for s, count in query.order_by(AttendanceSession.start_time.desc()).all()]

    def get_session_detail(self, session_id):
        session = self.get_session(session_id)
        return session, session.records.all()

    def count_present(self, session_id):
        self.get_session(session_id)
        return AttendanceRecord.query.filter_by(session_id=session_id).count()

    # -------------------- Records --------------------
    def mark_attendance(self, session_id, student_id, location=None):
        """
        Record that ``student_id`` is present in ``session_id``.
        ``location`` is a utils.geo_utils.Location (or None).
        """
        missing = [name for name, value in (("sessionId", session_id), ("studentId", student_id)) if not value]
        if missing:
            raise ValidationError("Missing required fields", fields=missing)

        if location is not None and location.latitude is not None and location.longitude is not None:
            if not _finite(location.latitude, location.longitude):
                raise ValidationError("locationLat and locationLng must be finite numbers",
                                      fields=["locationLat", "locationLng"])

        session = self.get_session(session_id)
        now = self.clock()

        if not session.is_active:
            logger.info("Rejected mark by %s: session %s is stopped", student_id, session_id)
            raise SessionExpired()
        if session.is_expired(now):
            session.is_active = False
            db.session.commit()
            logger.info("Rejected mark by %s: session %s expired at %s", student_id, session_id, session.end_time)
            raise SessionExpired()

        fence = session.geofence
        if fence is not None and self.enforce_geofence:
            if location is None or location.latitude is None or location.longitude is None:
                raise ValidationError("Location is required for this session",
                                      fields=["locationLat", "locationLng"])
            inside, distance = is_within_radius(location, fence)
            if not inside:
                logger.warning("Rejected mark by %s for session %s: %.1fm away (radius %.0fm)",
                               student_id, session_id, distance, fence.radius)
                raise OutOfRange(
                    f"You are {format_distance(distance)} away from the classroom. "
                    f"You must be within {format_distance(fence.radius)} to mark attendance.",
                    distance=round(distance, 1),
                    radius=fence.radius,
                )

        record = AttendanceRecord(
            session_id=session.id,
            student_id=str(student_id),
            location_lat=location.latitude if location else None,
            location_lng=location.longitude if location else None,
            location_accuracy=location.accuracy if location else None,
            marked_at=now,
        )
        db.session.add(record)
        try:
            db.session.commit()
        except IntegrityError:
            # (session_id, student_id) is unique; a concurrent or repeated mark lost the race
            db.session.rollback()
            logger.info("Duplicate mark by %s for session %s", student_id, session_id)
            raise AlreadyMarked()

        logger.info("Marked %s present in session %s", record.student_id, record.session_id)
        return record

    def get_student_attendance(self, student_id, subject_id=None):
        """Returns [(record, session)] for one student, newest first."""
        query = (
            db.session.query(AttendanceRecord, AttendanceSession)
            .join(AttendanceSession, AttendanceRecord.session_id == AttendanceSession.id)
            .filter(AttendanceRecord.student_id == str(student_id))
        )
        if subject_id:
            query = query.filter(AttendanceSession.subject_id == str(subject_id))
        return [(r, s) for r, s in query.order_by(AttendanceRecord.marked_at.desc()).all()]


def _finite(*values):
    try:
        return all(math.isfinite(float(v)) for v in values)
    except (TypeError, ValueError, OverflowError):
        return False
