import threading
from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from app import create_app
from config import config, TestingConfig
from models import db
from models.session_model import AttendanceRecord, to_epoch_ms
from utils.errors import ValidationError, NotFound, SessionExpired, AlreadyMarked, OutOfRange
from utils.geo_utils import Geofence, Location
from utils.qr_utils import decode_session_token

from conftest import TEACHER_LOCATION, NEARBY_STUDENT, FAR_STUDENT

FIVE_MINUTES = timedelta(minutes=5)


@pytest.fixture
def fenced_session(registry):
    return registry.create_session("S1", geofence=Geofence(*TEACHER_LOCATION, 50), duration=FIVE_MINUTES)


def _records(session_id):
    return AttendanceRecord.query.filter_by(session_id=session_id).count()


# -------------------- create --------------------
def test_create_session_sets_window_and_token(registry, clock, fenced_session):
    assert fenced_session.is_active is True
    assert fenced_session.start_time == clock.now
    assert fenced_session.end_time == clock.now + FIVE_MINUTES

    descriptor = decode_session_token(fenced_session.token)
    assert descriptor.session_id == fenced_session.id
    assert descriptor.subject_id == "S1"
    assert descriptor.issued_at == to_epoch_ms(fenced_session.start_time)
    assert descriptor.expires_at - descriptor.issued_at == 5 * 60 * 1000
    assert descriptor.geofence == Geofence(*TEACHER_LOCATION, 50.0)


def test_create_session_defaults_the_radius(registry):
    session = registry.create_session("S1", geofence=Geofence(*TEACHER_LOCATION, None), duration=FIVE_MINUTES)
    assert session.allowed_radius == 50


def test_create_session_with_explicit_window(registry, clock):
    end = clock.now + timedelta(minutes=25)
    session = registry.create_session("S2", start_time=clock.now, end_time=end)
    assert session.end_time == end
    assert session.geofence is None


@pytest.mark.parametrize(
    "kwargs",
    [
        {"subject_id": None, "duration": FIVE_MINUTES},
        {"subject_id": "  ", "duration": FIVE_MINUTES},
        {"subject_id": "S1", "duration": timedelta(0)},
        {"subject_id": "S1", "duration": timedelta(minutes=-1)},
        {"subject_id": "S1"},
        {"subject_id": "S1", "duration": FIVE_MINUTES, "geofence": Geofence(*TEACHER_LOCATION, 0)},
    ],
)
def test_create_session_validation(registry, kwargs):
    with pytest.raises(ValidationError):
        registry.create_session(**kwargs)


@pytest.mark.parametrize(
    "fence",
    [
        Geofence(float("nan"), TEACHER_LOCATION[1], 50),
        Geofence(TEACHER_LOCATION[0], float("inf"), 50),
        Geofence(*TEACHER_LOCATION, float("nan")),
        Geofence(*TEACHER_LOCATION, float("inf")),
    ],
)
def test_create_session_rejects_non_finite_geofence(registry, fence):
    with pytest.raises(ValidationError):
        registry.create_session("S1", geofence=fence, duration=FIVE_MINUTES)


def test_create_session_caps_explicit_windows(registry, clock):
    with pytest.raises(ValidationError, match="at most 30 minutes"):
        registry.create_session("S1", start_time=clock.now, end_time=clock.now + timedelta(minutes=31))


def test_create_session_rejects_a_window_already_over(registry, clock):
    with pytest.raises(ValidationError, match="already ended"):
        registry.create_session("S1", start_time=clock.now - timedelta(minutes=10), duration=FIVE_MINUTES)


def test_create_session_rejects_end_before_start(registry, clock):
    with pytest.raises(ValidationError):
        registry.create_session("S1", start_time=clock.now, end_time=clock.now - timedelta(seconds=1))


# -------------------- mark --------------------
def test_happy_path(registry, fenced_session):
    record = registry.mark_attendance(fenced_session.id, "student-1", Location(*NEARBY_STUDENT, 12.0))

    assert record.session_id == fenced_session.id
    assert record.student_id == "student-1"
    assert record.location_accuracy == 12.0
    assert _records(fenced_session.id) == 1


def test_out_of_range_is_rejected_by_the_registry(registry, fenced_session):
    with pytest.raises(OutOfRange) as excinfo:
        registry.mark_attendance(fenced_session.id, "student-1", Location(*FAR_STUDENT))

    assert excinfo.value.radius == 50
    assert excinfo.value.distance == pytest.approx(500, rel=0.01)
    assert _records(fenced_session.id) == 0


def test_non_finite_location_is_rejected(registry, fenced_session):
    with pytest.raises(ValidationError):
        registry.mark_attendance(fenced_session.id, "student-1", Location(float("nan"), float("nan")))
    assert _records(fenced_session.id) == 0


def test_fenced_session_requires_a_location(registry, fenced_session):
    with pytest.raises(ValidationError):
        registry.mark_attendance(fenced_session.id, "student-1", None)


def test_trusting_the_client_when_enforcement_is_off(registry, fenced_session):
    registry.enforce_geofence = False
    registry.mark_attendance(fenced_session.id, "student-1", Location(*FAR_STUDENT))
    registry.mark_attendance(fenced_session.id, "student-2", None)
    assert _records(fenced_session.id) == 2


def test_double_scan(registry, fenced_session):
    registry.mark_attendance(fenced_session.id, "student-1", Location(*NEARBY_STUDENT))
    with pytest.raises(AlreadyMarked):
        registry.mark_attendance(fenced_session.id, "student-1", Location(*NEARBY_STUDENT))
    assert _records(fenced_session.id) == 1


def test_repeated_duplicates_yield_one_success(registry, fenced_session):
    outcomes = []
    for _ in range(5):
        try:
            registry.mark_attendance(fenced_session.id, "student-1", Location(*NEARBY_STUDENT))
            outcomes.append("ok")
        except AlreadyMarked:
            outcomes.append("dup")

    assert outcomes.count("ok") == 1
    assert outcomes.count("dup") == 4
    assert _records(fenced_session.id) == 1


def test_uniqueness_is_enforced_by_the_database(registry, fenced_session):
    db.session.add(AttendanceRecord(session_id=fenced_session.id, student_id="student-1"))
    db.session.add(AttendanceRecord(session_id=fenced_session.id, student_id="student-1"))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()


def test_same_student_can_mark_different_sessions(registry, fenced_session):
    other = registry.create_session("S2", duration=FIVE_MINUTES)
    registry.mark_attendance(fenced_session.id, "student-1", Location(*NEARBY_STUDENT))
    registry.mark_attendance(other.id, "student-1", None)
    assert _records(other.id) == 1


def test_expired_session(registry, clock):
    session = registry.create_session("S1", duration=timedelta(minutes=1))
    clock.advance(seconds=61)

    with pytest.raises(SessionExpired):
        registry.mark_attendance(session.id, "student-1", None)

    assert _records(session.id) == 0
    assert session.is_active is False


def test_session_expires_exactly_at_end_time(registry, clock):
    session = registry.create_session("S1", duration=timedelta(minutes=1))
    clock.advance(minutes=1)
    with pytest.raises(SessionExpired):
        registry.mark_attendance(session.id, "student-1", None)


def test_stopped_mid_session(registry, clock, fenced_session):
    clock.advance(minutes=1)
    registry.stop_session(fenced_session.id)
    clock.advance(minutes=1)

    assert clock.now < fenced_session.end_time
    with pytest.raises(SessionExpired):
        registry.mark_attendance(fenced_session.id, "student-1", Location(*NEARBY_STUDENT))
    assert _records(fenced_session.id) == 0


def test_mark_unknown_session(registry):
    with pytest.raises(NotFound):
        registry.mark_attendance("no-such-session", "student-1", None)


@pytest.mark.parametrize("session_id,student_id", [("", "student-1"), ("abc", ""), (None, None)])
def test_mark_requires_ids(registry, session_id, student_id):
    with pytest.raises(ValidationError):
        registry.mark_attendance(session_id, student_id, None)


# -------------------- stop --------------------
def test_stop_is_idempotent(registry, fenced_session):
    assert registry.stop_session(fenced_session.id).is_active is False
    assert registry.stop_session(fenced_session.id).is_active is False


def test_stop_unknown_session(registry):
    with pytest.raises(NotFound):
        registry.stop_session("no-such-session")


# -------------------- queries --------------------
def test_list_sessions_with_counts_and_filters(registry, clock, fenced_session):
    clock.advance(minutes=1)
    other = registry.create_session("S2", duration=FIVE_MINUTES)
    registry.mark_attendance(fenced_session.id, "student-1", Location(*NEARBY_STUDENT))
    registry.mark_attendance(fenced_session.id, "student-2", Location(*NEARBY_STUDENT))
    registry.stop_session(other.id)

    rows = registry.list_sessions()
    assert [(s.id, count) for s, count in rows] == [(other.id, 0), (fenced_session.id, 2)]

    assert [s.id for s, _ in registry.list_sessions(subject_id="S1")] == [fenced_session.id]
    assert [s.id for s, _ in registry.list_sessions(is_active=False)] == [other.id]
    assert [s.id for s, _ in registry.list_sessions(is_active=True)] == [fenced_session.id]


def test_session_detail_and_count(registry, clock, fenced_session):
    registry.mark_attendance(fenced_session.id, "student-1", Location(*NEARBY_STUDENT))
    clock.advance(seconds=30)
    registry.mark_attendance(fenced_session.id, "student-2", Location(*NEARBY_STUDENT))

    session, records = registry.get_session_detail(fenced_session.id)
    assert session.id == fenced_session.id
    assert [r.student_id for r in records] == ["student-1", "student-2"]
    assert registry.count_present(fenced_session.id) == 2

    with pytest.raises(NotFound):
        registry.get_session_detail("no-such-session")


def test_student_attendance_history(registry, clock, fenced_session):
    clock.advance(minutes=1)
    other = registry.create_session("S2", duration=FIVE_MINUTES)
    registry.mark_attendance(fenced_session.id, "student-1", Location(*NEARBY_STUDENT))
    clock.advance(seconds=10)
    registry.mark_attendance(other.id, "student-1", None)

    history = registry.get_student_attendance("student-1")
    assert [s.subject_id for _, s in history] == ["S2", "S1"]
    assert [s.subject_id for _, s in registry.get_student_attendance("student-1", subject_id="S1")] == ["S1"]
    assert registry.get_student_attendance("nobody") == []


# -------------------- concurrency --------------------
def test_concurrent_duplicates_yield_one_success(tmp_path, monkeypatch):
    class FileConfig(TestingConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'attendance.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"check_same_thread": False, "timeout": 30}}

    monkeypatch.setitem(config, "file", FileConfig)
    app = create_app("file")
    registry = app.extensions["attendance_registry"]
    with app.app_context():
        session_id = registry.create_session("S1", duration=FIVE_MINUTES).id

    workers = 8
    barrier = threading.Barrier(workers)
    outcomes = []

    def mark():
        with app.app_context():
            barrier.wait()
            try:
                registry.mark_attendance(session_id, "student-1", None)
                outcomes.append("ok")
            except AlreadyMarked:
                outcomes.append("dup")

    threads = [threading.Thread(target=mark) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ["dup"] * (workers - 1) + ["ok"]
    with app.app_context():
        assert _records(session_id) == 1
        db.session.remove()
        db.engine.dispose()
