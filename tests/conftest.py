from datetime import datetime, timedelta, timezone

import pytest

from app import create_app
from client.api_client import AttendanceApiClient
from models import db

TEACHER_LOCATION = (12.9716, 77.5946)
NEARBY_STUDENT = (12.97165, 77.59465)  # ~7m from the teacher
FAR_STUDENT = (12.9761, 77.5946)  # ~500m north of the teacher

TEST_SERVER = "http://testserver"


class FakeClock:
    """Naive-UTC clock the registry reads; advance() to move time forward."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)

    def epoch(self):
        return self.now.replace(tzinfo=timezone.utc).timestamp()


class FakeTicker:
    def __init__(self, interval, callback):
        self.interval = interval
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True
        return self

    def cancel(self):
        self.cancelled = True


class FlaskHttp:
    """Stands in for requests.Session, routing calls into the Flask test client."""

    def __init__(self, test_client):
        self.test_client = test_client

    def request(self, method, url, headers=None, timeout=None, json=None, params=None):
        path = url[len(TEST_SERVER):] if url.startswith(TEST_SERVER) else url
        response = self.test_client.open(path, method=method, headers=headers, json=json, query_string=params)
        return FlaskResponse(response)


class FlaskResponse:
    def __init__(self, response):
        self.status_code = response.status_code
        self.ok = response.status_code < 400
        self._response = response

    def json(self):
        data = self._response.get_json(silent=True)
        if data is None:
            raise ValueError("response is not JSON")
        return data


@pytest.fixture
def app():
    app = create_app("testing")
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def clock(app):
    clock = FakeClock(datetime(2025, 1, 6, 9, 0, 0))
    app.extensions["attendance_registry"].clock = clock
    return clock


@pytest.fixture
def registry(app, clock):
    return app.extensions["attendance_registry"]


@pytest.fixture
def client(app, clock):
    return app.test_client()


@pytest.fixture
def api(client):
    return AttendanceApiClient(base_url=f"{TEST_SERVER}/api", http=FlaskHttp(client))


@pytest.fixture
def tickers():
    created = []

    def factory(interval, callback):
        ticker = FakeTicker(interval, callback)
        created.append(ticker)
        return ticker

    factory.created = created
    return factory
