import logging

import requests

from client import API_URL, REQUEST_TIMEOUT
from utils.errors import AttendanceError, error_from_payload

logger = logging.getLogger(__name__)


class TransportError(AttendanceError):
    """The registry could not be reached. Safe to retry with the same token."""
    code = "NETWORK_ERROR"
    status = None
    default_message = "Unable to connect to server. Please check your internet connection and try again."
    retryable = True


class AttendanceApiClient:
    """Thin wrapper over the attendance REST API. Business errors come back as utils.errors exceptions."""

    def __init__(self, base_url=API_URL, timeout=REQUEST_TIMEOUT, token=None, http=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.token = token
        self.http = http or requests.Session()

    def _request(self, method, path, **kwargs):
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        url = f"{self.base_url}{path}"
        try:
            response = self.http.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as exc:
            logger.warning("%s %s failed: %s", method, url, exc)
            raise TransportError() from exc

        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            raise AttendanceError(f"Server error occurred (HTTP {response.status_code})")
        if not response.ok or not body.get("success"):
            raise error_from_payload(body.get("error"))
        return body

    # -------------------- Auth --------------------
    def login(self, username, password):
        body = self._request("POST", "/auth/login", json={"username": username, "password": password})
        self.token = body["data"]["token"]
        return body["data"]["user"]

    # -------------------- Sessions --------------------
    def create_session(self, subject_id, duration_minutes, location=None, allowed_radius=None):
        payload = {"subjectId": subject_id, "durationMinutes": duration_minutes}
        if location is not None:
            payload["locationLat"] = location.latitude
            payload["locationLng"] = location.longitude
            if allowed_radius is not None:
                payload["allowedRadius"] = allowed_radius
        return self._request("POST", "/attendance/sessions", json=payload)["data"]

    def list_sessions(self, subject_id=None, is_active=None):
        params = {}
        if subject_id:
            params["subjectId"] = subject_id
        if is_active is not None:
            params["isActive"] = "true" if is_active else "false"
        return self._request("GET", "/attendance/sessions", params=params)["data"]

    def get_session(self, session_id):
        return self._request("GET", f"/attendance/sessions/{session_id}")["data"]

    def count_present(self, session_id):
        return self.get_session(session_id)["totalPresent"]

    def session_qr(self, session_id):
        return self._request("GET", f"/attendance/sessions/{session_id}/qr")["data"]

    def stop_session(self, session_id):
        return self._request("PATCH", f"/attendance/sessions/{session_id}/stop")["data"]

    # -------------------- Marks --------------------
    def mark_attendance(self, session_id, student_id, location=None):
        payload = {"sessionId": session_id, "studentId": student_id}
        if location is not None:
            payload["locationLat"] = location.latitude
            payload["locationLng"] = location.longitude
            payload["locationAccuracy"] = location.accuracy
        return self._request("POST", "/attendance/mark", json=payload)["data"]

    def student_attendance(self, student_id, subject_id=None):
        params = {"subjectId": subject_id} if subject_id else {}
        return self._request("GET", f"/attendance/student/{student_id}", params=params)["data"]
