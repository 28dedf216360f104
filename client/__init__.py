import os

API_URL = os.environ.get("ATTENDANCE_API_URL", "http://localhost:5000/api")
REQUEST_TIMEOUT = 10  # seconds
PRESENT_POLL_SECONDS = 5
