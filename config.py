# config.py
import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_csv(name, default_csv):
    value = os.environ.get(name, default_csv)
    return [item.strip() for item in value.split(",") if item.strip()]


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "secret123")

    # Login tokens
    JWT_SECRET = os.environ.get("JWT_SECRET", "jwt_secret_please_change")
    JWT_EXPIRY_HOURS = int(os.environ.get("JWT_EXPIRY_HOURS", 24))

    # Database
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///attendance.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Attendance sessions
    DEFAULT_ALLOWED_RADIUS = float(os.environ.get("DEFAULT_ALLOWED_RADIUS", 50))  # meters
    MAX_SESSION_MINUTES = int(os.environ.get("MAX_SESSION_MINUTES", 30))
    # re-check the student's submitted location on the server
    ENFORCE_GEOFENCE = _env_bool("ENFORCE_GEOFENCE", True)

    # QR rendering
    QR_BOX_SIZE = int(os.environ.get("QR_BOX_SIZE", 10))
    QR_BORDER = int(os.environ.get("QR_BORDER", 4))

    CORS_ALLOWED_ORIGINS = _env_csv("CORS_ALLOWED_ORIGINS", "http://localhost:8080")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    DEBUG = False
    TESTING = False


class DevelopmentConfig(Config):
    DEBUG = True
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG")


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    JWT_SECRET = "test-jwt-secret"
    ENFORCE_GEOFENCE = True


class ProductionConfig(Config):
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "WARNING")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
