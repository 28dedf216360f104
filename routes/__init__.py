import math
from datetime import datetime, timezone

from flask import current_app, jsonify

from utils.errors import ValidationError


def get_registry():
    return current_app.extensions["attendance_registry"]


def ok(data=None, status=200, **extra):
    """Success envelope: {success, data, message?, count?}."""
    body = {"success": True, "data": data}
    body.update(extra)
    return jsonify(body), status


def parse_float(data, key):
    value = data.get(key)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number", fields=[key])
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"{key} must be a number", fields=[key])
    if not math.isfinite(number):
        raise ValidationError(f"{key} must be a finite number", fields=[key])
    return number


def parse_datetime(data, key):
    """ISO-8601 to naive UTC. Values without an offset are taken as UTC."""
    value = data.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be an ISO-8601 timestamp", fields=[key])
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"{key} must be an ISO-8601 timestamp", fields=[key])
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_bool(value):
    if value is None or value == "":
        return None
    return str(value).strip().lower() in ("1", "true", "yes", "on")
