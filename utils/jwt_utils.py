# utils/jwt_utils.py
import jwt
from datetime import datetime, timedelta, timezone

from utils.errors import Unauthorized

JWT_ALGO = "HS256"


def create_access_token(user, secret: str, expiry_hours: int = 24) -> str:
    """
    Create a signed login token. Contains:
      - userId, username, role
      - iat, exp
    """
    now = datetime.now(timezone.utc)
    payload = {
        "userId": user.id,
        "username": user.username,
        "role": user.role,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(hours=expiry_hours)).timestamp()),
    }
    # pyjwt returns str in v2+
    return jwt.encode(payload, secret, algorithm=JWT_ALGO)


def verify_access_token(token: str, secret: str) -> dict:
    """
    Returns the decoded payload, raises Unauthorized when the token is expired or invalid.
    """
    try:
        return jwt.decode(token, secret, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError as e:
        raise Unauthorized("Token expired") from e
    except jwt.InvalidTokenError as e:
        raise Unauthorized("Invalid token") from e


def bearer_token(auth_header):
    if not auth_header or not auth_header.startswith("Bearer "):
        raise Unauthorized("No token provided")
    return auth_header[len("Bearer "):].strip()
