import logging

from flask import Blueprint, request, current_app

from models import db
from models.user_model import User
from routes import ok
from utils.errors import ValidationError, Unauthorized, InvalidCredentials
from utils.jwt_utils import create_access_token, verify_access_token, bearer_token

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__)


@auth_bp.route("/login", methods=["POST"])
def login():
    data = request.get_json(silent=True) or {}
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""
    if not username or not password:
        raise ValidationError("Username and password are required", fields=["username", "password"])

    user = User.query.filter_by(username=username).first()
    if not user or not user.check_password(password):
        logger.warning("Failed login attempt for username: %s", username)
        raise InvalidCredentials()

    token = create_access_token(user, current_app.config["JWT_SECRET"],
                                current_app.config["JWT_EXPIRY_HOURS"])
    logger.info("User %s logged in", username)
    return ok({"token": token, "user": user.to_dict()}, message="Login successful")


@auth_bp.route("/verify", methods=["GET"])
def verify():
    payload = verify_access_token(bearer_token(request.headers.get("Authorization")),
                                  current_app.config["JWT_SECRET"])
    user = db.session.get(User, payload.get("userId"))
    if user is None:
        raise Unauthorized("User no longer exists")
    return ok(user.to_dict())
