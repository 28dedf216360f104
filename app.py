# app.py
import logging
import os
from datetime import datetime, timedelta, timezone

import click
from flask import Flask, jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from config import config
from models import db
from models.attendance_model import AttendanceRegistry
from models.user_model import User
from routes.auth_routes import auth_bp
from routes.faculty_routes import faculty_bp
from routes.student_routes import student_bp
from utils.errors import AttendanceError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]"


def create_app(config_name=None):
    config_name = config_name or os.environ.get("FLASK_ENV", "default")
    app = Flask(__name__)
    app.config.from_object(config.get(config_name, config["default"]))

    logging.basicConfig(level=app.config["LOG_LEVEL"], format=LOG_FORMAT)

    db.init_app(app)
    app.extensions["attendance_registry"] = AttendanceRegistry(
        enforce_geofence=app.config["ENFORCE_GEOFENCE"],
        default_radius=app.config["DEFAULT_ALLOWED_RADIUS"],
        max_duration=timedelta(minutes=app.config["MAX_SESSION_MINUTES"]),
    )

    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(faculty_bp, url_prefix="/api/attendance")
    app.register_blueprint(student_bp, url_prefix="/api/attendance")

    _register_hooks(app)
    _register_error_handlers(app)
    _register_commands(app)

    @app.route("/")
    def root():
        return jsonify({
            "message": "Attendance API Server",
            "version": "1.0.0",
            "endpoints": {
                "health": "/health",
                "auth": "/api/auth",
                "attendance": "/api/attendance",
            },
        })

    @app.route("/health")
    def health():
        timestamp = datetime.now(timezone.utc).isoformat()
        try:
            db.session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error("Health check failed: %s", e)
            return jsonify({"status": "unhealthy", "database": "disconnected",
                            "error": str(e), "timestamp": timestamp}), 500
        return jsonify({"status": "healthy", "database": "connected", "timestamp": timestamp})

    with app.app_context():
        db.create_all()

    return app


# -------------------- Hooks --------------------
def _register_hooks(app):
    @app.before_request
    def log_request():
        logger.info("%s %s", request.method, request.path)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin and origin in app.config["CORS_ALLOWED_ORIGINS"]:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Credentials"] = "true"
            response.headers["Vary"] = "Origin"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type,Authorization"
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,PATCH,OPTIONS"
        return response


# -------------------- Errors --------------------
def _register_error_handlers(app):
    @app.errorhandler(AttendanceError)
    def handle_attendance_error(e):
        return jsonify({"success": False, "error": e.to_dict()}), e.status

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        if e.code == 404:
            message = f"Route {request.method} {request.path} not found"
            code = "NOT_FOUND"
        else:
            message = e.description
            code = e.name.upper().replace(" ", "_")
        return jsonify({"success": False, "error": {"code": code, "message": message}}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        db.session.rollback()
        return jsonify({"success": False, "error": {
            "code": "INTERNAL_SERVER_ERROR",
            "message": "An unexpected error occurred",
        }}), 500


# -------------------- CLI --------------------
def _register_commands(app):
    @app.cli.command("init-db")
    def init_db():
        """Create all tables."""
        db.create_all()
        click.echo("Database initialized")

    @app.cli.command("create-user")
    @click.option("--username", required=True)
    @click.option("--password", required=True)
    @click.option("--name", required=True)
    @click.option("--role", type=click.Choice(User.ROLES), default="student")
    @click.option("--roll-no", default=None)
    def create_user(username, password, name, role, roll_no):
        """Add a faculty or student login."""
        if User.query.filter_by(username=username).first():
            raise click.ClickException(f"User '{username}' already exists")
        user = User(username=username, name=name, role=role, roll_no=roll_no)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        click.echo(f"Created {role} '{username}'")


# -------------------- Run --------------------
if __name__ == "__main__":
    create_app().run(debug=True)
