import uuid

from flask import Flask, current_app, g, jsonify, redirect, url_for
from flask_login import current_user
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from .extensions import db, login_manager
from .cli import register_cli
from .routes import admin, auth, errors, health, pharmacist
from .security import dashboard_endpoint_for
from .utils.logging import configure_logging, remember_actor
from config import Config
from . import models  # ensure models are registered with SQLAlchemy


def _ensure_admin_account(config) -> None:
    """Create the default administrator when no account uses its email."""

    admin_email = (config.get("ADMIN_EMAIL") or "").strip().lower()
    if not admin_email:
        return

    for attempt in range(3):
        try:
            user = models.User.query.filter_by(email=admin_email).first()
            if user is None:
                user = models.User(
                    full_name=config.get("ADMIN_FULL_NAME", "System Administrator"),
                    email=admin_email,
                    mobile=config.get("ADMIN_MOBILE", "9999999999"),
                    role=models.UserRole.ADMIN,
                )
                user.set_password(config.get("ADMIN_PASSWORD", "admin123"))
                db.session.add(user)
            elif user.role != models.UserRole.ADMIN:
                current_app.logger.warning(
                    "Configured admin email %s belongs to a %s account", admin_email, user.role
                )
                return

            db.session.commit()
            return
        except IntegrityError:
            db.session.rollback()
            if attempt == 2:
                raise


def _ping_database() -> None:
    """Raise :class:`OperationalError` when the configured database is unreachable."""

    with db.engine.connect() as connection:
        connection.execute(text("SELECT 1"))


def create_app(config_override=None):
    app = Flask(__name__)

    # load configuration from environment variables
    app.config.from_object(Config)
    if config_override:
        app.config.update(config_override)

    app.config.setdefault("DATABASE_AVAILABLE", True)
    app.config.setdefault("DATABASE_ERROR", None)

    database_uri = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    if database_uri.startswith("sqlite:///:memory:"):
        engine_options = app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", {})
        connect_args = engine_options.setdefault("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        engine_options.setdefault("poolclass", StaticPool)

    configure_logging(app)

    db.init_app(app)
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id: str):
        if not user_id:
            return None
        try:
            user = db.session.get(models.User, int(user_id))
        except (TypeError, ValueError):
            return None
        except OperationalError:
            current_app.logger.warning(
                "Skipped user lookup during login_manager load because the database is unavailable."
            )
            return None
        if user is None or not user.is_active:
            return None
        remember_actor(user)
        return user

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "Unauthorized", "message": "Please log in to continue."}), 401

    database_available = True
    database_error_message = None

    # create tables if they do not exist and seed the administrator
    with app.app_context():
        try:
            _ping_database()
        except OperationalError as exc:
            database_available = False
            details = str(getattr(exc, "orig", exc)).strip()
            database_error_message = (
                "Unable to connect to the configured database. Start the "
                "PostgreSQL service or update the DB_URL setting."
            )
            current_app.logger.error(
                "Database connection unavailable during startup: %s",
                details,
                exc_info=current_app.debug,
            )
            db.session.remove()
        else:
            try:
                db.create_all()
                _ensure_admin_account(app.config)
            except SQLAlchemyError:
                database_available = False
                database_error_message = (
                    "The database schema could not be initialized. Review the logs "
                    "for details."
                )
                current_app.logger.exception("Database initialization error")
                db.session.remove()

    app.config["DATABASE_AVAILABLE"] = database_available
    app.config["DATABASE_ERROR"] = database_error_message

    @app.before_request
    def _assign_request_id():
        g.request_id = uuid.uuid4().hex[:12]

    @app.after_request
    def _expose_request_id(response):
        request_id = getattr(g, "request_id", None)
        if request_id:
            response.headers["X-Request-ID"] = request_id
        return response

    # register blueprints
    app.register_blueprint(auth.bp)
    app.register_blueprint(admin.bp)
    app.register_blueprint(pharmacist.bp)
    app.register_blueprint(health.bp)
    app.register_blueprint(errors.bp)

    register_cli(app)

    @app.route("/")
    def home():
        if not current_user.is_authenticated:
            return jsonify(
                {
                    "authenticated": False,
                    "login_url": url_for("auth.login"),
                    "database_online": current_app.config.get("DATABASE_AVAILABLE", True),
                    "database_error": current_app.config.get("DATABASE_ERROR"),
                }
            )
        return redirect(url_for(dashboard_endpoint_for(current_user)))

    return app
