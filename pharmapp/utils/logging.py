"""Console and rotating-file logging for the pharmacy console.

Every record is stamped with the request id and the id of the acting user, so
a sale, a stock adjustment or an account change can be traced back to the
request and the pharmacist or administrator behind it.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from flask import Flask, g, has_request_context
from flask_login import user_logged_in, user_logged_out

LOG_FORMAT = (
    "%(asctime)s [%(levelname)s] [req=%(request_id)s user=%(actor_id)s] "
    "%(name)s: %(message)s"
)


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        request_id = actor_id = None
        if has_request_context():
            request_id = getattr(g, "request_id", None)
            actor_id = getattr(g, "actor_id", None)
        record.request_id = request_id or "-"
        record.actor_id = actor_id if actor_id is not None else "-"
        return True


def remember_actor(user) -> None:
    """Record ``user`` as the actor for log lines of the current request."""

    if has_request_context() and user is not None:
        g.actor_id = user.id


def _on_login(sender, user, **extra) -> None:
    remember_actor(user)


def _on_logout(sender, user, **extra) -> None:
    if has_request_context():
        g.pop("actor_id", None)


def _level(app: Flask) -> int:
    configured = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    level = logging.getLevelName(configured)
    return level if isinstance(level, int) else logging.INFO


def _attach(handler: logging.Handler, level: int, request_filter: logging.Filter) -> None:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(request_filter)
    logging.getLogger().addHandler(handler)


def configure_logging(app: Flask) -> Path:
    """Install the stdout and file handlers and return the log file path."""

    logs_dir = Path(app.config.get("LOG_DIR") or Path(app.root_path).parent / "logs")
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = (logs_dir / app.config.get("LOG_FILE_NAME", "pharmacy_console.log")).resolve()

    level = _level(app)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    request_filter = RequestContextFilter()

    if not any(type(handler) is logging.StreamHandler for handler in root_logger.handlers):
        _attach(logging.StreamHandler(sys.stdout), level, request_filter)

    if not any(
        isinstance(handler, RotatingFileHandler) and handler.baseFilename == str(log_path)
        for handler in root_logger.handlers
    ):
        _attach(
            RotatingFileHandler(
                log_path,
                maxBytes=int(app.config.get("LOG_MAX_BYTES", 5 * 1024 * 1024)),
                backupCount=int(app.config.get("LOG_BACKUP_COUNT", 5)),
            ),
            level,
            request_filter,
        )

    for handler in app.logger.handlers:
        if not any(isinstance(existing, RequestContextFilter) for existing in handler.filters):
            handler.addFilter(request_filter)

    user_logged_in.connect(_on_login, app)
    user_logged_out.connect(_on_logout, app)

    app.logger.setLevel(level)
    for name in ("werkzeug", "gunicorn.error", "gunicorn.access"):
        logging.getLogger(name).setLevel(level)

    return log_path
