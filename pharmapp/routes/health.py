from __future__ import annotations

from datetime import datetime

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from pharmapp.extensions import db

bp = Blueprint("health", __name__, url_prefix="/health")


@bp.get("/db")
def database_status():
    checked_at = datetime.utcnow().isoformat()
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.warning("Database health check failed: %s", exc)
        return (
            jsonify(
                {
                    "status": "DOWN",
                    "checked_at": checked_at,
                    "error": str(getattr(exc, "orig", exc)),
                }
            ),
            503,
        )

    return jsonify({"status": "UP", "checked_at": checked_at})
