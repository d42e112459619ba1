from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from pharmapp.extensions import db

bp = Blueprint("errors", __name__)


@bp.app_errorhandler(HTTPException)
def handle_http_error(error: HTTPException):
    response = jsonify(
        {
            "error": error.name,
            "message": error.description,
            "path": request.path,
        }
    )
    response.status_code = error.code or 500
    return response


@bp.app_errorhandler(Exception)
def handle_exception(error: Exception):
    # HTTP errors that are not 500 keep their own status.
    if isinstance(error, HTTPException) and error.code != 500:
        return handle_http_error(error)

    db.session.rollback()
    current_app.logger.exception("Unhandled exception", exc_info=error)

    response = jsonify(
        {
            "error": "Internal Server Error",
            "message": "An unexpected error occurred.",
            "path": request.path,
            "endpoint": request.endpoint,
        }
    )
    response.status_code = 500
    return response
