from __future__ import annotations

import secrets
from datetime import datetime, timedelta

from flask import Blueprint, current_app, jsonify, url_for
from flask_login import current_user, login_required, login_user, logout_user

from pharmapp.extensions import db
from pharmapp.forms import (
    EMAIL_PATTERN,
    MIN_PASSWORD_LENGTH,
    parse_password_change_form,
    request_payload,
)
from pharmapp.models import PasswordResetToken, User
from pharmapp.security import dashboard_endpoint_for

bp = Blueprint("auth", __name__, url_prefix="/auth")

GENERIC_RECOVERY_MESSAGE = (
    "If an account with that email exists, password recovery instructions have been sent."
)


def _error(message: str, status_code: int = 400):
    return jsonify({"success": False, "message": message}), status_code


@bp.route("/login", methods=["POST"])
def login():
    payload = request_payload()
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""

    if not EMAIL_PATTERN.match(email):
        return _error("Please enter a valid email address.")
    if not password:
        return _error("Password is required.")

    user = User.query.filter_by(email=email).first()
    if user is None or not user.check_password(password):
        current_app.logger.info("Failed login attempt for %s", email)
        return _error("Invalid email or password.", 401)
    if not user.is_active:
        current_app.logger.info("Login refused for inactive account %s", email)
        return _error("This account has been deactivated.", 403)

    login_user(user)
    current_app.logger.info("User %s logged in as %s", user.id, user.role)
    return jsonify(
        {
            "success": True,
            "message": f"Welcome back, {user.full_name}!",
            "user": user.to_dict(),
            "redirect": url_for(dashboard_endpoint_for(user)),
        }
    )


@bp.route("/logout")
@login_required
def logout():
    user_id = current_user.id
    logout_user()
    current_app.logger.info("User %s logged out", user_id)
    return jsonify({"success": True, "message": "You have been logged out successfully"})


@bp.get("/me")
@login_required
def me():
    return jsonify(current_user.to_dict())


@bp.route("/forgot-password", methods=["POST"])
def forgot_password():
    payload = request_payload()
    email = (payload.get("email") or "").strip().lower()
    if not EMAIL_PATTERN.match(email):
        return _error("Please enter a valid email address.")

    user = User.active().filter_by(email=email).first()
    if user is not None:
        ttl = int(current_app.config.get("PASSWORD_RESET_TOKEN_TTL", 3600))
        reset_token = PasswordResetToken(
            user_id=user.id,
            token=secrets.token_urlsafe(32),
            expires_at=datetime.utcnow() + timedelta(seconds=ttl),
        )
        db.session.add(reset_token)
        db.session.commit()
        current_app.logger.info(
            "Issued password reset token %s for user %s", reset_token.id, user.id
        )

    return jsonify({"success": True, "message": GENERIC_RECOVERY_MESSAGE})


@bp.route("/reset-password/<token>", methods=["POST"])
def reset_password(token: str):
    payload = request_payload()
    new_password = payload.get("new_password") or ""
    confirm_password = payload.get("confirm_password") or ""

    reset_token = PasswordResetToken.query.filter_by(token=token).first()
    if reset_token is None or not reset_token.is_usable():
        return _error("This password reset link is invalid or has expired.")
    if len(new_password) < MIN_PASSWORD_LENGTH:
        return _error(
            f"New password must be at least {MIN_PASSWORD_LENGTH} characters long."
        )
    if new_password != confirm_password:
        return _error("Password confirmation does not match.")

    reset_token.user.set_password(new_password)
    reset_token.used = True
    db.session.commit()
    current_app.logger.info("Password reset completed for user %s", reset_token.user_id)
    return jsonify({"success": True, "message": "Password has been reset. Please log in."})


@bp.route("/change-password", methods=["POST"])
@login_required
def change_password():
    payload, errors = parse_password_change_form(request_payload())
    if errors:
        return _error(errors[0])

    if not current_user.check_password(payload.current_password):
        return _error("Current password is incorrect.")

    current_user.set_password(payload.new_password)
    db.session.commit()
    current_app.logger.info("Password changed for user %s", current_user.id)
    return jsonify({"success": True, "message": "Password changed successfully"})
