from __future__ import annotations

import logging

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from pharmapp.extensions import db
from pharmapp.models import User, UserRole
from pharmapp.services.errors import DuplicateAccountError

logger = logging.getLogger(__name__)

DUPLICATE_ACCOUNT_MESSAGE = "An account with this email or mobile number already exists."


def _ensure_unique(email: str, mobile: str, *, exclude_id: int | None = None) -> None:
    query = User.query.filter(or_(User.email == email, User.mobile == mobile))
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    if query.first() is not None:
        raise DuplicateAccountError(DUPLICATE_ACCOUNT_MESSAGE)


def _commit_account(user: User) -> User:
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Account write rejected for %s: %s", user.email, exc.orig)
        raise DuplicateAccountError(DUPLICATE_ACCOUNT_MESSAGE) from exc
    return user


def create_pharmacist(
    *,
    full_name: str,
    email: str,
    mobile: str,
    password: str,
    address: str | None = None,
) -> User:
    email = email.strip().lower()
    _ensure_unique(email, mobile)

    user = User(
        full_name=full_name,
        email=email,
        mobile=mobile,
        role=UserRole.PHARMACIST,
        address=address,
    )
    user.set_password(password)
    db.session.add(user)
    _commit_account(user)
    logger.info("Created pharmacist account %s (%s)", user.id, user.email)
    return user


def update_account(
    user: User,
    *,
    full_name: str,
    email: str,
    mobile: str,
    address: str | None = None,
    password: str | None = None,
) -> User:
    """Update contact details, and the password when one is supplied."""

    email = email.strip().lower()
    _ensure_unique(email, mobile, exclude_id=user.id)

    user.full_name = full_name
    user.email = email
    user.mobile = mobile
    user.address = address
    if password:
        user.set_password(password)
    return _commit_account(user)


def set_account_status(user: User, *, active: bool) -> User:
    if active:
        user.activate()
    else:
        user.deactivate()
    db.session.commit()
    logger.info("Account %s is now %s", user.id, user.status)
    return user
