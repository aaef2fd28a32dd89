"""Provision and refresh local users from identity-provider data."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models
from ..errors import AuthenticationError, BusinessError

logger = logging.getLogger(__name__)


def _clean(value: Any) -> str | None:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return None


def extract_email(claims: dict[str, Any]) -> str | None:
    """``email``, then ``primary_email``, then ``email_addresses[0].email_address``."""
    email = _clean(claims.get("email")) or _clean(claims.get("primary_email"))
    if email:
        return email

    addresses = claims.get("email_addresses")
    if isinstance(addresses, list) and addresses:
        first = addresses[0]
        if isinstance(first, dict):
            return _clean(first.get("email_address"))
    return None


def extract_display_name(claims: dict[str, Any]) -> str | None:
    name = _clean(claims.get("name"))
    if name:
        return name

    first = _clean(claims.get("first_name"))
    last = _clean(claims.get("last_name"))
    if first or last:
        return " ".join(part for part in (first, last) if part)

    username = _clean(claims.get("username"))
    if username:
        return username

    email = extract_email(claims)
    if email:
        return email.split("@", 1)[0]
    return None


def extract_profile_image(claims: dict[str, Any]) -> str | None:
    return (
        _clean(claims.get("image_url"))
        or _clean(claims.get("profile_image_url"))
        or _clean(claims.get("picture"))
    )


def _apply_changes(user: models.User, **fields: str | None) -> bool:
    """Copy non-null values that differ from the row. Returns True if anything changed."""
    changed = False
    for name, value in fields.items():
        if value is not None and getattr(user, name) != value:
            setattr(user, name, value)
            changed = True
    return changed


def sync_user_from_claims(db: Session, claims: dict[str, Any]) -> models.User:
    """
    Return the local user for a verified token, creating it on first sight.

    Existing rows are only written when a claim carries a new non-null value,
    so most authenticated requests stay read-only.
    """
    clerk_id = _clean(claims.get("sub"))
    if not clerk_id:
        raise AuthenticationError("Token has no subject")

    email = extract_email(claims)
    display_name = extract_display_name(claims)
    image = extract_profile_image(claims)

    user = db.query(models.User).filter(models.User.clerk_id == clerk_id).first()
    if user is not None:
        if _apply_changes(user, email=email, display_name=display_name, profile_image_url=image):
            try:
                db.commit()
                logger.debug(f"Updated user profile from token claims for {clerk_id}")
            except IntegrityError as e:
                # e.g. the email now belongs to another account; keep serving the request
                db.rollback()
                logger.warning(f"Failed to sync user {clerk_id} from claims: {e.orig}")
                db.refresh(user)
        return user

    user = models.User(
        clerk_id=clerk_id,
        email=email,
        display_name=display_name,
        profile_image_url=image,
        is_premium=False,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # A concurrent first request created the row (or the email is taken)
        db.rollback()
        existing = db.query(models.User).filter(models.User.clerk_id == clerk_id).first()
        if existing is not None:
            return existing
        logger.warning(f"Email {email} already in use; creating user {clerk_id} without it")
        user = models.User(
            clerk_id=clerk_id, display_name=display_name, profile_image_url=image
        )
        db.add(user)
        db.commit()

    db.refresh(user)
    logger.info(f"Created new user with Clerk ID [{clerk_id}]")
    return user


def sync_user(
    db: Session,
    clerk_id: str,
    email: str | None,
    display_name: str | None,
    profile_image_url: str | None,
) -> models.User:
    """
    Explicit upsert from the client's profile payload. Values overwrite the row.

    Args:
        db: Database session
        clerk_id: Identity-provider user id
        email: New email, or None to clear it
        display_name: New display name
        profile_image_url: New avatar URL

    Returns:
        The refreshed user row

    Raises:
        BusinessError: 409 when the email belongs to another account
    """
    user = db.query(models.User).filter(models.User.clerk_id == clerk_id).first()
    if user is None:
        logger.info(f"Creating new user with Clerk ID [{clerk_id}]")
        user = models.User(clerk_id=clerk_id)
        db.add(user)
    else:
        logger.debug(f"User found with Clerk ID [{clerk_id}]. Syncing profile.")

    user.email = email
    user.display_name = display_name
    user.profile_image_url = profile_image_url
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Failed to sync user {clerk_id}: {e.orig}")
        raise BusinessError(
            "Email is already in use by another account",
            status_code=status.HTTP_409_CONFLICT,
            error_code="CONFLICT",
        ) from e
    db.refresh(user)
    return user
