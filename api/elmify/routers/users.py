"""User account endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import ACCESS_DENIED_MESSAGE, get_current_claims, get_current_user, require_admin
from ..deps import get_db
from ..pagination import PageParams, page_params, paginate
from ..services.identity_provider import ClerkClient, get_clerk_client
from ..services.user_sync import sync_user

router = APIRouter(prefix="/api/v1/users", tags=["Users"])
logger = logging.getLogger(__name__)

USER_SORTS = {
    "createdAt": models.User.created_at,
    "displayName": models.User.display_name,
    "email": models.User.email,
    "id": models.User.id,
}


@router.post("/sync", response_model=schemas.User)
def sync_current_user(
    payload: schemas.UserSyncRequest,
    claims: dict[str, Any] = Depends(get_current_claims),
    db: Session = Depends(get_db),
) -> schemas.User:
    """
    Create or update the local profile from the client's view of the account.

    The payload may only describe the authenticated user.
    """
    if payload.clerk_id != claims.get("sub"):
        logger.warning(
            f"User {claims.get('sub')} attempted to sync profile of {payload.clerk_id}"
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=ACCESS_DENIED_MESSAGE,
        )
    user = sync_user(
        db,
        clerk_id=payload.clerk_id,
        email=payload.email,
        display_name=payload.display_name,
        profile_image_url=payload.profile_image_url,
    )
    return schemas.User.model_validate(user)


@router.get("/me", response_model=schemas.User)
def get_me(current_user: models.User = Depends(get_current_user)) -> schemas.User:
    return schemas.User.model_validate(current_user)


@router.put("/me/preferences", response_model=schemas.User)
def update_preferences(
    preferences: schemas.UserPreferences,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> schemas.User:
    # Stored with wire names so clients read back what they sent
    current_user.preferences = preferences.model_dump(by_alias=True)
    db.commit()
    db.refresh(current_user)
    logger.info(f"Updated preferences for user {current_user.clerk_id}")
    return schemas.User.model_validate(current_user)


@router.delete("/me", status_code=status.HTTP_204_NO_CONTENT)
def delete_me(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    clerk: ClerkClient = Depends(get_clerk_client),
) -> None:
    """
    Delete the account everywhere.

    The identity-provider account goes first so a failure there leaves the
    local data intact for a retry.
    """
    clerk_id = current_user.clerk_id
    clerk.delete_user(clerk_id)
    db.delete(current_user)
    db.commit()
    logger.info(f"Deleted user {clerk_id} and all associated data")


@router.get("", response_model=schemas.PagedResponse[schemas.User])
def list_users(
    params: PageParams = Depends(page_params),
    db: Session = Depends(get_db),
    _admin: dict[str, Any] = Depends(require_admin),
):
    return paginate(
        db.query(models.User),
        params,
        schemas.User.model_validate,
        allowed_sorts=USER_SORTS,
        default_order=(models.User.created_at.desc(), models.User.id.desc()),
    )
