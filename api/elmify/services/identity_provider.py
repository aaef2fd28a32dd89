"""Clerk backend API client."""

from __future__ import annotations

import logging
from functools import lru_cache

import httpx
from fastapi import status

from .. import settings
from ..errors import BusinessError

logger = logging.getLogger(__name__)


class ClerkClient:
    def __init__(self, secret_key: str | None, api_base: str, client: httpx.Client | None = None):
        self.secret_key = secret_key
        self.api_base = api_base.rstrip("/")
        self._client = client or httpx.Client(timeout=httpx.Timeout(30.0, connect=10.0))

    def delete_user(self, clerk_id: str) -> None:
        """Permanently delete the Clerk account. A missing account counts as deleted."""
        if not self.secret_key:
            raise BusinessError(
                "Identity provider is not configured",
                status_code=status.HTTP_502_BAD_GATEWAY,
                error_code="IDENTITY_PROVIDER_ERROR",
            )

        try:
            response = self._client.delete(
                f"{self.api_base}/users/{clerk_id}",
                headers={"Authorization": f"Bearer {self.secret_key}"},
            )
        except httpx.HTTPError as e:
            logger.error(f"Unexpected error deleting Clerk user {clerk_id}: {e}")
            raise BusinessError(
                "Failed to delete identity provider account",
                status_code=status.HTTP_502_BAD_GATEWAY,
                error_code="IDENTITY_PROVIDER_ERROR",
            ) from e

        if response.status_code == status.HTTP_404_NOT_FOUND:
            logger.warning(f"Clerk user not found (may already be deleted): {clerk_id}")
            return
        if response.is_success:
            logger.info(f"Successfully deleted Clerk user: {clerk_id}")
            return

        logger.error(
            f"Error deleting Clerk user {clerk_id}: {response.status_code} - {response.text}"
        )
        raise BusinessError(
            f"Failed to delete identity provider account: {response.status_code}",
            status_code=status.HTTP_502_BAD_GATEWAY,
            error_code="IDENTITY_PROVIDER_ERROR",
        )


@lru_cache(maxsize=1)
def get_clerk_client() -> ClerkClient:
    return ClerkClient(settings.CLERK_SECRET_KEY, settings.CLERK_API_BASE)
