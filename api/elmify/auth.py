"""Authentication against the Clerk identity provider.

Tokens are RS256 JWTs signed by Clerk. Signature, expiry, not-before and issuer
checks are delegated to PyJWT with keys fetched from the issuer's JWKS. Local
users are provisioned lazily from the token claims on first use.
"""

from __future__ import annotations

import logging
import threading
from functools import lru_cache
from typing import Any

import httpx
import jwt
from fastapi import Depends, HTTPException, Query, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from . import models, settings
from .deps import get_db
from .errors import AuthenticationError
from .services.premium import PremiumFilter
from .services.user_sync import sync_user_from_claims

logger = logging.getLogger(__name__)

# Security scheme for Bearer token
oauth2_scheme = HTTPBearer(auto_error=False)

JWT_ALGORITHMS = ["RS256"]
AUTH_REQUIRED_MESSAGE = "Valid JWT token is required to access this resource"
ACCESS_DENIED_MESSAGE = "Insufficient privileges to access this resource"


def discover_jwks_url(issuer: str) -> str:
    """
    Resolve the JWKS location for ``issuer``.

    OpenID discovery is tried first; the conventional
    ``<issuer>/.well-known/jwks.json`` is the fallback.
    """
    base = issuer.rstrip("/")
    try:
        response = httpx.get(f"{base}/.well-known/openid-configuration", timeout=5.0)
        response.raise_for_status()
        jwks_uri = response.json().get("jwks_uri")
        if jwks_uri:
            logger.info(f"Discovered JWKS URI for issuer {issuer}: {jwks_uri}")
            return jwks_uri
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"Auto-discovery failed for issuer {issuer}, using manual JWKS URI: {e}")
    return f"{base}/.well-known/jwks.json"


class JwtVerifier:
    """Decode and validate Clerk session tokens."""

    def __init__(
        self,
        issuer: str,
        jwks_url: str | None = None,
        signing_key: Any = None,
        leeway: int = 30,
    ):
        self.issuer = issuer
        self.leeway = leeway
        self._signing_key = signing_key
        self._jwks_url = jwks_url
        self._jwks_client: jwt.PyJWKClient | None = None
        self._lock = threading.Lock()

    def _get_jwks_client(self) -> jwt.PyJWKClient:
        with self._lock:
            if self._jwks_client is None:
                url = self._jwks_url or discover_jwks_url(self.issuer)
                self._jwks_client = jwt.PyJWKClient(url, cache_keys=True, lifespan=3600)
            return self._jwks_client

    def _key_for(self, token: str) -> Any:
        if self._signing_key is not None:
            return self._signing_key
        return self._get_jwks_client().get_signing_key_from_jwt(token).key

    def verify(self, token: str) -> dict[str, Any]:
        try:
            return jwt.decode(
                token,
                self._key_for(token),
                algorithms=JWT_ALGORITHMS,
                issuer=self.issuer,
                leeway=self.leeway,
                options={"require": ["exp", "iss", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            logger.debug("JWT validation failed: token expired")
            raise AuthenticationError("Token has expired") from None
        except jwt.PyJWKClientError as e:
            logger.warning(f"Could not resolve JWT signing key: {e}")
            raise AuthenticationError("Unable to verify token signature") from None
        except jwt.InvalidTokenError as e:
            logger.debug(f"JWT validation failed: {e}")
            raise AuthenticationError("Invalid token") from None


@lru_cache(maxsize=1)
def get_jwt_verifier() -> JwtVerifier | None:
    if not settings.CLERK_JWT_ISSUER:
        logger.error("CLERK_JWT_ISSUER is not set; bearer tokens cannot be verified")
        return None
    return JwtVerifier(settings.CLERK_JWT_ISSUER, settings.CLERK_JWKS_URL)


def _verify(verifier: JwtVerifier | None, token: str) -> dict[str, Any]:
    if verifier is None:
        raise AuthenticationError("Authentication is not configured")
    return verifier.verify(token)


def roles_from_claims(claims: dict[str, Any]) -> set[str]:
    """
    Map Clerk claims to application roles.

    Everyone is a ``user``. ``admin`` comes from ``public_metadata.role``,
    any entry of ``public_metadata.roles``, or an organization role that
    mentions admin or owner.
    """
    roles = {"user"}
    metadata = claims.get("public_metadata")
    if isinstance(metadata, dict):
        role = metadata.get("role")
        if isinstance(role, str) and role.lower() == "admin":
            roles.add("admin")
        extra = metadata.get("roles")
        if isinstance(extra, list):
            roles.update(str(r).lower() for r in extra if r)

    org_role = claims.get("org_role")
    if isinstance(org_role, str):
        lowered = org_role.lower()
        if "admin" in lowered or "owner" in lowered:
            roles.add("admin")
    return roles


def get_client_ip(request: Request) -> str:
    """Client address, honouring X-Forwarded-For and X-Real-IP from the proxy."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first and first.lower() != "unknown":
            return first

    real_ip = request.headers.get("X-Real-IP")
    if real_ip and real_ip.strip().lower() != "unknown":
        return real_ip.strip()

    if request.client:
        return request.client.host
    return "unknown"


# ============================================================================
# DEPENDENCIES
# ============================================================================


def get_optional_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(oauth2_scheme),
    verifier: JwtVerifier | None = Depends(get_jwt_verifier),
) -> dict[str, Any] | None:
    """Claims of a valid bearer token, or None for anonymous or invalid tokens."""
    if not credentials:
        return None
    try:
        return _verify(verifier, credentials.credentials)
    except AuthenticationError as e:
        logger.debug(f"Ignoring invalid token on public endpoint: {e.message}")
        return None


def get_current_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(oauth2_scheme),
    verifier: JwtVerifier | None = Depends(get_jwt_verifier),
) -> dict[str, Any]:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=AUTH_REQUIRED_MESSAGE,
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _verify(verifier, credentials.credentials)


def get_stream_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(oauth2_scheme),
    token: str | None = Query(None, description="JWT for players that cannot send headers"),
    verifier: JwtVerifier | None = Depends(get_jwt_verifier),
) -> dict[str, Any]:
    """Like get_current_claims, but also accepts the token as a query parameter."""
    raw = credentials.credentials if credentials else token
    if not raw:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=AUTH_REQUIRED_MESSAGE,
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _verify(verifier, raw)


def get_current_user(
    claims: dict[str, Any] = Depends(get_current_claims),
    db: Session = Depends(get_db),
) -> models.User:
    return sync_user_from_claims(db, claims)


def get_optional_user(
    claims: dict[str, Any] | None = Depends(get_optional_claims),
    db: Session = Depends(get_db),
) -> models.User | None:
    if claims is None:
        return None
    return sync_user_from_claims(db, claims)


def get_stream_user(
    claims: dict[str, Any] = Depends(get_stream_claims),
    db: Session = Depends(get_db),
) -> models.User:
    return sync_user_from_claims(db, claims)


def require_admin(
    claims: dict[str, Any] = Depends(get_current_claims),
) -> dict[str, Any]:
    if "admin" not in roles_from_claims(claims):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=ACCESS_DENIED_MESSAGE,
        )
    return claims


def get_premium_filter(
    user: models.User | None = Depends(get_optional_user),
) -> PremiumFilter:
    return PremiumFilter(user)
