"""
auth/dependencies.py -- Two-phase request authentication for FastAPI.

Phase 1, authenticate(request) -> Identity | None
  Runs in the HTTP middleware (api/main.py) for every non-public request.
  Per request the state moves UNAUTHENTICATED -> TOKEN_PARSED -> AUTHENTICATED:
    1. Authorization: Bearer <token> header present?
    2. extract_username() parses the token (signature checked).
    3. validate_token() checks subject and expiry for that username.
    4. The login still resolves to a user row.
  Any failure leaves the request UNAUTHENTICATED. Never raises: malformed
  tokens are logged and the middleware always continues the chain.

Phase 2, authorize(identity, method, path) -> Decision
  Public routes are ALLOW for everyone; every other route is ALLOW only for
  an authenticated identity. require_identity() is the Depends() helper that
  turns DENY into AuthenticationError (401). Protected routers attach it as a
  router-level dependency.

Layer rule: no imports from api/. fastapi is imported because this module is
part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging

from fastapi import Request

from auth.models import Decision, Identity
from auth.tokens import InvalidTokenError, extract_username, validate_token
from core.errors import AuthenticationError

logger = logging.getLogger("carfleet.auth")

# (method, path) pairs reachable without a token. "*" matches any method.
PUBLIC_ROUTES: frozenset[tuple[str, str]] = frozenset(
    {
        ("POST", "/api/v1/signin"),
        ("POST", "/api/v1/signup"),
        ("GET", "/api/v1/users"),
        ("GET", "/api/v1/users/available-cars"),
        ("GET", "/api/v1/health"),
        ("*", "/docs"),
        ("*", "/docs/oauth2-redirect"),
        ("*", "/redoc"),
        ("*", "/openapi.json"),
    }
)


def is_public(method: str, path: str) -> bool:
    """Return True if (method, path) is on the public allow-list. CORS preflights always are."""
    method = method.upper()
    if method == "OPTIONS":
        return True
    path = path.rstrip("/") or "/"
    return (method, path) in PUBLIC_ROUTES or ("*", path) in PUBLIC_ROUTES


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header[7:].strip()
    return token or None


def authenticate(request: Request) -> Identity | None:
    """Resolve the caller's identity from the bearer token. Returns None on any failure."""
    token = _bearer_token(request)
    if token is None:
        return None

    try:
        username = extract_username(token)
    except InvalidTokenError as exc:
        logger.warning("Rejected malformed token on %s %s: %s", request.method, request.url.path, exc)
        return None

    if not validate_token(token, username):
        logger.warning("Rejected invalid or expired token for %r on %s", username, request.url.path)
        return None

    user = request.app.state.store.get_user_by_login(username)
    if user is None:
        logger.warning("Token subject %r no longer exists", username)
        return None
    return Identity(user_id=user.id, username=user.login)


def authorize(identity: Identity | None, method: str, path: str) -> Decision:
    """Decide whether a request may proceed. Pure function, no I/O."""
    if is_public(method, path):
        return Decision.ALLOW
    return Decision.ALLOW if identity is not None else Decision.DENY


def try_get_identity(request: Request) -> Identity | None:
    """Return the identity the middleware attached, authenticating now if it never ran."""
    if hasattr(request.state, "identity"):
        return request.state.identity
    identity = authenticate(request)
    request.state.identity = identity
    return identity


def require_identity(request: Request) -> Identity | None:
    """Require authentication. Raises AuthenticationError (401) on DENY.

    On public routes the result may be None; handlers that need the caller
    are only ever mounted on protected paths.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(require_identity)): ...
    """
    identity = try_get_identity(request)
    if authorize(identity, request.method, request.url.path) is Decision.DENY:
        logger.warning(
            "Unauthorized %s %s from %s",
            request.method,
            request.url.path,
            request.client.host if request.client else "unknown",
        )
        raise AuthenticationError("Authentication required")
    return identity
