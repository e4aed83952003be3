"""
api/routes/v1/auth.py -- Signin, signup and current-identity endpoints.

Routes:
  POST /api/v1/signin   -- login/password -> bearer token (public, rate-limited)
  POST /api/v1/signup   -- self-registration (public)
  GET  /api/v1/me       -- the authenticated user's profile and cars

Security:
  POST /signin is rate-limited per client IP (Settings.login_rate_limit).
  Wrong login and wrong password return the same 401 so the response does
  not reveal which logins exist; authenticate_user() equalizes timing.
  Cache-Control: no-store on signin responses so tokens are never cached.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import MessageResponse, SigninRequest, SigninResponse, UserCreate, UserResponse
from auth.dependencies import require_identity
from auth.models import Identity
from core.config import get_settings
from fleet.service import FleetService

_settings = get_settings()

# Auth policy:
# - POST /signin: public -- the endpoint that issues tokens
# - POST /signup: public -- self-registration
# - GET  /me:     requires a bearer token (require_identity)
router = APIRouter()


@limiter.limit(_settings.login_rate_limit)
@router.post("/signin", response_model=SigninResponse)
def signin(request: Request, body: SigninRequest) -> JSONResponse:
    """Exchange a login and password for a bearer token valid for 10 hours."""
    service: FleetService = request.app.state.service
    user, token = service.signin(body.username, body.password)
    resp = JSONResponse(
        status_code=200,
        content=SigninResponse(
            token=token,
            name=user.first_name or user.login,
            expires_in=_settings.token_expire_seconds,
        ).model_dump(by_alias=True),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/signup", response_model=MessageResponse, status_code=201)
def signup(request: Request, body: UserCreate) -> MessageResponse:
    """Register a new account.

    email, login and password are required (400 "Missing fields"); the
    password needs at least 8 characters. Email is checked for duplicates
    before login (409).
    """
    service: FleetService = request.app.state.service
    service.create_user(body.to_draft(), body.car_drafts())
    return MessageResponse(message="User created successfully")


@router.get("/me", response_model=UserResponse)
def me(request: Request, identity: Identity = Depends(require_identity)) -> UserResponse:
    """Return the profile and cars of the authenticated caller."""
    service: FleetService = request.app.state.service
    return UserResponse.from_domain(service.me(identity))
