"""
api/routes/v1/auth.py -- Credential exchange endpoints.

Routes:
  POST /api/v1/auth/register            -- create account; 201 with token pair
  POST /api/v1/auth/login               -- password login; token pair + new session
  POST /api/v1/auth/refresh             -- rotate refresh token; new pair
  POST /api/v1/auth/logout              -- end this device's session (requires auth)
  POST /api/v1/auth/logout-all          -- end every session (requires auth)
  POST /api/v1/auth/send-verification   -- email a fresh verification link (requires auth)
  GET  /api/v1/auth/verify-email?token= -- confirm email (link target)
  POST /api/v1/auth/verify-email        -- confirm email (JSON body)
  POST /api/v1/auth/forgot-password     -- email a reset link; always 200
  POST /api/v1/auth/reset-password      -- set new password; signs out everywhere
  GET  /api/v1/auth/me                  -- identity attached to this request

Security:
  Login is rate-limited per client address (LOGIN_RATE_LIMIT); forgot/reset
  use PASSWORD_RESET_RATE_LIMIT. These limits always key on the address and
  ignore RATE_LIMIT_KEY_STRATEGY, which only selects the default-limit key,
  so rotating X-API-Key values never resets a login counter.
  Cache-Control: no-store on every response that carries credentials or
  answers a credential request.
  Login failures come back as one 401 shape regardless of cause; the service
  guarantees it, these handlers must not add detail.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response
from slowapi.util import get_remote_address

from api.limiter import limiter, login_limit, password_reset_limit
from api.models import (
    AccountResponse,
    AuthResponse,
    ForgotPasswordRequest,
    LoginRequest,
    LogoutRequest,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenPairResponse,
    VerifyEmailRequest,
)
from api.routes.v1.common import auth_response, me_response, request_meta
from auth.dependencies import flexible_auth, get_current_context
from auth.models import AuthContext
from auth.service import AuthService

# Auth policy:
# - register / login / refresh / verify-email / forgot / reset: public
# - logout / logout-all / send-verification: Bearer (get_current_context)
# - me: Bearer or X-API-Key (flexible_auth)
router = APIRouter()


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, response: Response, body: RegisterRequest) -> AuthResponse:
    """Create an account and open its first session.

    A verification email is attempted; delivery failure does not fail
    registration.
    """
    ip_address, user_agent = request_meta(request)
    result = _service(request).register(
        body.name, body.email, body.password, ip_address=ip_address, user_agent=user_agent
    )
    _no_store(response)
    return auth_response(result)


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(login_limit, key_func=get_remote_address)  # must sit BELOW @router so the route runs the limited wrapper
def login(request: Request, response: Response, body: LoginRequest) -> AuthResponse:
    """Exchange email + password for a token pair.

    Unknown email and wrong password produce the identical 401.
    """
    ip_address, user_agent = request_meta(request)
    result = _service(request).login(body.email, body.password, ip_address=ip_address, user_agent=user_agent)
    _no_store(response)
    return auth_response(result)


@router.post("/auth/refresh", response_model=TokenPairResponse)
def refresh(request: Request, response: Response, body: RefreshRequest) -> TokenPairResponse:
    """Rotate a refresh token. The presented token stops working immediately."""
    tokens = _service(request).refresh(body.refresh_token)
    _no_store(response)
    return TokenPairResponse(access_token=tokens.access_token, refresh_token=tokens.refresh_token)


@router.get("/auth/verify-email", response_model=AccountResponse)
def verify_email_link(request: Request, token: str = Query(min_length=1, max_length=256)) -> AccountResponse:
    """Link target from the verification email."""
    return AccountResponse.from_account(_service(request).verify_email(token))


@router.post("/auth/verify-email", response_model=AccountResponse)
def verify_email(request: Request, body: VerifyEmailRequest) -> AccountResponse:
    return AccountResponse.from_account(_service(request).verify_email(body.token))


@router.post("/auth/forgot-password", response_model=MessageResponse)
@limiter.limit(password_reset_limit, key_func=get_remote_address)
def forgot_password(request: Request, response: Response, body: ForgotPasswordRequest) -> MessageResponse:
    """Always 200 with the same message, whether or not the email is registered."""
    _service(request).forgot_password(body.email)
    _no_store(response)
    return MessageResponse(message="If an account with that email exists, a password reset link has been sent.")


@router.post("/auth/reset-password", response_model=MessageResponse)
@limiter.limit(password_reset_limit, key_func=get_remote_address)
def reset_password(request: Request, response: Response, body: ResetPasswordRequest) -> MessageResponse:
    ip_address, user_agent = request_meta(request)
    _service(request).reset_password(body.token, body.password, ip_address=ip_address, user_agent=user_agent)
    _no_store(response)
    return MessageResponse(message="Password has been reset. Please log in again on all devices.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    request: Request,
    body: LogoutRequest,
    ctx: AuthContext = Depends(get_current_context),
) -> MessageResponse:
    """End the session identified by the refresh token. Idempotent."""
    ip_address, user_agent = request_meta(request)
    _service(request).logout(ctx.identity.id, body.refresh_token, ip_address=ip_address, user_agent=user_agent)
    return MessageResponse(message="Logged out successfully.")


@router.post("/auth/logout-all", response_model=MessageResponse)
def logout_all(request: Request, ctx: AuthContext = Depends(get_current_context)) -> MessageResponse:
    ip_address, user_agent = request_meta(request)
    _service(request).logout_all(ctx.identity.id, ip_address=ip_address, user_agent=user_agent)
    return MessageResponse(message="Logged out from all devices.")


@router.post("/auth/send-verification", response_model=MessageResponse)
def send_verification(request: Request, ctx: AuthContext = Depends(get_current_context)) -> MessageResponse:
    _service(request).send_verification(ctx.identity.id)
    return MessageResponse(message="Verification email sent.")


@router.get("/auth/me", response_model=MeResponse)
def me(ctx: AuthContext = Depends(flexible_auth())) -> MeResponse:
    """Return the identity attached to this request (Bearer or API key)."""
    return me_response(ctx)
