"""
api/routes/v1/auth.py -- Invitation, registration and session endpoints.

Routes:
  POST /api/v1/invite     -- email a verification token
  POST /api/v1/register   -- redeem token, create account
  POST /api/v1/sign-in    -- password sign-in; sets session cookie
  POST /api/v1/sign-out   -- purge session; clears cookie
  GET  /api/v1/who-am-i   -- current user (requires a bound session)

Routes are declared in the ROUTES table at the bottom and registered by
build_router(); handlers carry no decorators.

Security:
  [C1] Unknown email and wrong password share one 401 payload (AuthWorkflow.sign_in).
  [C3] Every successful sign-in rotates the session handle; the response
       carries the new cookie only.
  [M5] Cache-Control: no-store on every sign-in response, success or failure.
  Session cookie: httponly, samesite=lax, secure per SECURE_COOKIES.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.errors import app_error_response
from api.models import (
    InviteRequest,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
    SignInRequest,
    UserResponse,
)
from auth.dependencies import get_session, get_workflow
from auth.workflow import AuthWorkflow
from core.errors import InvalidCredentialsError
from sessions.manager import Session

# Auth policy:
# - POST /api/v1/invite:    public
# - POST /api/v1/register:  public -- possession of the emailed token is the proof
# - POST /api/v1/sign-in:   public
# - POST /api/v1/sign-out:  bound session required (401 otherwise, raised by the workflow)
# - GET  /api/v1/who-am-i:  bound session required (401 otherwise, raised by the workflow)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def _set_session_cookie(request: Request, response: JSONResponse, session: Session) -> None:
    settings = request.app.state.settings
    response.set_cookie(
        key=settings.session_cookie_name,
        value=session.handle,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
    )


def _clear_session_cookie(request: Request, response: JSONResponse) -> None:
    settings = request.app.state.settings
    response.delete_cookie(
        settings.session_cookie_name,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
    )


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def invite(body: InviteRequest, workflow: AuthWorkflow = Depends(get_workflow)) -> MessageResponse:
    """Send a verification email. Does not reveal whether the address is registered."""
    workflow.invite(body.email)
    return MessageResponse(message="Verification email sent")


def register(body: RegisterRequest, workflow: AuthWorkflow = Depends(get_workflow)) -> RegisterResponse:
    """Create an account from a verification token.

    403 invalid_token for any unusable token, 403 token_expired past expiry,
    409 if the email is already registered.
    """
    user = workflow.register(body.token, body.email, body.password)
    return RegisterResponse(message="Successfully registered", user=UserResponse.from_user(user))


def sign_in(
    request: Request,
    body: SignInRequest,
    session: Session = Depends(get_session),
    workflow: AuthWorkflow = Depends(get_workflow),
) -> JSONResponse:
    try:
        user, renewed = workflow.sign_in(session, body.email, body.password)
    except InvalidCredentialsError as exc:
        resp = app_error_response(exc)
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    resp = JSONResponse(content=UserResponse.from_user(user).model_dump(mode="json"))
    _set_session_cookie(request, resp, renewed)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def sign_out(
    request: Request,
    session: Session = Depends(get_session),
    workflow: AuthWorkflow = Depends(get_workflow),
) -> JSONResponse:
    workflow.sign_out(session)
    resp = JSONResponse(content=MessageResponse(message="Successfully signed out").model_dump())
    _clear_session_cookie(request, resp)
    return resp


def who_am_i(
    session: Session = Depends(get_session),
    workflow: AuthWorkflow = Depends(get_workflow),
) -> UserResponse:
    return UserResponse.from_user(workflow.who_am_i(session))


# ---------------------------------------------------------------------------
# Routing table
# ---------------------------------------------------------------------------

ROUTES = [
    ("POST", "/invite", invite, MessageResponse),
    ("POST", "/register", register, RegisterResponse),
    ("POST", "/sign-in", sign_in, UserResponse),
    ("POST", "/sign-out", sign_out, MessageResponse),
    ("GET", "/who-am-i", who_am_i, UserResponse),
]


def build_router() -> APIRouter:
    router = APIRouter()
    for method, path, endpoint, response_model in ROUTES:
        router.add_api_route(path, endpoint, methods=[method], response_model=response_model)
    return router
