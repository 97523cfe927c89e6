"""
auth/dependencies.py -- FastAPI Depends() helpers for session authentication.

The session handle travels in the `session_id` cookie (name configurable via
SESSION_COOKIE_NAME). get_session() resolves it through the SessionManager on
app.state; an unknown or expired handle is simply an anonymous Session.

get_session() is the soft variant (never raises for a missing cookie).
get_current_user() wraps it and raises UnauthorizedError (HTTP 401 via the
AppError handler in api/main.py) if nothing is bound. It reads the bound id
from the session only; resolving that id to a stored user is who_am_i's job.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.workflow import AuthWorkflow
from sessions.manager import Session


def get_workflow(request: Request) -> AuthWorkflow:
    return request.app.state.workflow


def get_session(request: Request) -> Session:
    """Load the Session for the request's cookie. Anonymous if absent or stale."""
    cookie_name = request.app.state.settings.session_cookie_name
    manager = request.app.state.session_manager
    return manager.load(request.cookies.get(cookie_name))


def get_current_user(request: Request) -> str:
    """Require a bound session and return its user id. Raises UnauthorizedError otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user_id: str = Depends(get_current_user)): ...
    """
    return request.app.state.session_manager.current_user(get_session(request))
