"""
api/routes/v1/users.py -- User listing and management endpoints.

Routes:
  GET    /api/v1/users        -- filtered, sorted, paginated listing
  GET    /api/v1/users/{id}   -- one user
  PATCH  /api/v1/users/{id}   -- change email and/or password
  DELETE /api/v1/users/{id}   -- delete; {"deleted": 0} when already gone

Listing query string (see query/engine.py and auth.store.USER_RESOURCE):
  page, page_size                       -- defaults 1 / DEFAULT_PAGE_SIZE, clamped to MAX_PAGE_SIZE
  email=, email[eq]=, email[like]=      -- bare email= is a LIKE match
  created_at[gte]=, created_at[lte]=    -- ISO 8601; same for updated_at
  sort_by=<field>[.asc|.desc]           -- id, email, created_at, updated_at.
                                           Unknown keys fall back to id order.

All routes require a bound session (router-level dependency).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import DeleteResponse, UserListResponse, UserPatch, UserResponse
from auth.dependencies import get_current_user
from auth.store import USER_RESOURCE, UserStore
from core.errors import NotFoundError


def _store(request: Request) -> UserStore:
    return request.app.state.user_store


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def list_users(request: Request) -> UserListResponse:
    query = USER_RESOURCE.parse_params(request.query_params)
    page = _store(request).list_users(query)
    return UserListResponse(
        items=[UserResponse.from_user(u) for u in page.items],
        total=page.total,
        total_pages=page.total_pages,
        page=page.page,
        page_size=page.page_size,
    )


def get_user(user_id: str, request: Request) -> UserResponse:
    user = _store(request).get_by_id(user_id)
    if user is None:
        raise NotFoundError("User not found.")
    return UserResponse.from_user(user)


def update_user(user_id: str, body: UserPatch, request: Request) -> UserResponse:
    user = _store(request).update_user(user_id, email=body.email, password=body.password)
    if user is None:
        raise NotFoundError("User not found.")
    return UserResponse.from_user(user)


def delete_user(user_id: str, request: Request) -> DeleteResponse:
    return DeleteResponse(deleted=_store(request).delete_user(user_id))


# ---------------------------------------------------------------------------
# Routing table
# ---------------------------------------------------------------------------

ROUTES = [
    ("GET", "/users", list_users, UserListResponse),
    ("GET", "/users/{user_id}", get_user, UserResponse),
    ("PATCH", "/users/{user_id}", update_user, UserResponse),
    ("DELETE", "/users/{user_id}", delete_user, DeleteResponse),
]


def build_router() -> APIRouter:
    router = APIRouter(dependencies=[Depends(get_current_user)])
    for method, path, endpoint, response_model in ROUTES:
        router.add_api_route(path, endpoint, methods=[method], response_model=response_model)
    return router
