"""
API request and response models for Gatehouse REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
UserResponse deliberately has no password_hash field, so a stored hash can
never be serialized by accident.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from auth.models import User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Shape check only: one "@", no whitespace, a dot in the domain. Deliverability
# is proven by the verification email, not by a regex.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class InviteRequest(BaseModel):
    """Request body for POST /api/v1/invite."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=320, pattern=EMAIL_PATTERN)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/register.

    `token` is the hex string from the verification email. It is not checked
    here: shape, length and existence are all the workflow's concern, so that
    every bad token produces the same 403.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = Field(max_length=256)
    email: str = Field(max_length=320, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=1024)


class SignInRequest(BaseModel):
    """Request body for POST /api/v1/sign-in."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=1024)


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/users/{id}. Only supplied fields change."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: Optional[str] = Field(default=None, max_length=320, pattern=EMAIL_PATTERN)
    password: Optional[str] = Field(default=None, min_length=1, max_length=1024)

    @model_validator(mode="after")
    def require_one_field(self) -> "UserPatch":
        if self.email is None and self.password is None:
            raise ValueError("Supply at least one of: email, password.")
        return self


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user. No credential material."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class RegisterResponse(BaseModel):
    """Response for POST /api/v1/register."""

    model_config = ConfigDict(frozen=True)

    message: str
    user: UserResponse


class UserListResponse(BaseModel):
    """Response for GET /api/v1/users.

    total_pages = ceil(total / page_size); 0 when nothing matches. A page past
    the end has an empty items list.
    """

    model_config = ConfigDict(frozen=True)

    items: list[UserResponse]
    total: int
    total_pages: int
    page: int
    page_size: int


class DeleteResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    deleted: int


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
