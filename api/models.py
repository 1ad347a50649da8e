"""
API request and response models for Marquee REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
movies/models.py, which own the internal domain representation. Route
handlers map between the two.

Request models only enforce SHAPE: JSON that does not parse, unknown keys,
or values of the wrong type fail here and become a 400. Domain rules
(lengths, formats, ranges) are checked afterwards by core/validator.py and
become a 422, so every request model gives its fields permissive defaults.
"""

import re
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, StrictInt

from auth.models import Token, User
from movies.models import Metadata, Movie

# ---------------------------------------------------------------------------
# Runtime ("<n> mins")
# ---------------------------------------------------------------------------

_RUNTIME_RE = re.compile(r"^(\d+) mins$")

# Runtime is stored in a 32-bit signed integer column.
MAX_RUNTIME = 2**31 - 1


def parse_runtime(value: Any) -> int:
    """Accept only the "<n> mins" JSON string form used in responses.

    Anything else -- a bare number, a different unit, a negative -- is a
    malformed body rather than a failed domain rule.
    """
    if not isinstance(value, str):
        raise ValueError("invalid runtime format")
    match = _RUNTIME_RE.match(value)
    if match is None:
        raise ValueError("invalid runtime format")
    minutes = int(match.group(1))
    if minutes > MAX_RUNTIME:
        raise ValueError("invalid runtime format")
    return minutes


def format_runtime(minutes: int) -> str:
    return f"{minutes} mins"


Runtime = Annotated[int, BeforeValidator(parse_runtime)]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _RequestBody(BaseModel):
    model_config = ConfigDict(extra="forbid")


class UserCreate(_RequestBody):
    """Request body for POST /v1/users."""

    name: str = ""
    email: str = ""
    password: str = ""


class UserActivate(_RequestBody):
    """Request body for PUT /v1/users/activated."""

    token: str = ""


class TokenCreate(_RequestBody):
    """Request body for POST /v1/tokens/authentication."""

    email: str = ""
    password: str = ""


class ActivationTokenCreate(_RequestBody):
    """Request body for POST /v1/tokens/activation."""

    email: str = ""


class MovieCreate(_RequestBody):
    """Request body for POST /v1/movies."""

    title: str = ""
    year: StrictInt = 0
    runtime: Runtime = 0
    genres: list[str] = Field(default_factory=list)


class MoviePatch(_RequestBody):
    """Request body for PATCH /v1/movies/{id}. Omitted fields keep their value."""

    title: Optional[str] = None
    year: Optional[StrictInt] = None
    runtime: Optional[Runtime] = None
    genres: Optional[list[str]] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user. There is no password field by construction."""

    model_config = ConfigDict(frozen=True)

    id: int
    created_at: str
    name: str
    email: str
    activated: bool

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            created_at=user.created_at,
            name=user.name,
            email=user.email,
            activated=user.activated,
        )


class TokenResponse(BaseModel):
    """A freshly issued token. The only place a plaintext token is ever serialized."""

    model_config = ConfigDict(frozen=True)

    token: str
    expiry: str

    @classmethod
    def from_token(cls, token: Token) -> "TokenResponse":
        return cls(token=token.plaintext, expiry=token.expiry.isoformat())


class MovieResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    year: int
    runtime: str
    genres: list[str]
    version: int

    @classmethod
    def from_movie(cls, movie: Movie) -> "MovieResponse":
        return cls(
            id=movie.id,
            title=movie.title,
            year=movie.year,
            runtime=format_runtime(movie.runtime),
            genres=movie.genres,
            version=movie.version,
        )


class MetadataResponse(BaseModel):
    """Pagination metadata. Serialized as {} when the listing is empty."""

    model_config = ConfigDict(frozen=True)

    current_page: Optional[int] = None
    page_size: Optional[int] = None
    first_page: Optional[int] = None
    last_page: Optional[int] = None
    total_records: Optional[int] = None

    @classmethod
    def from_metadata(cls, meta: Metadata) -> "MetadataResponse":
        if meta.total_records == 0:
            return cls()
        return cls(
            current_page=meta.current_page,
            page_size=meta.page_size,
            first_page=meta.first_page,
            last_page=meta.last_page,
            total_records=meta.total_records,
        )


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    fields: Optional[dict[str, str]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class SystemInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    environment: str
    version: str


class HealthResponse(BaseModel):
    """Response for GET /v1/healthcheck."""

    model_config = ConfigDict(frozen=True)

    status: str = "available"
    system_info: SystemInfo
