"""
api/routes/v1/movies.py -- Movie catalog CRUD endpoints.

Routes:
  GET    /v1/movies        -- filtered, sorted, paginated listing  (movies:read)
  POST   /v1/movies        -- create                               (movies:write)
  GET    /v1/movies/{id}   -- detail                               (movies:read)
  PATCH  /v1/movies/{id}   -- partial update, version-guarded      (movies:write)
  DELETE /v1/movies/{id}   -- delete                               (movies:write)

Path ids are parsed by hand: anything that is not a positive integer
("foo", "1.5", "-1") is simply a movie that does not exist (404), not a
malformed request.

Query parameters are parsed by hand too, so a non-integer page is reported
as a field error (422) alongside any other broken filter.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.encoder import respond
from api.models import MetadataResponse, MovieCreate, MoviePatch, MovieResponse
from auth.dependencies import require_permission
from auth.models import PERMISSION_MOVIES_READ, PERMISSION_MOVIES_WRITE
from core.errors import EditConflictError, NotFoundError
from core.validator import Validator
from movies.models import Filters, Movie
from movies.validation import validate_filters, validate_movie

# Auth policy:
# - GET routes:                   require movies:read (activated account)
# - POST/PATCH/DELETE routes:     require movies:write (activated account)
router = APIRouter()

_can_read = [Depends(require_permission(PERMISSION_MOVIES_READ))]
_can_write = [Depends(require_permission(PERMISSION_MOVIES_WRITE))]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _parse_id(raw: str) -> int:
    # 18 digits keeps the value inside a signed 64-bit column.
    if not (raw.isascii() and raw.isdigit()) or len(raw) > 18 or int(raw) < 1:
        raise NotFoundError()
    return int(raw)


def _read_int(request: Request, key: str, default: int, v: Validator) -> int:
    raw = request.query_params.get(key, "")
    if raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        v.add_error(key, "must be an integer value")
        return default


def _read_csv(request: Request, key: str) -> list[str]:
    raw = request.query_params.get(key, "")
    return [item for item in raw.split(",") if item] if raw else []


def _get_or_404(request: Request, raw_id: str) -> Movie:
    movie = request.app.state.movie_store.get(_parse_id(raw_id))
    if movie is None:
        raise NotFoundError()
    return movie


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get("/movies", dependencies=_can_read)
def list_movies(request: Request) -> Response:
    """List movies. Query: title, genres (comma-separated), page, page_size, sort."""
    v = Validator()
    title = request.query_params.get("title", "")
    genres = _read_csv(request, "genres")
    filters = Filters(
        page=_read_int(request, "page", 1, v),
        page_size=_read_int(request, "page_size", 20, v),
        sort=request.query_params.get("sort", "id"),
    )
    validate_filters(v, filters)
    v.raise_if_invalid()

    movies, meta = request.app.state.movie_store.get_all(title, genres, filters)
    return respond(
        request,
        {
            "movies": [MovieResponse.from_movie(m) for m in movies],
            "metadata": MetadataResponse.from_metadata(meta).model_dump(exclude_none=True),
        },
    )


@router.post("/movies", status_code=201, dependencies=_can_write)
def create_movie(request: Request, body: MovieCreate) -> Response:
    movie = Movie(title=body.title, year=body.year, runtime=body.runtime, genres=list(body.genres))

    v = Validator()
    validate_movie(v, movie)
    v.raise_if_invalid()

    request.app.state.movie_store.insert(movie)
    return respond(
        request,
        {"movie": MovieResponse.from_movie(movie)},
        status_code=201,
        headers={"Location": f"/v1/movies/{movie.id}"},
    )


@router.get("/movies/{movie_id}", dependencies=_can_read)
def show_movie(request: Request, movie_id: str) -> Response:
    movie = _get_or_404(request, movie_id)
    return respond(request, {"movie": MovieResponse.from_movie(movie)})


@router.patch("/movies/{movie_id}", dependencies=_can_write)
def update_movie(request: Request, movie_id: str, body: MoviePatch) -> Response:
    """Apply the fields present in the body.

    Clients may send X-Expected-Version to fail fast with 409 when their copy
    is stale; the store's version guard catches races either way.
    """
    movie = _get_or_404(request, movie_id)

    expected = request.headers.get("X-Expected-Version")
    if expected is not None and expected != str(movie.version):
        raise EditConflictError()

    if body.title is not None:
        movie.title = body.title
    if body.year is not None:
        movie.year = body.year
    if body.runtime is not None:
        movie.runtime = body.runtime
    if body.genres is not None:
        movie.genres = list(body.genres)

    v = Validator()
    validate_movie(v, movie)
    v.raise_if_invalid()

    request.app.state.movie_store.update(movie)
    return respond(request, {"movie": MovieResponse.from_movie(movie)})


@router.delete("/movies/{movie_id}", dependencies=_can_write)
def delete_movie(request: Request, movie_id: str) -> Response:
    if not request.app.state.movie_store.delete(_parse_id(movie_id)):
        raise NotFoundError()
    return respond(request, {"message": "movie successfully deleted"})
