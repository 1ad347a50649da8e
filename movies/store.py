"""
movies/store.py -- SQLAlchemy Core persistence layer for the movie catalog.

Pattern: Repository + Data Mapper (same as auth/store.py). MovieStore is the
repository; _row_to_movie is the mapper.

Concurrency: update() is guarded by the version the caller read. If another
request updated (or deleted) the movie in between, zero rows match and
EditConflictError is raised -- exactly one of two racing writers wins.

Security: all queries use bound parameters. Sort columns come from the
validated SORT_SAFELIST via _SORT_COLUMNS, never from raw query strings.

Usage:
    store = MovieStore(engine)
    store.insert(movie)
    movie = store.get(1)
    movies, meta = store.get_all(title="", genres=[], filters=Filters())
"""

from __future__ import annotations

import json
import math
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.engine import Engine

from core.errors import EditConflictError
from movies.models import Filters, Metadata, Movie

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_movies = Table(
    "movies",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("created_at", String(32), nullable=False),
    Column("title", String(500), nullable=False),
    Column("year", Integer, nullable=False),
    Column("runtime", Integer, nullable=False),
    Column("genres", Text, nullable=False),  # JSON array serialized as text
    Column("version", Integer, nullable=False, server_default="1"),
)

_SORT_COLUMNS = {
    "id": _movies.c.id,
    "title": _movies.c.title,
    "year": _movies.c.year,
    "runtime": _movies.c.runtime,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def calculate_metadata(total_records: int, page: int, page_size: int) -> Metadata:
    if total_records == 0:
        return Metadata()
    return Metadata(
        current_page=page,
        page_size=page_size,
        first_page=1,
        last_page=math.ceil(total_records / page_size),
        total_records=total_records,
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class MovieStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        metadata.create_all(self.engine)

    def insert(self, movie: Movie) -> None:
        """Insert a movie, filling in id, created_at and version in place."""
        created_at = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _movies.insert().values(
                    created_at=created_at,
                    title=movie.title,
                    year=movie.year,
                    runtime=movie.runtime,
                    genres=json.dumps(movie.genres),
                    version=1,
                )
            )
        movie.id = result.inserted_primary_key[0]
        movie.created_at = created_at
        movie.version = 1

    def get(self, movie_id: int) -> Movie | None:
        """Return the movie with this id, or None. Non-positive ids never match."""
        if movie_id < 1:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(_movies.select().where(_movies.c.id == movie_id)).fetchone()
        return _row_to_movie(row) if row is not None else None

    def update(self, movie: Movie) -> None:
        """Write movie back if its version is still current; bump movie.version in place."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _movies.update()
                .where((_movies.c.id == movie.id) & (_movies.c.version == movie.version))
                .values(
                    title=movie.title,
                    year=movie.year,
                    runtime=movie.runtime,
                    genres=json.dumps(movie.genres),
                    version=_movies.c.version + 1,
                )
            )
        if result.rowcount == 0:
            raise EditConflictError()
        movie.version += 1

    def delete(self, movie_id: int) -> bool:
        """Delete a movie. Returns True if deleted, False if not found."""
        if movie_id < 1:
            return False
        with self.engine.begin() as conn:
            result = conn.execute(_movies.delete().where(_movies.c.id == movie_id))
        return result.rowcount > 0

    def get_all(self, title: str, genres: list[str], filters: Filters) -> tuple[list[Movie], Metadata]:
        """Return one page of movies matching title and genres, plus pagination metadata.

        title matches case-insensitively anywhere in the movie title; an
        empty string matches everything. A movie must carry every genre in
        genres. Ties in the sort column are broken by id ascending so paging
        is stable.
        """
        conditions = []
        if title:
            conditions.append(func.lower(_movies.c.title).contains(title.lower(), autoescape=True))
        for genre in genres:
            conditions.append(_movies.c.genres.contains(json.dumps(genre), autoescape=True))

        column = _SORT_COLUMNS[filters.sort_column]
        order = column.desc() if filters.sort_descending else column.asc()

        query = _movies.select().where(*conditions).order_by(order, _movies.c.id.asc())
        query = query.limit(filters.limit).offset(filters.offset)
        count_query = select(func.count()).select_from(_movies).where(*conditions)

        with self.engine.connect() as conn:
            total = conn.execute(count_query).scalar() or 0
            rows = conn.execute(query).fetchall()

        return [_row_to_movie(r) for r in rows], calculate_metadata(total, filters.page, filters.page_size)


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_movie(row) -> Movie:
    return Movie(
        id=row.id,
        created_at=row.created_at,
        title=row.title,
        year=row.year,
        runtime=row.runtime,
        genres=json.loads(row.genres) if row.genres else [],
        version=row.version,
    )
