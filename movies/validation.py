"""
movies/validation.py -- Domain rules for movies and listing filters.

Each function feeds a core.validator.Validator; the caller decides when to
raise so errors from several checks are reported together.
"""

from __future__ import annotations

from datetime import datetime, timezone

from core.validator import Validator, permitted_value, unique
from movies.models import Filters, Movie

SORT_SAFELIST = ("id", "title", "year", "runtime", "-id", "-title", "-year", "-runtime")

FIRST_FILM_YEAR = 1888
MAX_PAGE = 10_000_000
MAX_PAGE_SIZE = 100


def validate_movie(v: Validator, movie: Movie) -> None:
    v.check(movie.title != "", "title", "must be provided")
    v.check(len(movie.title.encode("utf-8")) <= 500, "title", "must not be more than 500 bytes long")

    v.check(movie.year != 0, "year", "must be provided")
    v.check(movie.year >= FIRST_FILM_YEAR, "year", f"must be greater than {FIRST_FILM_YEAR - 1}")
    v.check(movie.year <= datetime.now(timezone.utc).year, "year", "must not be in the future")

    v.check(movie.runtime != 0, "runtime", "must be provided")
    v.check(movie.runtime > 0, "runtime", "must be a positive integer")

    v.check(len(movie.genres) >= 1, "genres", "must contain at least 1 genre")
    v.check(len(movie.genres) <= 5, "genres", "must not contain more than 5 genres")
    v.check(unique(movie.genres), "genres", "must not contain duplicate values")


def validate_filters(v: Validator, filters: Filters) -> None:
    v.check(filters.page > 0, "page", "must be greater than zero")
    v.check(filters.page <= MAX_PAGE, "page", "must be a maximum of 10 million")
    v.check(filters.page_size > 0, "page_size", "must be greater than zero")
    v.check(filters.page_size <= MAX_PAGE_SIZE, "page_size", f"must be a maximum of {MAX_PAGE_SIZE}")
    v.check(permitted_value(filters.sort, *SORT_SAFELIST), "sort", "invalid sort value")
