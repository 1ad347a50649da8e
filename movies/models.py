"""
movies/models.py -- Domain dataclasses for the movie catalog.

Pure data containers with zero logic. Validation lives in movies/validation.py,
persistence in movies/store.py.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Movie:
    """A catalog entry.

    runtime is stored in whole minutes; the API renders it as "<n> mins".
    version is the optimistic-concurrency guard, bumped by the store on
    every successful update.

    id is None before the record is written to the database.
    """

    title: str
    year: int
    runtime: int
    genres: list[str] = field(default_factory=list)
    id: int | None = None
    created_at: str = ""  # ISO 8601, set by store on insert
    version: int = 1


@dataclass
class Filters:
    """Paging and sorting parameters for MovieStore.get_all()."""

    page: int = 1
    page_size: int = 20
    sort: str = "id"

    @property
    def limit(self) -> int:
        return self.page_size

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def sort_column(self) -> str:
        return self.sort.lstrip("-")

    @property
    def sort_descending(self) -> bool:
        return self.sort.startswith("-")


@dataclass
class Metadata:
    """Pagination summary returned alongside a movie listing.

    All fields are zero when the listing is empty; the API then renders an
    empty object.
    """

    current_page: int = 0
    page_size: int = 0
    first_page: int = 0
    last_page: int = 0
    total_records: int = 0
