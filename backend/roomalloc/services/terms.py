from __future__ import annotations

from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from roomalloc.core.exceptions import ResourceNotFoundError
from roomalloc.models.term import SchoolTerm


class TermProvider(Protocol):
    def get(self) -> SchoolTerm: ...


def find_latest_term(db: Session) -> SchoolTerm | None:
    terms = list(db.execute(select(SchoolTerm)).scalars())
    if not terms:
        return None
    return max(terms, key=lambda term: term.sort_key)


def find_previous_year_term(db: Session, term: SchoolTerm) -> SchoolTerm | None:
    """Same period one year earlier."""
    return db.execute(
        select(SchoolTerm).where(SchoolTerm.year == term.year - 1, SchoolTerm.period == term.period)
    ).scalar_one_or_none()


class CurrentTermProvider:
    """Resolves the latest term once and keeps returning it for the rest of the request or job."""

    def __init__(self, db: Session) -> None:
        self._db = db
        self._term: SchoolTerm | None = None

    def get(self) -> SchoolTerm:
        if self._term is None:
            term = find_latest_term(self._db)
            if term is None:
                raise ResourceNotFoundError("SchoolTerm", "latest")
            self._term = term
        return self._term


class FixedTermProvider:
    def __init__(self, term: SchoolTerm) -> None:
        self._term = term

    def get(self) -> SchoolTerm:
        return self._term
