from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from sqlalchemy import Date, DateTime, Enum as SAEnum, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from roomalloc.db.base import Base


class TermPeriod(str, Enum):
    # Declaration order is the chronological order inside a year.
    first_half = "first_half"
    second_half = "second_half"


PERIOD_ORDER = {TermPeriod.first_half: 1, TermPeriod.second_half: 2}


class SchoolTerm(Base):
    __tablename__ = "school_terms"
    __table_args__ = (UniqueConstraint("year", "period", name="uq_school_terms_year_period"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    year: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    period: Mapped[TermPeriod] = mapped_column(SAEnum(TermPeriod, name="term_period"), nullable=False)
    reservation_deadline: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    @property
    def sort_key(self) -> tuple[int, int]:
        return self.year, PERIOD_ORDER[self.period]
