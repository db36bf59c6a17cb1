from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator

from roomalloc.models.term import TermPeriod


class SchoolTermBase(BaseModel):
    year: int = Field(ge=1900, le=2200)
    period: TermPeriod
    reservation_deadline: date

    @field_validator("reservation_deadline", mode="before")
    @classmethod
    def parse_brazilian_date(cls, value):
        # Accepts the dd/mm/YYYY format used by the registrar exports as well as ISO dates.
        if isinstance(value, str) and "/" in value:
            return datetime.strptime(value.strip(), "%d/%m/%Y").date()
        return value


class SchoolTermCreate(SchoolTermBase):
    pass


class SchoolTermUpdate(BaseModel):
    reservation_deadline: date | None = None

    @field_validator("reservation_deadline", mode="before")
    @classmethod
    def parse_brazilian_date(cls, value):
        if isinstance(value, str) and "/" in value:
            return datetime.strptime(value.strip(), "%d/%m/%Y").date()
        return value


class SchoolTermOut(SchoolTermBase):
    id: int

    model_config = {"from_attributes": True}
