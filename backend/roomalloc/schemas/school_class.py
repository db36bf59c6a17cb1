from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

from roomalloc.models.school_class import Obligation, SectionType
from roomalloc.schemas.schedule import ScheduleSlotIn, ScheduleSlotOut


class CourseInformationIn(BaseModel):
    course_code: str = Field(min_length=1, max_length=20)
    course_name: str = Field(min_length=1, max_length=200)
    habilitation_code: int = 0
    habilitation_name: str | None = None
    period: str | None = None
    semester: int = Field(ge=1, le=20)
    obligation: Obligation


class CourseInformationOut(CourseInformationIn):
    id: int

    model_config = {"from_attributes": True}


class InstructorIn(BaseModel):
    code: str | None = Field(default=None, max_length=20)
    name: str = Field(min_length=1, max_length=200)


class InstructorOut(InstructorIn):
    id: int

    model_config = {"from_attributes": True}


class SchoolClassCreate(BaseModel):
    school_term_id: int
    discipline_code: str = Field(min_length=1, max_length=20)
    discipline_name: str | None = Field(default=None, max_length=200)
    section_code: str = Field(min_length=2, max_length=20)
    section_type: SectionType = SectionType.undergraduate
    enrollment_capacity: int | None = Field(default=None, ge=0)
    is_external: bool = False
    schedules: list[ScheduleSlotIn] = Field(default_factory=list, max_length=20)
    course_informations: list[CourseInformationIn] = Field(default_factory=list)
    instructors: list[InstructorIn] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_slots(self) -> "SchoolClassCreate":
        seen: set[tuple[str, str, str]] = set()
        for slot in self.schedules:
            key = (slot.day.value, slot.start_time, slot.end_time)
            if key in seen:
                raise ValueError(f"Duplicate schedule slot: {slot.day.value} {slot.start_time}-{slot.end_time}")
            seen.add(key)
        return self


class SchoolClassOut(BaseModel):
    id: int
    school_term_id: int
    discipline_code: str
    discipline_name: str | None
    section_code: str
    section_type: SectionType
    enrollment_capacity: int | None
    is_external: bool
    room_id: int | None
    fusion_id: int | None
    schedules: list[ScheduleSlotOut]
    course_informations: list[CourseInformationOut] = Field(default_factory=list)
    instructors: list[InstructorOut] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class FusionCreate(BaseModel):
    school_class_ids: list[int] = Field(min_length=2)
    master_id: int

    @model_validator(mode="after")
    def validate_master_member(self) -> "FusionCreate":
        if self.master_id not in self.school_class_ids:
            raise ValueError("master_id must be one of school_class_ids")
        if len(set(self.school_class_ids)) != len(self.school_class_ids):
            raise ValueError("school_class_ids must be unique")
        return self


class FusionOut(BaseModel):
    id: int
    master_id: int
    member_ids: list[int]


class PriorityCreate(BaseModel):
    school_class_id: int
    room_id: int
    priority: int = Field(ge=0)


class PriorityOut(PriorityCreate):
    id: int

    model_config = {"from_attributes": True}


class CourseGridOut(BaseModel):
    course_code: str
    semester: int
    days: list[str]
    time_ranges: list[str]
    sections: list[SchoolClassOut]
