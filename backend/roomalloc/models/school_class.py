from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    String,
    Table,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from roomalloc.db.base import Base
from roomalloc.models.room import Room
from roomalloc.models.term import SchoolTerm


class SectionType(str, Enum):
    undergraduate = "undergraduate"
    graduate = "graduate"


class Weekday(str, Enum):
    monday = "Monday"
    tuesday = "Tuesday"
    wednesday = "Wednesday"
    thursday = "Thursday"
    friday = "Friday"
    saturday = "Saturday"
    sunday = "Sunday"


class Obligation(str, Enum):
    mandatory = "mandatory"
    elective = "elective"
    free = "free"


school_class_instructors = Table(
    "school_class_instructors",
    Base.metadata,
    Column("school_class_id", ForeignKey("school_classes.id", ondelete="CASCADE"), primary_key=True),
    Column("instructor_id", ForeignKey("instructors.id", ondelete="CASCADE"), primary_key=True),
)

school_class_course_informations = Table(
    "school_class_course_informations",
    Base.metadata,
    Column("school_class_id", ForeignKey("school_classes.id", ondelete="CASCADE"), primary_key=True),
    Column("course_information_id", ForeignKey("course_informations.id", ondelete="CASCADE"), primary_key=True),
)


class Instructor(Base):
    __tablename__ = "instructors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str | None] = mapped_column(String(20), unique=True, nullable=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)


class CourseInformation(Base):
    __tablename__ = "course_informations"
    __table_args__ = (
        UniqueConstraint(
            "course_code",
            "habilitation_code",
            "semester",
            "obligation",
            name="uq_course_informations_identity",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    course_code: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    course_name: Mapped[str] = mapped_column(String(200), nullable=False)
    habilitation_code: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    habilitation_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    period: Mapped[str | None] = mapped_column(String(20), nullable=True)
    semester: Mapped[int] = mapped_column(Integer, nullable=False)
    obligation: Mapped[Obligation] = mapped_column(SAEnum(Obligation, name="course_obligation"), nullable=False)


class ClassSchedule(Base):
    __tablename__ = "class_schedules"
    __table_args__ = (
        UniqueConstraint(
            "school_class_id",
            "day_of_week",
            "start_time",
            "end_time",
            name="uq_class_schedules_slot",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    school_class_id: Mapped[int] = mapped_column(
        ForeignKey("school_classes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    day_of_week: Mapped[Weekday] = mapped_column(SAEnum(Weekday, name="weekday"), nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)

    school_class: Mapped["SchoolClass"] = relationship(back_populates="schedules")

    def as_dict(self) -> dict:
        return {"day": self.day_of_week.value, "start_time": self.start_time, "end_time": self.end_time}


class SchoolClass(Base):
    __tablename__ = "school_classes"
    __table_args__ = (
        UniqueConstraint(
            "school_term_id",
            "discipline_code",
            "section_code",
            name="uq_school_classes_identity",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    school_term_id: Mapped[int] = mapped_column(
        ForeignKey("school_terms.id", ondelete="CASCADE"), nullable=False, index=True
    )
    discipline_code: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    discipline_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    section_code: Mapped[str] = mapped_column(String(20), nullable=False)
    section_type: Mapped[SectionType] = mapped_column(SAEnum(SectionType, name="section_type"), nullable=False)
    enrollment_capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_external: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    room_id: Mapped[int | None] = mapped_column(ForeignKey("rooms.id", ondelete="SET NULL"), nullable=True, index=True)
    fusion_id: Mapped[int | None] = mapped_column(
        ForeignKey("fusions.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    term: Mapped[SchoolTerm] = relationship()
    room: Mapped[Room | None] = relationship()
    schedules: Mapped[list[ClassSchedule]] = relationship(
        back_populates="school_class",
        cascade="all, delete-orphan",
        order_by=ClassSchedule.id,
    )
    fusion: Mapped["Fusion | None"] = relationship(back_populates="members", foreign_keys=[fusion_id])
    instructors: Mapped[list[Instructor]] = relationship(secondary=school_class_instructors)
    course_informations: Mapped[list[CourseInformation]] = relationship(secondary=school_class_course_informations)

    @property
    def section_suffix(self) -> str:
        return self.section_code[-2:]

    @property
    def is_fusion_member(self) -> bool:
        """True for fused sections that are not the fusion's master."""
        return self.fusion is not None and self.fusion.master_id != self.id

    def allocation_members(self) -> list["SchoolClass"]:
        """Sections that move together with this one when a room is (un)assigned."""
        if self.fusion is None:
            return [self]
        return list(self.fusion.members)


class Fusion(Base):
    __tablename__ = "fusions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Set explicitly when the fusion is created; never inferred from insertion order.
    master_id: Mapped[int] = mapped_column(
        ForeignKey("school_classes.id", use_alter=True, name="fk_fusions_master_id", ondelete="CASCADE"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    master: Mapped[SchoolClass] = relationship(foreign_keys=[master_id])
    members: Mapped[list[SchoolClass]] = relationship(
        back_populates="fusion",
        foreign_keys=[SchoolClass.fusion_id],
        order_by=SchoolClass.id,
    )
