from sqlalchemy import ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from roomalloc.db.base import Base
from roomalloc.models.room import Room
from roomalloc.models.school_class import SchoolClass


class Priority(Base):
    """Historical or manual preference of a section for a room. Ranking input only."""

    __tablename__ = "priorities"
    __table_args__ = (UniqueConstraint("school_class_id", "room_id", name="uq_priorities_class_room"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    school_class_id: Mapped[int] = mapped_column(
        ForeignKey("school_classes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False, index=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    school_class: Mapped[SchoolClass] = relationship()
    room: Mapped[Room] = relationship()
