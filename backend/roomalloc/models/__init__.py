from roomalloc.models.activity_log import ActivityLog  # noqa: F401
from roomalloc.models.priority import Priority  # noqa: F401
from roomalloc.models.reservation import (  # noqa: F401
    LegacyReservation,
    Reservation,
    ReservationBackendKind,
    ReservationJob,
    ReservationJobStatus,
    ReservationStatus,
)
from roomalloc.models.room import Room  # noqa: F401
from roomalloc.models.school_class import (  # noqa: F401
    ClassSchedule,
    CourseInformation,
    Fusion,
    Instructor,
    Obligation,
    SchoolClass,
    SectionType,
    Weekday,
)
from roomalloc.models.term import SchoolTerm, TermPeriod  # noqa: F401
