from pydantic import BaseModel, Field


class RoomBase(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    seat_count: int = Field(ge=1, le=1000)


class RoomCreate(RoomBase):
    pass


class RoomUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    seat_count: int | None = Field(default=None, ge=1, le=1000)


class RoomOut(RoomBase):
    id: int

    model_config = {"from_attributes": True}


class CompatibleRoomRequest(BaseModel):
    room_id: int


class AllocateRoomRequest(BaseModel):
    school_class_id: int


class AllocationStageOut(BaseModel):
    stage: str
    assigned: int


class AllocationResultOut(BaseModel):
    term_id: int
    stages: list[AllocationStageOut]
    assigned_count: int
    unassigned_ids: list[int]


class FirstSemesterAllocationRequest(BaseModel):
    dry_run: bool = False
    force: bool = False


class FirstSemesterAllocationOut(BaseModel):
    current_term_id: int
    previous_term_id: int
    dry_run: bool
    processed: int
    allocated: int
    moved: int
    evicted: int
    already_correct: int
    not_found: int
    actions: list[str]


class RoomVacancyRow(BaseModel):
    discipline_label: str
    section_suffix: str
    room: str
    seat_count: int
    enrollment: int
    spare_seats: int
    is_first_year_mandatory: bool
