"""create room allocation schema

Revision ID: 20261019_0001
Revises: None
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    "term_period": ("first_half", "second_half"),
    "section_type": ("undergraduate", "graduate"),
    "weekday": ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"),
    "course_obligation": ("mandatory", "elective", "free"),
    "reservation_backend": ("api", "legacy"),
    "reservation_status": ("active", "rollback_failed"),
    "reservation_job_status": ("queued", "running", "completed", "failed"),
}


def _enum(name: str) -> sa.Enum:
    # Postgres types are created once up front; several tables share them.
    values = ENUMS[name]
    return sa.Enum(*values, name=name).with_variant(
        postgresql.ENUM(*values, name=name, create_type=False), "postgresql"
    )


def upgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for name, values in ENUMS.items():
            postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "school_terms",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("period", _enum("term_period"), nullable=False),
        sa.Column("reservation_deadline", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("year", "period", name="uq_school_terms_year_period"),
    )
    op.create_index("ix_school_terms_year", "school_terms", ["year"])

    op.create_table(
        "rooms",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("seat_count", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_rooms_name", "rooms", ["name"], unique=True)

    op.create_table(
        "instructors",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(length=20), nullable=True, unique=True),
        sa.Column("name", sa.String(length=200), nullable=False),
    )

    op.create_table(
        "course_informations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("course_code", sa.String(length=20), nullable=False),
        sa.Column("course_name", sa.String(length=200), nullable=False),
        sa.Column("habilitation_code", sa.Integer(), nullable=False),
        sa.Column("habilitation_name", sa.String(length=200), nullable=True),
        sa.Column("period", sa.String(length=20), nullable=True),
        sa.Column("semester", sa.Integer(), nullable=False),
        sa.Column("obligation", _enum("course_obligation"), nullable=False),
        sa.UniqueConstraint(
            "course_code",
            "habilitation_code",
            "semester",
            "obligation",
            name="uq_course_informations_identity",
        ),
    )
    op.create_index("ix_course_informations_course_code", "course_informations", ["course_code"])

    # fusion_id gets its foreign key once the fusions table exists.
    op.create_table(
        "school_classes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "school_term_id",
            sa.Integer(),
            sa.ForeignKey("school_terms.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("discipline_code", sa.String(length=20), nullable=False),
        sa.Column("discipline_name", sa.String(length=200), nullable=True),
        sa.Column("section_code", sa.String(length=20), nullable=False),
        sa.Column("section_type", _enum("section_type"), nullable=False),
        sa.Column("enrollment_capacity", sa.Integer(), nullable=True),
        sa.Column("is_external", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("room_id", sa.Integer(), sa.ForeignKey("rooms.id", ondelete="SET NULL"), nullable=True),
        sa.Column("fusion_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "school_term_id",
            "discipline_code",
            "section_code",
            name="uq_school_classes_identity",
        ),
    )
    op.create_index("ix_school_classes_school_term_id", "school_classes", ["school_term_id"])
    op.create_index("ix_school_classes_discipline_code", "school_classes", ["discipline_code"])
    op.create_index("ix_school_classes_room_id", "school_classes", ["room_id"])
    op.create_index("ix_school_classes_fusion_id", "school_classes", ["fusion_id"])

    op.create_table(
        "fusions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "master_id",
            sa.Integer(),
            sa.ForeignKey("school_classes.id", name="fk_fusions_master_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    with op.batch_alter_table("school_classes") as batch_op:
        batch_op.create_foreign_key(
            "fk_school_classes_fusion_id",
            "fusions",
            ["fusion_id"],
            ["id"],
            ondelete="SET NULL",
        )

    op.create_table(
        "class_schedules",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "school_class_id",
            sa.Integer(),
            sa.ForeignKey("school_classes.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("day_of_week", _enum("weekday"), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.UniqueConstraint(
            "school_class_id",
            "day_of_week",
            "start_time",
            "end_time",
            name="uq_class_schedules_slot",
        ),
    )
    op.create_index("ix_class_schedules_school_class_id", "class_schedules", ["school_class_id"])

    op.create_table(
        "school_class_instructors",
        sa.Column(
            "school_class_id",
            sa.Integer(),
            sa.ForeignKey("school_classes.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "instructor_id",
            sa.Integer(),
            sa.ForeignKey("instructors.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    op.create_table(
        "school_class_course_informations",
        sa.Column(
            "school_class_id",
            sa.Integer(),
            sa.ForeignKey("school_classes.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "course_information_id",
            sa.Integer(),
            sa.ForeignKey("course_informations.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )

    op.create_table(
        "priorities",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "school_class_id",
            sa.Integer(),
            sa.ForeignKey("school_classes.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("room_id", sa.Integer(), sa.ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.UniqueConstraint("school_class_id", "room_id", name="uq_priorities_class_room"),
    )
    op.create_index("ix_priorities_school_class_id", "priorities", ["school_class_id"])
    op.create_index("ix_priorities_room_id", "priorities", ["room_id"])

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("actor", sa.String(length=200), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=True),
        sa.Column("entity_id", sa.String(length=100), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "reservation_jobs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("room_ids", sa.JSON(), nullable=False),
        sa.Column("status", _enum("reservation_job_status"), nullable=False),
        sa.Column("backend", _enum("reservation_backend"), nullable=False),
        sa.Column("progress", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("error", sa.String(length=1000), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_reservation_jobs_status", "reservation_jobs", ["status"])

    op.create_table(
        "reservations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "school_class_id",
            sa.Integer(),
            sa.ForeignKey("school_classes.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "class_schedule_id",
            sa.Integer(),
            sa.ForeignKey("class_schedules.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("room_id", sa.Integer(), sa.ForeignKey("rooms.id", ondelete="SET NULL"), nullable=True),
        sa.Column("backend", _enum("reservation_backend"), nullable=False),
        sa.Column("external_id", sa.String(length=64), nullable=False),
        sa.Column("recurrent", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("status", _enum("reservation_status"), nullable=False),
        sa.Column(
            "job_id",
            sa.Integer(),
            sa.ForeignKey("reservation_jobs.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_reservations_school_class_id", "reservations", ["school_class_id"])

    op.create_table(
        "legacy_reservations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("room_id", sa.Integer(), sa.ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "school_class_id",
            sa.Integer(),
            sa.ForeignKey("school_classes.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("day_of_week", _enum("weekday"), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("starts_on", sa.Date(), nullable=False),
        sa.Column("ends_on", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_legacy_reservations_room_id", "legacy_reservations", ["room_id"])
    op.create_index("ix_legacy_reservations_school_class_id", "legacy_reservations", ["school_class_id"])


def downgrade() -> None:
    op.drop_table("legacy_reservations")
    op.drop_table("reservations")
    op.drop_table("reservation_jobs")
    op.drop_table("activity_logs")
    op.drop_table("priorities")
    op.drop_table("school_class_course_informations")
    op.drop_table("school_class_instructors")
    op.drop_table("class_schedules")
    with op.batch_alter_table("school_classes") as batch_op:
        batch_op.drop_constraint("fk_school_classes_fusion_id", type_="foreignkey")
    op.drop_table("fusions")
    op.drop_table("school_classes")
    op.drop_table("course_informations")
    op.drop_table("instructors")
    op.drop_table("rooms")
    op.drop_table("school_terms")

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for name, values in ENUMS.items():
            postgresql.ENUM(*values, name=name).drop(bind, checkfirst=True)
