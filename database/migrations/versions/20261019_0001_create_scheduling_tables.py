"""create entity snapshot and timetable tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "entity_snapshots",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("department", sa.String(length=200), nullable=False),
        sa.Column("academic_year", sa.String(length=20), nullable=False),
        sa.Column("semester", sa.Integer(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("department", "academic_year", "semester", name="uq_entity_snapshots_key"),
    )
    op.create_index("ix_entity_snapshots_department", "entity_snapshots", ["department"])

    op.create_table(
        "timetables",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("department", sa.String(length=200), nullable=False),
        sa.Column("academic_year", sa.String(length=20), nullable=False),
        sa.Column("semester", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("department", "academic_year", "semester", name="uq_timetables_key"),
    )
    op.create_index("ix_timetables_department", "timetables", ["department"])


def downgrade() -> None:
    op.drop_index("ix_timetables_department", table_name="timetables")
    op.drop_table("timetables")
    op.drop_index("ix_entity_snapshots_department", table_name="entity_snapshots")
    op.drop_table("entity_snapshots")
