"""initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2024-05-01 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "prizes",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("level", sa.String(length=20), nullable=False),
        sa.Column("probability", sa.Float(), nullable=False),
        sa.Column("prize_type", sa.String(length=20), nullable=False),
        sa.Column("total_quantity", sa.Integer(), nullable=False),
        sa.Column("remaining_quantity", sa.Integer(), nullable=False),
        sa.Column("daily_limit", sa.Integer(), nullable=False),
        sa.Column("value", sa.Float(), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("image_url", sa.String(length=512), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "probability >= 0", name=op.f("ck_prizes_probability_non_negative")
        ),
        sa.CheckConstraint(
            "remaining_quantity >= -1", name=op.f("ck_prizes_remaining_quantity_range")
        ),
        sa.CheckConstraint(
            "level IN ('grand','first','second','third','fourth','fifth','no_win')",
            name=op.f("ck_prizes_level_enum"),
        ),
        sa.CheckConstraint(
            "prize_type IN ('virtual','physical','coupon','points')",
            name=op.f("ck_prizes_prize_type_enum"),
        ),
        sa.CheckConstraint(
            "status IN ('active','inactive','out_of_stock')",
            name=op.f("ck_prizes_status_enum"),
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_prizes")),
    )
    op.create_index(
        "ix_prizes_status_sort", "prizes", ["status", "sort_order"], unique=False
    )

    op.create_table(
        "users",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("phone", sa.String(length=20), nullable=False),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("email", sa.String(length=100), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("total_draws", sa.Integer(), nullable=False),
        sa.Column("total_wins", sa.Integer(), nullable=False),
        sa.Column("today_draws", sa.Integer(), nullable=False),
        sa.Column("last_draw_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lose_streak", sa.Integer(), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('active','inactive','blocked')",
            name=op.f("ck_users_status_enum"),
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_users")),
        sa.UniqueConstraint("phone", name=op.f("uq_users_phone")),
    )

    op.create_table(
        "activities",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("daily_draw_limit", sa.Integer(), nullable=False),
        sa.Column("interval_seconds", sa.Integer(), nullable=False),
        sa.Column("total_draws", sa.Integer(), nullable=False),
        sa.Column("total_wins", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('upcoming','active','paused','ended')",
            name=op.f("ck_activities_status_enum"),
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_activities")),
    )

    op.create_table(
        "activity_prizes",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("activity_id", ID_TYPE, nullable=False),
        sa.Column("prize_id", ID_TYPE, nullable=False),
        sa.Column("weight", sa.Float(), nullable=True),
        sa.Column("awarded_count", sa.Integer(), nullable=False),
        sa.CheckConstraint(
            "weight IS NULL OR weight >= 0",
            name=op.f("ck_activity_prizes_weight_non_negative"),
        ),
        sa.ForeignKeyConstraint(
            ["activity_id"],
            ["activities.id"],
            name=op.f("fk_activity_prizes_activity_id_activities"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["prize_id"],
            ["prizes.id"],
            name=op.f("fk_activity_prizes_prize_id_prizes"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_activity_prizes")),
        sa.UniqueConstraint("activity_id", "prize_id", name="uq_activity_prize"),
    )

    op.create_table(
        "draw_records",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("user_id", ID_TYPE, nullable=False),
        sa.Column("prize_id", ID_TYPE, nullable=True),
        sa.Column("activity_id", ID_TYPE, nullable=True),
        sa.Column("prize_name", sa.String(length=100), nullable=False),
        sa.Column("prize_level", sa.String(length=20), nullable=False),
        sa.Column("prize_type", sa.String(length=20), nullable=True),
        sa.Column("draw_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_guaranteed", sa.Boolean(), nullable=False),
        sa.Column("downgraded", sa.Boolean(), nullable=False),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("award_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("claim_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expire_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("claim_code", sa.String(length=16), nullable=True),
        sa.Column("claim_method", sa.String(length=50), nullable=True),
        sa.Column("claim_details", sa.JSON(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending','awarded','claimed','expired','cancelled')",
            name=op.f("ck_draw_records_status_enum"),
        ),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name=op.f("fk_draw_records_user_id_users"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["prize_id"],
            ["prizes.id"],
            name=op.f("fk_draw_records_prize_id_prizes"),
            ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["activity_id"],
            ["activities.id"],
            name=op.f("fk_draw_records_activity_id_activities"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_draw_records")),
        sa.UniqueConstraint("claim_code", name="uq_draw_records_claim_code"),
    )
    op.create_index(
        op.f("ix_draw_records_user_id"), "draw_records", ["user_id"], unique=False
    )
    op.create_index(
        "ix_draw_records_user_time",
        "draw_records",
        ["user_id", "draw_time"],
        unique=False,
    )
    op.create_index(
        "ix_draw_records_prize_time",
        "draw_records",
        ["prize_id", "draw_time"],
        unique=False,
    )
    op.create_index(
        "ix_draw_records_level", "draw_records", ["prize_level"], unique=False
    )

    op.create_table(
        "system_configurations",
        sa.Column("key", sa.String(length=50), nullable=False),
        sa.Column("value", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("key", name=op.f("pk_system_configurations")),
    )


def downgrade() -> None:
    op.drop_table("system_configurations")
    op.drop_index("ix_draw_records_level", table_name="draw_records")
    op.drop_index("ix_draw_records_prize_time", table_name="draw_records")
    op.drop_index("ix_draw_records_user_time", table_name="draw_records")
    op.drop_index(op.f("ix_draw_records_user_id"), table_name="draw_records")
    op.drop_table("draw_records")
    op.drop_table("activity_prizes")
    op.drop_table("activities")
    op.drop_table("users")
    op.drop_index("ix_prizes_status_sort", table_name="prizes")
    op.drop_table("prizes")
