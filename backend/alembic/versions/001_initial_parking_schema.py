"""Initial parking schema: users/vehicles, areas/sections/spots, reservations, subscriptions/penalties, logs.

Revision ID: 001
Revises:
Create Date: (run alembic upgrade head)

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_HOLDING = "booking_status IN ('reserved', 'active')"


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(50), nullable=False),
        sa.Column("last_name", sa.String(50), nullable=False),
        sa.Column("role", sa.String(16), nullable=False, server_default="user"),
        sa.Column("hour_balance", sa.Float(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "vehicles",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("plate_number", sa.String(20), nullable=False),
        sa.Column("vehicle_type", sa.String(32), nullable=False),
        sa.Column("brand", sa.String(50), nullable=True),
        sa.Column("color", sa.String(30), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_vehicles_user_id", "vehicles", ["user_id"])
    op.create_index("ix_vehicles_plate_number", "vehicles", ["plate_number"])

    op.create_table(
        "parking_areas",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("location", sa.String(256), nullable=True),
    )

    op.create_table(
        "parking_sections",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("area_id", sa.Integer(), sa.ForeignKey("parking_areas.id"), nullable=False),
        sa.Column("section_name", sa.String(64), nullable=False),
        sa.Column("vehicle_type", sa.String(32), nullable=False, server_default="car"),
        sa.Column("section_mode", sa.String(16), nullable=False, server_default="slots"),
        sa.Column("total_capacity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reserved_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("parked_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unavailable_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(16), nullable=False, server_default="available"),
        sa.CheckConstraint("reserved_count >= 0", name="ck_section_reserved_nonneg"),
        sa.CheckConstraint("parked_count >= 0", name="ck_section_parked_nonneg"),
        sa.CheckConstraint("unavailable_count >= 0", name="ck_section_unavailable_nonneg"),
        sa.CheckConstraint(
            "reserved_count + parked_count + unavailable_count <= total_capacity",
            name="ck_section_capacity_ceiling",
        ),
    )
    op.create_index("ix_parking_sections_area_id", "parking_sections", ["area_id"])

    op.create_table(
        "parking_spots",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("section_id", sa.Integer(), sa.ForeignKey("parking_sections.id"), nullable=False),
        sa.Column("spot_number", sa.String(32), nullable=False),
        sa.Column("spot_type", sa.String(32), nullable=False, server_default="car"),
        sa.Column("status", sa.String(16), nullable=False, server_default="available"),
        sa.Column("is_occupied", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("unavailable_reason", sa.String(256), nullable=True),
    )
    op.create_index("ix_parking_spots_section_id", "parking_spots", ["section_id"])
    op.create_index("ix_parking_spots_status", "parking_spots", ["status"])

    op.create_table(
        "capacity_spot_status",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("section_id", sa.Integer(), sa.ForeignKey("parking_sections.id"), nullable=False),
        sa.Column("spot_number", sa.String(100), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="unavailable"),
        sa.Column("reason", sa.String(256), nullable=True),
        sa.Column("updated_by", sa.Integer(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("section_id", "spot_number", name="uq_capacity_spot_status_section_spot"),
    )
    op.create_index("ix_capacity_spot_status_section_id", "capacity_spot_status", ["section_id"])

    op.create_table(
        "reservations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("vehicle_id", sa.Integer(), sa.ForeignKey("vehicles.id"), nullable=True),
        sa.Column("parking_spot_id", sa.Integer(), sa.ForeignKey("parking_spots.id"), nullable=True),
        sa.Column("parking_section_id", sa.Integer(), sa.ForeignKey("parking_sections.id"), nullable=True),
        sa.Column("spot_number", sa.String(100), nullable=True),
        sa.Column("booking_status", sa.String(16), nullable=False, server_default="reserved"),
        sa.Column("qr_key", sa.String(64), nullable=False),
        sa.Column("time_stamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("waiting_end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("qr_key"),
        sa.CheckConstraint(
            "(parking_spot_id IS NULL) <> (parking_section_id IS NULL)",
            name="ck_reservation_single_target",
        ),
        sa.CheckConstraint(
            "NOT (booking_status = 'reserved' AND start_time IS NOT NULL)",
            name="ck_reservation_reserved_not_started",
        ),
    )
    op.create_index("ix_reservations_user_id", "reservations", ["user_id"])
    op.create_index("ix_reservations_parking_spot_id", "reservations", ["parking_spot_id"])
    op.create_index("ix_reservations_parking_section_id", "reservations", ["parking_section_id"])
    op.create_index("ix_reservations_booking_status", "reservations", ["booking_status"])
    op.create_index("ix_reservations_status_time_stamp", "reservations", ["booking_status", "time_stamp"])
    # At most one reserved/active reservation per spot and per section slot.
    op.create_index(
        "uq_reservations_holding_spot",
        "reservations",
        ["parking_spot_id"],
        unique=True,
        postgresql_where=sa.text(f"parking_spot_id IS NOT NULL AND {_HOLDING}"),
        sqlite_where=sa.text(f"parking_spot_id IS NOT NULL AND {_HOLDING}"),
    )
    op.create_index(
        "uq_reservations_holding_section_slot",
        "reservations",
        ["parking_section_id", "spot_number"],
        unique=True,
        postgresql_where=sa.text(f"parking_section_id IS NOT NULL AND {_HOLDING}"),
        sqlite_where=sa.text(f"parking_section_id IS NOT NULL AND {_HOLDING}"),
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("purchase_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("hours_purchased", sa.Float(), nullable=False),
        sa.Column("hours_remaining", sa.Float(), nullable=False),
        sa.Column("hours_used", sa.Float(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("hours_remaining >= 0", name="ck_subscription_remaining_nonneg"),
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"])
    op.create_index(
        "ix_subscriptions_user_status_purchase", "subscriptions", ["user_id", "status", "purchase_date"]
    )

    op.create_table(
        "penalties",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("penalty_time", sa.Float(), nullable=False),
        sa.Column("reservation_id", sa.Integer(), sa.ForeignKey("reservations.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_penalties_user_id", "penalties", ["user_id"])

    op.create_table(
        "penalty_settlements",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("penalty_id", sa.Integer(), sa.ForeignKey("penalties.id"), nullable=False),
        sa.Column("subscription_id", sa.Integer(), sa.ForeignKey("subscriptions.id"), nullable=False),
        sa.Column("hours", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_penalty_settlements_penalty_id", "penalty_settlements", ["penalty_id"])

    op.create_table(
        "guest_bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("guest_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("vehicle_id", sa.Integer(), sa.ForeignKey("vehicles.id"), nullable=False),
        sa.Column("reservation_id", sa.Integer(), sa.ForeignKey("reservations.id"), nullable=False),
        sa.Column("attendant_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("reservation_id"),
    )
    op.create_index("ix_guest_bookings_attendant_id", "guest_bookings", ["attendant_id"])

    op.create_table(
        "user_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("target_id", sa.Integer(), nullable=True),
        sa.Column("action_type", sa.String(48), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_user_logs_user_id", "user_logs", ["user_id"])


def downgrade() -> None:
    op.drop_table("user_logs")
    op.drop_table("guest_bookings")
    op.drop_table("penalty_settlements")
    op.drop_table("penalties")
    op.drop_table("subscriptions")
    op.drop_index("uq_reservations_holding_section_slot", table_name="reservations")
    op.drop_index("uq_reservations_holding_spot", table_name="reservations")
    op.drop_table("reservations")
    op.drop_table("capacity_spot_status")
    op.drop_table("parking_spots")
    op.drop_table("parking_sections")
    op.drop_table("parking_areas")
    op.drop_table("vehicles")
    op.drop_table("users")
