"""
Single source of truth for database tables that exist after migrations.

Use these names when writing raw SQL (e.g. TRUNCATE in scripts). alembic/env.py asserts the
registered models match ALL_TABLE_NAMES.
"""
# All tables that exist in the DB. Must match models and migrations.
ALL_TABLE_NAMES = (
    "users",
    "vehicles",
    "parking_areas",
    "parking_sections",
    "parking_spots",
    "capacity_spot_status",
    "reservations",
    "subscriptions",
    "penalties",
    "penalty_settlements",
    "guest_bookings",
    "user_logs",
)
