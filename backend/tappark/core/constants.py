"""
Centralized constants for the scheduler, booking states and billing.

Change job IDs, status names or billing thresholds here instead of scattering literals
across services and routes. Env-driven knobs (grace period, tick interval) live in config.
"""

# Scheduler job IDs (must match ids used in main.py add_job)
GRACE_PERIOD_JOB_ID = "grace_period_sweep"

# Reservation booking_status values
BOOKING_RESERVED = "reserved"
BOOKING_ACTIVE = "active"
BOOKING_COMPLETED = "completed"
BOOKING_INVALID = "invalid"
BOOKING_CANCELLED = "cancelled"
HOLDING_STATUSES = (BOOKING_RESERVED, BOOKING_ACTIVE)

# ParkingSpot.status values
SPOT_AVAILABLE = "available"
SPOT_RESERVED = "reserved"
SPOT_OCCUPIED = "occupied"
SPOT_UNAVAILABLE = "unavailable"

# ParkingSection.status / CapacitySpotStatus.status values
SECTION_AVAILABLE = "available"
SECTION_UNAVAILABLE = "unavailable"
SECTION_MODE_SLOTS = "slots"
SECTION_MODE_CAPACITY = "capacity_only"

# Subscription.status values
SUBSCRIPTION_ACTIVE = "active"
SUBSCRIPTION_EXHAUSTED = "exhausted"

# User roles
ROLE_USER = "user"
ROLE_ATTENDANT = "attendant"
ROLE_ADMIN = "admin"
ROLE_GUEST = "guest"
PRIVILEGED_ROLES = frozenset({ROLE_ATTENDANT, ROLE_ADMIN})

# Vehicle type -> spot type for compatibility checks
VEHICLE_SPOT_TYPE_ALIASES = {"bicycle": "bike", "ebike": "bike"}

# Billing: hour amounts below this are treated as zero (float noise, never billed)
HOURS_EPSILON = 1e-6
# Checkout always bills at least one minute
MIN_SESSION_CHARGE_HOURS = 1 / 60

# user_logs.action_type values
ACTION_RESERVATION_CREATED = "RESERVATION_CREATED"
ACTION_RESERVATION_EXPIRED = "RESERVATION_EXPIRED"
ACTION_RESERVATION_CANCELLED = "RESERVATION_CANCELLED"
ACTION_SESSION_STARTED = "SESSION_STARTED"
ACTION_SESSION_ENDED = "SESSION_ENDED"
ACTION_GUEST_BOOKING = "GUEST_BOOKING"
ACTION_SUBSCRIPTION_PURCHASED = "SUBSCRIPTION_PURCHASED"
ACTION_STATUS_CHANGED = "SPOT_STATUS_CHANGED"

# Realtime event sources
SOURCE_GRACE_CHECKER = "grace-period-checker"
