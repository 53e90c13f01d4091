from tappark.services.billing_service import add_subscription, charge_user, get_booking_eligibility
from tappark.services.user_log_service import get_user_logs, log_user_activity

__all__ = ["add_subscription", "charge_user", "get_booking_eligibility", "get_user_logs", "log_user_activity"]
