"""
Audit log rows. Added to the caller's session so the log commits (or rolls back) with the change.
"""
from sqlalchemy.orm import Session

from tappark.models.user_log import UserLog


def log_user_activity(
    db: Session,
    user_id: int,
    action_type: str,
    description: str,
    target_id: int | None = None,
) -> UserLog:
    row = UserLog(user_id=user_id, target_id=target_id, action_type=action_type, description=description)
    db.add(row)
    return row


def get_user_logs(db: Session, user_id: int, limit: int = 50) -> list[dict]:
    rows = (
        db.query(UserLog)
        .filter(UserLog.user_id == user_id)
        .order_by(UserLog.timestamp.desc(), UserLog.id.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "id": r.id,
            "action_type": r.action_type,
            "target_id": r.target_id,
            "description": r.description,
            "timestamp": r.timestamp.isoformat() if r.timestamp else None,
        }
        for r in rows
    ]
