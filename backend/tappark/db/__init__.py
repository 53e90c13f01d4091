from tappark.db.base import Base
from tappark.db.session import SessionLocal, engine, get_db, transaction
from tappark.db.tables import ALL_TABLE_NAMES

__all__ = ["get_db", "engine", "SessionLocal", "Base", "transaction", "ALL_TABLE_NAMES"]
