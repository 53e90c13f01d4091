#!/usr/bin/env python3
"""
Quick checks so the backend can start. Run from backend/:
  poetry run python scripts/check_backend.py
"""
import os
import sys
from pathlib import Path

# Run from backend/
backend_dir = Path(__file__).resolve().parent.parent
os.chdir(backend_dir)
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))


def main():
    errors = []

    # 1) .env
    env_file = backend_dir / ".env"
    if not env_file.exists():
        errors.append("backend/.env missing. Copy from backend/.env.example and set DATABASE_URL, JWT_SECRET.")
    else:
        print("OK  .env exists")

    # 2) DB connection and schema
    try:
        from sqlalchemy import inspect, text

        from tappark.db.session import engine
        from tappark.db.tables import ALL_TABLE_NAMES

        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        print("OK  Database connection (DATABASE_URL)")
        missing = sorted(set(ALL_TABLE_NAMES) - set(inspect(engine).get_table_names()))
        if missing:
            errors.append(f"Tables missing: {', '.join(missing)}. Run: poetry run alembic upgrade head")
            print("FAIL Schema: missing", ", ".join(missing))
        else:
            print("OK  All tables present")
    except Exception as e:
        errors.append(f"Database: {e}")
        print("FAIL Database:", e)

    # 3) Settings sanity
    try:
        from tappark.config import settings

        if settings.jwt_secret in ("", "change-me"):
            errors.append("JWT_SECRET is not set; tokens from the auth service will not verify.")
            print("WARN JWT_SECRET is the default")
        print(
            f"OK  Sweeper: grace={settings.grace_period_minutes}min interval={settings.grace_check_interval_ms}ms "
            f"enabled={settings.sweeper_enabled}"
        )
    except Exception as e:
        errors.append(f"Settings: {e}")
        print("FAIL Settings:", e)

    # 4) App import (catches missing deps, bad imports)
    try:
        from tappark.main import app  # noqa: F401

        print("OK  App import (tappark.main)")
    except Exception as e:
        errors.append(f"App import: {e}")
        print("FAIL App import:", e)

    # 5) Port 8000
    try:
        import socket

        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("127.0.0.1", 8000))
        print("OK  Port 8000 is free")
    except OSError:
        errors.append("Port 8000 is in use. Stop the other process or use another port (e.g. --port 8001).")
        print("FAIL Port 8000 is in use")

    if errors:
        print("\n---")
        for e in errors:
            print("•", e)
        print("\nThen start: poetry run uvicorn tappark.main:app --reload --port 8000")
        return 1

    print("\nAll checks passed. Start with: poetry run uvicorn tappark.main:app --reload --port 8000")
    return 0


if __name__ == "__main__":
    sys.exit(main())
