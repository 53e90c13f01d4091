"""Declarative base shared by all models and Alembic."""
from sqlalchemy.orm import declarative_base

Base = declarative_base()
