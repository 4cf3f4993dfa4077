"""
Database schema and connection management.

Uses SQLite with SQLAlchemy to keep a log of published job status updates.
"""

from datetime import datetime
from pathlib import Path
from sqlalchemy import create_engine, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class JobUpdate(Base):
    """One published job status update."""

    __tablename__ = "job_updates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String, nullable=False, index=True)
    topic = Column(String, nullable=False)
    batch_status = Column(String, nullable=True)
    payload = Column(Text, nullable=False)  # Job.to_dict() as JSON
    published_at = Column(DateTime, nullable=False, default=datetime.now)


def get_engine(db_path: Path):
    """
    Create an engine for the SQLite file, creating parent directories.

    Args:
        db_path: Path to SQLite database file
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )


def init_database(db_path: Path):
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file

    Returns:
        The engine, ready for sessions
    """
    engine = get_engine(db_path)
    Base.metadata.create_all(engine)
    return engine
