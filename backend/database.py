"""
Database setup and tables for detection and alert history
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Float, Integer, String, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from config import DATABASE_URL

logger = logging.getLogger(__name__)

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DetectionEventDB(Base):
    """Non-normal detection results"""
    __tablename__ = "detection_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    timestamp = Column(DateTime, index=True)  # UTC, from the sample
    status = Column(String)  # 'potential_fall', 'fall_detected', 'recovery'
    confidence = Column(Float)
    acceleration_magnitude = Column(Float)
    orientation_change = Column(Float)
    created_at = Column(DateTime, default=_utcnow)


class AlertEventDB(Base):
    """Alert episodes that were started"""
    __tablename__ = "alert_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    timestamp = Column(DateTime, index=True)  # UTC
    type = Column(String)  # 'fall', 'warning', 'success'
    message = Column(String)
    created_at = Column(DateTime, default=_utcnow)


def create_db_engine(url: str = DATABASE_URL) -> Engine:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine):
    """Create all tables"""
    Base.metadata.create_all(bind=engine)
    logger.info("Database initialized at %s", engine.url)


if __name__ == "__main__":
    # Run this file directly to initialize the database
    init_db(create_db_engine())
