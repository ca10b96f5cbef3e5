"""Database module for Necessity Reminder.

This module defines SQLAlchemy models and database session management.
IMPORTANT: reminder_time is stored as a UTC DateTime, NOT a string.
"""

from sqlalchemy import (
    create_engine, Column, Integer, String, Text, Boolean, DateTime, ForeignKey,
    Enum as SQLEnum, Index
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from datetime import datetime, timezone
import enum

from config import settings

# SQLAlchemy Base
Base = declarative_base()


class CategoryEnum(enum.Enum):
    """Reminder categories"""
    MEDICINE = "medicine"
    WORKOUT = "workout"
    MEETING = "meeting"
    OTHER = "other"


def _utcnow():
    return datetime.now(timezone.utc)


class User(Base):
    """Registered user. Owns zero or more reminders."""

    __tablename__ = "users"

    user_id = Column(Integer, primary_key=True, autoincrement=True)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password = Column(String(255), nullable=False, doc="bcrypt hash, never the plain password")
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    reminders = relationship("Reminder", back_populates="owner", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<User(user_id={self.user_id}, email={self.email})>"


class Reminder(Base):
    """Reminder model.

    is_notified flips to True exactly once: either when the scheduler claims the
    reminder for delivery or when the owner completes it. It is never reset.
    """

    __tablename__ = "reminders"

    reminder_id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)

    title = Column(String(255), nullable=False)
    category = Column(SQLEnum(CategoryEnum), nullable=False)

    # CRITICAL: always written as UTC
    reminder_time = Column(DateTime(timezone=True), nullable=False)
    notes = Column(Text, nullable=True)

    is_notified = Column(Boolean, nullable=False, default=False)
    is_completed = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    owner = relationship("User", back_populates="reminders")

    __table_args__ = (
        Index('idx_user_time', 'user_id', 'reminder_time'),
        Index('idx_due_scan', 'is_notified', 'is_completed', 'reminder_time'),
    )

    def __repr__(self):
        return (
            f"<Reminder(reminder_id={self.reminder_id}, user={self.user_id}, "
            f"title={self.title}, due={self.reminder_time}, category={self.category.value})>"
        )


def make_engine(database_url: str):
    """Create an engine; SQLite needs cross-thread access for the API server."""
    return create_engine(
        database_url,
        connect_args={"check_same_thread": False} if database_url.startswith("sqlite") else {},
        echo=False  # Set to True for SQL debugging
    )


# Database Engine Setup
engine = make_engine(settings.DATABASE_URL)

# Session Factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=None):
    """Create all tables (no-op for tables that already exist)."""
    Base.metadata.create_all(bind=bind or engine)


def get_db():
    """Database session dependency for FastAPI.

    Yields:
        Session: SQLAlchemy database session

    Usage:
        @app.get("/endpoint")
        def endpoint(db: Session = Depends(get_db)):
            # Use db here
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
