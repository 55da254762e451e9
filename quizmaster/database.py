"""
QuizMaster - Database Models
SQLAlchemy ORM tables backing SQLRecordStore.

  students : keyed by id, unique normalized_name (trimmed + case-folded name)
  quizzes  : keyed by id, indexed student_id, deleted with their student

The unique normalized_name column is what makes "create the student if absent"
an atomic compare-and-insert at the storage layer.
"""

import logging

from sqlalchemy import (
    BigInteger, Column, Float, ForeignKey, String, Text, create_engine, event
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()


class StudentRow(Base):
    __tablename__ = "students"

    id              = Column(String(32), primary_key=True)
    name            = Column(String(200), nullable=False)
    normalized_name = Column(String(200), nullable=False, unique=True, index=True)
    joined_at       = Column(String(40), nullable=False)

    quizzes = relationship(
        "QuizRow",
        back_populates="student",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class QuizRow(Base):
    __tablename__ = "quizzes"

    id           = Column(String(32), primary_key=True)
    student_id   = Column(String(32), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    student_name = Column(String(200), nullable=False)
    subject      = Column(String(200), nullable=False)
    score        = Column(Float, nullable=False)
    total_marks  = Column(Float, nullable=False)
    date         = Column(String(10), nullable=False)
    timestamp    = Column(BigInteger, nullable=False, index=True)
    image_url    = Column(Text, nullable=True)

    student = relationship("StudentRow", back_populates="quizzes")


# ─────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────

def create_db_engine(database_url: str):
    is_sqlite = database_url.startswith("sqlite")
    kwargs = {"connect_args": {"check_same_thread": False}} if is_sqlite else {}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # one shared connection, otherwise every session sees an empty database
        kwargs["poolclass"] = StaticPool
    engine = create_engine(database_url, **kwargs)
    if is_sqlite:
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
    return engine


def make_session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine):
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ready (%s).", engine.url.render_as_string(hide_password=True))
