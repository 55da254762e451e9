"""
QuizMaster - Record Store
Keyed storage for students and quiz records.

RecordStore is the injected repository the pipeline talks to. Two engines:
  - InMemoryRecordStore : dict-backed, for tests and embedding
  - SQLRecordStore      : SQLAlchemy (SQLite by default)

add_quiz() is the composite save used after review. It holds the store's
write lock across snapshot → identity resolution → student insert → quiz
insert, so two concurrent saves for the same new name cannot create two
students. The SQL engine backs this with a unique normalized_name column.
"""

import logging
import math
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import date
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from quizmaster.database import (
    QuizRow, StudentRow, create_db_engine, init_db, make_session_factory
)
from quizmaster.exceptions import StorageError, ValidationError
from quizmaster.identity import find_student, normalize_name, resolve_student
from quizmaster.models import NewQuiz, QuizRecord, Student, generate_id, now_millis

logger = logging.getLogger(__name__)


class RecordStore(ABC):
    """Repository interface for students and quiz records."""

    def __init__(self):
        self._write_lock = threading.RLock()

    # ─────────────────────────────────────────────────────
    # Primitive operations
    # ─────────────────────────────────────────────────────

    @abstractmethod
    def list_students(self) -> List[Student]: ...

    @abstractmethod
    def list_quizzes(self) -> List[QuizRecord]: ...

    @abstractmethod
    def get_student(self, student_id: str) -> Optional[Student]: ...

    @abstractmethod
    def upsert_student(self, student: Student) -> Student: ...

    @abstractmethod
    def upsert_quiz(self, record: QuizRecord) -> QuizRecord: ...

    @abstractmethod
    def quizzes_for_student(self, student_id: str) -> List[QuizRecord]:
        """All records for one student, newest first."""

    @abstractmethod
    def delete_student_cascade(self, student_id: str) -> bool:
        """Remove the student and all of their records together. False if unknown."""

    @abstractmethod
    def _save_new_quiz(self, record: QuizRecord, new_student: Optional[Student]) -> QuizRecord:
        """Persist new_student (if any) and record as one unit; return the stored record."""

    # ─────────────────────────────────────────────────────
    # Composite operations
    # ─────────────────────────────────────────────────────

    def add_quiz(self, new_quiz: NewQuiz) -> QuizRecord:
        _check_new_quiz(new_quiz)

        with self._write_lock:
            students = self.list_students()
            student = resolve_student(new_quiz.student_name, students)
            is_new = all(s.id != student.id for s in students)

            record = QuizRecord(
                id=generate_id(),
                student_id=student.id,
                student_name=student.name,
                subject=new_quiz.subject,
                score=new_quiz.score,
                total_marks=new_quiz.total_marks,
                date=new_quiz.date,
                timestamp=now_millis(),
                image_url=new_quiz.image_url,
            )
            saved = self._save_new_quiz(record, student if is_new else None)

        logger.info(
            "Saved quiz %s for %s student %s (%s/%s, %s)",
            saved.id, "new" if is_new else "existing", saved.student_id,
            saved.score, saved.total_marks, saved.subject,
        )
        return saved

    def search_students(self, query: str = "") -> List[Student]:
        needle = normalize_name(query)
        matches = [s for s in self.list_students() if needle in normalize_name(s.name)]
        return sorted(matches, key=lambda s: normalize_name(s.name))

    def recent_quizzes(self, limit: int = 5) -> List[QuizRecord]:
        quizzes = sorted(self.list_quizzes(), key=_newest_first, reverse=True)
        return quizzes[:limit]


def _newest_first(record: QuizRecord):
    # id breaks ties between records saved in the same millisecond
    return record.timestamp, record.id


def _check_new_quiz(new_quiz: NewQuiz):
    for name, value in (("score", new_quiz.score), ("totalMarks", new_quiz.total_marks)):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"Field '{name}' must be numeric", field=name)
        if not math.isfinite(value):
            raise ValidationError(f"Field '{name}' must be a finite number", field=name)
    if new_quiz.total_marks <= 0:
        raise ValidationError("Total marks must be greater than zero", field="totalMarks")
    if not (new_quiz.subject or "").strip():
        raise ValidationError("Subject must not be blank", field="subject")
    try:
        date.fromisoformat(new_quiz.date)
    except (TypeError, ValueError):
        raise ValidationError(f"Date must be YYYY-MM-DD, got {new_quiz.date!r}", field="date")


# ─────────────────────────────────────────────────────────────────────────────
# In-memory engine
# ─────────────────────────────────────────────────────────────────────────────

class InMemoryRecordStore(RecordStore):
    """
    Dict-backed store. Every call returns copies so callers cannot mutate
    stored state behind the store's back.
    """

    def __init__(self):
        super().__init__()
        self._students = {}
        self._quizzes = {}

    def list_students(self) -> List[Student]:
        with self._write_lock:
            return [replace(s) for s in self._students.values()]

    def list_quizzes(self) -> List[QuizRecord]:
        with self._write_lock:
            return [replace(q) for q in self._quizzes.values()]

    def get_student(self, student_id: str) -> Optional[Student]:
        with self._write_lock:
            student = self._students.get(student_id)
            return replace(student) if student else None

    def upsert_student(self, student: Student) -> Student:
        with self._write_lock:
            self._check_unique_name(student)
            self._students[student.id] = replace(student)
        return student

    def upsert_quiz(self, record: QuizRecord) -> QuizRecord:
        with self._write_lock:
            if record.student_id not in self._students:
                raise StorageError("upsert_quiz", f"unknown student {record.student_id}")
            self._quizzes[record.id] = replace(record)
        return record

    def quizzes_for_student(self, student_id: str) -> List[QuizRecord]:
        with self._write_lock:
            history = [replace(q) for q in self._quizzes.values() if q.student_id == student_id]
        return sorted(history, key=_newest_first, reverse=True)

    def delete_student_cascade(self, student_id: str) -> bool:
        with self._write_lock:
            if student_id not in self._students:
                return False
            orphaned = [qid for qid, q in self._quizzes.items() if q.student_id == student_id]
            del self._students[student_id]
            for qid in orphaned:
                del self._quizzes[qid]
        logger.info("Deleted student %s and %d quiz record(s)", student_id, len(orphaned))
        return True

    def _save_new_quiz(self, record: QuizRecord, new_student: Optional[Student]) -> QuizRecord:
        with self._write_lock:
            if new_student is not None:
                self._check_unique_name(new_student)
            elif record.student_id not in self._students:
                raise StorageError("add_quiz", f"unknown student {record.student_id}")
            # both writes happen after every check, so a failure leaves nothing behind
            if new_student is not None:
                self._students[new_student.id] = replace(new_student)
            self._quizzes[record.id] = replace(record)
        return record

    def _check_unique_name(self, student: Student):
        clash = find_student(student.name, (s for s in self._students.values() if s.id != student.id))
        if clash is not None:
            raise StorageError("upsert_student", f"name already used by student {clash.id}")


# ─────────────────────────────────────────────────────────────────────────────
# SQLAlchemy engine
# ─────────────────────────────────────────────────────────────────────────────

class SQLRecordStore(RecordStore):
    """
    Each public call runs in its own session and transaction; any driver
    failure rolls back and surfaces as StorageError.
    """

    def __init__(self, database_url: str = "sqlite:///./quizmaster.db"):
        super().__init__()
        self.engine = create_db_engine(database_url)
        self._session_factory = make_session_factory(self.engine)
        init_db(self.engine)

    def close(self):
        self.engine.dispose()

    # ── reads ─────────────────────────────────────────────

    def list_students(self) -> List[Student]:
        with self._session("list_students") as db:
            return [_to_student(row) for row in db.query(StudentRow).all()]

    def list_quizzes(self) -> List[QuizRecord]:
        with self._session("list_quizzes") as db:
            return [_to_quiz(row) for row in db.query(QuizRow).all()]

    def get_student(self, student_id: str) -> Optional[Student]:
        with self._session("get_student") as db:
            row = db.get(StudentRow, student_id)
            return _to_student(row) if row else None

    def quizzes_for_student(self, student_id: str) -> List[QuizRecord]:
        with self._session("quizzes_for_student") as db:
            rows = (
                db.query(QuizRow)
                .filter(QuizRow.student_id == student_id)
                .order_by(QuizRow.timestamp.desc(), QuizRow.id.desc())
                .all()
            )
            return [_to_quiz(row) for row in rows]

    # ── writes ────────────────────────────────────────────

    def upsert_student(self, student: Student) -> Student:
        with self._write_lock, self._session("upsert_student") as db:
            db.merge(_student_row(student))
            db.commit()
        return student

    def upsert_quiz(self, record: QuizRecord) -> QuizRecord:
        with self._write_lock, self._session("upsert_quiz") as db:
            db.merge(_quiz_row(record))
            db.commit()
        return record

    def delete_student_cascade(self, student_id: str) -> bool:
        with self._write_lock, self._session("delete_student_cascade") as db:
            student = db.get(StudentRow, student_id)
            if student is None:
                return False
            removed = db.query(QuizRow).filter(QuizRow.student_id == student_id).delete(synchronize_session=False)
            db.delete(student)
            db.commit()
        logger.info("Deleted student %s and %d quiz record(s)", student_id, removed)
        return True

    def _save_new_quiz(self, record: QuizRecord, new_student: Optional[Student]) -> QuizRecord:
        try:
            return self._insert_quiz(record, new_student)
        except StorageError as e:
            if new_student is None or not isinstance(e.__cause__, IntegrityError):
                raise
            # another process inserted the same normalized name first
            winner = self._student_by_normalized_name(new_student.name)
            if winner is None:
                raise
            logger.info("Student %r already exists as %s; reusing it", new_student.name, winner.id)
            record = replace(record, student_id=winner.id, student_name=winner.name)
            return self._insert_quiz(record, None)

    def _insert_quiz(self, record: QuizRecord, new_student: Optional[Student]) -> QuizRecord:
        with self._session("add_quiz") as db:
            if new_student is not None:
                db.add(_student_row(new_student))
                db.flush()
            db.add(_quiz_row(record))
            db.commit()
        return record

    def _student_by_normalized_name(self, name: str) -> Optional[Student]:
        with self._session("add_quiz") as db:
            row = (
                db.query(StudentRow)
                .filter(StudentRow.normalized_name == normalize_name(name))
                .one_or_none()
            )
            return _to_student(row) if row else None

    # ── plumbing ──────────────────────────────────────────

    def _session(self, operation: str):
        return _StoreSession(self._session_factory, operation)


class _StoreSession:
    """Session context: rollback + StorageError on any SQLAlchemy failure."""

    def __init__(self, factory, operation: str):
        self._factory = factory
        self._operation = operation
        self._db = None

    def __enter__(self):
        self._db = self._factory()
        return self._db

    def __exit__(self, exc_type, exc, tb):
        try:
            if exc_type is not None:
                self._db.rollback()
        finally:
            self._db.close()
        if exc_type is not None and issubclass(exc_type, SQLAlchemyError):
            logger.error("Storage failure during %s: %s", self._operation, exc)
            raise StorageError(self._operation, str(exc)) from exc
        return False


# ─────────────────────────────────────────────────────────
# Row mapping
# ─────────────────────────────────────────────────────────

def _student_row(student: Student) -> StudentRow:
    return StudentRow(
        id=student.id,
        name=student.name,
        normalized_name=normalize_name(student.name),
        joined_at=student.joined_at,
    )


def _quiz_row(record: QuizRecord) -> QuizRow:
    return QuizRow(
        id=record.id,
        student_id=record.student_id,
        student_name=record.student_name,
        subject=record.subject,
        score=record.score,
        total_marks=record.total_marks,
        date=record.date,
        timestamp=record.timestamp,
        image_url=record.image_url,
    )


def _to_student(row: StudentRow) -> Student:
    return Student(id=row.id, name=row.name, joined_at=row.joined_at)


def _to_quiz(row: QuizRow) -> QuizRecord:
    return QuizRecord(
        id=row.id,
        student_id=row.student_id,
        student_name=row.student_name,
        subject=row.subject,
        score=row.score,
        total_marks=row.total_marks,
        date=row.date,
        timestamp=row.timestamp,
        image_url=row.image_url,
    )
