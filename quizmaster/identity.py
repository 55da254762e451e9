"""
QuizMaster - Identity Resolution
Maps a free-text student name onto one canonical Student.

Names match when they are equal after trimming and case-folding. The stored
name keeps the trimmed spelling of the first accepted entry. This module is
pure: it never persists; RecordStore.add_quiz serializes resolve + insert.
"""

from datetime import datetime, timezone
from typing import Iterable, Optional

from quizmaster.exceptions import ValidationError
from quizmaster.models import Student, generate_id


def normalize_name(name: str) -> str:
    return (name or "").strip().casefold()


def find_student(raw_name: str, students: Iterable[Student]) -> Optional[Student]:
    key = normalize_name(raw_name)
    for student in students:
        if normalize_name(student.name) == key:
            return student
    return None


def resolve_student(
    raw_name: str,
    existing_students: Iterable[Student],
    now: Optional[datetime] = None,
) -> Student:
    """
    Return the existing student whose normalized name matches raw_name, or a
    new (unsaved) Student with a fresh id. Raises ValidationError for a blank name.
    """
    trimmed = (raw_name or "").strip()
    if not trimmed:
        raise ValidationError("Student name must not be blank", field="studentName")

    existing = find_student(trimmed, existing_students)
    if existing is not None:
        return existing

    joined = now or datetime.now(timezone.utc)
    return Student(id=generate_id(), name=trimmed, joined_at=joined.isoformat())
