"""
QuizMaster - Data Contracts
Plain dataclasses shared by every stage of the scan-to-record pipeline.

Python attributes are snake_case; to_dict() / from_dict() speak the camelCase
wire form the extraction service and the local API use.
"""

import time
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Optional


def generate_id() -> str:
    return uuid.uuid4().hex


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def now_millis() -> int:
    return int(time.time() * 1000)


def today_iso() -> str:
    return date.today().isoformat()


@dataclass
class Student:
    id: str
    name: str
    joined_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "joinedAt": self.joined_at}

    @classmethod
    def from_dict(cls, data: dict) -> "Student":
        return cls(id=data["id"], name=data["name"], joined_at=data["joinedAt"])


@dataclass
class QuizRecord:
    id: str
    student_id: str
    student_name: str
    subject: str
    score: float
    total_marks: float
    date: str
    timestamp: int
    image_url: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "studentId": self.student_id,
            "studentName": self.student_name,
            "subject": self.subject,
            "score": self.score,
            "totalMarks": self.total_marks,
            "date": self.date,
            "timestamp": self.timestamp,
            "imageUrl": self.image_url,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "QuizRecord":
        return cls(
            id=data["id"],
            student_id=data["studentId"],
            student_name=data["studentName"],
            subject=data["subject"],
            score=data["score"],
            total_marks=data["totalMarks"],
            date=data["date"],
            timestamp=data["timestamp"],
            image_url=data.get("imageUrl"),
        )


@dataclass
class ExtractedResult:
    """Validated output of one AI round-trip, before identity resolution."""
    student_name: str
    score: float
    total_marks: float
    subject: str

    def to_dict(self) -> dict:
        return {
            "studentName": self.student_name,
            "score": self.score,
            "totalMarks": self.total_marks,
            "subject": self.subject,
        }


@dataclass
class NewQuiz:
    """The reviewed, not-yet-persisted part of a QuizRecord handed to add_quiz."""
    student_name: str
    subject: str
    score: float
    total_marks: float
    date: str = field(default_factory=today_iso)
    image_url: Optional[str] = None

    @classmethod
    def from_result(
        cls,
        result: ExtractedResult,
        image_url: Optional[str] = None,
        quiz_date: Optional[str] = None,
    ) -> "NewQuiz":
        return cls(
            student_name=result.student_name,
            subject=result.subject,
            score=result.score,
            total_marks=result.total_marks,
            date=quiz_date or today_iso(),
            image_url=image_url,
        )


@dataclass
class HighestScorer:
    name: str
    score: float
    subject: str

    def to_dict(self) -> dict:
        return {"name": self.name, "score": self.score, "subject": self.subject}


@dataclass
class Stats:
    total_quizzes: int
    average_score: float
    highest_scorer: Optional[HighestScorer] = None

    def to_dict(self) -> dict:
        return {
            "totalQuizzes": self.total_quizzes,
            "averageScore": self.average_score,
            "highestScorer": self.highest_scorer.to_dict() if self.highest_scorer else None,
        }
