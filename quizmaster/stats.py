"""
QuizMaster - Statistics
Summary numbers derived from the full quiz record set, recomputed per call.

Percentages are (score / total_marks) * 100. A record whose total_marks is
not positive has no percentage: it still counts towards total_quizzes but is
left out of every average and of the highest-scorer search.
"""

from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from quizmaster.models import HighestScorer, QuizRecord, Stats


@dataclass
class StudentSummary:
    quiz_count: int
    average_percentage: int

    def to_dict(self) -> dict:
        return {"quizCount": self.quiz_count, "averagePercentage": self.average_percentage}


def percentage(record: QuizRecord) -> Optional[float]:
    if record.total_marks is None or record.total_marks <= 0:
        return None
    return (record.score / record.total_marks) * 100.0


def compute_stats(quizzes: Sequence[QuizRecord]) -> Stats:
    """
    Parameters
    ----------
    quizzes : every stored QuizRecord, in store iteration order

    highest_scorer ties resolve to the first record encountered.
    """
    total = len(quizzes)
    scored = [(q, percentage(q)) for q in quizzes]
    scored = [(q, pct) for q, pct in scored if pct is not None]

    if not scored:
        return Stats(total_quizzes=total, average_score=0.0, highest_scorer=None)

    pcts = np.array([pct for _, pct in scored], dtype=float)
    # argmax returns the first index of the maximum
    best, _ = scored[int(np.argmax(pcts))]

    return Stats(
        total_quizzes=total,
        average_score=float(np.mean(pcts)),
        highest_scorer=HighestScorer(name=best.student_name, score=best.score, subject=best.subject),
    )


def subject_averages(quizzes: Sequence[QuizRecord]) -> List[Dict]:
    """Rounded mean percentage per subject, subjects in first-seen order."""
    buckets: "OrderedDict[str, List[float]]" = OrderedDict()
    for q in quizzes:
        pct = percentage(q)
        if pct is None:
            continue
        buckets.setdefault(q.subject, []).append(pct)

    return [
        {"name": subject, "score": int(round(float(np.mean(values))))}
        for subject, values in buckets.items()
    ]


def student_summary(history: Sequence[QuizRecord]) -> StudentSummary:
    pcts = [p for p in (percentage(q) for q in history) if p is not None]
    average = int(round(float(np.mean(pcts)))) if pcts else 0
    return StudentSummary(quiz_count=len(history), average_percentage=average)
