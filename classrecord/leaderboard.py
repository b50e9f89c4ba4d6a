import logging
from typing import Dict, Iterable, List, Tuple

import numpy as np

from classrecord.grade_bands import band
from classrecord.records import TERM_ORDER, LeaderboardEntry, StudentTermGrades, Term

logger = logging.getLogger(__name__)

# Applied when every earlier term averaged 0 but the latest term is positive.
# Not a ratio; it only signals upward movement without dividing by zero.
ZERO_BASELINE_MULTIPLIER = 10


def student_sort_key(student_id):
    # numeric ids sort numerically, anything else by its text
    if isinstance(student_id, (int, float)):
        return (0, student_id, "")
    return (1, 0, str(student_id))


def term_progression(per_term: Dict[Term, List[float]]) -> List[Tuple[Term, float]]:
    """Terms with data, in term order, each reduced to the mean of its values."""
    progression = []
    for term in TERM_ORDER:
        values = [v for v in per_term.get(term, []) if v is not None]
        if values:
            progression.append((term, float(np.mean(values))))
    return progression


def improvement(progression: List[Tuple[Term, float]]) -> Tuple[float, bool]:
    """Compare the latest term against the mean of every earlier term.

    Returns (improvement percent, is_improving).
    """
    if len(progression) < 2:
        return 0.0, False
    latest = progression[-1][1]
    mean_previous = float(np.mean([value for _, value in progression[:-1]]))
    delta = latest - mean_previous
    if mean_previous > 0:
        pct = delta / mean_previous * 100.0
    elif delta > 0:
        pct = latest * ZERO_BASELINE_MULTIPLIER
    else:
        pct = 0.0
    return pct, delta > 0


class LeaderboardAggregator:
    """Ranks students by the mean of their term percentages.

    Works for a single course (one value per term) or system-wide, where a
    term may carry one value per course the student is enrolled in.
    """

    def entry_values(self, student: StudentTermGrades):
        values = [
            v for term_values in student.per_term.values() for v in term_values
            if v is not None
        ]
        current = float(np.mean(values)) if values else 0.0
        progression = term_progression(student.per_term)
        pct, improving = improvement(progression)
        return current, pct, improving, dict(progression)

    def rank(self, students: Iterable[StudentTermGrades]) -> List[LeaderboardEntry]:
        scored = []
        skipped = 0
        for student in students:
            current, pct, improving, per_term = self.entry_values(student)
            if current <= 0:
                skipped += 1
                continue
            scored.append((student.student_id, current, pct, improving, per_term))

        # Highest grade first; equal grades fall back to student id ascending
        scored.sort(key=lambda row: (-row[1], student_sort_key(row[0])))
        if skipped:
            logger.debug(f"Leaderboard excluded {skipped} student(s) without a grade")

        return [
            LeaderboardEntry(
                student_id=student_id,
                current_grade=current,
                numeric_grade=band(current),
                improvement=pct,
                is_improving=improving,
                rank=position,
                term_percentages=per_term,
            )
            for position, (student_id, current, pct, improving, per_term) in enumerate(
                scored, start=1
            )
        ]
