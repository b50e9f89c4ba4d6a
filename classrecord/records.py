"""Typed records passed between the stores and the engine.

Payloads arrive as loose dicts (JSON bodies, cursor rows). Each record has a
``from_dict`` constructor that validates the payload and raises
``ValidationError``; past that point the engine only handles these types.
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from classrecord.errors import ValidationError


class Term(Enum):
    PRELIM = "PRELIM"
    MIDTERM = "MIDTERM"
    PREFINALS = "PREFINALS"
    FINALS = "FINALS"

    @classmethod
    def parse(cls, value: Any) -> "Term":
        """Accept enum members, canonical names and the front-end aliases."""
        if isinstance(value, cls):
            return value
        key = str(value or "").strip().lower().replace("-", "").replace("_", "")
        term = TERM_ALIASES.get(key)
        if term is None:
            raise ValidationError(f"Unknown term: {value!r}", error_code="bad_term")
        return term

    @property
    def position(self) -> int:
        return TERM_ORDER.index(self)


TERM_ORDER: Tuple[Term, ...] = (
    Term.PRELIM,
    Term.MIDTERM,
    Term.PREFINALS,
    Term.FINALS,
)

TERM_ALIASES = {
    "prelim": Term.PRELIM,
    "prelims": Term.PRELIM,
    "midterm": Term.MIDTERM,
    "midterms": Term.MIDTERM,
    "prefinal": Term.PREFINALS,
    "prefinals": Term.PREFINALS,
    "final": Term.FINALS,
    "finals": Term.FINALS,
}


class AssessmentType(Enum):
    PT = "PT"
    QUIZ = "QUIZ"
    EXAM = "EXAM"


class AttendanceStatus(Enum):
    PRESENT = "PRESENT"
    LATE = "LATE"
    ABSENT = "ABSENT"
    EXCUSED = "EXCUSED"


def _parse_enum(enum_cls, value: Any, code: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().upper())
    except ValueError:
        raise ValidationError(
            f"Invalid {enum_cls.__name__} value: {value!r}", error_code=code
        )


def _optional_float(value: Any, name: str) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be numeric, got {value!r}")


@dataclass(frozen=True)
class TermWeightConfig:
    id: Any
    course_id: Any
    term: Term
    pt_weight: Optional[float] = 0.0
    quiz_weight: Optional[float] = 0.0
    exam_weight: Optional[float] = 0.0

    @property
    def weights(self) -> Tuple[float, float, float]:
        return (
            self.pt_weight if self.pt_weight is not None else 0.0,
            self.quiz_weight if self.quiz_weight is not None else 0.0,
            self.exam_weight if self.exam_weight is not None else 0.0,
        )

    @property
    def is_valid(self) -> bool:
        """Weights must be finite, non-negative and add up to 100."""
        weights = self.weights
        if not all(math.isfinite(w) and w >= 0 for w in weights):
            return False
        return math.isclose(sum(weights), 100.0, rel_tol=0.0, abs_tol=1e-9)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TermWeightConfig":
        return cls(
            id=data.get("id"),
            course_id=data.get("course_id", data.get("courseId")),
            term=Term.parse(data.get("term")),
            pt_weight=_optional_float(
                data.get("pt_weight", data.get("ptWeight")), "pt_weight"
            ),
            quiz_weight=_optional_float(
                data.get("quiz_weight", data.get("quizWeight")), "quiz_weight"
            ),
            exam_weight=_optional_float(
                data.get("exam_weight", data.get("examWeight")), "exam_weight"
            ),
        )


@dataclass(frozen=True)
class AssessmentDefinition:
    id: Any
    term_config_id: Any
    type: AssessmentType
    name: str
    max_score: float
    order: int = 0
    enabled: bool = True
    transmutation_base: float = 0.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AssessmentDefinition":
        max_score = _optional_float(
            data.get("max_score", data.get("maxScore")), "max_score"
        )
        if max_score is None or not math.isfinite(max_score) or max_score <= 0:
            raise ValidationError(
                f"Assessment {data.get('id')!r} needs a positive max_score",
                error_code="bad_max_score",
            )
        base = _optional_float(
            data.get("transmutation_base", data.get("transmutationBase")),
            "transmutation_base",
        )
        base = base or 0.0
        if not 0 <= base <= 100:
            raise ValidationError(
                f"transmutation_base must be within 0..100, got {base}",
                error_code="bad_transmutation_base",
            )
        return cls(
            id=data.get("id"),
            term_config_id=data.get("term_config_id", data.get("termConfigId")),
            type=_parse_enum(AssessmentType, data.get("type"), "bad_assessment_type"),
            name=str(data.get("name") or ""),
            max_score=max_score,
            order=int(data.get("order") or 0),
            enabled=bool(data.get("enabled", True)),
            transmutation_base=base,
        )


@dataclass(frozen=True)
class Score:
    assessment_id: Any
    student_id: Any
    score: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Score":
        value = _optional_float(data.get("score"), "score")
        if value is not None and (not math.isfinite(value) or value < 0):
            raise ValidationError(f"Invalid score: {data.get('score')!r}")
        return cls(
            assessment_id=data.get("assessment_id", data.get("assessmentId")),
            student_id=data.get("student_id", data.get("studentId")),
            score=value,
        )


@dataclass(frozen=True)
class TermGradeResult:
    student_id: Any
    term_config_id: Any
    total_percentage: Optional[float]
    numeric_grade: Optional[str] = None
    remarks: Optional[str] = None


@dataclass(frozen=True)
class TermGradeBreakdown:
    pt_average: float
    quiz_average: float
    exam_percentage: float
    total_percentage: float


@dataclass(frozen=True)
class FinalGrade:
    percentage: float
    numeric_grade: str
    remarks: str


@dataclass(frozen=True)
class SubmittedAttendance:
    student_id: Any
    status: AttendanceStatus
    reason: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SubmittedAttendance":
        student_id = data.get("student_id", data.get("studentId"))
        if student_id in (None, ""):
            raise ValidationError("Attendance entry is missing a student id")
        reason = data.get("reason")
        return cls(
            student_id=student_id,
            status=_parse_enum(AttendanceStatus, data.get("status"), "bad_status"),
            reason=str(reason) if reason is not None else None,
        )


@dataclass(frozen=True)
class AttendanceRecord:
    id: Any
    student_id: Any
    course_id: Any
    date: datetime
    status: AttendanceStatus
    reason: Optional[str] = None


@dataclass
class ReconcileResult:
    updated: int = 0
    created: int = 0
    submitted: int = 0
    truncated: bool = False
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "updated": self.updated,
            "created": self.created,
            "submitted": self.submitted,
            "truncated": self.truncated,
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class AttendanceStats:
    total_records: int
    total_present: int
    total_absent: int
    total_late: int
    total_excused: int
    attendance_rate: int


@dataclass(frozen=True)
class AttendanceRankEntry:
    """One student's attendance tally; rate is present / sessions * 100."""

    student_id: Any
    total_present: int
    total_absent: int
    total_late: int
    total_excused: int
    total_sessions: int
    attendance_rate: float
    rank: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "studentId": self.student_id,
            "totalPresent": self.total_present,
            "totalAbsent": self.total_absent,
            "totalLate": self.total_late,
            "totalExcused": self.total_excused,
            "totalSessions": self.total_sessions,
            "attendanceRate": self.attendance_rate,
            "rank": self.rank,
        }


@dataclass
class StudentTermGrades:
    """Term percentages for one student; a term may hold one value per course."""

    student_id: Any
    per_term: Dict[Term, List[float]] = field(default_factory=dict)

    def add(self, term: Term, percentage: Optional[float]) -> None:
        if percentage is None:
            return
        self.per_term.setdefault(Term.parse(term), []).append(float(percentage))


@dataclass(frozen=True)
class LeaderboardEntry:
    student_id: Any
    current_grade: float
    numeric_grade: str
    improvement: float
    is_improving: bool
    rank: int
    term_percentages: Dict[Term, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "studentId": self.student_id,
            "currentGrade": self.current_grade,
            "numericGrade": self.numeric_grade,
            "improvement": self.improvement,
            "isImproving": self.is_improving,
            "rank": self.rank,
            "termPercentages": {
                term.value: value for term, value in self.term_percentages.items()
            },
        }


DateLike = Union[date, datetime, str]


def day_bounds(value: DateLike) -> Tuple[datetime, datetime]:
    """Return the naive-UTC ``[start_of_day, start_of_next_day)`` range for a day."""
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(f"Invalid date: {value!r}", error_code="bad_date")
        value = parsed
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        day = value.date()
    elif isinstance(value, date):
        day = value
    else:
        raise ValidationError(f"Invalid date: {value!r}", error_code="bad_date")
    start = datetime(day.year, day.month, day.day)
    return start, start + timedelta(days=1)
