"""
Storage collaborators for the engine.

The engine reads configs, assessments and scores through a ``GradeStore`` and
reads/writes attendance rows through an ``AttendanceStore``. The Sql*
implementations sit on the Flask-SQLAlchemy session and must be used inside
an application context.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from functools import wraps
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, insert, select, tuple_, update
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from classrecord.errors import StoreError, ValidationError
from classrecord.models import (
    Assessment,
    AssessmentScore,
    Attendance,
    Course,
    TermConfiguration,
    TermGrade,
    course_students,
    db,
)
from classrecord.records import (
    AssessmentDefinition,
    AttendanceRecord,
    AttendanceStatus,
    Score,
    TermGradeResult,
    TermWeightConfig,
)

logger = logging.getLogger(__name__)


def translate_errors(method):
    """Surface driver failures as StoreError."""

    @wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except SQLAlchemyError as e:
            logger.error(f"{type(self).__name__}.{method.__name__} failed: {str(e)}")
            raise StoreError(
                f"Storage call {method.__name__} failed", error_code="store_failed"
            ) from e

    return wrapper


class GradeStore(ABC):
    """Read access to grading inputs and write access to term grade rows."""

    @abstractmethod
    def course_exists(self, course_id) -> bool:
        pass

    @abstractmethod
    def active_course_ids(self) -> List[Any]:
        pass

    @abstractmethod
    def enrolled_students(self, course_id) -> List[Any]:
        pass

    @abstractmethod
    def term_configs(self, course_id) -> List[TermWeightConfig]:
        pass

    @abstractmethod
    def assessments(self, config_ids: Sequence) -> List[AssessmentDefinition]:
        pass

    @abstractmethod
    def scores(self, assessment_ids: Sequence) -> List[Score]:
        pass

    @abstractmethod
    def saved_term_grades(self, config_ids: Sequence) -> Dict[Tuple, TermGradeResult]:
        """Persisted results keyed by (term_config_id, student_id)."""
        pass

    @abstractmethod
    def save_term_grades(self, results: Iterable[TermGradeResult]) -> int:
        pass


class AttendanceStore(ABC):
    """Attendance rows, written only inside ``transaction()``."""

    @abstractmethod
    def transaction(self):
        pass

    @abstractmethod
    def find_existing(
        self, course_id, start: datetime, end: datetime, student_ids: Sequence
    ) -> List[AttendanceRecord]:
        pass

    @abstractmethod
    def update_statuses(self, rows: List[Dict[str, Any]]) -> int:
        """Apply ``{id, status, reason}`` rows as one batched statement."""
        pass

    @abstractmethod
    def insert_ignoring_duplicates(self, rows: List[Dict[str, Any]]) -> int:
        pass

    @abstractmethod
    def records_between(self, course_id, start: datetime, end: datetime) -> List[AttendanceRecord]:
        pass

    @abstractmethod
    def delete_between(self, course_id, start: datetime, end: datetime) -> int:
        pass

    @abstractmethod
    def distinct_dates(self, course_id) -> List[datetime]:
        pass

    @abstractmethod
    def status_counts(self, course_id) -> Dict[AttendanceStatus, int]:
        pass

    @abstractmethod
    def student_status_counts(
        self, course_ids: Sequence
    ) -> Dict[Any, Dict[AttendanceStatus, int]]:
        """Status tallies per student across the given courses."""
        pass


def duplicate_skipping_insert(dialect_name: str):
    """INSERT for attendance rows that skips only natural-key duplicates.

    MySQL uses a no-op ON DUPLICATE KEY UPDATE rather than INSERT IGNORE,
    which would also swallow foreign key and truncation errors.
    """
    table = Attendance.__table__
    if dialect_name == "mysql":
        return mysql.insert(table).on_duplicate_key_update(id=table.c.id)
    if dialect_name == "postgresql":
        return postgresql.insert(table).on_conflict_do_nothing(
            constraint="unique_student_course_day"
        )
    if dialect_name == "sqlite":
        return sqlite.insert(table).on_conflict_do_nothing(
            index_elements=["student_id", "course_id", "date"]
        )
    logger.warning(f"No duplicate-skipping insert for dialect {dialect_name}")
    return insert(table)


def _to_term_config(row: TermConfiguration) -> Optional[TermWeightConfig]:
    try:
        return TermWeightConfig.from_dict(
            {
                "id": row.id,
                "course_id": row.course_id,
                "term": row.term,
                "pt_weight": row.pt_weight,
                "quiz_weight": row.quiz_weight,
                "exam_weight": row.exam_weight,
            }
        )
    except ValidationError as e:
        logger.warning(f"Skipping term configuration {row.id}: {e.message}")
        return None


def _to_assessment(row: Assessment) -> Optional[AssessmentDefinition]:
    try:
        return AssessmentDefinition.from_dict(
            {
                "id": row.id,
                "term_config_id": row.term_config_id,
                "type": row.type,
                "name": row.name,
                "max_score": row.max_score,
                "order": row.order,
                "enabled": row.enabled,
                "transmutation_base": row.transmutation_base,
            }
        )
    except ValidationError as e:
        logger.warning(f"Skipping assessment {row.id}: {e.message}")
        return None


def _to_attendance(row: Attendance) -> AttendanceRecord:
    return AttendanceRecord(
        id=row.id,
        student_id=row.student_id,
        course_id=row.course_id,
        date=row.date,
        status=AttendanceStatus(row.status),
        reason=row.reason,
    )


class SqlGradeStore(GradeStore):
    def __init__(self, session=None):
        self.session = session or db.session

    @translate_errors
    def course_exists(self, course_id) -> bool:
        return self.session.get(Course, course_id) is not None

    @translate_errors
    def active_course_ids(self) -> List[Any]:
        stmt = select(Course.id).where(Course.status == "ACTIVE").order_by(Course.id)
        return list(self.session.execute(stmt).scalars())

    @translate_errors
    def enrolled_students(self, course_id) -> List[Any]:
        stmt = (
            select(course_students.c.student_id)
            .where(course_students.c.course_id == course_id)
            .order_by(course_students.c.student_id)
        )
        return list(self.session.execute(stmt).scalars())

    @translate_errors
    def term_configs(self, course_id) -> List[TermWeightConfig]:
        stmt = select(TermConfiguration).where(TermConfiguration.course_id == course_id)
        configs = [
            c
            for c in (_to_term_config(r) for r in self.session.execute(stmt).scalars())
            if c is not None
        ]
        return sorted(configs, key=lambda c: c.term.position)

    @translate_errors
    def assessments(self, config_ids: Sequence) -> List[AssessmentDefinition]:
        if not config_ids:
            return []
        stmt = (
            select(Assessment)
            .where(Assessment.term_config_id.in_(list(config_ids)))
            .order_by(Assessment.type, Assessment.order, Assessment.id)
        )
        return [
            a
            for a in (_to_assessment(r) for r in self.session.execute(stmt).scalars())
            if a is not None
        ]

    @translate_errors
    def scores(self, assessment_ids: Sequence) -> List[Score]:
        if not assessment_ids:
            return []
        stmt = select(AssessmentScore).where(
            AssessmentScore.assessment_id.in_(list(assessment_ids))
        )
        return [
            Score(assessment_id=r.assessment_id, student_id=r.student_id, score=r.score)
            for r in self.session.execute(stmt).scalars()
        ]

    @translate_errors
    def saved_term_grades(self, config_ids: Sequence) -> Dict[Tuple, TermGradeResult]:
        if not config_ids:
            return {}
        stmt = select(TermGrade).where(TermGrade.term_config_id.in_(list(config_ids)))
        return {
            (r.term_config_id, r.student_id): TermGradeResult(
                student_id=r.student_id,
                term_config_id=r.term_config_id,
                total_percentage=r.total_percentage,
                numeric_grade=r.numeric_grade,
                remarks=r.remarks,
            )
            for r in self.session.execute(stmt).scalars()
        }

    def save_term_grades(self, results: Iterable[TermGradeResult]) -> int:
        results = list(results)
        if not results:
            return 0
        config_ids = sorted({r.term_config_id for r in results})
        try:
            existing = {
                (row.term_config_id, row.student_id): row
                for row in self.session.execute(
                    select(TermGrade).where(TermGrade.term_config_id.in_(config_ids))
                ).scalars()
            }
            for result in results:
                row = existing.get((result.term_config_id, result.student_id))
                if row is None:
                    row = TermGrade(
                        term_config_id=result.term_config_id,
                        student_id=result.student_id,
                    )
                    self.session.add(row)
                row.total_percentage = result.total_percentage
                row.numeric_grade = result.numeric_grade
                row.remarks = result.remarks
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Saving term grades failed: {str(e)}")
            raise StoreError("Failed to save term grades", error_code="store_failed") from e
        logger.info(f"Saved {len(results)} term grade(s)")
        return len(results)


class SqlAttendanceStore(AttendanceStore):
    def __init__(self, session=None):
        self.session = session or db.session

    @contextmanager
    def transaction(self):
        """Commit on success; roll back everything on any failure."""
        try:
            yield self
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Attendance transaction rolled back: {str(e)}")
            raise StoreError(
                "Attendance transaction failed", error_code="store_failed"
            ) from e
        except Exception:
            self.session.rollback()
            raise

    @translate_errors
    def find_existing(self, course_id, start, end, student_ids) -> List[AttendanceRecord]:
        if not student_ids:
            return []
        stmt = select(Attendance).where(
            Attendance.course_id == course_id,
            Attendance.date >= start,
            Attendance.date < end,
            Attendance.student_id.in_(list(student_ids)),
        )
        return [_to_attendance(r) for r in self.session.execute(stmt).scalars()]

    def update_statuses(self, rows: List[Dict[str, Any]]) -> int:
        if not rows:
            return 0
        # ORM bulk UPDATE by primary key, sent as a single executemany
        self.session.execute(update(Attendance), rows)
        return len(rows)

    def _count_natural_keys(self, rows: List[Dict[str, Any]]) -> int:
        keys = [(r["student_id"], r["course_id"], r["date"]) for r in rows]
        stmt = (
            select(func.count())
            .select_from(Attendance)
            .where(tuple_(Attendance.student_id, Attendance.course_id, Attendance.date).in_(keys))
        )
        return self.session.execute(stmt).scalar_one()

    def insert_ignoring_duplicates(self, rows: List[Dict[str, Any]]) -> int:
        if not rows:
            return 0
        dialect = self.session.get_bind().dialect.name
        stmt = duplicate_skipping_insert(dialect)
        if dialect == "mysql":
            # ON DUPLICATE KEY rowcounts are 1 for a skipped row under FOUND_ROWS
            already_stored = self._count_natural_keys(rows)
            self.session.execute(stmt, rows)
            return len(rows) - already_stored
        result = self.session.execute(stmt, rows)
        inserted = result.rowcount
        return inserted if inserted is not None and inserted >= 0 else len(rows)

    @translate_errors
    def records_between(self, course_id, start, end) -> List[AttendanceRecord]:
        stmt = (
            select(Attendance)
            .where(
                Attendance.course_id == course_id,
                Attendance.date >= start,
                Attendance.date < end,
            )
            .order_by(Attendance.student_id)
        )
        return [_to_attendance(r) for r in self.session.execute(stmt).scalars()]

    def delete_between(self, course_id, start, end) -> int:
        stmt = delete(Attendance).where(
            Attendance.course_id == course_id,
            Attendance.date >= start,
            Attendance.date < end,
        )
        return self.session.execute(stmt).rowcount

    @translate_errors
    def distinct_dates(self, course_id) -> List[datetime]:
        stmt = (
            select(Attendance.date)
            .where(Attendance.course_id == course_id)
            .distinct()
            .order_by(Attendance.date.desc())
        )
        return list(self.session.execute(stmt).scalars())

    @translate_errors
    def status_counts(self, course_id) -> Dict[AttendanceStatus, int]:
        stmt = (
            select(Attendance.status, func.count(Attendance.id))
            .where(Attendance.course_id == course_id)
            .group_by(Attendance.status)
        )
        return {
            AttendanceStatus(status): count
            for status, count in self.session.execute(stmt)
        }

    @translate_errors
    def student_status_counts(self, course_ids) -> Dict[Any, Dict[AttendanceStatus, int]]:
        if not course_ids:
            return {}
        stmt = (
            select(Attendance.student_id, Attendance.status, func.count(Attendance.id))
            .where(Attendance.course_id.in_(list(course_ids)))
            .group_by(Attendance.student_id, Attendance.status)
        )
        tallies: Dict[Any, Dict[AttendanceStatus, int]] = {}
        for student_id, status, count in self.session.execute(stmt):
            tallies.setdefault(student_id, {})[AttendanceStatus(status)] = count
        return tallies
