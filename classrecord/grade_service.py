import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import nullcontext
from typing import Callable, Dict, Iterable, List, Optional

from classrecord.config import EngineConfig
from classrecord.errors import StoreTimeoutError
from classrecord.grade_calculation import TermGradeCalculator, compute_final_grade
from classrecord.leaderboard import LeaderboardAggregator, term_progression
from classrecord.records import (
    FinalGrade,
    LeaderboardEntry,
    StudentTermGrades,
    Term,
    TermGradeResult,
)
from classrecord.store import GradeStore

logger = logging.getLogger(__name__)


class GradeService:
    """Loads grading inputs from a store and runs them through the engine.

    ``worker_context`` wraps each fan-out worker thread; with the SQL stores
    it should be ``app.app_context`` so every worker gets its own session.
    """

    def __init__(
        self,
        store: GradeStore,
        config: Optional[EngineConfig] = None,
        worker_context: Optional[Callable] = None,
    ):
        self.store = store
        self.config = config or EngineConfig()
        self.worker_context = worker_context or nullcontext
        self.calculator = TermGradeCalculator()
        self.aggregator = LeaderboardAggregator()

    def _grading_inputs(self, course_id):
        configs = [c for c in self.store.term_configs(course_id) if c.is_valid]
        config_ids = [c.id for c in configs]
        assessments = self.store.assessments(config_ids)
        scores = self.store.scores([a.id for a in assessments])
        return configs, assessments, scores

    def term_percentages(self, course_id) -> Optional[Dict[object, StudentTermGrades]]:
        """Per-student term percentages for one course, None for an unknown course.

        A persisted term grade with a total wins over recomputation.
        """
        if not self.store.course_exists(course_id):
            return None
        students = self.store.enrolled_students(course_id)
        configs, assessments, scores = self._grading_inputs(course_id)
        saved = self.store.saved_term_grades([c.id for c in configs])

        grades = {sid: StudentTermGrades(student_id=sid) for sid in students}
        for config in configs:
            pending = []
            for sid in students:
                persisted = saved.get((config.id, sid))
                if persisted is not None and persisted.total_percentage is not None:
                    grades[sid].add(config.term, persisted.total_percentage)
                else:
                    pending.append(sid)
            computed = self.calculator.compute_many(config, assessments, scores, pending)
            for sid, result in computed.items():
                if result is not None:
                    grades[sid].add(config.term, result.total_percentage)
        return grades

    def term_grades(self, course_id, term) -> Optional[Dict[object, Optional[TermGradeResult]]]:
        """Freshly computed results for one term; None when the term has no config."""
        term = Term.parse(term)
        config = next(
            (c for c in self.store.term_configs(course_id) if c.term is term), None
        )
        if config is None:
            return None
        students = self.store.enrolled_students(course_id)
        if not config.is_valid:
            return {sid: None for sid in students}
        assessments = self.store.assessments([config.id])
        scores = self.store.scores([a.id for a in assessments])
        return self.calculator.compute_many(config, assessments, scores, students)

    def save_term_grades(self, course_id, term) -> int:
        results = self.term_grades(course_id, term)
        if not results:
            return 0
        return self.store.save_term_grades(r for r in results.values() if r is not None)

    def final_grades(self, course_id) -> Optional[Dict[object, Optional[FinalGrade]]]:
        grades = self.term_percentages(course_id)
        if grades is None:
            return None
        finals = {}
        for sid, student in grades.items():
            finals[sid] = compute_final_grade(dict(term_progression(student.per_term)))
        return finals

    def course_leaderboard(self, course_id) -> Optional[List[LeaderboardEntry]]:
        grades = self.term_percentages(course_id)
        if grades is None:
            return None
        return self.aggregator.rank(grades.values())

    def _load_in_worker(self, course_id):
        with self.worker_context():
            return self.term_percentages(course_id)

    def leaderboard(self, course_ids: Optional[Iterable] = None) -> List[LeaderboardEntry]:
        """System-wide board across courses, unioning each student's terms.

        Each course load runs in the worker pool and must finish within
        ``store_timeout_seconds``; an overrun raises StoreTimeoutError.
        """
        if course_ids is None:
            course_ids = self.store.active_course_ids()
        course_ids = list(course_ids)
        if not course_ids:
            return []

        timeout = self.config.store_timeout_seconds
        workers = max(1, min(self.config.fanout_workers, len(course_ids)))
        executor = ThreadPoolExecutor(max_workers=workers)
        try:
            futures = {
                course_id: executor.submit(self._load_in_worker, course_id)
                for course_id in course_ids
            }
            per_course = {}
            for course_id, future in futures.items():
                try:
                    per_course[course_id] = future.result(timeout=timeout)
                except FutureTimeoutError:
                    logger.error(
                        f"Loading grades for course {course_id} exceeded {timeout}s"
                    )
                    raise StoreTimeoutError(
                        f"Timed out loading grades for course {course_id}",
                        error_code="store_timeout",
                        details={"course_id": course_id, "timeout": timeout},
                    )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        merged: Dict[object, StudentTermGrades] = {}
        for course_id in course_ids:
            grades = per_course.get(course_id)
            if grades is None:
                logger.info(f"Course {course_id} not found; left out of the leaderboard")
                continue
            for sid, student in grades.items():
                target = merged.setdefault(sid, StudentTermGrades(student_id=sid))
                for term, values in student.per_term.items():
                    for value in values:
                        target.add(term, value)
        return self.aggregator.rank(merged.values())
