import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np

from classrecord.grade_bands import band, remarks
from classrecord.records import (
    TERM_ORDER,
    AssessmentDefinition,
    AssessmentType,
    FinalGrade,
    Score,
    Term,
    TermGradeBreakdown,
    TermGradeResult,
    TermWeightConfig,
)

logger = logging.getLogger(__name__)

# Weights used to roll the four term grades into a final grade
TERM_WEIGHTS = {
    Term.PRELIM: 0.2,
    Term.MIDTERM: 0.2,
    Term.PREFINALS: 0.2,
    Term.FINALS: 0.4,
}


def transmute_score(raw_score: Optional[float], max_score: float, base: float):
    """Lift a raw score toward max_score by a base percentage.

    raw * (base/100) + ((100 - base)/100) * max_score. A base of 0 keeps the
    raw score, and an ungraded score stays ungraded.
    """
    if raw_score is None or not base:
        return raw_score
    return raw_score * (base / 100.0) + ((100.0 - base) / 100.0) * max_score


def _percentage(assessment: AssessmentDefinition, raw_score: Optional[float]):
    if raw_score is None or not assessment.max_score or assessment.max_score <= 0:
        return None
    score = transmute_score(
        raw_score, assessment.max_score, assessment.transmutation_base
    )
    return max(0.0, min(100.0, score / assessment.max_score * 100.0))


class TermGradeCalculator:
    """Weighted PT / quiz / exam aggregation for a single term.

    Missing work counts against the student: a type average divides the
    scored percentages by every enabled assessment of that type. A term
    cannot be graded without an exam score, and a config whose weights do
    not add up to 100 never produces a grade. Both cases return None.
    """

    def _partition(self, config: TermWeightConfig, assessments):
        by_type: Dict[AssessmentType, List[AssessmentDefinition]] = defaultdict(list)
        owned = [
            a
            for a in assessments
            if a.enabled and (config.id is None or a.term_config_id == config.id)
        ]
        # sorted() is stable, so equal orders keep input order
        for assessment in sorted(owned, key=lambda a: a.order):
            by_type[assessment.type].append(assessment)
        return by_type

    @staticmethod
    def _type_average(assessments, scores_by_assessment: Mapping) -> float:
        if not assessments:
            return 0.0
        total = 0.0
        for assessment in assessments:
            pct = _percentage(assessment, scores_by_assessment.get(assessment.id))
            if pct is not None:
                total += pct
        return total / len(assessments)

    def _breakdown_for(
        self, config, by_type, scores_by_assessment
    ) -> Optional[TermGradeBreakdown]:
        exams = by_type.get(AssessmentType.EXAM) or []
        if not exams:
            return None
        exam_pct = _percentage(exams[0], scores_by_assessment.get(exams[0].id))
        if exam_pct is None:
            return None

        pt_avg = self._type_average(by_type.get(AssessmentType.PT), scores_by_assessment)
        quiz_avg = self._type_average(
            by_type.get(AssessmentType.QUIZ), scores_by_assessment
        )
        pt_weight, quiz_weight, exam_weight = config.weights
        total = (
            (pt_avg / 100.0) * pt_weight
            + (quiz_avg / 100.0) * quiz_weight
            + (exam_pct / 100.0) * exam_weight
        )
        return TermGradeBreakdown(
            pt_average=pt_avg,
            quiz_average=quiz_avg,
            exam_percentage=exam_pct,
            total_percentage=total,
        )

    def breakdown(
        self,
        config: TermWeightConfig,
        assessments: Iterable[AssessmentDefinition],
        scores: Iterable[Score],
        student_id,
    ) -> Optional[TermGradeBreakdown]:
        if not config.is_valid:
            return None
        scores_by_assessment = {
            s.assessment_id: s.score for s in scores if s.student_id == student_id
        }
        return self._breakdown_for(
            config, self._partition(config, assessments), scores_by_assessment
        )

    def compute(
        self,
        config: TermWeightConfig,
        assessments: Iterable[AssessmentDefinition],
        scores: Iterable[Score],
        student_id,
    ) -> Optional[float]:
        """Return the weighted term percentage, or None when it cannot be computed."""
        result = self.breakdown(config, assessments, scores, student_id)
        return result.total_percentage if result is not None else None

    def result(
        self,
        config: TermWeightConfig,
        assessments: Iterable[AssessmentDefinition],
        scores: Iterable[Score],
        student_id,
    ) -> Optional[TermGradeResult]:
        total = self.compute(config, assessments, scores, student_id)
        if total is None:
            return None
        return make_term_grade_result(student_id, config.id, total)

    def compute_many(
        self,
        config: TermWeightConfig,
        assessments: Sequence[AssessmentDefinition],
        scores: Iterable[Score],
        student_ids: Iterable,
    ) -> Dict[object, Optional[TermGradeResult]]:
        """Grade a whole roster against one config, indexing scores once."""
        student_ids = list(student_ids)
        if not config.is_valid:
            logger.info(
                f"Skipping term config {config.id} ({config.term.value}): "
                f"weights {config.weights} do not sum to 100"
            )
            return {sid: None for sid in student_ids}

        by_type = self._partition(config, assessments)
        scores_by_student: Dict[object, Dict[object, Optional[float]]] = defaultdict(dict)
        for s in scores:
            scores_by_student[s.student_id][s.assessment_id] = s.score

        results = {}
        for sid in student_ids:
            breakdown = self._breakdown_for(
                config, by_type, scores_by_student.get(sid, {})
            )
            results[sid] = (
                make_term_grade_result(sid, config.id, breakdown.total_percentage)
                if breakdown is not None
                else None
            )
        return results


def make_term_grade_result(student_id, term_config_id, total: float) -> TermGradeResult:
    label = band(total)
    return TermGradeResult(
        student_id=student_id,
        term_config_id=term_config_id,
        total_percentage=total,
        numeric_grade=label,
        remarks=remarks(label),
    )


def compute_final_grade(per_term: Mapping[Term, Optional[float]]) -> Optional[FinalGrade]:
    """Roll the four term percentages into a final grade.

    The percentage is the 20/20/20/40 weighted mean of the term percentages;
    the numeric grade applies the same weights to each term's banded value.
    All four terms are required.
    """
    percentages = [per_term.get(term) for term in TERM_ORDER]
    if any(p is None for p in percentages):
        return None
    weights = [TERM_WEIGHTS[term] for term in TERM_ORDER]
    percentage = float(np.dot(percentages, weights))
    numeric = float(np.dot([float(band(p)) for p in percentages], weights))
    label = f"{numeric:.2f}"
    return FinalGrade(percentage=percentage, numeric_grade=label, remarks=remarks(label))
