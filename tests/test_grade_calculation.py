import pytest

from classrecord.grade_calculation import (
    TermGradeCalculator,
    compute_final_grade,
    transmute_score,
)
from classrecord.records import (
    AssessmentDefinition,
    AssessmentType,
    Score,
    Term,
    TermWeightConfig,
)

PT, QUIZ, EXAM = AssessmentType.PT, AssessmentType.QUIZ, AssessmentType.EXAM


def config(pt=30, quiz=30, exam=40, config_id=1):
    return TermWeightConfig(
        id=config_id, course_id="C", term=Term.PRELIM,
        pt_weight=pt, quiz_weight=quiz, exam_weight=exam,
    )


def assessment(aid, kind, max_score=100, order=0, enabled=True, base=0, config_id=1):
    return AssessmentDefinition(
        id=aid, term_config_id=config_id, type=kind, name=aid,
        max_score=max_score, order=order, enabled=enabled, transmutation_base=base,
    )


def scores_for(student_id, values):
    return [Score(assessment_id=aid, student_id=student_id, score=v) for aid, v in values.items()]


@pytest.fixture
def calculator():
    return TermGradeCalculator()


def test_course_scenario_total_and_band(calculator):
    assessments = [
        assessment("pt1", PT, 50, order=1),
        assessment("pt2", PT, 50, order=2),
        assessment("q1", QUIZ, 20),
        assessment("exam", EXAM, 100),
    ]
    scores = scores_for("s1", {"pt1": 40, "pt2": 45, "q1": 18, "exam": 85})

    breakdown = calculator.breakdown(config(), assessments, scores, "s1")
    assert breakdown.pt_average == pytest.approx(85)
    assert breakdown.quiz_average == pytest.approx(90)
    assert breakdown.exam_percentage == pytest.approx(85)
    assert breakdown.total_percentage == pytest.approx(86.5)

    result = calculator.result(config(), assessments, scores, "s1")
    assert result.numeric_grade == "1.75"
    assert result.remarks == "PASSED"


@pytest.mark.parametrize("weights", [(30, 30, 30), (50, 30, 40), (-10, 70, 40), (float("nan"), 50, 50)])
def test_weights_not_summing_to_100_never_grade(calculator, weights):
    assessments = [assessment("pt1", PT), assessment("exam", EXAM)]
    scores = scores_for("s1", {"pt1": 100, "exam": 100})
    assert calculator.compute(config(*weights), assessments, scores, "s1") is None


def test_missing_weights_count_as_zero():
    assert config(None, 60, 40).is_valid
    assert not config(None, None, 40).is_valid


def test_unscored_assessments_count_as_zero(calculator):
    assessments = [
        assessment("pt1", PT),
        assessment("pt2", PT),
        assessment("pt3", PT),
        assessment("exam", EXAM),
    ]
    scores = scores_for("s1", {"pt1": 80, "pt2": 90, "exam": 100})

    breakdown = calculator.breakdown(config(), assessments, scores, "s1")
    assert breakdown.pt_average == pytest.approx(56.67, abs=0.01)


def test_exam_score_is_required(calculator):
    assessments = [assessment("pt1", PT), assessment("q1", QUIZ), assessment("exam", EXAM)]
    scores = scores_for("s1", {"pt1": 100, "q1": 100})
    assert calculator.compute(config(), assessments, scores, "s1") is None

    ungraded_exam = scores + [Score(assessment_id="exam", student_id="s1", score=None)]
    assert calculator.compute(config(), assessments, ungraded_exam, "s1") is None


def test_no_exam_assessment_means_no_grade(calculator):
    assessments = [assessment("pt1", PT)]
    assert calculator.compute(config(), assessments, scores_for("s1", {"pt1": 90}), "s1") is None


def test_zero_exam_score_still_grades(calculator):
    assessments = [assessment("exam", EXAM)]
    total = calculator.compute(config(), assessments, scores_for("s1", {"exam": 0}), "s1")
    assert total == 0


def test_disabled_and_foreign_assessments_are_ignored(calculator):
    assessments = [
        assessment("pt1", PT),
        assessment("pt-off", PT, enabled=False),
        assessment("pt-other", PT, config_id=2),
        assessment("exam", EXAM),
    ]
    scores = scores_for("s1", {"pt1": 100, "exam": 100})
    breakdown = calculator.breakdown(config(), assessments, scores, "s1")
    assert breakdown.pt_average == pytest.approx(100)


def test_first_exam_by_order_is_used(calculator):
    assessments = [
        assessment("late-exam", EXAM, order=5),
        assessment("exam", EXAM, order=1),
    ]
    scores = scores_for("s1", {"exam": 50, "late-exam": 100})
    breakdown = calculator.breakdown(config(0, 0, 100), assessments, scores, "s1")
    assert breakdown.exam_percentage == pytest.approx(50)


def test_type_without_assessments_averages_zero(calculator):
    assessments = [assessment("q1", QUIZ), assessment("exam", EXAM)]
    scores = scores_for("s1", {"q1": 100, "exam": 100})
    assert calculator.compute(config(), assessments, scores, "s1") == pytest.approx(70)


def test_other_students_scores_do_not_leak(calculator):
    assessments = [assessment("exam", EXAM)]
    scores = scores_for("s2", {"exam": 100})
    assert calculator.compute(config(), assessments, scores, "s1") is None


def test_transmutation_lifts_raw_score(calculator):
    assert transmute_score(20, 100, 50) == pytest.approx(60)
    assert transmute_score(20, 100, 0) == 20
    assert transmute_score(None, 100, 50) is None

    assessments = [assessment("exam", EXAM, base=50)]
    total = calculator.compute(config(0, 0, 100), assessments, scores_for("s1", {"exam": 20}), "s1")
    assert total == pytest.approx(60)


def test_compute_many_grades_whole_roster(calculator):
    assessments = [assessment("pt1", PT), assessment("exam", EXAM)]
    scores = scores_for("s1", {"pt1": 100, "exam": 100}) + scores_for("s2", {"pt1": 50})

    results = calculator.compute_many(config(), assessments, scores, ["s1", "s2", "s3"])
    assert results["s1"].total_percentage == pytest.approx(100 * 0.3 + 100 * 0.4)
    assert results["s1"].term_config_id == 1
    assert results["s2"] is None
    assert results["s3"] is None


def test_compute_many_with_invalid_config_returns_none_for_everyone(calculator):
    assessments = [assessment("exam", EXAM)]
    results = calculator.compute_many(config(10, 10, 10), assessments, scores_for("s1", {"exam": 90}), ["s1"])
    assert results == {"s1": None}


def test_final_grade_needs_all_four_terms():
    assert compute_final_grade({Term.PRELIM: 90, Term.MIDTERM: 90, Term.PREFINALS: 90}) is None


def test_final_grade_weights_finals_double():
    final = compute_final_grade(
        {Term.PRELIM: 98, Term.MIDTERM: 98, Term.PREFINALS: 98, Term.FINALS: 60}
    )
    assert final.percentage == pytest.approx(98 * 0.6 + 60 * 0.4)
    # 1.00 * 0.6 + 3.00 * 0.4
    assert final.numeric_grade == "1.80"
    assert final.remarks == "PASSED"
