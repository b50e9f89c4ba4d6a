import os
import sys

import pytest

# Ensure project root is on sys.path so tests can import the classrecord package
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from classrecord.app import create_app
from classrecord.config import EngineConfig
from classrecord.models import (
    Assessment,
    AssessmentScore,
    Course,
    Student,
    TermConfiguration,
    db,
)


@pytest.fixture
def app():
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "ENGINE_CONFIG": EngineConfig(fanout_workers=1),
        }
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


def add_students(count, start=1):
    students = []
    for n in range(start, start + count):
        student = Student(
            id=n, student_number=f"2025-{n:04d}", first_name=f"First{n}", last_name=f"Last{n}"
        )
        db.session.add(student)
        students.append(student)
    db.session.flush()
    return students


def add_course(course_id, students, slug=None, status="ACTIVE"):
    course = Course(
        id=course_id, slug=slug or f"course-{course_id}", code=f"IT{course_id}", status=status
    )
    course.students.extend(students)
    db.session.add(course)
    db.session.flush()
    return course


def add_term(course, term, weights=(30, 30, 40), assessments=(), scores=None):
    """Create a term config with assessments and scores.

    ``assessments`` holds (type, name, max_score) tuples; ``scores`` maps
    assessment name -> {student_id: score}.
    """
    pt, quiz, exam = weights
    config = TermConfiguration(
        course_id=course.id, term=term, pt_weight=pt, quiz_weight=quiz, exam_weight=exam
    )
    db.session.add(config)
    db.session.flush()
    by_name = {}
    for order, (kind, name, max_score) in enumerate(assessments):
        assessment = Assessment(
            term_config_id=config.id, type=kind, name=name, max_score=max_score, order=order
        )
        db.session.add(assessment)
        by_name[name] = assessment
    db.session.flush()
    for name, per_student in (scores or {}).items():
        for student_id, value in per_student.items():
            db.session.add(
                AssessmentScore(
                    assessment_id=by_name[name].id, student_id=student_id, score=value
                )
            )
    db.session.commit()
    return config
