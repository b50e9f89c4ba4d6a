from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


course_students = db.Table(
    "course_students",
    db.Column("course_id", db.Integer, db.ForeignKey("courses.id"), primary_key=True),
    db.Column("student_id", db.Integer, db.ForeignKey("students.id"), primary_key=True),
)


class Course(db.Model):
    __tablename__ = "courses"

    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    code = db.Column(db.String(20), nullable=False)
    section = db.Column(db.String(10), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="ACTIVE")
    created_at = db.Column(db.DateTime, default=db.func.current_timestamp())

    # Relationships
    students = db.relationship("Student", secondary=course_students, backref="courses")
    term_configs = db.relationship(
        "TermConfiguration", backref="course", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Course {self.code} {self.section or ''}>"


class Student(db.Model):
    __tablename__ = "students"

    id = db.Column(db.Integer, primary_key=True)
    student_number = db.Column(db.String(20), unique=True, nullable=False)
    first_name = db.Column(db.String(50), nullable=False)
    last_name = db.Column(db.String(50), nullable=False)

    def __repr__(self):
        return f"<Student {self.student_number}>"

    @property
    def full_name(self):
        return f"{self.last_name}, {self.first_name}"


class TermConfiguration(db.Model):
    __tablename__ = "term_configurations"

    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey("courses.id"), nullable=False)
    term = db.Column(db.String(20), nullable=False)  # PRELIM, MIDTERM, PREFINALS, FINALS
    pt_weight = db.Column(db.Float, nullable=True)
    quiz_weight = db.Column(db.Float, nullable=True)
    exam_weight = db.Column(db.Float, nullable=True)

    # Relationships
    assessments = db.relationship(
        "Assessment", backref="term_config", cascade="all, delete-orphan"
    )
    term_grades = db.relationship(
        "TermGrade", backref="term_config", cascade="all, delete-orphan"
    )

    __table_args__ = (
        db.UniqueConstraint("course_id", "term", name="unique_course_term"),
    )

    def __repr__(self):
        return f"<TermConfiguration {self.term} ({self.pt_weight}/{self.quiz_weight}/{self.exam_weight})>"


class Assessment(db.Model):
    __tablename__ = "assessments"

    id = db.Column(db.Integer, primary_key=True)
    term_config_id = db.Column(
        db.Integer, db.ForeignKey("term_configurations.id"), nullable=False
    )
    type = db.Column(db.String(10), nullable=False)  # PT, QUIZ, EXAM
    name = db.Column(db.String(100), nullable=False)
    max_score = db.Column(db.Float, nullable=False)
    order = db.Column(db.Integer, nullable=False, default=0)
    enabled = db.Column(db.Boolean, nullable=False, default=True)
    transmutation_base = db.Column(db.Float, nullable=False, default=0)

    # Relationships
    scores = db.relationship(
        "AssessmentScore", backref="assessment", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Assessment {self.name} ({self.max_score} pts)>"


class AssessmentScore(db.Model):
    __tablename__ = "assessment_scores"

    id = db.Column(db.Integer, primary_key=True)
    assessment_id = db.Column(
        db.Integer, db.ForeignKey("assessments.id"), nullable=False
    )
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False)
    score = db.Column(db.Float, nullable=True)

    __table_args__ = (
        db.UniqueConstraint("assessment_id", "student_id", name="unique_student_score"),
    )


class TermGrade(db.Model):
    """Persisted term grade; preferred over recomputation when its total is set."""

    __tablename__ = "term_grades"

    id = db.Column(db.Integer, primary_key=True)
    term_config_id = db.Column(
        db.Integer, db.ForeignKey("term_configurations.id"), nullable=False
    )
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False)
    total_percentage = db.Column(db.Float, nullable=True)
    numeric_grade = db.Column(db.String(5), nullable=True)
    remarks = db.Column(db.String(10), nullable=True)  # PASSED, FAILED
    updated_at = db.Column(
        db.DateTime,
        default=db.func.current_timestamp(),
        onupdate=db.func.current_timestamp(),
    )

    __table_args__ = (
        db.UniqueConstraint("term_config_id", "student_id", name="unique_term_grade"),
    )


class Attendance(db.Model):
    __tablename__ = "attendance"

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False)
    course_id = db.Column(db.Integer, db.ForeignKey("courses.id"), nullable=False)
    date = db.Column(db.DateTime, nullable=False)  # start of day, UTC
    status = db.Column(db.String(10), nullable=False)  # PRESENT, LATE, ABSENT, EXCUSED
    reason = db.Column(db.String(255), nullable=True)  # only for EXCUSED
    created_at = db.Column(db.DateTime, default=db.func.current_timestamp())

    # Natural key the reconciler diffs against
    __table_args__ = (
        db.UniqueConstraint(
            "student_id", "course_id", "date", name="unique_student_course_day"
        ),
    )

    def __repr__(self):
        return f"<Attendance student:{self.student_id} course:{self.course_id} {self.status}>"
