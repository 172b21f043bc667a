import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from gradebook.calculation.grading_config import GradingConfig, default_grade_scale
from gradebook.database.connection import Base
from gradebook.database.enums import AssessmentType
from gradebook.database.models import (
    AcademicYear, Term, SchoolClass, Subject, ClassSubject, Student, AssessmentDefinition
)

SCHOOL_ID = "school-1"


@pytest.fixture
def db_engine():
    """SQLite 内存数据库"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    session_factory = sessionmaker(bind=db_engine, autocommit=False, autoflush=False, future=True)
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def grading_config():
    return GradingConfig(grade_scale=default_grade_scale())


@pytest.fixture
def school(db_session):
    """
    测试学校数据

    班级 class-1（学号 STU-001..STU-004）开设 Mathematics、English、Science；
    班级 class-2 只有一名学生 STU-009。
    """
    db_session.add_all([
        AcademicYear(id="year-2024", year=2024, school_id=SCHOOL_ID),
        Term(id="term-1", name="Term 1", term_number=1, academic_year_id="year-2024", school_id=SCHOOL_ID),
        Term(id="term-2", name="Term 2", term_number=2, academic_year_id="year-2024", school_id=SCHOOL_ID),
        SchoolClass(id="class-1", name="Grade 7 East", level="Grade 7", school_id=SCHOOL_ID),
        SchoolClass(id="class-2", name="Grade 7 West", level="Grade 7", school_id=SCHOOL_ID),
        Subject(id="subj-math", name="Mathematics", code="MAT"),
        Subject(id="subj-eng", name="English", code="ENG"),
        Subject(id="subj-sci", name="Science", code="SCI"),
    ])
    db_session.flush()
    db_session.add_all([
        ClassSubject(id="cs-math", class_id="class-1", subject_id="subj-math", term_id="term-1", school_id=SCHOOL_ID),
        ClassSubject(id="cs-eng", class_id="class-1", subject_id="subj-eng", term_id="term-1", school_id=SCHOOL_ID),
        ClassSubject(id="cs-sci", class_id="class-1", subject_id="subj-sci", term_id="term-1", school_id=SCHOOL_ID),
        ClassSubject(id="cs-math-2", class_id="class-2", subject_id="subj-math", term_id="term-1", school_id=SCHOOL_ID),
    ])
    db_session.add_all([
        Student(id="stu-1", admission_no="STU-001", first_name="Amina", last_name="Otieno",
                class_id="class-1", school_id=SCHOOL_ID),
        Student(id="stu-2", admission_no="STU-002", first_name="Brian", last_name="Kamau",
                class_id="class-1", school_id=SCHOOL_ID),
        Student(id="stu-3", admission_no="STU-003", first_name="Chloe", last_name="Wanjiru",
                class_id="class-1", school_id=SCHOOL_ID),
        Student(id="stu-4", admission_no="STU-004", first_name="David", last_name="Mwangi",
                middle_name="K", class_id="class-1", school_id=SCHOOL_ID),
        Student(id="stu-9", admission_no="STU-009", first_name="Esther", last_name="Njeri",
                class_id="class-2", school_id=SCHOOL_ID),
    ])
    db_session.flush()

    def assessment(assessment_id, name, kind, class_subject_id, max_marks=None):
        return AssessmentDefinition(
            id=assessment_id, name=name, type=kind, max_marks=max_marks,
            class_subject_id=class_subject_id, term_id="term-1",
            academic_year_id="year-2024", school_id=SCHOOL_ID
        )

    db_session.add_all([
        assessment("math-cat1", "CAT 1", AssessmentType.GRADE_BASED, "cs-math", 100),
        assessment("math-cat2", "CAT 2", AssessmentType.GRADE_BASED, "cs-math", 50),
        assessment("eng-exam", "End Term", AssessmentType.GRADE_BASED, "cs-eng", 100),
        assessment("eng-oral", "Oral Reflection", AssessmentType.HOLISTIC, "cs-eng"),
        assessment("sci-practical", "Practical", AssessmentType.COMPETENCY_BASED, "cs-sci"),
        assessment("math-broken", "Unconfigured", AssessmentType.GRADE_BASED, "cs-math", None),
        assessment("math-2-cat1", "CAT 1", AssessmentType.GRADE_BASED, "cs-math-2", 100),
    ])
    db_session.commit()
    return SCHOOL_ID


@pytest.fixture
def record_grades(db_session, grading_config, school):
    """按 {学号: 分数或能力等级} 录入成绩"""
    from gradebook.services.grade_entry_service import GradeEntryService

    service = GradeEntryService(db_session, grading_config, school_id=school)

    def record(assessment_def_id, values, column='marks'):
        rows = [{'admission-no': admission_no, column: value} for admission_no, value in values.items()]
        result = service.csv_upload(assessment_def_id, rows)
        assert result.failed_count == 0, [error.to_dict() for error in result.errors]
        return result

    return record


@pytest.fixture
def graded_class(record_grades):
    """
    class-1 第1学期成绩

    STU-001: 数学 90，英语 70，科学 MEETING
    STU-002: 数学 90，科学 EXCEEDING
    STU-003: 数学 40，英语 60
    STU-004: 科学 MEETING
    """
    record_grades("math-cat1", {'STU-001': 90, 'STU-002': 90, 'STU-003': 40})
    record_grades("eng-exam", {'STU-001': 70, 'STU-003': 60})
    record_grades(
        "sci-practical",
        {'STU-001': 'MEETING', 'STU-002': 'EXCEEDING', 'STU-004': 'MEETING'},
        column='competency-level'
    )
    record_grades("math-2-cat1", {'STU-009': 100})
