# SQLAlchemy模型定义
import uuid
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, DateTime, Text, Float, Enum, ForeignKey,
    UniqueConstraint, Index
)
from sqlalchemy.orm import relationship

from .connection import Base
from .enums import AssessmentType, CompetencyLevel


def _new_id() -> str:
    return str(uuid.uuid4())


# ---- 外部参考实体（本引擎只读） ----

class AcademicYear(Base):
    """学年"""
    __tablename__ = "academic_years"

    id = Column(String(36), primary_key=True, default=_new_id)
    year = Column(Integer, nullable=False)
    school_id = Column(String(36), index=True)


class Term(Base):
    """学期"""
    __tablename__ = "terms"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(100), nullable=False)
    term_number = Column(Integer, nullable=False, default=1)
    academic_year_id = Column(String(36), ForeignKey("academic_years.id"))
    school_id = Column(String(36), index=True)

    academic_year = relationship("AcademicYear")


class SchoolClass(Base):
    """班级"""
    __tablename__ = "classes"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(100), nullable=False)
    level = Column(String(50))
    school_id = Column(String(36), index=True)


class Subject(Base):
    """科目"""
    __tablename__ = "subjects"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(100), nullable=False)
    code = Column(String(20))


class ClassSubject(Base):
    """班级-科目-学期关联"""
    __tablename__ = "class_subjects"

    id = Column(String(36), primary_key=True, default=_new_id)
    class_id = Column(String(36), ForeignKey("classes.id"), nullable=False, index=True)
    subject_id = Column(String(36), ForeignKey("subjects.id"), nullable=False)
    term_id = Column(String(36), ForeignKey("terms.id"), nullable=False, index=True)
    school_id = Column(String(36), index=True)

    subject = relationship("Subject")
    school_class = relationship("SchoolClass")


class Student(Base):
    """学生（当前在读班级）"""
    __tablename__ = "students"

    id = Column(String(36), primary_key=True, default=_new_id)
    admission_no = Column(String(50), nullable=False, unique=True, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    middle_name = Column(String(100))
    class_id = Column(String(36), ForeignKey("classes.id"), index=True)
    school_id = Column(String(36), index=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


# ---- 评估定义与成绩记录 ----

class AssessmentDefinition(Base):
    """评估定义，评分开放前创建，对本引擎只读"""
    __tablename__ = "assessment_definitions"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(100), nullable=False)
    type = Column(Enum(AssessmentType), nullable=False)
    max_marks = Column(Float)
    class_subject_id = Column(String(36), ForeignKey("class_subjects.id"), nullable=False, index=True)
    term_id = Column(String(36), ForeignKey("terms.id"), nullable=False, index=True)
    academic_year_id = Column(String(36), ForeignKey("academic_years.id"))
    strand_id = Column(String(36))
    school_id = Column(String(36), index=True)

    class_subject = relationship("ClassSubject")


class GradeRecord(Base):
    """成绩记录，(student_id, assessment_def_id) 唯一"""
    __tablename__ = "grade_records"

    id = Column(String(36), primary_key=True, default=_new_id)
    student_id = Column(String(36), ForeignKey("students.id"), nullable=False)
    assessment_def_id = Column(String(36), ForeignKey("assessment_definitions.id"), nullable=False)
    numeric_value = Column(Float)
    letter_grade = Column(String(5))
    points = Column(Integer)
    competency_level = Column(Enum(CompetencyLevel))
    remark = Column(String(255))
    comment = Column(Text)
    assessed_by = Column(String(36))
    school_id = Column(String(36), index=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now)

    student = relationship("Student")
    assessment_def = relationship("AssessmentDefinition")

    __table_args__ = (
        UniqueConstraint("student_id", "assessment_def_id", name="uq_grade_record_student_assessment"),
        Index("ix_grade_records_assessment", "assessment_def_id"),
    )
