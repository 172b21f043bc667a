# 数据仓库层
from typing import List, Optional, Dict, Any, Iterable, Tuple
from sqlalchemy.orm import Session, Query
from sqlalchemy import and_
from sqlalchemy.exc import SQLAlchemyError, IntegrityError
from datetime import datetime
import logging

from .models import (
    AssessmentDefinition, GradeRecord, Student, SchoolClass, Subject,
    ClassSubject, Term
)
from .schemas import GradeRecordFilter, GradeRecordPage

logger = logging.getLogger(__name__)

# 成绩记录中可被upsert覆盖的字段
GRADE_PAYLOAD_FIELDS = (
    "numeric_value", "letter_grade", "points", "competency_level",
    "remark", "comment", "assessed_by",
)

GradeRecordRow = Tuple[GradeRecord, AssessmentDefinition, ClassSubject, Subject, Student]


class RepositoryError(Exception):
    """Repository层异常基类"""
    pass


class DataIntegrityError(RepositoryError):
    """数据完整性异常"""
    pass


class BaseRepository:
    """基础仓库类"""

    def __init__(self, db_session: Session, school_id: Optional[str] = None):
        self.db = db_session
        self.school_id = school_id

    def _scoped(self, query: Query, model) -> Query:
        """按学校(租户)过滤"""
        if self.school_id is not None and hasattr(model, "school_id"):
            query = query.filter(model.school_id == self.school_id)
        return query

    def _handle_db_error(self, error: Exception, operation: str) -> None:
        """统一处理数据库异常"""
        logger.error(f"Database error in {operation}: {str(error)}")
        self.db.rollback()

        if isinstance(error, IntegrityError):
            raise DataIntegrityError(f"数据完整性错误: {str(error)}") from error
        elif isinstance(error, SQLAlchemyError):
            raise RepositoryError(f"数据库操作失败: {str(error)}") from error
        else:
            raise error


class AssessmentDefinitionRepository(BaseRepository):
    """评估定义仓库（只读）"""

    def get_by_id(self, assessment_def_id: str) -> Optional[AssessmentDefinition]:
        """获取评估定义"""
        try:
            query = self.db.query(AssessmentDefinition).filter(
                AssessmentDefinition.id == assessment_def_id
            )
            return self._scoped(query, AssessmentDefinition).first()
        except Exception as e:
            self._handle_db_error(e, "get_assessment_definition")

    def list_for_class_subject(self, class_subject_id: str, term_id: str) -> List[AssessmentDefinition]:
        """获取班级科目在学期内的全部评估"""
        try:
            query = self.db.query(AssessmentDefinition).filter(
                and_(
                    AssessmentDefinition.class_subject_id == class_subject_id,
                    AssessmentDefinition.term_id == term_id
                )
            )
            return self._scoped(query, AssessmentDefinition).order_by(AssessmentDefinition.name).all()
        except Exception as e:
            self._handle_db_error(e, "list_for_class_subject")


class StudentRepository(BaseRepository):
    """学生仓库，提供学号解析"""

    def get_by_id(self, student_id: str) -> Optional[Student]:
        try:
            query = self.db.query(Student).filter(Student.id == student_id)
            return self._scoped(query, Student).first()
        except Exception as e:
            self._handle_db_error(e, "get_student")

    def resolve_admission_number(self, admission_no: str) -> Optional[str]:
        """学号 -> 学生ID，未找到返回None"""
        try:
            query = self.db.query(Student.id).filter(Student.admission_no == admission_no)
            row = self._scoped(query, Student).first()
            return row[0] if row else None
        except Exception as e:
            self._handle_db_error(e, "resolve_admission_number")

    def resolve_admission_numbers(self, admission_nos: Iterable[str]) -> Dict[str, str]:
        """批量解析学号，返回 {学号: 学生ID}"""
        wanted = sorted({no for no in admission_nos if no})
        if not wanted:
            return {}
        try:
            query = self.db.query(Student.admission_no, Student.id).filter(
                Student.admission_no.in_(wanted)
            )
            return {admission_no: student_id for admission_no, student_id in self._scoped(query, Student).all()}
        except Exception as e:
            self._handle_db_error(e, "resolve_admission_numbers")

    def existing_ids(self, student_ids: Iterable[str]) -> set:
        """返回存在的学生ID集合"""
        wanted = sorted({sid for sid in student_ids if sid})
        if not wanted:
            return set()
        try:
            query = self.db.query(Student.id).filter(Student.id.in_(wanted))
            return {row[0] for row in self._scoped(query, Student).all()}
        except Exception as e:
            self._handle_db_error(e, "existing_ids")

    def list_by_class(self, class_id: str) -> List[Student]:
        """获取班级在读学生，按学号排序"""
        try:
            query = self.db.query(Student).filter(Student.class_id == class_id)
            return self._scoped(query, Student).order_by(Student.admission_no).all()
        except Exception as e:
            self._handle_db_error(e, "list_by_class")


class ReferenceRepository(BaseRepository):
    """班级、学期、班级科目等参考数据仓库（只读）"""

    def get_class(self, class_id: str) -> Optional[SchoolClass]:
        try:
            query = self.db.query(SchoolClass).filter(SchoolClass.id == class_id)
            return self._scoped(query, SchoolClass).first()
        except Exception as e:
            self._handle_db_error(e, "get_class")

    def get_term(self, term_id: str) -> Optional[Term]:
        try:
            query = self.db.query(Term).filter(Term.id == term_id)
            return self._scoped(query, Term).first()
        except Exception as e:
            self._handle_db_error(e, "get_term")

    def get_class_subject(self, class_subject_id: str) -> Optional[ClassSubject]:
        try:
            query = self.db.query(ClassSubject).filter(ClassSubject.id == class_subject_id)
            return self._scoped(query, ClassSubject).first()
        except Exception as e:
            self._handle_db_error(e, "get_class_subject")

    def list_class_subjects(self, class_id: str, term_id: str) -> List[ClassSubject]:
        """获取班级在学期内开设的科目"""
        try:
            query = self.db.query(ClassSubject).join(Subject).filter(
                and_(ClassSubject.class_id == class_id, ClassSubject.term_id == term_id)
            )
            return self._scoped(query, ClassSubject).order_by(Subject.name, ClassSubject.id).all()
        except Exception as e:
            self._handle_db_error(e, "list_class_subjects")


class GradeRecordRepository(BaseRepository):
    """成绩记录仓库：按唯一键upsert与条件查询"""

    def _find(self, student_id: str, assessment_def_id: str) -> Optional[GradeRecord]:
        return self.db.query(GradeRecord).filter(
            and_(
                GradeRecord.student_id == student_id,
                GradeRecord.assessment_def_id == assessment_def_id
            )
        ).first()

    @staticmethod
    def _apply_payload(record: GradeRecord, payload: Dict[str, Any]) -> bool:
        """写入载荷字段，返回是否有变化"""
        changed = False
        # 租户以评估所属学校为准，补写历史上缺失的 school_id
        school_id = payload.get("school_id")
        if school_id is not None and record.school_id != school_id:
            record.school_id = school_id
            changed = True
        for key in GRADE_PAYLOAD_FIELDS:
            if key not in payload:
                continue
            if getattr(record, key) != payload[key]:
                setattr(record, key, payload[key])
                changed = True
        if changed:
            record.updated_at = datetime.now()
        return changed

    def upsert(self, student_id: str, assessment_def_id: str, payload: Dict[str, Any]) -> GradeRecord:
        """
        插入或覆盖成绩记录（最后写入者获胜）

        相同载荷重复提交时不产生写入，存储状态保持不变。
        """
        try:
            record = self._find(student_id, assessment_def_id)
            if record is None:
                now = datetime.now()
                record = GradeRecord(
                    student_id=student_id,
                    assessment_def_id=assessment_def_id,
                    school_id=payload.get("school_id") or self.school_id,
                    created_at=now,
                    updated_at=now,
                    **{key: payload.get(key) for key in GRADE_PAYLOAD_FIELDS}
                )
                self.db.add(record)
                try:
                    self.db.commit()
                except IntegrityError:
                    # 并发写入者已插入同键记录，改为覆盖更新
                    self.db.rollback()
                    record = self._find(student_id, assessment_def_id)
                    if record is None:
                        raise
                    self._apply_payload(record, payload)
                    self.db.commit()
            elif self._apply_payload(record, payload):
                self.db.commit()

            self.db.refresh(record)
            return record
        except Exception as e:
            self._handle_db_error(e, "upsert_grade_record")

    def _filtered_query(self, criteria: GradeRecordFilter) -> Query:
        query = self.db.query(GradeRecord).join(
            AssessmentDefinition, GradeRecord.assessment_def_id == AssessmentDefinition.id
        )
        if criteria.student_id:
            query = query.filter(GradeRecord.student_id == criteria.student_id)
        if criteria.student_ids is not None:
            query = query.filter(GradeRecord.student_id.in_(criteria.student_ids))
        if criteria.assessment_def_id:
            query = query.filter(GradeRecord.assessment_def_id == criteria.assessment_def_id)
        if criteria.class_subject_id:
            query = query.filter(AssessmentDefinition.class_subject_id == criteria.class_subject_id)
        if criteria.term_id:
            query = query.filter(AssessmentDefinition.term_id == criteria.term_id)
        if criteria.academic_year_id:
            query = query.filter(AssessmentDefinition.academic_year_id == criteria.academic_year_id)
        if criteria.class_id:
            query = query.join(
                ClassSubject, AssessmentDefinition.class_subject_id == ClassSubject.id
            ).filter(ClassSubject.class_id == criteria.class_id)
        school_id = criteria.school_id or self.school_id
        if school_id is not None:
            query = query.filter(GradeRecord.school_id == school_id)
        return query

    def query(self, criteria: GradeRecordFilter) -> List[GradeRecord]:
        """按条件查询成绩记录"""
        try:
            query = self._filtered_query(criteria).order_by(GradeRecord.created_at, GradeRecord.id)
            if criteria.offset:
                query = query.offset(criteria.offset)
            if criteria.limit is not None:
                query = query.limit(criteria.limit)
            return query.all()
        except Exception as e:
            self._handle_db_error(e, "query_grade_records")

    def count(self, criteria: GradeRecordFilter) -> int:
        try:
            return self._filtered_query(criteria).count()
        except Exception as e:
            self._handle_db_error(e, "count_grade_records")

    def get_paginated(self, criteria: GradeRecordFilter, page: int = 1, limit: int = 50) -> GradeRecordPage:
        """分页查询"""
        page = max(1, page)
        criteria.offset = (page - 1) * limit
        criteria.limit = limit
        records = self.query(criteria)
        criteria.offset, criteria.limit = 0, None
        return GradeRecordPage(records=records, total=self.count(criteria), page=page, limit=limit)

    def query_with_context(self, criteria: GradeRecordFilter) -> List[GradeRecordRow]:
        """查询成绩记录及其评估、班级科目、科目、学生信息，用于汇总统计"""
        try:
            query = self.db.query(GradeRecord, AssessmentDefinition, ClassSubject, Subject, Student).join(
                AssessmentDefinition, GradeRecord.assessment_def_id == AssessmentDefinition.id
            ).join(
                ClassSubject, AssessmentDefinition.class_subject_id == ClassSubject.id
            ).join(
                Subject, ClassSubject.subject_id == Subject.id
            ).join(
                Student, GradeRecord.student_id == Student.id
            )
            if criteria.student_id:
                query = query.filter(GradeRecord.student_id == criteria.student_id)
            if criteria.student_ids is not None:
                query = query.filter(GradeRecord.student_id.in_(criteria.student_ids))
            if criteria.assessment_def_id:
                query = query.filter(GradeRecord.assessment_def_id == criteria.assessment_def_id)
            if criteria.class_subject_id:
                query = query.filter(AssessmentDefinition.class_subject_id == criteria.class_subject_id)
            if criteria.term_id:
                query = query.filter(AssessmentDefinition.term_id == criteria.term_id)
            if criteria.class_id:
                query = query.filter(ClassSubject.class_id == criteria.class_id)
            school_id = criteria.school_id or self.school_id
            if school_id is not None:
                query = query.filter(GradeRecord.school_id == school_id)
            return query.order_by(Subject.name, AssessmentDefinition.name, Student.admission_no).all()
        except Exception as e:
            self._handle_db_error(e, "query_with_context")
