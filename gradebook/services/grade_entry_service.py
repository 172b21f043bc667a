# 成绩录入服务：单条录入、批量录入、CSV上传
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union
from sqlalchemy.orm import Session

from ..calculation.grade_calculator import (
    GradeCalculator, GradeValue, MarksValue, CompetencyValue, HolisticValue,
    check_max_marks, parse_competency_level
)
from ..calculation.grading_config import GradingConfig
from ..database.enums import AssessmentType
from ..database.models import AssessmentDefinition, GradeRecord
from ..database.repositories import (
    AssessmentDefinitionRepository, GradeRecordRepository, StudentRepository, RepositoryError
)
from ..database.schemas import GradeRecordFilter, GradeRecordPage
from ..exceptions import GradingError, MalformedInputError, NotFoundError, ValidationError
from .csv_parser import GradeRow, parse_grade_csv, rows_from_mappings

logger = logging.getLogger(__name__)

STORAGE_ERROR_CODE = "STORAGE_ERROR"
ENTRY_FIELDS = frozenset({'student_id', 'marks', 'competency_level', 'remark', 'comment'})


@dataclass
class RowError:
    """单行失败信息"""
    row_index: int
    student_identifier: Optional[str]
    reason: str
    error_type: str
    row_number: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'row_index': self.row_index,
            'row_number': self.row_number,
            'student_identifier': self.student_identifier,
            'reason': self.reason,
            'error_type': self.error_type
        }


@dataclass
class RowResult:
    """单行处理结果：成功（带记录）或失败（带错误）"""
    row_index: int
    record: Optional[GradeRecord] = None
    error: Optional[RowError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchResult:
    """批量录入结果，successful_count + failed_count 恒等于输入行数"""
    successful_count: int = 0
    failed_count: int = 0
    records: List[GradeRecord] = field(default_factory=list)
    errors: List[RowError] = field(default_factory=list)

    @classmethod
    def from_row_results(cls, results: List[RowResult]) -> "BatchResult":
        ordered = sorted(results, key=lambda result: result.row_index)
        records = [result.record for result in ordered if result.ok]
        errors = [result.error for result in ordered if not result.ok]
        return cls(
            successful_count=len(records),
            failed_count=len(errors),
            records=records,
            errors=errors
        )


class GradeEntryService:
    """成绩录入服务"""

    def __init__(self, db_session: Session, config: GradingConfig,
                 school_id: Optional[str] = None, assessed_by: Optional[str] = None):
        self.db = db_session
        self.config = config
        self.school_id = school_id
        self.assessed_by = assessed_by
        self.calculator = GradeCalculator(config.grade_scale, config.competency_remarks)
        self.assessment_repo = AssessmentDefinitionRepository(db_session, school_id)
        self.student_repo = StudentRepository(db_session, school_id)
        self.record_repo = GradeRecordRepository(db_session, school_id)

    # ---- 单条录入 ----

    def create_or_update_grade(self, assessment_def_id: str, student_id: str,
                               value: Union[GradeValue, GradeRow, Dict[str, Any]]) -> GradeRecord:
        """录入或覆盖单个学生的成绩，错误直接抛给调用方"""
        assessment = self._load_assessment(assessment_def_id)
        if self.student_repo.get_by_id(student_id) is None:
            raise NotFoundError(f"Student {student_id} not found")

        if isinstance(value, dict):
            value = self._coerce_entry(0, dict(value, student_id=student_id))
        if isinstance(value, GradeRow):
            value = self._build_value(assessment, value)

        outcome = self.calculator.compute(value, assessment.type, assessment.max_marks)
        record = self.record_repo.upsert(student_id, assessment.id, self._payload(assessment, outcome))
        logger.info(f"成绩已保存: 评估={assessment.id}, 学生={student_id}, 等级={record.letter_grade}")
        return record

    # ---- 批量录入 ----

    def bulk_grade_entry(self, assessment_def_id: str,
                         entries: List[Union[GradeRow, Dict[str, Any]]]) -> BatchResult:
        """按学生ID批量录入，单行失败不影响其他行"""
        assessment = self._load_assessment(assessment_def_id)
        rows = [self._coerce_entry(index, entry) for index, entry in enumerate(entries)]
        known_ids = self.student_repo.existing_ids(row.student_identifier for row in rows)

        def resolve(identifier: Optional[str]) -> str:
            if not identifier:
                raise ValidationError("Student id is required")
            if identifier not in known_ids:
                raise NotFoundError(f"Student {identifier} not found")
            return identifier

        result = self._run_batch(assessment, rows, resolve)
        logger.info(
            f"批量录入完成: 评估={assessment.id}, 成功={result.successful_count}, 失败={result.failed_count}"
        )
        return result

    # ---- CSV上传 ----

    def csv_upload(self, assessment_def_id: str, rows: Union[str, List[Dict[str, Any]]]) -> BatchResult:
        """
        CSV批量上传，按学号解析学生

        rows 可以是原始CSV文本，也可以是按表头解析好的行列表。
        结构性错误（无法解析、缺少必需列）中止整个调用；其余错误按行收集。
        """
        assessment = self._load_assessment(assessment_def_id)
        required = self._required_columns(assessment)
        if isinstance(rows, str):
            grade_rows = parse_grade_csv(rows, required)
        else:
            grade_rows = rows_from_mappings(rows, required)

        student_map = self.student_repo.resolve_admission_numbers(
            row.student_identifier for row in grade_rows
        )

        def resolve(identifier: Optional[str]) -> str:
            if not identifier:
                raise ValidationError("Admission number is required")
            student_id = student_map.get(identifier)
            if student_id is None:
                raise NotFoundError(f"Student with admission number {identifier} not found")
            return student_id

        result = self._run_batch(assessment, grade_rows, resolve)
        logger.info(
            f"CSV上传完成: 评估={assessment.id}, 行数={len(grade_rows)}, "
            f"成功={result.successful_count}, 失败={result.failed_count}"
        )
        return result

    # ---- 查询 ----

    def get_results(self, criteria: GradeRecordFilter, page: int = 1, limit: int = 50) -> GradeRecordPage:
        """按条件分页查询成绩记录"""
        return self.record_repo.get_paginated(criteria, page=page, limit=limit)

    # ---- 内部方法 ----

    def _load_assessment(self, assessment_def_id: str) -> AssessmentDefinition:
        """加载评估定义并检查配置，失败时中止整个调用"""
        assessment = self.assessment_repo.get_by_id(assessment_def_id)
        if assessment is None:
            raise NotFoundError(f"Assessment {assessment_def_id} not found")
        if assessment.type == AssessmentType.GRADE_BASED:
            check_max_marks(assessment.max_marks)
        return assessment

    @staticmethod
    def _required_columns(assessment: AssessmentDefinition) -> tuple:
        if assessment.type == AssessmentType.GRADE_BASED:
            return ('admission_no', 'marks')
        if assessment.type == AssessmentType.COMPETENCY_BASED:
            return ('admission_no', 'competency_level')
        return ('admission_no',)

    @staticmethod
    def _coerce_entry(index: int, entry: Union[GradeRow, Dict[str, Any]]) -> GradeRow:
        """批量条目转为 GradeRow，结构不合法时整批拒绝"""
        if isinstance(entry, GradeRow):
            return entry
        if not isinstance(entry, dict):
            raise MalformedInputError(f"Entry {index} must be an object, got {type(entry).__name__}")
        unknown = sorted(str(key) for key in entry if key not in ENTRY_FIELDS)
        if unknown:
            raise MalformedInputError(f"Entry {index} has unknown fields: {', '.join(unknown)}")
        data = dict(entry)
        identifier = data.pop('student_id', None)
        return GradeRow(student_identifier=identifier, **data)

    def _run_batch(self, assessment: AssessmentDefinition, rows: List[GradeRow],
                   resolve: Callable[[Optional[str]], str]) -> BatchResult:
        """按输入顺序逐行处理，结果按原始行序归并"""
        results = [
            self._process_row(assessment, index, row, resolve)
            for index, row in enumerate(rows)
        ]
        return BatchResult.from_row_results(results)

    def _process_row(self, assessment: AssessmentDefinition, index: int, row: GradeRow,
                     resolve: Callable[[Optional[str]], str]) -> RowResult:
        """处理单行，任何预期内的错误都转换为行结果，不向外抛出"""
        try:
            student_id = resolve(row.student_identifier)
            value = self._build_value(assessment, row)
            outcome = self.calculator.compute(value, assessment.type, assessment.max_marks)
            record = self.record_repo.upsert(student_id, assessment.id, self._payload(assessment, outcome))
            return RowResult(row_index=index, record=record)
        except GradingError as e:
            reason, code = e.message, e.code
        except RepositoryError as e:
            reason, code = str(e), STORAGE_ERROR_CODE

        logger.warning(f"第 {index} 行录入失败 ({row.student_identifier}): {reason}")
        return RowResult(
            row_index=index,
            error=RowError(
                row_index=index,
                student_identifier=row.student_identifier,
                reason=reason,
                error_type=code,
                row_number=row.row_number
            )
        )

    def _build_value(self, assessment: AssessmentDefinition, row: GradeRow) -> GradeValue:
        """按评估类型把原始行转换为输入变体"""
        comment = row.comment.strip() if isinstance(row.comment, str) and row.comment.strip() else None
        if assessment.type == AssessmentType.GRADE_BASED:
            return MarksValue(marks=parse_marks(row.marks), comment=comment)
        if assessment.type == AssessmentType.COMPETENCY_BASED:
            if row.competency_level is None or str(row.competency_level).strip() == '':
                raise ValidationError("Competency level is required")
            return CompetencyValue(
                level=parse_competency_level(row.competency_level),
                remark=row.remark,
                comment=comment
            )
        return HolisticValue(comment=comment)

    def _payload(self, assessment: AssessmentDefinition, outcome) -> Dict[str, Any]:
        payload = outcome.to_record_payload()
        payload['assessed_by'] = self.assessed_by
        payload['school_id'] = assessment.school_id
        return payload


def parse_marks(raw: Any) -> float:
    """解析分数，空值或无法解析时抛出 ValidationError"""
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise ValidationError("Marks are required")
    if isinstance(raw, bool):
        raise ValidationError(f"Invalid marks format: {raw!r}")
    try:
        return float(raw.strip() if isinstance(raw, str) else raw)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid marks format: {raw!r}") from None
