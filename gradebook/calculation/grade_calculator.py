# 成绩换算服务：原始分数/能力等级 -> 标准化成绩
import math
import logging
from dataclasses import dataclass
from typing import Dict, Any, Callable, ClassVar, Optional, Union

from .grade_scale import GradeScale
from .grading_config import COMPETENCY_REMARK_TEMPLATES
from ..database.enums import AssessmentType, CompetencyLevel
from ..exceptions import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)


# ---- 输入值：按评估类型打标签的变体 ----

@dataclass(frozen=True)
class MarksValue:
    """分数制输入"""
    kind: ClassVar[AssessmentType] = AssessmentType.GRADE_BASED
    marks: float
    comment: Optional[str] = None


@dataclass(frozen=True)
class CompetencyValue:
    """能力等级输入，等级由调用方给出"""
    kind: ClassVar[AssessmentType] = AssessmentType.COMPETENCY_BASED
    level: CompetencyLevel
    remark: Optional[str] = None
    comment: Optional[str] = None


@dataclass(frozen=True)
class HolisticValue:
    """综合评价输入，仅自由文本"""
    kind: ClassVar[AssessmentType] = AssessmentType.HOLISTIC
    comment: Optional[str] = None


GradeValue = Union[MarksValue, CompetencyValue, HolisticValue]


@dataclass(frozen=True)
class GradeOutcome:
    """标准化成绩结果"""
    remark: Optional[str]
    letter_grade: Optional[str] = None
    points: Optional[int] = None
    competency_level: Optional[CompetencyLevel] = None
    numeric_value: Optional[float] = None
    percentage: Optional[float] = None
    comment: Optional[str] = None

    def to_record_payload(self) -> Dict[str, Any]:
        """转换为成绩记录写入载荷"""
        return {
            'numeric_value': self.numeric_value,
            'letter_grade': self.letter_grade,
            'points': self.points,
            'competency_level': self.competency_level,
            'remark': self.remark,
            'comment': self.comment
        }


class GradeCalculator:
    """
    成绩换算服务

    按评估类型在处理表中分派，输入变体的标签必须与评估类型一致。
    等级表与能力评语模板作为配置注入，不读取全局可变状态。
    """

    def __init__(self, grade_scale: GradeScale,
                 competency_remarks: Optional[Dict[CompetencyLevel, str]] = None):
        self.grade_scale = grade_scale
        self.competency_remarks = competency_remarks or COMPETENCY_REMARK_TEMPLATES
        self._handlers: Dict[AssessmentType, Callable[[Any, Optional[float]], GradeOutcome]] = {
            AssessmentType.GRADE_BASED: self._compute_grade_based,
            AssessmentType.COMPETENCY_BASED: self._compute_competency_based,
            AssessmentType.HOLISTIC: self._compute_holistic,
        }

    def compute(self, value: GradeValue, assessment_type: AssessmentType,
                max_marks: Optional[float] = None) -> GradeOutcome:
        """根据评估类型换算成绩"""
        handler = self._handlers.get(assessment_type)
        if handler is None:
            raise ConfigurationError(f"Unsupported assessment type: {assessment_type!r}")
        if getattr(value, 'kind', None) is not assessment_type:
            raise ValidationError(
                f"A {assessment_type.value} assessment cannot accept a "
                f"{getattr(getattr(value, 'kind', None), 'value', type(value).__name__)} value"
            )
        return handler(value, max_marks)

    def _compute_grade_based(self, value: MarksValue, max_marks: Optional[float]) -> GradeOutcome:
        check_max_marks(max_marks)
        marks = value.marks
        if marks is None or isinstance(marks, bool) or not isinstance(marks, (int, float)) \
                or not math.isfinite(marks):
            raise ValidationError(f"Marks must be a finite number, got {marks!r}")
        if marks < 0:
            raise ValidationError(f"Marks ({marks:g}) cannot be negative")
        if marks > max_marks:
            raise ValidationError(f"Marks ({marks:g}) exceed maximum marks ({max_marks:g})")

        percentage = float(marks) / float(max_marks) * 100.0
        band = self.grade_scale.band_for(percentage)
        return GradeOutcome(
            remark=band.remark,
            letter_grade=band.letter,
            points=band.points,
            numeric_value=float(marks),
            percentage=percentage,
            comment=value.comment
        )

    def _compute_competency_based(self, value: CompetencyValue, max_marks: Optional[float]) -> GradeOutcome:
        if not isinstance(value.level, CompetencyLevel):
            raise ValidationError(f"Unknown competency level: {value.level!r}")
        remark = value.remark if value.remark else self.competency_remarks[value.level]
        return GradeOutcome(
            remark=remark,
            competency_level=value.level,
            comment=value.comment
        )

    def _compute_holistic(self, value: HolisticValue, max_marks: Optional[float]) -> GradeOutcome:
        return GradeOutcome(remark=value.comment, comment=value.comment)

    def grade_for_percentage(self, percentage: float) -> GradeOutcome:
        """百分比直接换算等级，用于科目与总评等级"""
        band = self.grade_scale.band_for(percentage)
        return GradeOutcome(
            remark=band.remark,
            letter_grade=band.letter,
            points=band.points,
            percentage=percentage
        )


def check_max_marks(max_marks: Optional[float]) -> float:
    """分数制评估必须配置正的满分"""
    if max_marks is None:
        raise ConfigurationError("Grade-based assessment has no maximum marks configured")
    if max_marks <= 0:
        raise ConfigurationError(f"Maximum marks must be positive, got {max_marks:g}")
    return max_marks


def parse_competency_level(raw: Any) -> CompetencyLevel:
    """解析能力等级，兼容 EXCEEDING_EXPECTATIONS / exceeding 等写法"""
    if isinstance(raw, CompetencyLevel):
        return raw
    text = str(raw or '').strip().upper().replace('-', '_').replace(' ', '_')
    if text.endswith('_EXPECTATIONS'):
        text = text[:-len('_EXPECTATIONS')]
    try:
        return CompetencyLevel(text)
    except ValueError:
        raise ValidationError(f"Unknown competency level: {raw!r}") from None
