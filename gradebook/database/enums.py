# 数据库枚举定义
import enum


class AssessmentType(enum.Enum):
    """评估类型枚举"""
    GRADE_BASED = "grade-based"
    COMPETENCY_BASED = "competency-based"
    HOLISTIC = "holistic"


class CompetencyLevel(enum.Enum):
    """能力等级枚举（从高到低）"""
    EXCEEDING = "EXCEEDING"
    MEETING = "MEETING"
    APPROACHING = "APPROACHING"
    BELOW = "BELOW"

    @property
    def ordinal(self) -> int:
        """序数值，数值越大等级越高"""
        return _COMPETENCY_ORDINALS[self]


_COMPETENCY_ORDINALS = {
    CompetencyLevel.EXCEEDING: 4,
    CompetencyLevel.MEETING: 3,
    CompetencyLevel.APPROACHING: 2,
    CompetencyLevel.BELOW: 1,
}


class SubjectAverageMode(enum.Enum):
    """科目平均分计算方式"""
    UNWEIGHTED = "unweighted"
    WEIGHTED = "weighted"
