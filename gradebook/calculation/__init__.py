# 成绩计算模块
from .grade_scale import GradeBand, GradeScale, percentage_of
from .grading_config import GradingConfig, default_grade_scale, load_grading_config
from .grade_calculator import (
    GradeCalculator,
    GradeOutcome,
    MarksValue,
    CompetencyValue,
    HolisticValue,
    parse_competency_level
)
from .ranking import assign_competition_ranks, rank_of

__all__ = [
    'GradeBand',
    'GradeScale',
    'percentage_of',
    'GradingConfig',
    'default_grade_scale',
    'load_grading_config',
    'GradeCalculator',
    'GradeOutcome',
    'MarksValue',
    'CompetencyValue',
    'HolisticValue',
    'parse_competency_level',
    'assign_competition_ranks',
    'rank_of'
]
