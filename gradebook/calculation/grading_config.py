# 评分配置管理
import os
import json
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Optional

from .grade_scale import GradeBand, GradeScale
from ..database.enums import CompetencyLevel, SubjectAverageMode
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# 默认12级等级表
DEFAULT_GRADE_BANDS = [
    GradeBand(80, 100, 'A', 12, 'Excellent'),
    GradeBand(75, 80, 'A-', 11, 'Very Good'),
    GradeBand(70, 75, 'B+', 10, 'Good'),
    GradeBand(65, 70, 'B', 9, 'Above Average'),
    GradeBand(60, 65, 'B-', 8, 'Average'),
    GradeBand(55, 60, 'C+', 7, 'Fair'),
    GradeBand(50, 55, 'C', 6, 'Fair Average'),
    GradeBand(45, 50, 'C-', 5, 'Below Average'),
    GradeBand(40, 45, 'D+', 4, 'Weak'),
    GradeBand(35, 40, 'D', 3, 'Poor'),
    GradeBand(30, 35, 'D-', 2, 'Very Poor'),
    GradeBand(0, 30, 'E', 1, 'Failed'),
]

# 能力等级默认评语模板
COMPETENCY_REMARK_TEMPLATES = {
    CompetencyLevel.EXCEEDING: 'Exceeding Expectations',
    CompetencyLevel.MEETING: 'Meeting Expectations',
    CompetencyLevel.APPROACHING: 'Approaching Expectations',
    CompetencyLevel.BELOW: 'Below Expectations',
}

DEFAULT_PASS_THRESHOLD = 50.0
DEFAULT_TOP_PERFORMERS = 10


@dataclass(frozen=True)
class GradingConfig:
    """评分配置，作为值注入各服务，学校/课程级覆盖通过替换实例实现"""
    grade_scale: GradeScale
    pass_threshold: float = DEFAULT_PASS_THRESHOLD
    top_performers_limit: int = DEFAULT_TOP_PERFORMERS
    subject_average_mode: SubjectAverageMode = SubjectAverageMode.UNWEIGHTED
    competency_remarks: Dict[CompetencyLevel, str] = field(
        default_factory=lambda: dict(COMPETENCY_REMARK_TEMPLATES)
    )

    def __post_init__(self):
        if not 0 <= self.pass_threshold <= 100:
            raise ConfigurationError(f"及格线必须在0-100之间: {self.pass_threshold}")
        if self.top_performers_limit < 1:
            raise ConfigurationError(f"优秀学生数量必须为正: {self.top_performers_limit}")

    def with_overrides(self, **changes) -> "GradingConfig":
        """返回覆盖部分字段后的新配置"""
        return replace(self, **changes)


def default_grade_scale() -> GradeScale:
    return GradeScale(DEFAULT_GRADE_BANDS, name="default")


def load_grade_scale(path: str) -> GradeScale:
    """从JSON文件加载等级表（区间列表）"""
    try:
        with open(path, encoding="utf-8") as handle:
            rows = json.load(handle)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"无法读取等级表文件 {path}: {e}") from e
    if not isinstance(rows, list):
        raise ConfigurationError(f"等级表文件 {path} 必须是区间列表")
    return GradeScale.from_dicts(rows, name=os.path.basename(path))


def load_grading_config(environ: Optional[Dict[str, str]] = None) -> GradingConfig:
    """从环境变量构造评分配置"""
    env = os.environ if environ is None else environ

    scale_file = env.get("GRADEBOOK_GRADE_SCALE_FILE")
    scale = load_grade_scale(scale_file) if scale_file else default_grade_scale()

    try:
        pass_threshold = float(env.get("GRADEBOOK_PASS_THRESHOLD", DEFAULT_PASS_THRESHOLD))
        top_performers = int(env.get("GRADEBOOK_TOP_PERFORMERS", DEFAULT_TOP_PERFORMERS))
        average_mode = SubjectAverageMode(
            env.get("GRADEBOOK_SUBJECT_AVERAGE_MODE", SubjectAverageMode.UNWEIGHTED.value)
        )
    except ValueError as e:
        raise ConfigurationError(f"评分配置环境变量无效: {e}") from e

    config = GradingConfig(
        grade_scale=scale,
        pass_threshold=pass_threshold,
        top_performers_limit=top_performers,
        subject_average_mode=average_mode
    )
    logger.info(
        f"评分配置已加载: 等级表={scale.name}, 及格线={pass_threshold}, "
        f"优秀学生数={top_performers}, 科目平均方式={average_mode.value}"
    )
    return config
