# 描述性统计公式
import numpy as np
import pandas as pd
from typing import Dict, Any, Iterable, List, Optional

from .grade_scale import GradeScale
from ..database.enums import CompetencyLevel


def _to_series(scores: Iterable[float]) -> pd.Series:
    return pd.to_numeric(pd.Series(list(scores), dtype="float64"), errors='coerce').dropna()


def _optional(value: float) -> Optional[float]:
    """numpy/pandas 数值转为 float，NaN 转为 None"""
    if value is None or pd.isna(value):
        return None
    return float(value)


def calculate_average(scores: pd.Series) -> Optional[float]:
    """计算平均分"""
    return float(scores.mean()) if not scores.empty else None


def calculate_standard_deviation(scores: pd.Series) -> Optional[float]:
    """计算样本标准差，单个分数时为0"""
    if scores.empty:
        return None
    return float(scores.std(ddof=1)) if len(scores) > 1 else 0.0


def calculate_pass_rate(scores: pd.Series, pass_threshold: float = 50.0) -> float:
    """计算及格率（百分比 >= 及格线的比例）"""
    if scores.empty:
        return 0.0
    return float((scores >= pass_threshold).sum() / len(scores))


def calculate_grade_distribution(scores: pd.Series, grade_scale: GradeScale) -> Dict[str, int]:
    """按等级表统计各等级人次，全部等级补零"""
    distribution = {letter: 0 for letter in grade_scale.letters}
    for score in scores:
        distribution[grade_scale.band_for(float(np.clip(score, 0.0, 100.0))).letter] += 1
    return distribution


def calculate_competency_distribution(levels: Iterable[Optional[CompetencyLevel]]) -> Dict[str, int]:
    """统计各能力等级人次，全部等级补零"""
    distribution = {level.value: 0 for level in CompetencyLevel}
    for level in levels:
        if level is not None:
            distribution[level.value] += 1
    return distribution


def describe_percentages(scores: Iterable[float], pass_threshold: float = 50.0) -> Dict[str, Any]:
    """百分比成绩的描述性统计"""
    series = _to_series(scores)
    return {
        'count': int(len(series)),
        'average': calculate_average(series),
        'highest': _optional(series.max()) if not series.empty else None,
        'lowest': _optional(series.min()) if not series.empty else None,
        'median': _optional(series.median()) if not series.empty else None,
        'standard_deviation': calculate_standard_deviation(series),
        'pass_rate': calculate_pass_rate(series, pass_threshold)
    }


def mean_or_none(values: Iterable[Optional[float]]) -> Optional[float]:
    """忽略空值求均值"""
    series = _to_series(v for v in values if v is not None)
    return calculate_average(series)


def weighted_percentage(marks: List[float], max_marks: List[float]) -> Optional[float]:
    """按满分加权的百分比：总得分 / 总满分 × 100"""
    total_max = float(np.sum(max_marks)) if max_marks else 0.0
    if total_max <= 0:
        return None
    return float(np.sum(marks)) / total_max * 100.0
