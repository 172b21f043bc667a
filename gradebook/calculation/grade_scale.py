# 成绩等级表
import numpy as np
import logging
from dataclasses import dataclass
from typing import Dict, Any, List, Iterable, Optional

from ..exceptions import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)

# 浮点边界比较容差
BOUNDARY_TOLERANCE = 1e-9


@dataclass(frozen=True)
class GradeBand:
    """等级区间 [min_percent, max_percent)，最高区间包含100"""
    min_percent: float
    max_percent: float
    letter: str
    points: int
    remark: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'min_percent': self.min_percent,
            'max_percent': self.max_percent,
            'letter': self.letter,
            'points': self.points,
            'remark': self.remark
        }


class GradeScale:
    """
    百分比 -> 字母等级映射表

    构造时校验区间必须无缝、无重叠地覆盖 [0, 100]：
    升序排列后首区间从0开始，末区间止于100，相邻区间首尾相接。
    相邻区间的公共边界归属较高的区间。
    """

    def __init__(self, bands: Iterable[GradeBand], name: str = "default"):
        self.name = name
        self.bands: List[GradeBand] = sorted(bands, key=lambda band: band.min_percent)
        self._validate()
        # 查找时从高到低，首个满足 p >= min 的区间即为唯一匹配
        self._descending = list(reversed(self.bands))

    def _validate(self) -> None:
        if not self.bands:
            raise ConfigurationError(f"等级表 {self.name} 为空")

        letters = [band.letter for band in self.bands]
        if len(set(letters)) != len(letters):
            raise ConfigurationError(f"等级表 {self.name} 存在重复等级: {letters}")

        for band in self.bands:
            if not band.min_percent < band.max_percent:
                raise ConfigurationError(
                    f"等级表 {self.name} 区间 {band.letter} 无效: "
                    f"{band.min_percent} >= {band.max_percent}"
                )

        if not np.isclose(self.bands[0].min_percent, 0.0, atol=BOUNDARY_TOLERANCE):
            raise ConfigurationError(f"等级表 {self.name} 未从0开始覆盖")
        if not np.isclose(self.bands[-1].max_percent, 100.0, atol=BOUNDARY_TOLERANCE):
            raise ConfigurationError(f"等级表 {self.name} 未覆盖到100")

        for lower, upper in zip(self.bands, self.bands[1:]):
            if np.isclose(lower.max_percent, upper.min_percent, atol=BOUNDARY_TOLERANCE):
                continue
            kind = "重叠" if lower.max_percent > upper.min_percent else "间隙"
            raise ConfigurationError(
                f"等级表 {self.name} 在 {lower.letter}/{upper.letter} 之间存在{kind}: "
                f"{lower.max_percent} vs {upper.min_percent}"
            )

    def band_for(self, percentage: float) -> GradeBand:
        """返回包含该百分比的唯一区间"""
        if percentage is None or not np.isfinite(percentage):
            raise ValidationError(f"Percentage must be a finite number, got {percentage!r}")
        if percentage < 0 or percentage > 100:
            raise ValidationError(f"Percentage {percentage} is outside the range 0-100")

        for band in self._descending:
            if percentage >= band.min_percent:
                return band
        # 校验保证首区间从0开始，不会到达此处
        return self.bands[0]

    @property
    def letters(self) -> List[str]:
        """从高到低的等级列表"""
        return [band.letter for band in self._descending]

    def to_list(self) -> List[Dict[str, Any]]:
        return [band.to_dict() for band in self._descending]

    @classmethod
    def from_dicts(cls, rows: Iterable[Dict[str, Any]], name: str = "custom") -> "GradeScale":
        """从字典列表构造等级表（兼容 grade/minScore/maxScore/remarks 命名）"""
        bands = []
        for row in rows:
            try:
                bands.append(GradeBand(
                    min_percent=float(_pick(row, 'min_percent', 'minPercent', 'minScore')),
                    max_percent=float(_pick(row, 'max_percent', 'maxPercent', 'maxScore')),
                    letter=str(_pick(row, 'letter', 'grade')),
                    points=int(_pick(row, 'points')),
                    remark=str(_pick(row, 'remark', 'remarks'))
                ))
            except (KeyError, TypeError, ValueError) as e:
                raise ConfigurationError(f"等级表 {name} 区间定义无效: {row} ({e})") from e
        return cls(bands, name=name)


def _pick(row: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in row and row[key] is not None:
            return row[key]
    raise KeyError(keys[0])


def percentage_of(marks: float, max_marks: Optional[float]) -> Optional[float]:
    """分数换算为百分比，满分缺失或非正时返回None"""
    if marks is None or not max_marks or max_marks <= 0:
        return None
    return float(marks) / float(max_marks) * 100.0
