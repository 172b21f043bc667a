# 数据库层查询条件和结果类
from typing import List, Optional
from dataclasses import dataclass, field

from .models import GradeRecord


@dataclass
class GradeRecordFilter:
    """成绩记录查询条件"""
    student_id: Optional[str] = None
    student_ids: Optional[List[str]] = None
    assessment_def_id: Optional[str] = None
    class_subject_id: Optional[str] = None
    class_id: Optional[str] = None
    term_id: Optional[str] = None
    academic_year_id: Optional[str] = None
    school_id: Optional[str] = None
    offset: int = 0
    limit: Optional[int] = None


@dataclass
class GradeRecordPage:
    """分页查询结果"""
    records: List[GradeRecord] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 50

    @property
    def pages(self) -> int:
        if self.limit <= 0:
            return 1
        return max(1, -(-self.total // self.limit))
