from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional, Dict
from datetime import datetime, timezone

from ..database.enums import CompetencyLevel


class ErrorDetail(BaseModel):
    """错误码与错误信息"""
    code: str = Field(..., description="错误码，如 VALIDATION_ERROR、NOT_FOUND")
    message: str = Field(..., description="错误信息")


class ErrorResponse(BaseModel):
    """统一错误响应"""
    error: ErrorDetail
    generated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="响应生成时间（UTC）"
    )


class GradeRecordResponse(BaseModel):
    """成绩记录"""
    id: str
    student_id: str
    assessment_def_id: str
    numeric_value: Optional[float] = None
    letter_grade: Optional[str] = None
    points: Optional[int] = None
    competency_level: Optional[CompetencyLevel] = None
    remark: Optional[str] = None
    comment: Optional[str] = None
    assessed_by: Optional[str] = None
    school_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class RowErrorResponse(BaseModel):
    """批量录入单行错误"""
    row_index: int = Field(..., description="输入中的行序号（从0开始）")
    row_number: Optional[int] = Field(None, description="CSV文件行号（表头为第1行）")
    student_identifier: Optional[str] = Field(None, description="学生标识（学号或学生ID）")
    reason: str = Field(..., description="失败原因")
    error_type: str = Field(..., description="错误类型")

    model_config = ConfigDict(from_attributes=True)


class BatchResultResponse(BaseModel):
    """批量录入结果"""
    successful_count: int = Field(..., ge=0, description="成功行数")
    failed_count: int = Field(..., ge=0, description="失败行数")
    records: List[GradeRecordResponse] = Field(default_factory=list)
    errors: List[RowErrorResponse] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class GradeRecordPageResponse(BaseModel):
    """成绩记录分页结果"""
    records: List[GradeRecordResponse]
    total: int = Field(..., ge=0, description="记录总数")
    page: int = Field(..., ge=1, description="当前页")
    limit: int = Field(..., ge=1, description="每页条数")
    pages: int = Field(..., ge=1, description="总页数")

    model_config = ConfigDict(from_attributes=True)


class SubjectStatisticsResponse(BaseModel):
    """班级科目统计"""
    class_subject_id: str
    subject_id: str
    subject_name: Optional[str] = None
    total_students: int = Field(..., description="班级在读学生数")
    students_assessed: int = Field(..., description="至少有一条成绩的学生数")
    scores_count: int = Field(..., description="参与统计的分数个数")
    average_score: Optional[float] = Field(None, description="平均百分比")
    highest_score: Optional[float] = None
    lowest_score: Optional[float] = None
    median_score: Optional[float] = None
    standard_deviation: Optional[float] = Field(None, description="样本标准差")
    pass_rate: float = Field(..., ge=0.0, le=1.0, description="及格率（0-1）")
    pass_threshold: float = Field(..., description="及格线（百分比）")
    grade_distribution: Dict[str, int] = Field(..., description="各等级人次")
    competency_distribution: Dict[str, int] = Field(..., description="各能力等级人次")


class TopPerformer(BaseModel):
    """优秀学生"""
    rank: int
    student_id: str
    student_name: str
    admission_no: str
    average_score: float


class OverallClassStatistics(BaseModel):
    """班级总体表现"""
    total_students: int
    students_ranked: int
    average_performance: Optional[float] = Field(None, description="学生个人平均分的均值")
    top_performers: List[TopPerformer]


class ClassReportResponse(BaseModel):
    """班级成绩报告"""
    class_id: str
    class_name: str
    class_level: Optional[str] = None
    term_id: str
    term_name: str
    term_number: int
    subjects: List[SubjectStatisticsResponse]
    overall_statistics: OverallClassStatistics


class GradeSummary(BaseModel):
    """百分比换算得到的等级"""
    letter_grade: str
    points: int
    remark: str


class AssessmentResult(BaseModel):
    """成绩单中的单次评估"""
    assessment_def_id: str
    name: str
    type: str
    max_marks: Optional[float] = None
    numeric_value: Optional[float] = None
    percentage: Optional[float] = None
    letter_grade: Optional[str] = None
    points: Optional[int] = None
    competency_level: Optional[str] = None
    remark: Optional[str] = None


class SubjectResult(BaseModel):
    """成绩单中的单个科目"""
    class_subject_id: str
    subject_id: str
    subject_name: Optional[str] = None
    subject_code: Optional[str] = None
    assessments: List[AssessmentResult]
    average: Optional[float] = Field(None, description="科目得分（百分比）")
    grade: Optional[GradeSummary] = None
    competency_levels: List[str] = Field(default_factory=list)
    position: Optional[int] = Field(None, description="科目内名次")


class OverallPerformance(BaseModel):
    """学生总体表现"""
    total_marks: float
    total_max_marks: float
    average_percentage: Optional[float] = None
    overall_grade: Optional[GradeSummary] = None
    overall_position: Optional[int] = None
    total_students: int


class StudentInfo(BaseModel):
    id: str
    admission_no: str
    first_name: str
    last_name: str
    middle_name: Optional[str] = None
    full_name: str


class StudentReportResponse(BaseModel):
    """学生学期成绩单"""
    student: StudentInfo
    class_id: str
    class_name: str
    class_level: Optional[str] = None
    term_id: str
    term_name: str
    term_number: int
    subjects: List[SubjectResult]
    overall_performance: OverallPerformance
