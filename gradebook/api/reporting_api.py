from fastapi import APIRouter, Query, Depends
from typing import Optional
from sqlalchemy.orm import Session

from ..calculation.grading_config import GradingConfig
from ..database.connection import get_db
from ..schemas.response_schemas import (
    SubjectStatisticsResponse, StudentReportResponse, ClassReportResponse, ErrorResponse
)
from ..services.report_service import ReportService
from ..services.statistics_service import StatisticsService
from .dependencies import get_grading_config, get_school_id

router = APIRouter(tags=["成绩报告API"], responses={404: {"model": ErrorResponse}})


@router.get("/class-subjects/{class_subject_id}/statistics", response_model=SubjectStatisticsResponse)
def get_subject_statistics(
    class_subject_id: str,
    term_id: str = Query(..., description="学期ID"),
    db: Session = Depends(get_db),
    config: GradingConfig = Depends(get_grading_config),
    school_id: Optional[str] = Depends(get_school_id)
):
    """班级科目学期统计"""
    return StatisticsService(db, config, school_id).compute_subject_statistics(class_subject_id, term_id)


@router.get("/students/{student_id}", response_model=StudentReportResponse)
def get_student_report(
    student_id: str,
    term_id: str = Query(..., description="学期ID"),
    db: Session = Depends(get_db),
    config: GradingConfig = Depends(get_grading_config),
    school_id: Optional[str] = Depends(get_school_id)
):
    """学生学期成绩单"""
    return ReportService(db, config, school_id).generate_student_report(student_id, term_id)


@router.get("/classes/{class_id}", response_model=ClassReportResponse)
def get_class_report(
    class_id: str,
    term_id: str = Query(..., description="学期ID"),
    db: Session = Depends(get_db),
    config: GradingConfig = Depends(get_grading_config),
    school_id: Optional[str] = Depends(get_school_id)
):
    """班级成绩报告"""
    return ReportService(db, config, school_id).generate_class_report(class_id, term_id)
