from fastapi import APIRouter, Query, Depends
from typing import Optional
from sqlalchemy.orm import Session

from ..calculation.grading_config import GradingConfig
from ..database.connection import get_db
from ..database.schemas import GradeRecordFilter
from ..schemas.request_schemas import GradeEntryRequest, BulkGradeEntryRequest, CsvUploadRequest
from ..schemas.response_schemas import (
    GradeRecordResponse, BatchResultResponse, GradeRecordPageResponse, ErrorResponse
)
from ..services.grade_entry_service import GradeEntryService
from .dependencies import get_grading_config, get_school_id

router = APIRouter(
    tags=["成绩录入API"],
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}, 500: {"model": ErrorResponse}}
)


def _service(db: Session, config: GradingConfig, school_id: Optional[str],
             assessed_by: Optional[str] = None) -> GradeEntryService:
    return GradeEntryService(db, config, school_id=school_id, assessed_by=assessed_by)


@router.post("/assessments/{assessment_def_id}/grades", response_model=GradeRecordResponse)
def create_or_update_grade(
    assessment_def_id: str,
    request: GradeEntryRequest,
    assessed_by: Optional[str] = Query(None, description="评分教师ID"),
    db: Session = Depends(get_db),
    config: GradingConfig = Depends(get_grading_config),
    school_id: Optional[str] = Depends(get_school_id)
):
    """录入或覆盖单个学生的成绩"""
    value = request.model_dump(exclude={'student_id'})
    record = _service(db, config, school_id, assessed_by).create_or_update_grade(
        assessment_def_id, request.student_id, value
    )
    return GradeRecordResponse.model_validate(record)


@router.post("/assessments/{assessment_def_id}/grades/bulk", response_model=BatchResultResponse)
def bulk_grade_entry(
    assessment_def_id: str,
    request: BulkGradeEntryRequest,
    assessed_by: Optional[str] = Query(None, description="评分教师ID"),
    db: Session = Depends(get_db),
    config: GradingConfig = Depends(get_grading_config),
    school_id: Optional[str] = Depends(get_school_id)
):
    """按学生ID批量录入成绩，单行失败不影响其他行"""
    entries = [entry.model_dump() for entry in request.entries]
    result = _service(db, config, school_id, assessed_by).bulk_grade_entry(assessment_def_id, entries)
    return BatchResultResponse.model_validate(result)


@router.post("/assessments/{assessment_def_id}/grades/csv", response_model=BatchResultResponse,
             responses={400: {"model": ErrorResponse}})
def csv_upload(
    assessment_def_id: str,
    request: CsvUploadRequest,
    assessed_by: Optional[str] = Query(None, description="评分教师ID"),
    db: Session = Depends(get_db),
    config: GradingConfig = Depends(get_grading_config),
    school_id: Optional[str] = Depends(get_school_id)
):
    """CSV批量上传成绩，按学号解析学生"""
    result = _service(db, config, school_id, assessed_by).csv_upload(assessment_def_id, request.payload())
    return BatchResultResponse.model_validate(result)


@router.get("/records", response_model=GradeRecordPageResponse)
def get_results(
    student_id: Optional[str] = Query(None, description="学生ID"),
    assessment_def_id: Optional[str] = Query(None, description="评估ID"),
    class_subject_id: Optional[str] = Query(None, description="班级科目ID"),
    class_id: Optional[str] = Query(None, description="班级ID"),
    term_id: Optional[str] = Query(None, description="学期ID"),
    academic_year_id: Optional[str] = Query(None, description="学年ID"),
    page: int = Query(1, ge=1, description="页码"),
    limit: int = Query(50, ge=1, le=500, description="每页条数"),
    db: Session = Depends(get_db),
    config: GradingConfig = Depends(get_grading_config),
    school_id: Optional[str] = Depends(get_school_id)
):
    """按条件分页查询成绩记录"""
    criteria = GradeRecordFilter(
        student_id=student_id,
        assessment_def_id=assessment_def_id,
        class_subject_id=class_subject_id,
        class_id=class_id,
        term_id=term_id,
        academic_year_id=academic_year_id
    )
    result_page = _service(db, config, school_id).get_results(criteria, page=page, limit=limit)
    return GradeRecordPageResponse.model_validate(result_page)
