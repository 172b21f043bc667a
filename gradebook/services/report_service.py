# 成绩报告生成服务
import logging
import numpy as np
import pandas as pd
from typing import Dict, Any, List, Optional
from sqlalchemy.orm import Session

from ..calculation.grade_calculator import GradeCalculator
from ..calculation.grading_config import GradingConfig
from ..calculation.ranking import rank_of
from ..database.enums import AssessmentType
from ..database.repositories import ReferenceRepository, StudentRepository
from ..exceptions import NotFoundError
from .statistics_service import StatisticsService, CohortSnapshot

logger = logging.getLogger(__name__)


def _value_or_none(value: Any) -> Any:
    """pandas 缺失值转为 None，numpy 数值转为 Python 数值"""
    if value is None:
        return None
    if isinstance(value, float) and np.isnan(value):
        return None
    if isinstance(value, np.generic):
        return value.item()
    return value


class ReportService:
    """学生成绩单与班级成绩报告（只读，不修改成绩记录）"""

    def __init__(self, db_session: Session, config: GradingConfig, school_id: Optional[str] = None):
        self.db = db_session
        self.config = config
        self.school_id = school_id
        self.calculator = GradeCalculator(config.grade_scale, config.competency_remarks)
        self.statistics = StatisticsService(db_session, config, school_id)
        self.reference_repo = ReferenceRepository(db_session, school_id)
        self.student_repo = StudentRepository(db_session, school_id)

    def generate_student_report(self, student_id: str, term_id: str) -> Dict[str, Any]:
        """生成学生学期成绩单"""
        student = self.student_repo.get_by_id(student_id)
        if student is None:
            raise NotFoundError(f"Student {student_id} not found")
        term = self.reference_repo.get_term(term_id)
        if term is None:
            raise NotFoundError(f"Term {term_id} not found")
        if not student.class_id:
            raise NotFoundError(f"Student {student_id} is not enrolled in a class")
        school_class = self.reference_repo.get_class(student.class_id)
        if school_class is None:
            raise NotFoundError(f"Class {student.class_id} not found")

        cohort = self.statistics.build_cohort(student.class_id, term_id)
        own_records = cohort.frame[cohort.frame['student_id'] == student.id]
        subjects = self._student_subjects(student.id, own_records, cohort)

        graded = own_records[own_records['assessment_type'] == AssessmentType.GRADE_BASED]
        graded = graded.dropna(subset=['percentage'])
        average_percentage = cohort.student_averages.get(student.id)
        overall = {
            'total_marks': float(graded['numeric_value'].sum()) if not graded.empty else 0.0,
            'total_max_marks': float(graded['max_marks'].sum()) if not graded.empty else 0.0,
            'average_percentage': average_percentage,
            'overall_grade': self._grade(average_percentage),
            'overall_position': rank_of(cohort.rankings, 'student_id', student.id),
            'total_students': cohort.total_students
        }

        logger.info(f"学生成绩单生成: 学生={student.id}, 学期={term.id}, 科目数={len(subjects)}")
        return {
            'student': {
                'id': student.id,
                'admission_no': student.admission_no,
                'first_name': student.first_name,
                'last_name': student.last_name,
                'middle_name': student.middle_name,
                'full_name': student.full_name
            },
            'class_id': school_class.id,
            'class_name': school_class.name,
            'class_level': school_class.level,
            'term_id': term.id,
            'term_name': term.name,
            'term_number': term.term_number,
            'subjects': subjects,
            'overall_performance': overall
        }

    def generate_class_report(self, class_id: str, term_id: str) -> Dict[str, Any]:
        """生成班级成绩报告"""
        report = self.statistics.compute_class_report(class_id, term_id)
        logger.info(f"班级成绩报告生成: 班级={class_id}, 学期={term_id}")
        return report

    def _student_subjects(self, student_id: str, records: pd.DataFrame,
                          cohort: CohortSnapshot) -> List[Dict[str, Any]]:
        scores = cohort.subject_scores[cohort.subject_scores['student_id'] == student_id]
        score_by_subject = dict(zip(scores['class_subject_id'], scores['subject_score']))

        subjects = []
        for class_subject_id, subject_records in records.groupby('class_subject_id', sort=False):
            first = subject_records.iloc[0]
            score = _value_or_none(score_by_subject.get(class_subject_id))
            levels = [
                level.value for level in subject_records['competency_level']
                if level is not None and not (isinstance(level, float) and np.isnan(level))
            ]
            subjects.append({
                'class_subject_id': class_subject_id,
                'subject_id': first['subject_id'],
                'subject_name': first['subject_name'],
                'subject_code': _value_or_none(first['subject_code']),
                'assessments': [
                    self._assessment_entry(row) for _, row in subject_records.iterrows()
                ],
                'average': score,
                'grade': self._grade(score),
                'competency_levels': levels,
                'position': rank_of(cohort.subject_rankings(class_subject_id), 'student_id', student_id)
            })
        subjects.sort(key=lambda subject: subject['subject_name'] or '')
        return subjects

    @staticmethod
    def _assessment_entry(row: pd.Series) -> Dict[str, Any]:
        level = _value_or_none(row['competency_level'])
        return {
            'assessment_def_id': row['assessment_def_id'],
            'name': row['assessment_name'],
            'type': row['assessment_type'].value,
            'max_marks': _value_or_none(row['max_marks']),
            'numeric_value': _value_or_none(row['numeric_value']),
            'percentage': _value_or_none(row['percentage']),
            'letter_grade': _value_or_none(row['letter_grade']),
            'points': int(row['points']) if _value_or_none(row['points']) is not None else None,
            'competency_level': level.value if level is not None else None,
            'remark': _value_or_none(row['remark'])
        }

    def _grade(self, percentage: Optional[float]) -> Optional[Dict[str, Any]]:
        """百分比换算为等级，无分数时为空"""
        if percentage is None:
            return None
        outcome = self.calculator.grade_for_percentage(float(np.clip(percentage, 0.0, 100.0)))
        return {
            'letter_grade': outcome.letter_grade,
            'points': outcome.points,
            'remark': outcome.remark
        }
