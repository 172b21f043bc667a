# 成绩统计汇总服务
import logging
import pandas as pd
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Set
from sqlalchemy.orm import Session

from ..calculation.formulas import (
    describe_percentages, calculate_grade_distribution, calculate_competency_distribution,
    mean_or_none, weighted_percentage
)
from ..calculation.grade_scale import percentage_of
from ..calculation.grading_config import GradingConfig
from ..calculation.ranking import assign_competition_ranks
from ..database.enums import AssessmentType, SubjectAverageMode
from ..database.models import ClassSubject, Student
from ..database.repositories import (
    GradeRecordRepository, ReferenceRepository, StudentRepository, GradeRecordRow
)
from ..database.schemas import GradeRecordFilter
from ..exceptions import NotFoundError

logger = logging.getLogger(__name__)

RECORD_COLUMNS = [
    'record_id', 'student_id', 'admission_no', 'student_name',
    'assessment_def_id', 'assessment_name', 'assessment_type', 'max_marks',
    'class_subject_id', 'subject_id', 'subject_name', 'subject_code',
    'numeric_value', 'percentage', 'letter_grade', 'points', 'competency_level', 'remark'
]


def build_record_frame(rows: List[GradeRecordRow]) -> pd.DataFrame:
    """把成绩记录及其上下文展开为数据框，percentage 仅对分数制记录有值"""
    data = []
    for record, assessment, class_subject, subject, student in rows:
        percentage = None
        if assessment.type == AssessmentType.GRADE_BASED:
            percentage = percentage_of(record.numeric_value, assessment.max_marks)
        data.append({
            'record_id': record.id,
            'student_id': record.student_id,
            'admission_no': student.admission_no,
            'student_name': student.full_name,
            'assessment_def_id': assessment.id,
            'assessment_name': assessment.name,
            'assessment_type': assessment.type,
            'max_marks': assessment.max_marks,
            'class_subject_id': class_subject.id,
            'subject_id': subject.id,
            'subject_name': subject.name,
            'subject_code': subject.code,
            'numeric_value': record.numeric_value,
            'percentage': percentage,
            'letter_grade': record.letter_grade,
            'points': record.points,
            'competency_level': record.competency_level,
            'remark': record.remark
        })
    frame = pd.DataFrame(data, columns=RECORD_COLUMNS)
    frame['percentage'] = pd.to_numeric(frame['percentage'], errors='coerce')
    return frame


def compute_subject_scores(frame: pd.DataFrame,
                           mode: SubjectAverageMode = SubjectAverageMode.UNWEIGHTED) -> pd.DataFrame:
    """
    计算每个学生每个科目的科目得分

    unweighted: 各次评估百分比的算术平均
    weighted:   总得分 / 总满分 × 100
    """
    scored = frame.dropna(subset=['percentage'])
    columns = ['student_id', 'class_subject_id', 'subject_score', 'total_marks', 'total_max_marks']
    if scored.empty:
        return pd.DataFrame(columns=columns).astype(
            {'subject_score': 'float64', 'total_marks': 'float64', 'total_max_marks': 'float64'}
        )

    grouped = scored.groupby(['student_id', 'class_subject_id'], sort=True)
    result = grouped.agg(
        mean_percentage=('percentage', 'mean'),
        total_marks=('numeric_value', 'sum'),
        total_max_marks=('max_marks', 'sum')
    ).reset_index()

    if mode == SubjectAverageMode.WEIGHTED:
        result['subject_score'] = [
            weighted_percentage([marks], [max_marks])
            for marks, max_marks in zip(result['total_marks'], result['total_max_marks'])
        ]
    else:
        result['subject_score'] = result['mean_percentage']
    return result[columns]


@dataclass
class CohortSnapshot:
    """班级/学期内的成绩快照：记录、科目得分、个人平均与总排名"""
    class_id: str
    term_id: str
    students: List[Student]
    frame: pd.DataFrame
    subject_scores: pd.DataFrame
    student_averages: Dict[str, float] = field(default_factory=dict)
    rankings: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total_students(self) -> int:
        return len(self.students)

    def subject_rankings(self, class_subject_id: str) -> List[Dict[str, Any]]:
        """某科目内的竞争排名"""
        admission = {student.id: student.admission_no for student in self.students}
        scores = self.subject_scores[self.subject_scores['class_subject_id'] == class_subject_id]
        items = [
            {'student_id': sid, 'admission_no': admission.get(sid), 'ranking_value': float(score)}
            for sid, score in zip(scores['student_id'], scores['subject_score'])
            if sid in admission and pd.notna(score)
        ]
        return assign_competition_ranks(items, tie_key='admission_no')


class StatisticsService:
    """科目与班级成绩统计服务（只读）"""

    def __init__(self, db_session: Session, config: GradingConfig, school_id: Optional[str] = None):
        self.db = db_session
        self.config = config
        self.school_id = school_id
        self.reference_repo = ReferenceRepository(db_session, school_id)
        self.student_repo = StudentRepository(db_session, school_id)
        self.record_repo = GradeRecordRepository(db_session, school_id)

    def compute_subject_statistics(self, class_subject_id: str, term_id: str) -> Dict[str, Any]:
        """计算班级科目在学期内的统计指标"""
        class_subject = self.reference_repo.get_class_subject(class_subject_id)
        if class_subject is None:
            raise NotFoundError(f"Class subject {class_subject_id} not found")
        if self.reference_repo.get_term(term_id) is None:
            raise NotFoundError(f"Term {term_id} not found")

        rows = self.record_repo.query_with_context(
            GradeRecordFilter(class_subject_id=class_subject_id, term_id=term_id)
        )
        frame = build_record_frame(rows)
        enrolled = {student.id for student in self.student_repo.list_by_class(class_subject.class_id)}
        return self._subject_statistics(class_subject, frame, enrolled)

    def compute_class_report(self, class_id: str, term_id: str) -> Dict[str, Any]:
        """汇总班级全部科目统计、班级平均表现与优秀学生"""
        school_class = self.reference_repo.get_class(class_id)
        if school_class is None:
            raise NotFoundError(f"Class {class_id} not found")
        term = self.reference_repo.get_term(term_id)
        if term is None:
            raise NotFoundError(f"Term {term_id} not found")

        cohort = self.build_cohort(class_id, term_id)
        class_subjects = self.reference_repo.list_class_subjects(class_id, term_id)
        subjects = [
            self._subject_statistics(
                class_subject,
                cohort.frame[cohort.frame['class_subject_id'] == class_subject.id],
                {student.id for student in cohort.students}
            )
            for class_subject in class_subjects
        ]

        # 班级平均表现 = 每个学生个人平均的均值
        average_performance = mean_or_none(cohort.student_averages.values())
        top_performers = [
            {
                'rank': item['rank'],
                'student_id': item['student_id'],
                'student_name': item['student_name'],
                'admission_no': item['admission_no'],
                'average_score': item['ranking_value']
            }
            for item in cohort.rankings[:self.config.top_performers_limit]
        ]

        logger.info(
            f"班级统计完成: 班级={class_id}, 学期={term_id}, 科目数={len(subjects)}, "
            f"参与排名={len(cohort.rankings)}/{cohort.total_students}"
        )
        return {
            'class_id': school_class.id,
            'class_name': school_class.name,
            'class_level': school_class.level,
            'term_id': term.id,
            'term_name': term.name,
            'term_number': term.term_number,
            'subjects': subjects,
            'overall_statistics': {
                'total_students': cohort.total_students,
                'students_ranked': len(cohort.rankings),
                'average_performance': average_performance,
                'top_performers': top_performers
            }
        }

    def build_cohort(self, class_id: str, term_id: str) -> CohortSnapshot:
        """构建班级在学期内的成绩快照与总排名"""
        students = self.student_repo.list_by_class(class_id)
        rows = self.record_repo.query_with_context(GradeRecordFilter(class_id=class_id, term_id=term_id))
        frame = build_record_frame(rows)
        subject_scores = compute_subject_scores(frame, self.config.subject_average_mode)

        enrolled = {student.id for student in students}
        cohort_scores = subject_scores[subject_scores['student_id'].isin(enrolled)]
        student_averages = {
            student_id: float(score)
            for student_id, score in cohort_scores.groupby('student_id')['subject_score'].mean().items()
            if pd.notna(score)
        }

        items = [
            {
                'student_id': student.id,
                'student_name': student.full_name,
                'admission_no': student.admission_no,
                'ranking_value': student_averages.get(student.id)
            }
            for student in students
        ]
        rankings = assign_competition_ranks(items, tie_key='admission_no')
        return CohortSnapshot(
            class_id=class_id,
            term_id=term_id,
            students=students,
            frame=frame,
            subject_scores=subject_scores,
            student_averages=student_averages,
            rankings=rankings
        )

    def _subject_statistics(self, class_subject: ClassSubject, frame: pd.DataFrame,
                            enrolled: Set[str]) -> Dict[str, Any]:
        # 已转出学生的历史记录仍计入分数统计，但不计入参评人数
        assessed = frame.loc[frame['student_id'].isin(enrolled), 'student_id']
        percentages = frame['percentage'].dropna()
        summary = describe_percentages(percentages, self.config.pass_threshold)
        competency_levels = frame.loc[
            frame['assessment_type'] == AssessmentType.COMPETENCY_BASED, 'competency_level'
        ]
        subject = class_subject.subject
        return {
            'class_subject_id': class_subject.id,
            'subject_id': subject.id if subject else class_subject.subject_id,
            'subject_name': subject.name if subject else None,
            'total_students': len(enrolled),
            'students_assessed': int(assessed.nunique()),
            'scores_count': summary['count'],
            'average_score': summary['average'],
            'highest_score': summary['highest'],
            'lowest_score': summary['lowest'],
            'median_score': summary['median'],
            'standard_deviation': summary['standard_deviation'],
            'pass_rate': summary['pass_rate'],
            'pass_threshold': self.config.pass_threshold,
            'grade_distribution': calculate_grade_distribution(percentages, self.config.grade_scale),
            'competency_distribution': calculate_competency_distribution(competency_levels)
        }
