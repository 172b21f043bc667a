import pytest

from gradebook.calculation.grade_calculator import MarksValue, CompetencyValue
from gradebook.database.enums import CompetencyLevel
from gradebook.database.models import GradeRecord
from gradebook.database.repositories import RepositoryError
from gradebook.database.schemas import GradeRecordFilter
from gradebook.exceptions import (
    ConfigurationError, MalformedInputError, NotFoundError, ValidationError
)
from gradebook.services.grade_entry_service import GradeEntryService, parse_marks


@pytest.fixture
def service(db_session, grading_config, school):
    return GradeEntryService(db_session, grading_config, school_id=school, assessed_by="teacher-1")


def _record_count(db_session):
    return db_session.query(GradeRecord).count()


class TestCreateOrUpdateGrade:
    """测试单条成绩录入"""

    def test_create_grade(self, service):
        record = service.create_or_update_grade("math-cat1", "stu-1", MarksValue(85))
        assert record.letter_grade == 'A'
        assert record.points == 12
        assert record.remark == 'Excellent'
        assert record.numeric_value == 85.0
        assert record.assessed_by == "teacher-1"
        assert record.school_id == "school-1"

    def test_resubmission_overwrites(self, service, db_session):
        first = service.create_or_update_grade("math-cat1", "stu-1", {'marks': 85})
        second = service.create_or_update_grade("math-cat1", "stu-1", {'marks': '42'})
        assert second.id == first.id
        assert second.letter_grade == 'D+'
        assert _record_count(db_session) == 1

    def test_identical_resubmission_is_not_rewritten(self, service):
        first = service.create_or_update_grade("math-cat1", "stu-1", MarksValue(85, comment="Steady"))
        stamp = first.updated_at
        second = service.create_or_update_grade("math-cat1", "stu-1", MarksValue(85, comment="Steady"))
        assert second.updated_at == stamp

    def test_competency_grade(self, service):
        record = service.create_or_update_grade(
            "sci-practical", "stu-1", {'competency_level': 'approaching expectations'}
        )
        assert record.competency_level == CompetencyLevel.APPROACHING
        assert record.remark == 'Approaching Expectations'
        assert record.letter_grade is None

    def test_holistic_grade(self, service):
        record = service.create_or_update_grade("eng-oral", "stu-2", {'comment': "Confident speaker"})
        assert record.remark == "Confident speaker"
        assert record.numeric_value is None

    def test_out_of_range_marks_rejected(self, service, db_session):
        with pytest.raises(ValidationError, match="exceed maximum marks"):
            service.create_or_update_grade("math-cat2", "stu-1", MarksValue(51))
        assert _record_count(db_session) == 0

    def test_missing_marks(self, service):
        with pytest.raises(ValidationError, match="Marks are required"):
            service.create_or_update_grade("math-cat1", "stu-1", {'marks': ''})

    def test_wrong_variant_for_assessment(self, service):
        with pytest.raises(ValidationError):
            service.create_or_update_grade("math-cat1", "stu-1", CompetencyValue(CompetencyLevel.MEETING))

    def test_unknown_student(self, service):
        with pytest.raises(NotFoundError):
            service.create_or_update_grade("math-cat1", "stu-404", MarksValue(50))

    def test_unknown_assessment(self, service):
        with pytest.raises(NotFoundError):
            service.create_or_update_grade("nope", "stu-1", MarksValue(50))

    def test_assessment_without_max_marks(self, service):
        with pytest.raises(ConfigurationError):
            service.create_or_update_grade("math-broken", "stu-1", MarksValue(50))

    def test_unknown_field_in_single_entry(self, service, db_session):
        with pytest.raises(MalformedInputError, match="score"):
            service.create_or_update_grade("math-cat1", "stu-1", {'score': 80})
        assert _record_count(db_session) == 0

    def test_record_stamped_with_assessment_school(self, db_session, grading_config, school):
        """未携带租户的写入也归属评估所在学校"""
        unscoped = GradeEntryService(db_session, grading_config)
        record = unscoped.create_or_update_grade("math-cat1", "stu-1", MarksValue(90))
        assert record.school_id == "school-1"

    def test_other_tenant_cannot_see_assessment(self, db_session, grading_config, school):
        other = GradeEntryService(db_session, grading_config, school_id="school-2")
        with pytest.raises(NotFoundError):
            other.create_or_update_grade("math-cat1", "stu-1", MarksValue(50))


class TestCsvUpload:
    """测试CSV批量上传"""

    def test_out_of_range_row_does_not_stop_batch(self, service, db_session):
        text = "admission-no,marks,comment\nSTU-001,105,\nSTU-002,64,\nSTU-003,30,Needs revision\n"
        result = service.csv_upload("math-cat1", text)
        assert result.successful_count == 2
        assert result.failed_count == 1
        error = result.errors[0]
        assert error.row_index == 0
        assert error.row_number == 2
        assert error.student_identifier == 'STU-001'
        assert error.error_type == 'VALIDATION_ERROR'
        assert "exceed maximum marks" in error.reason
        assert [record.student_id for record in result.records] == ['stu-2', 'stu-3']
        assert _record_count(db_session) == 2

    def test_reupload_is_idempotent(self, service, db_session):
        text = "Admission No,Score\nSTU-001,80\nSTU-002,55\nSTU-003,40\n"
        first = service.csv_upload("math-cat1", text)
        stamps = {record.student_id: record.updated_at for record in first.records}
        second = service.csv_upload("math-cat1", text)
        assert (second.successful_count, second.failed_count) == (first.successful_count, first.failed_count)
        assert _record_count(db_session) == 3
        assert {record.student_id: record.updated_at for record in second.records} == stamps

    def test_unknown_admission_number_at_row_k(self, service, db_session):
        text = "admission-no,marks\nSTU-001,80\nSTU-002,70\nSTU-404,60\nSTU-003,50\nSTU-004,40\n"
        result = service.csv_upload("math-cat1", text)
        assert result.successful_count == 4
        assert result.failed_count == 1
        assert result.errors[0].row_index == 2
        assert result.errors[0].row_number == 4
        assert result.errors[0].error_type == 'NOT_FOUND'
        # 失败行之后的行仍然写入
        stored = {record.student_id for record in db_session.query(GradeRecord).all()}
        assert stored == {'stu-1', 'stu-2', 'stu-3', 'stu-4'}

    def test_counts_always_sum_to_input(self, service):
        rows = [
            {'admission-no': 'STU-001', 'marks': '50'},
            {'admission-no': '', 'marks': '50'},
            {'admission-no': 'STU-002', 'marks': 'abc'},
            {'admission-no': 'STU-003', 'marks': '-1'},
            {'admission-no': 'STU-004', 'marks': ''},
        ]
        result = service.csv_upload("math-cat1", rows)
        assert result.successful_count + result.failed_count == len(rows)
        assert result.successful_count == 1
        assert [error.row_index for error in result.errors] == [1, 2, 3, 4]
        assert [error.row_number for error in result.errors] == [3, 4, 5, 6]
        assert "Invalid marks format" in result.errors[1].reason

    def test_missing_header_aborts(self, service, db_session):
        with pytest.raises(MalformedInputError):
            service.csv_upload("math-cat1", "admission-no,comment\nSTU-001,hello\n")
        assert _record_count(db_session) == 0

    def test_unknown_assessment_aborts(self, service):
        with pytest.raises(NotFoundError):
            service.csv_upload("nope", "admission-no,marks\nSTU-001,50\n")

    def test_misconfigured_assessment_aborts(self, service):
        with pytest.raises(ConfigurationError):
            service.csv_upload("math-broken", "admission-no,marks\nSTU-001,50\n")

    def test_competency_upload(self, service):
        text = "admission-no,competency-level,comment\nSTU-001,EXCEEDING,\nSTU-002,brilliant,\n"
        result = service.csv_upload("sci-practical", text)
        assert result.successful_count == 1
        assert result.records[0].competency_level == CompetencyLevel.EXCEEDING
        assert result.errors[0].error_type == 'VALIDATION_ERROR'

    def test_holistic_upload_needs_only_admission_number(self, service):
        result = service.csv_upload("eng-oral", "admission-no,comment\nSTU-001,Fluent\n")
        assert result.successful_count == 1
        assert result.records[0].remark == "Fluent"

    def test_storage_failure_isolated_to_row(self, service, db_session):
        real_upsert = service.record_repo.upsert

        def flaky_upsert(student_id, assessment_def_id, payload):
            if student_id == 'stu-2':
                raise RepositoryError("数据库操作失败: disk full")
            return real_upsert(student_id, assessment_def_id, payload)

        service.record_repo.upsert = flaky_upsert
        result = service.csv_upload("math-cat1", "admission-no,marks\nSTU-001,50\nSTU-002,60\nSTU-003,70\n")
        assert result.successful_count == 2
        assert result.errors[0].error_type == 'STORAGE_ERROR'
        assert result.errors[0].student_identifier == 'STU-002'


class TestBulkGradeEntry:
    """测试按学生ID批量录入"""

    def test_bulk_entry(self, service):
        result = service.bulk_grade_entry("math-cat2", [
            {'student_id': 'stu-1', 'marks': 45},
            {'student_id': 'stu-404', 'marks': 30},
            {'student_id': None, 'marks': 30},
            {'student_id': 'stu-2', 'marks': 60},
            {'student_id': 'stu-3', 'marks': 25, 'comment': 'Improving'},
        ])
        assert result.successful_count == 2
        assert result.failed_count == 3
        assert [error.error_type for error in result.errors] == ['NOT_FOUND', 'VALIDATION_ERROR', 'VALIDATION_ERROR']
        assert result.records[0].letter_grade == 'A'
        assert result.records[1].letter_grade == 'C'
        assert result.records[1].comment == 'Improving'

    def test_empty_bulk(self, service):
        result = service.bulk_grade_entry("math-cat1", [])
        assert (result.successful_count, result.failed_count) == (0, 0)

    def test_unknown_field_rejects_whole_batch(self, service, db_session):
        """未知字段属于结构错误，整批拒绝并指出条目序号"""
        with pytest.raises(MalformedInputError, match="Entry 1") as excinfo:
            service.bulk_grade_entry("math-cat1", [
                {'student_id': 'stu-1', 'marks': 80},
                {'student_id': 'stu-2', 'score': 70},
            ])
        assert "score" in excinfo.value.message
        assert _record_count(db_session) == 0

    def test_non_object_entry_rejected(self, service, db_session):
        with pytest.raises(MalformedInputError, match="Entry 0"):
            service.bulk_grade_entry("math-cat1", ["stu-1"])
        assert _record_count(db_session) == 0


class TestGetResults:

    def test_filtered_pagination(self, service):
        service.csv_upload("math-cat1", "admission-no,marks\nSTU-001,80\nSTU-002,70\nSTU-003,60\n")
        service.csv_upload("eng-exam", "admission-no,marks\nSTU-001,80\n")

        page = service.get_results(GradeRecordFilter(assessment_def_id="math-cat1"), page=1, limit=2)
        assert len(page.records) == 2
        assert page.total == 3
        assert page.pages == 2

        by_class = service.get_results(GradeRecordFilter(class_id="class-1", term_id="term-1"))
        assert by_class.total == 4

        by_student = service.get_results(GradeRecordFilter(student_id="stu-1"))
        assert {record.assessment_def_id for record in by_student.records} == {"math-cat1", "eng-exam"}


class TestParseMarks:

    @pytest.mark.parametrize("raw,expected", [("85", 85.0), (" 72.5 ", 72.5), (40, 40.0)])
    def test_valid(self, raw, expected):
        assert parse_marks(raw) == expected

    @pytest.mark.parametrize("raw", ["abc", True, [1]])
    def test_invalid(self, raw):
        with pytest.raises(ValidationError):
            parse_marks(raw)
