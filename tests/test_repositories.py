import pytest
from unittest.mock import MagicMock
from sqlalchemy.exc import IntegrityError, OperationalError

from gradebook.database.repositories import (
    AssessmentDefinitionRepository, BaseRepository, DataIntegrityError, GradeRecordRepository,
    ReferenceRepository, RepositoryError, StudentRepository
)
from gradebook.database.schemas import GradeRecordFilter


class TestBaseRepository:
    """测试统一异常处理"""

    def setup_method(self):
        self.mock_db = MagicMock()
        self.repo = BaseRepository(self.mock_db)

    def test_integrity_error(self):
        error = IntegrityError("INSERT", {}, Exception("duplicate key"))
        with pytest.raises(DataIntegrityError):
            self.repo._handle_db_error(error, "insert")
        self.mock_db.rollback.assert_called_once()

    def test_sqlalchemy_error(self):
        error = OperationalError("SELECT", {}, Exception("connection lost"))
        with pytest.raises(RepositoryError):
            self.repo._handle_db_error(error, "select")

    def test_other_errors_propagate_unchanged(self):
        with pytest.raises(KeyError):
            self.repo._handle_db_error(KeyError("x"), "select")

    def test_query_failure_wrapped(self):
        self.mock_db.query.side_effect = OperationalError("SELECT", {}, Exception("gone away"))
        with pytest.raises(RepositoryError):
            StudentRepository(self.mock_db).get_by_id("stu-1")


class TestStudentRepository:
    """测试学号解析"""

    def test_resolve_admission_number(self, db_session, school):
        repo = StudentRepository(db_session, school)
        assert repo.resolve_admission_number("STU-002") == "stu-2"
        assert repo.resolve_admission_number("STU-404") is None

    def test_resolve_many(self, db_session, school):
        repo = StudentRepository(db_session, school)
        assert repo.resolve_admission_numbers(["STU-001", "STU-404", None, "STU-001"]) == {"STU-001": "stu-1"}

    def test_tenant_scoping(self, db_session, school):
        assert StudentRepository(db_session, "school-2").resolve_admission_number("STU-001") is None
        assert StudentRepository(db_session).resolve_admission_number("STU-001") == "stu-1"

    def test_list_by_class_ordered(self, db_session, school):
        students = StudentRepository(db_session, school).list_by_class("class-1")
        assert [student.admission_no for student in students] == ["STU-001", "STU-002", "STU-003", "STU-004"]


class TestReferenceRepositories:

    def test_assessments_for_class_subject(self, db_session, school):
        repo = AssessmentDefinitionRepository(db_session, school)
        names = [a.id for a in repo.list_for_class_subject("cs-math", "term-1")]
        assert names == ["math-cat1", "math-cat2", "math-broken"]

    def test_class_subjects_ordered_by_subject_name(self, db_session, school):
        repo = ReferenceRepository(db_session, school)
        assert [cs.id for cs in repo.list_class_subjects("class-1", "term-1")] == ["cs-eng", "cs-math", "cs-sci"]


class TestGradeRecordRepository:
    """测试成绩记录upsert"""

    def _payload(self, **changes):
        payload = {
            'numeric_value': 70.0, 'letter_grade': 'B+', 'points': 10, 'competency_level': None,
            'remark': 'Good', 'comment': None, 'assessed_by': None
        }
        payload.update(changes)
        return payload

    def test_upsert_inserts_then_updates(self, db_session, school):
        repo = GradeRecordRepository(db_session, school)
        first = repo.upsert("stu-1", "math-cat1", self._payload())
        second = repo.upsert("stu-1", "math-cat1", self._payload(numeric_value=20.0, letter_grade='E'))
        assert first.id == second.id
        assert second.letter_grade == 'E'
        assert repo.count(GradeRecordFilter(student_id="stu-1")) == 1

    def test_insert_race_becomes_update(self, db_session, school):
        """插入时唯一键冲突则改为覆盖更新"""
        repo = GradeRecordRepository(db_session, school)
        winner = repo.upsert("stu-1", "math-cat1", self._payload())

        real_find = repo._find
        calls = []

        def stale_find(student_id, assessment_def_id):
            calls.append(student_id)
            # 第一次查询模拟并发写入者尚未提交
            if len(calls) == 1:
                return None
            return real_find(student_id, assessment_def_id)

        repo._find = stale_find
        record = repo.upsert("stu-1", "math-cat1", self._payload(numeric_value=35.0, letter_grade='D-'))
        assert record.id == winner.id
        assert record.letter_grade == 'D-'
        assert repo.count(GradeRecordFilter(student_id="stu-1")) == 1

    def test_upsert_repairs_missing_school(self, db_session, school):
        """历史上未写入租户的记录在下次写入时补齐 school_id"""
        GradeRecordRepository(db_session).upsert("stu-1", "math-cat1", self._payload())
        scoped = GradeRecordRepository(db_session, school)
        assert scoped.count(GradeRecordFilter(student_id="stu-1")) == 0

        record = GradeRecordRepository(db_session).upsert(
            "stu-1", "math-cat1", self._payload(school_id=school)
        )
        assert record.school_id == school
        assert scoped.count(GradeRecordFilter(student_id="stu-1")) == 1

    def test_query_with_context(self, db_session, school):
        repo = GradeRecordRepository(db_session, school)
        repo.upsert("stu-2", "eng-exam", self._payload())
        repo.upsert("stu-1", "math-cat1", self._payload())
        rows = repo.query_with_context(GradeRecordFilter(class_id="class-1", term_id="term-1"))
        assert [(subject.name, student.admission_no) for _, _, _, subject, student in rows] == [
            ("English", "STU-002"), ("Mathematics", "STU-001")
        ]
