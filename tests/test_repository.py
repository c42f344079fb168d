"""
Tests for SQLite storage (src.db.repository, src.db.importer)
"""
import pandas as pd
import pytest

from src.app.errors import NotFoundError, SubmissionIneligibleError, TransientNetworkError, ValidationError
from src.db.importer import DirectoryImporter
from src.db.models import Question, Section
from src.db.repository import SQLiteRepository

from conftest import make_form


class TestForms:
    """Form storage"""

    def test_create_and_get(self, repo, sectioned_form):
        form_id = repo.create_form(sectioned_form)
        form = repo.get_form(form_id)

        assert form.title == "Teaching Feedback"
        assert [s.id for s in form.sections] == ["s1"]
        assert [q.id for q in form.questions] == ["q1", "q2", "q3"]
        assert form.question("q2").options == ("Slow", "Right", "Fast")
        assert form.question("q1").order is None
        assert form.status == "draft"
        assert form.created_at is not None

    def test_update_header_fields(self, repo, course_eval):
        form_id = repo.create_form(course_eval)
        repo.update_form(form_id, title="Renamed", unknown="ignored")
        form = repo.get_form(form_id)
        assert form.title == "Renamed"
        assert len(form.questions) == 1

    def test_update_missing_form(self, repo):
        with pytest.raises(NotFoundError):
            repo.update_form("missing", title="x")

    def test_save_form_upserts(self, repo, course_eval):
        form_id = repo.save_form(course_eval)
        again = repo.save_form(repo.get_form(form_id))
        assert again == form_id
        assert len(repo.list_forms()) == 1

    def test_delete_cascades(self, repo, sectioned_form):
        form_id = repo.create_form(sectioned_form)
        repo.delete_form(form_id)
        assert not repo.form_exists(form_id)
        assert repo.count_questions(form_id) == 0
        with pytest.raises(NotFoundError):
            repo.get_form(form_id)

    def test_duplicate_form(self, repo, sectioned_form):
        """Copies get fresh ids with section references remapped"""
        copy_id = repo.duplicate_form(repo.create_form(sectioned_form))
        copy = repo.get_form(copy_id)

        assert copy.title == "Teaching Feedback (Copy)"
        assert copy.status == "draft"
        new_section = copy.sections[0].id
        assert new_section != "s1"
        assert [q.section_id for q in copy.questions] == [new_section, new_section, None]
        assert not {q.id for q in copy.questions} & {"q1", "q2", "q3"}

    def test_save_as_template(self, repo, sectioned_form):
        template_id = repo.save_as_template(repo.create_form(sectioned_form))
        template = repo.get_form(template_id)
        assert template.status == "template"
        assert template.schedule is None
        assert [f.id for f in repo.list_forms(status="template")] == [template_id]

    def test_blank_options_are_not_reloaded(self, repo):
        form_id = repo.create_form(make_form(questions=(
            Question("q1", "dropdown", "Pick", options=("A", "", "B"), order=0),
        )))
        assert repo.get_form(form_id).question("q1").options == ("A", "B")

    def test_orphan_reference_survives_storage(self, repo):
        form_id = repo.create_form(make_form(
            sections=(Section("s1", order=0),),
            questions=(Question("q1", "text", "Lost", section_id="gone"),),
        ))
        assert repo.get_form(form_id).question("q1").section_id == "gone"


class TestCategories:
    """Category registry"""

    def test_add_list_remove(self, repo):
        academic = repo.add_category("Academic")
        repo.add_category("Events")
        assert [c.name for c in repo.list_categories()] == ["Academic", "Events"]

        repo.remove_category(academic.id)
        assert [c.name for c in repo.list_categories()] == ["Events"]

    def test_duplicate_and_blank_rejected(self, repo):
        repo.add_category("Academic")
        with pytest.raises(ValidationError):
            repo.add_category("Academic")
        with pytest.raises(ValidationError):
            repo.add_category("  ")

    def test_remove_missing(self, repo):
        with pytest.raises(NotFoundError):
            repo.remove_category(999)


class TestResponses:
    """Response storage"""

    def test_duplicate_submission_rejected(self, seeded_repo, course_eval):
        form_id = seeded_repo.create_form(course_eval)
        seeded_repo.submit_response(form_id, 1, {"q1": 5})
        with pytest.raises(SubmissionIneligibleError) as exc:
            seeded_repo.submit_response(form_id, 1, {"q1": 4})
        assert exc.value.reason_types == ["already_submitted"]

    def test_submission_to_missing_form_reports_not_found(self, seeded_repo):
        with pytest.raises(SubmissionIneligibleError) as exc:
            seeded_repo.submit_response("no-such-form", 1, {"q1": 5})
        assert exc.value.reason_types == ["not_found"]

    def test_list_for_respondent(self, seeded_repo, course_eval):
        form_id = seeded_repo.create_form(course_eval)
        seeded_repo.submit_response(form_id, 2, {"q1": 5})
        (row,) = seeded_repo.list_responses_for_respondent(2)
        assert row["form_id"] == form_id
        assert row["submitted_at"] is not None

    def test_unreachable_database_is_transient(self, tmp_path):
        repo = SQLiteRepository(str(tmp_path / "missing" / "dir" / "x.db"))
        with pytest.raises(TransientNetworkError):
            repo.init_schema()


class TestDirectoryImporter:
    """Roster import"""

    def test_import_csv_with_aliases(self, repo, tmp_path):
        path = tmp_path / "roster.csv"
        path.write_text(
            "User ID,Name,Role,Department,Section\n"
            "1,Ana Reyes,Student,CS,BSCS-1A\n"
            "2,,student,CS,BSCS-1A\n"
            "3,Zed,janitor,CS,\n"
            "x,Bad Id,student,CS,\n"
            "10,Ella Santos,instructor,CS,\n",
            encoding="utf-8",
        )
        result = DirectoryImporter(repo).import_csv(str(path))

        assert result.imported_users == 2
        assert result.skipped_rows == 3
        ana = repo.get_user(1)
        assert ana.course_year_section == "BSCS-1A"
        assert ana.role == "student"

    def test_blank_cells_are_stored_as_missing(self, repo, tmp_path):
        path = tmp_path / "roster.csv"
        path.write_text(
            "id,full_name,role,department,course_year_section,company\n"
            "20,Lia Cruz,alumni,,,\n"
            "21,,alumni,,,Acme\n",
            encoding="utf-8",
        )
        result = DirectoryImporter(repo).import_csv(str(path))

        assert (result.imported_users, result.skipped_rows) == (1, 1)
        lia = repo.get_user(20)
        assert (lia.department, lia.course_year_section, lia.company) == (None, None, None)
        assert repo.get_user(21) is None

    def test_missing_required_columns(self, repo):
        df = pd.DataFrame({"name": ["Ana"]})
        with pytest.raises(ValidationError) as exc:
            DirectoryImporter(repo).import_dataframe(df)
        assert set(exc.value.by_field()) == {"id", "role"}

    def test_reimport_updates_in_place(self, repo):
        importer = DirectoryImporter(repo)
        importer.import_dataframe(pd.DataFrame({"id": ["7"], "full_name": ["Old"], "role": ["alumni"]}))
        importer.import_dataframe(pd.DataFrame({"id": ["7"], "full_name": ["New"], "role": ["alumni"],
                                                "company": ["Acme"]}))
        user = repo.get_user(7)
        assert (user.full_name, user.company) == ("New", "Acme")
