"""
Tests for the respondent pager and submission eligibility (src.respondent)
"""
from dataclasses import replace
from datetime import timedelta

import pytest

from src.app.errors import SubmissionIneligibleError, TransientNetworkError, ValidationError
from src.db.models import MultiSelectAnswer, Question, ScalarAnswer
from src.deployment.scheduler import DeploymentScheduler
from src.respondent.eligibility import check_submission
from src.respondent.pager import RespondentPager


@pytest.fixture
def deployed(seeded_repo, settings, sectioned_form, now):
    """The sectioned form, saved and deployed to CS students"""
    form_id = seeded_repo.create_form(sectioned_form)
    DeploymentScheduler(seeded_repo, settings).deploy(seeded_repo.get_form(form_id), now=now)
    return seeded_repo.get_form(form_id)


def _fill(pager):
    pager.set_answer("q1", 4)
    pager.set_answer("q2", "Right")
    pager.next()


class TestNavigation:
    """Page movement and progress"""

    def test_pages_and_progress(self, sectioned_form):
        """One section of two questions plus one standalone question is two pages"""
        pager = RespondentPager(sectioned_form)
        assert pager.total_pages == 2
        assert pager.progress == 50.0
        assert pager.next() is True
        assert pager.progress == 100.0
        assert pager.is_last

    def test_next_disabled_on_last_page(self, sectioned_form):
        pager = RespondentPager(sectioned_form)
        pager.next()
        assert pager.next() is False
        assert pager.index == 1

    def test_previous_on_first_page_exits(self, sectioned_form):
        pager = RespondentPager(sectioned_form)
        assert pager.previous() is False
        assert pager.exited is True

    def test_previous_keeps_answers(self, sectioned_form):
        pager = RespondentPager(sectioned_form)
        _fill(pager)
        assert pager.previous() is True
        assert pager.answer("q1") == ScalarAnswer(4.0)


class TestAnswers:
    """Answer capture"""

    def test_answers_are_typed(self, sectioned_form):
        pager = RespondentPager(sectioned_form)
        pager.set_answer("q1", "5")
        assert pager.answer("q1") == ScalarAnswer(5.0)
        assert pager.payload() == {"q1": 5}

    def test_empty_value_clears(self, sectioned_form):
        pager = RespondentPager(sectioned_form)
        pager.set_answer("q1", 3)
        pager.set_answer("q1", "")
        assert pager.answer("q1") is None

    def test_missing_required(self, sectioned_form):
        pager = RespondentPager(sectioned_form)
        assert [q.id for q in pager.missing_required()] == ["q1"]

    def test_checkbox_answer(self, sectioned_form):
        extra = Question("q4", "checkbox", "Tools", options=("A", "B"), order=2)
        form = replace(sectioned_form, questions=sectioned_form.questions + (extra,))
        pager = RespondentPager(form)
        pager.set_answer("q4", ["A", "B", "A"])
        assert pager.answer("q4") == MultiSelectAnswer(("A", "B"))


class TestSubmit:
    """Submission from the last page"""

    def test_submit_only_from_last_page(self, deployed, seeded_repo):
        pager = RespondentPager(deployed)
        with pytest.raises(ValidationError):
            pager.submit(seeded_repo, 1)

    def test_required_answers_block_submit(self, deployed, seeded_repo, now):
        pager = RespondentPager(deployed)
        pager.next()
        with pytest.raises(ValidationError) as exc:
            pager.submit(seeded_repo, 1, now=now)
        assert exc.value.errors[0].message == "Question 1 is required"
        assert not seeded_repo.has_response(deployed.id, 1)

    def test_successful_submit(self, deployed, seeded_repo, now):
        pager = RespondentPager(deployed)
        _fill(pager)
        response = pager.submit(seeded_repo, 1, now=now)

        assert pager.submitted == response
        stored = seeded_repo.list_responses_for_form(deployed.id)
        assert stored[0].answers == {"q1": 4, "q2": "Right"}
        assert stored[0].respondent_name == "Ana Reyes"

    def test_second_submission_rejected(self, deployed, seeded_repo, now):
        first = RespondentPager(deployed)
        _fill(first)
        first.submit(seeded_repo, 1, now=now)

        second = RespondentPager(deployed)
        _fill(second)
        with pytest.raises(SubmissionIneligibleError) as exc:
            second.submit(seeded_repo, 1, now=now)
        assert exc.value.reason_types == ["already_submitted"]
        assert second.is_last
        assert second.answer("q1") == ScalarAnswer(4.0)

    def test_not_assigned(self, deployed, seeded_repo, now):
        pager = RespondentPager(deployed)
        _fill(pager)
        with pytest.raises(SubmissionIneligibleError) as exc:
            pager.submit(seeded_repo, 4, now=now)
        assert exc.value.reason_types == ["not_assigned"]
        assert pager.last_issues[0].type == "not_assigned"

    def test_window_closed(self, deployed, seeded_repo, now):
        pager = RespondentPager(deployed)
        _fill(pager)
        with pytest.raises(SubmissionIneligibleError) as exc:
            pager.submit(seeded_repo, 1, now=now + timedelta(days=31))
        assert exc.value.reason_types == ["expired"]

    def test_transient_failure_keeps_answers(self, deployed, seeded_repo, now, monkeypatch):
        pager = RespondentPager(deployed)
        _fill(pager)

        def boom(*args, **kwargs):
            raise TransientNetworkError("database is locked")

        monkeypatch.setattr(seeded_repo, "submit_response", boom)
        with pytest.raises(TransientNetworkError):
            pager.submit(seeded_repo, 1, now=now)
        assert pager.payload() == {"q1": 4, "q2": "Right"}
        assert pager.submitted is None

    def test_race_with_storage_guard(self, deployed, seeded_repo, now, monkeypatch):
        """The uniqueness constraint wins even when the pre-check passes"""
        pager = RespondentPager(deployed)
        _fill(pager)
        seeded_repo.submit_response(deployed.id, 1, {"q1": 1})
        monkeypatch.setattr(seeded_repo, "has_response", lambda *a: False)

        with pytest.raises(SubmissionIneligibleError) as exc:
            pager.submit(seeded_repo, 1, now=now)
        assert exc.value.reason_types == ["already_submitted"]


class TestEligibility:
    """Pre-submit checks"""

    def test_unknown_form(self, seeded_repo):
        assert [i.type for i in check_submission(seeded_repo, "missing", 1)] == ["not_found"]

    def test_draft_form(self, seeded_repo, sectioned_form, now):
        form_id = seeded_repo.create_form(sectioned_form)
        types = [i.type for i in check_submission(seeded_repo, form_id, 1, now=now)]
        assert types == ["form_status", "not_assigned"]

    def test_not_started(self, deployed, seeded_repo, now):
        types = [i.type for i in check_submission(seeded_repo, deployed.id, 1, now=now - timedelta(days=1))]
        assert types == ["not_started"]

    def test_naive_now_is_taken_as_utc(self, deployed, seeded_repo, now):
        naive = (now + timedelta(days=31)).replace(tzinfo=None)
        types = [i.type for i in check_submission(seeded_repo, deployed.id, 1, now=naive)]
        assert types == ["expired"]
