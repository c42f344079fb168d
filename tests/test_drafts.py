"""
Tests for author drafts and the question-count cache (src.forms.drafts, src.forms.cache)
"""
from datetime import timedelta

import pytest

from src.forms.cache import QuestionCountCache
from src.forms.drafts import DraftStore, merge_drafts
from src.workflows.state import FormDraft


@pytest.fixture
def store(repo, settings):
    return DraftStore(repo, settings.drafts_dir)


class TestMergeDrafts:
    """Choosing between server and scratch copies"""

    def setup_method(self):
        self.server = FormDraft(form_id="f1", title="Server")
        self.scratch = FormDraft(form_id="f1", title="Scratch", dirty=True,
                                 updated_at=self.server.updated_at + timedelta(minutes=5))

    def test_newer_dirty_scratch_wins(self):
        assert merge_drafts(self.server, self.scratch) is self.scratch

    def test_clean_scratch_loses(self):
        self.scratch.dirty = False
        assert merge_drafts(self.server, self.scratch) is self.server

    def test_older_scratch_loses(self):
        self.scratch.updated_at = self.server.updated_at - timedelta(minutes=5)
        assert merge_drafts(self.server, self.scratch) is self.server

    def test_scratch_without_server(self):
        assert merge_drafts(None, self.scratch) is self.scratch
        assert merge_drafts(None, None) is None

    def test_merge_does_not_mutate_inputs(self):
        """A new-form scratch copy adopts the server id without being changed itself"""
        self.scratch.form_id = None
        merged = merge_drafts(self.server, self.scratch)
        assert merged.form_id == "f1"
        assert self.scratch.form_id is None


class TestDraftStore:
    """Scratch files and loading"""

    def test_scratch_round_trip(self, store, course_eval):
        draft = FormDraft.from_form(course_eval)
        draft.touch()
        store.save_scratch(draft)

        back = store.read_scratch(None)
        assert back.title == "Course Eval"
        assert back.dirty is True
        assert [q.id for q in back.questions] == ["q1"]

    def test_corrupt_scratch_is_ignored(self, store, settings):
        (store.drafts_dir / "form_draft_new.json").write_text("{not json", encoding="utf-8")
        assert store.read_scratch(None) is None

    def test_load_prefers_unsaved_edits(self, store, repo, course_eval):
        form_id = repo.create_form(course_eval)
        draft = store.load(form_id)
        assert draft.title == "Course Eval"

        draft.patch(title="Course Eval v2")
        draft.updated_at = draft.updated_at + timedelta(minutes=1)
        store.save_scratch(draft)
        assert store.load(form_id).title == "Course Eval v2"

        store.clear_scratch(form_id)
        assert store.load(form_id).title == "Course Eval"

    def test_load_missing_form(self, store):
        assert store.load("nope") is None


class TestQuestionCountCache:
    """Read-through cache with explicit invalidation"""

    def test_read_through_and_invalidate(self, repo, course_eval):
        form_id = repo.create_form(course_eval)
        cache = QuestionCountCache(repo)

        assert cache.peek(form_id) is None
        assert cache.get(form_id) == 1

        repo.update_form(form_id, questions=())
        assert cache.get(form_id) == 1

        cache.invalidate(form_id)
        assert cache.get(form_id) == 0

    def test_invalidate_all(self, repo, course_eval):
        cache = QuestionCountCache(repo)
        form_id = repo.create_form(course_eval)
        cache.get(form_id)
        cache.invalidate()
        assert cache.peek(form_id) is None
