# src/respondent/pager.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from src.app.errors import EligibilityIssue, FieldError, NotFoundError, SubmissionIneligibleError, ValidationError
from src.app.logging import form_context, get_logger, respondent_actor
from src.db.models import Answer, Form, Question, Response, answer_to_json, coerce_answer
from src.db.repository import SQLiteRepository
from src.forms.ordering import Page, build_pages, number_questions
from src.respondent.eligibility import check_submission

logger = get_logger(__name__)


class RespondentPager:
    """
    One respondent's walk through a form: page index, answers and submission.

    States are the page indices 0..N-1 plus an implicit "submit" after the last page.
    ``previous()`` on page 0 leaves the form. Answers live only in this object until
    a successful ``submit()``; failed submissions leave the pager on the last page with
    every answer intact.
    """

    def __init__(self, form: Form, orphan_policy: str = "exclude"):
        self.form = form
        self.pages: List[Page] = build_pages(form.questions, form.sections, orphan_policy=orphan_policy)
        self.numbers: Dict[str, int] = number_questions(self.pages)
        self.index = 0
        self.answers: Dict[str, Answer] = {}
        self.exited = False
        self.submitted: Optional[Response] = None
        self.last_issues: List[EligibilityIssue] = []

    # -------------------------
    # Navigation
    # -------------------------
    @property
    def total_pages(self) -> int:
        return len(self.pages)

    @property
    def current_page(self) -> Optional[Page]:
        return self.pages[self.index] if self.pages else None

    @property
    def is_last(self) -> bool:
        return bool(self.pages) and self.index == len(self.pages) - 1

    @property
    def progress(self) -> float:
        if not self.pages:
            return 0.0
        return (self.index + 1) / len(self.pages) * 100

    def next(self) -> bool:
        # Disabled on the last page; submit() takes over there.
        if not self.pages or self.is_last:
            return False
        self.index += 1
        return True

    def previous(self) -> bool:
        if self.index == 0:
            self.exited = True
            return False
        self.index -= 1
        return True

    # -------------------------
    # Answers
    # -------------------------
    def _question(self, question_id: str) -> Question:
        q = self.form.question(question_id)
        if q is None or question_id not in self.numbers:
            raise NotFoundError(f"Question not on this form: {question_id}")
        return q

    def set_answer(self, question_id: str, raw: Any) -> Optional[Answer]:
        # Empty / unusable values clear the answer.
        q = self._question(question_id)
        answer = coerce_answer(q.type, raw)
        if answer is None:
            self.answers.pop(question_id, None)
        else:
            self.answers[question_id] = answer
        return answer

    def answer(self, question_id: str) -> Optional[Answer]:
        return self.answers.get(question_id)

    def missing_required(self) -> List[Question]:
        out: List[Question] = []
        for page in self.pages:
            out.extend(q for q in page.questions if q.required and q.id not in self.answers)
        return out

    def payload(self) -> Dict[str, Any]:
        return {qid: answer_to_json(a) for qid, a in self.answers.items()}

    # -------------------------
    # Submission
    # -------------------------
    def submit(self, repository: SQLiteRepository, respondent_id: int, now: Optional[datetime] = None) -> Response:
        if not self.is_last:
            raise ValidationError([FieldError("page", "Please go to the last page to submit")])

        missing = self.missing_required()
        if missing:
            raise ValidationError(
                [FieldError(q.id, f"Question {self.numbers[q.id]} is required") for q in missing]
            )

        with form_context(self.form.id, respondent_actor(respondent_id)):
            issues = check_submission(repository, self.form.id, respondent_id, now=now)
            if issues:
                self.last_issues = issues
                raise SubmissionIneligibleError(issues)

            try:
                response = repository.submit_response(self.form.id, respondent_id, self.payload())
            except SubmissionIneligibleError as e:
                # Lost the race against another submission for the same pair.
                self.last_issues = e.reasons
                raise

            self.last_issues = []
            self.submitted = response
            logger.info("response submitted", extra={"respondent": respondent_id, "answers": len(self.answers)})
            return response
