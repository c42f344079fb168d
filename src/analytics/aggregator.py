# src/analytics/aggregator.py
"""
Per-question summaries over a form's responses.

  - scalar (rating, linear-scale): mean of numeric answers
  - categorical (multiple-choice, dropdown, checkbox): frequency table
  - text/textarea: not aggregated; see ``collect_text_answers``

Percentages are normalised by the total number of responses to the form, so
respondents who skipped a question show up as a gap.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import pandas as pd

from src.app.config import Settings
from src.app.logging import get_logger
from src.db.models import (
    CHOICE_TYPES,
    SCALAR_TYPES,
    TEXT_TYPES,
    Form,
    MultiSelectAnswer,
    Question,
    Response,
    ScalarAnswer,
    TextAnswer,
    coerce_answer,
)
from src.forms.ordering import build_pages, flatten

logger = get_logger(__name__)

RATING_SCALE_MAX = 5
LINEAR_SCALE_MAX = 10


@dataclass(frozen=True)
class ScalarSummary:
    question_id: str
    prompt: str
    type: str
    average: Optional[float]  # full precision
    count_answered: int
    max_scale: int
    section_id: Optional[str] = None

    @property
    def display_average(self) -> float:
        return round(self.average, 2) if self.average is not None else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question_id": self.question_id,
            "prompt": self.prompt,
            "type": self.type,
            "mode": "scalar",
            "average": self.display_average,
            "count_answered": self.count_answered,
            "max_scale": self.max_scale,
        }


@dataclass(frozen=True)
class Bucket:
    option: str
    count: int
    percentage: float


@dataclass(frozen=True)
class CategoricalSummary:
    question_id: str
    prompt: str
    type: str
    buckets: Tuple[Bucket, ...]
    count_answered: int
    total_responses: int
    section_id: Optional[str] = None

    @property
    def top(self) -> Optional[Bucket]:
        return self.buckets[0] if self.buckets else None

    def bucket(self, option: str) -> Optional[Bucket]:
        for b in self.buckets:
            if b.option == option:
                return b
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question_id": self.question_id,
            "prompt": self.prompt,
            "type": self.type,
            "mode": "categorical",
            "count_answered": self.count_answered,
            "total_responses": self.total_responses,
            "buckets": [{"option": b.option, "count": b.count, "percentage": b.percentage} for b in self.buckets],
        }


Summary = Union[ScalarSummary, CategoricalSummary]


@dataclass(frozen=True)
class FormReport:
    form_id: Optional[str]
    title: str
    total_responses: int
    summaries: Tuple[Summary, ...] = ()
    generated_at: Optional[datetime] = None

    def summary(self, question_id: str) -> Optional[Summary]:
        for s in self.summaries:
            if s.question_id == question_id:
                return s
        return None

    def by_section(self) -> List[Tuple[Optional[str], List[Summary]]]:
        # Sections in page order; standalone questions grouped under None, last.
        groups: Dict[Optional[str], List[Summary]] = {}
        for s in self.summaries:
            groups.setdefault(s.section_id, []).append(s)
        ordered = [(k, v) for k, v in groups.items() if k is not None]
        if None in groups:
            ordered.append((None, groups[None]))
        return ordered

    def to_dict(self) -> Dict[str, Any]:
        return {
            "form_id": self.form_id,
            "title": self.title,
            "total_responses": self.total_responses,
            "questions": [s.to_dict() for s in self.summaries],
        }


# -------------------------
# Scalar mode
# -------------------------

def max_scale_for(question: Question, rating_max: int = RATING_SCALE_MAX) -> int:
    if question.type == "rating":
        return rating_max
    return int(question.max) if question.max is not None else LINEAR_SCALE_MAX


def summarize_scalar(
    question: Question,
    responses: Sequence[Response],
    rating_max: int = RATING_SCALE_MAX,
) -> ScalarSummary:
    values = []
    for r in responses:
        a = coerce_answer(question.type, r.answers.get(question.id))
        if isinstance(a, ScalarAnswer):
            values.append(a.value)

    s = pd.Series(values, dtype="float64")
    average = float(s.mean()) if not s.empty else None

    return ScalarSummary(
        question_id=question.id,
        prompt=question.prompt,
        type=question.type,
        average=average,
        count_answered=int(s.count()),
        max_scale=max_scale_for(question, rating_max),
        section_id=question.section_id,
    )


# -------------------------
# Categorical mode
# -------------------------

def summarize_categorical(
    question: Question,
    responses: Sequence[Response],
    total_responses: Optional[int] = None,
) -> CategoricalSummary:
    """
    Frequency table over raw answer strings. Each checkbox selection counts on its own.
    Buckets are sorted by count descending; ties keep first-seen order.
    """
    total = len(responses) if total_responses is None else total_responses

    rows: List[str] = []
    answered = 0
    for r in responses:
        a = coerce_answer(question.type, r.answers.get(question.id))
        if a is None:
            continue
        answered += 1
        if isinstance(a, MultiSelectAnswer):
            rows.extend(a.values)
        elif isinstance(a, TextAnswer):
            rows.append(a.value)

    buckets: Tuple[Bucket, ...] = ()
    if rows:
        df = pd.DataFrame({"option": rows})
        counts = df.groupby("option", sort=False).size().reset_index(name="count")
        counts = counts.sort_values("count", ascending=False, kind="stable")
        counts["percentage"] = (counts["count"] / total * 100).round(2) if total else 0.0
        buckets = tuple(
            Bucket(option=str(rec["option"]), count=int(rec["count"]), percentage=float(rec["percentage"]))
            for rec in counts.to_dict(orient="records")
        )

    return CategoricalSummary(
        question_id=question.id,
        prompt=question.prompt,
        type=question.type,
        buckets=buckets,
        count_answered=answered,
        total_responses=total,
        section_id=question.section_id,
    )


# -------------------------
# Form level
# -------------------------

def report_questions(form: Form) -> List[Question]:
    # Page order; orphaned questions are still reported, as standalone, after everything else.
    known = {s.id for s in form.sections}
    return [
        q if q.section_id is None or q.section_id in known else replace(q, section_id=None)
        for q in flatten(build_pages(form.questions, form.sections, orphan_policy="append"))
    ]


def aggregate_form(
    form: Form,
    responses: Sequence[Response],
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
) -> FormReport:
    rating_max = settings.rating_scale_max if settings else RATING_SCALE_MAX
    total = len(responses)

    summaries: List[Summary] = []
    for q in report_questions(form):
        if q.type in SCALAR_TYPES:
            summaries.append(summarize_scalar(q, responses, rating_max))
        elif q.type in CHOICE_TYPES:
            summaries.append(summarize_categorical(q, responses, total))
        elif q.type in TEXT_TYPES:
            continue
        else:
            logger.warning("skipping question with unknown type", extra={"question": q.id, "type": q.type})

    logger.info("form aggregated", extra={"form": form.id, "responses": total, "questions": len(summaries)})
    return FormReport(
        form_id=form.id,
        title=form.title,
        total_responses=total,
        summaries=tuple(summaries),
        generated_at=now,
    )


def collect_text_answers(form: Form, responses: Sequence[Response]) -> Dict[str, List[Dict[str, Any]]]:
    """
    Raw free-text answers per text/textarea question id, in response order:
    ``{question_id: [{respondent, submitted_at, answer}, ...]}``. Blank answers are skipped.
    """
    out: Dict[str, List[Dict[str, Any]]] = {}
    for q in report_questions(form):
        if q.type not in TEXT_TYPES:
            continue
        items: List[Dict[str, Any]] = []
        for r in responses:
            a = coerce_answer(q.type, r.answers.get(q.id))
            if a is None:
                continue
            items.append({
                "respondent": r.respondent_name or str(r.respondent_id),
                "submitted_at": r.submitted_at,
                "answer": a.value,
            })
        out[q.id] = items
    return out
