# src/analytics/export.py
from __future__ import annotations

from pathlib import Path
from typing import IO, Any, Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from src.app.logging import get_logger
from src.db.models import Form, Response, ScalarAnswer, answer_kind, answer_to_text, coerce_answer, to_iso
from src.forms.ordering import build_pages, flatten, number_questions

logger = get_logger(__name__)

META_COLUMNS = ["respondent", "email", "role", "submitted_at"]


def question_columns(form: Form) -> Dict[str, str]:
    # question id -> column header, in page order ("1. Rate the course")
    pages = build_pages(form.questions, form.sections, orphan_policy="append")
    numbers = number_questions(pages)
    return {q.id: f"{numbers[q.id]}. {q.prompt}".strip() for q in flatten(pages)}


def responses_frame(form: Form, responses: Sequence[Response]) -> pd.DataFrame:
    """
    One row per response. Scalar questions become float columns (NaN when unanswered);
    every other question becomes a text column, checkbox selections joined with "; ".
    """
    columns = question_columns(form)
    by_id = {q.id: q for q in form.questions}

    rows: List[Dict[str, Any]] = []
    for r in responses:
        row: Dict[str, Any] = {
            "respondent": r.respondent_name or str(r.respondent_id),
            "email": r.respondent_email or "",
            "role": r.respondent_role or "",
            "submitted_at": to_iso(r.submitted_at) or "",
        }
        for qid, header in columns.items():
            q = by_id[qid]
            answer = coerce_answer(q.type, r.answers.get(qid))
            if answer_kind(q.type) == "scalar":
                row[header] = answer.value if isinstance(answer, ScalarAnswer) else np.nan
            else:
                row[header] = answer_to_text(answer)
        rows.append(row)

    df = pd.DataFrame(rows, columns=META_COLUMNS + list(columns.values()))
    for qid, header in columns.items():
        if answer_kind(by_id[qid].type) == "scalar":
            df[header] = df[header].astype("float64")
    return df


def export_responses_csv(
    form: Form,
    responses: Sequence[Response],
    path_or_buffer: Union[str, Path, IO[str]],
    encoding: Optional[str] = "utf-8",
) -> int:
    # Returns the number of rows written.
    df = responses_frame(form, responses)
    if isinstance(path_or_buffer, (str, Path)):
        df.to_csv(path_or_buffer, index=False, na_rep="", encoding=encoding)
    else:
        df.to_csv(path_or_buffer, index=False, na_rep="")
    logger.info("responses exported", extra={"form": form.id, "rows": len(df)})
    return len(df)
