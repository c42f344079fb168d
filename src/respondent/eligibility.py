# src/respondent/eligibility.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from src.app.errors import EligibilityIssue, NotFoundError
from src.app.logging import get_logger
from src.db.models import Form, parse_iso, to_iso, utc_now
from src.db.repository import SQLiteRepository

logger = get_logger(__name__)


def check_submission(
    repository: SQLiteRepository,
    form_id: str,
    respondent_id: int,
    now: Optional[datetime] = None,
) -> List[EligibilityIssue]:
    """
    Pre-submit check. Returns every reason the respondent may not submit right now;
    an empty list means the submission may proceed.

    This is best-effort: the storage uniqueness constraint remains the authoritative
    guard against a second submission.
    """
    now = parse_iso(now) or utc_now()
    try:
        form: Form = repository.get_form(form_id)
    except NotFoundError:
        return [EligibilityIssue("not_found", "This form no longer exists")]

    issues: List[EligibilityIssue] = []
    if form.status != "active":
        issues.append(EligibilityIssue("form_status", "This form is not accepting responses", detail=form.status))

    if form.schedule is not None:
        if now < form.schedule.start:
            issues.append(EligibilityIssue("not_started", "This form is not open yet",
                                           detail=to_iso(form.schedule.start)))
        elif now > form.schedule.end:
            issues.append(EligibilityIssue("expired", "The response window for this form has closed",
                                           detail=to_iso(form.schedule.end)))

    if not repository.is_assigned(form_id, respondent_id):
        issues.append(EligibilityIssue("not_assigned", "You are not in the audience for this form"))

    if repository.has_response(form_id, respondent_id):
        issues.append(EligibilityIssue("already_submitted", "You have already submitted this form"))

    if issues:
        logger.info("submission not eligible",
                    extra={"form": form_id, "respondent": respondent_id, "reasons": [i.type for i in issues]})
    return issues
