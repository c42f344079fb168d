# src/deployment/assignments.py
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Sequence

from src.db.models import Assignment, parse_iso, utc_now
from src.db.repository import SQLiteRepository


def assignment_status(
    end_at: Optional[datetime],
    submitted_at: Optional[datetime],
    now: datetime,
) -> str:
    # Submitted wins over an elapsed window.
    if submitted_at is not None:
        return "completed"
    if end_at is not None and now > end_at:
        return "expired"
    return "pending"


def user_assignments(
    repository: SQLiteRepository,
    user_id: int,
    now: Optional[datetime] = None,
    include_drafts: bool = False,
) -> List[Assignment]:
    """
    Lists the forms assigned to one user with a derived status.

    Forms pulled back to draft after deployment are hidden unless ``include_drafts``.
    """
    now = parse_iso(now) or utc_now()
    out: List[Assignment] = []
    for row in repository.list_assignments_for_user(user_id):
        if row["form_status"] != "active" and not include_drafts:
            continue
        out.append(
            Assignment(
                form_id=row["form_id"],
                user_id=user_id,
                title=row["title"],
                status=assignment_status(row["end_at"], row["submitted_at"], now),
                due=row["end_at"],
                submitted_at=row["submitted_at"],
            )
        )
    return out


def completion_stats(assignments: Sequence[Assignment]) -> Dict[str, int]:
    counts = {"pending": 0, "completed": 0, "expired": 0}
    for a in assignments:
        counts[a.status] = counts.get(a.status, 0) + 1
    total = len(assignments)
    counts["total"] = total
    counts["completion_rate"] = round(counts["completed"] / total * 100) if total else 0
    return counts
