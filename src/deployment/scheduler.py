# src/deployment/scheduler.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from src.app.config import Settings
from src.app.errors import FieldError, ValidationError
from src.app.logging import get_logger
from src.audience.resolver import resolve_recipients
from src.db.models import AudienceSpec, Deployment, Form, Schedule, parse_iso, utc_now
from src.db.repository import SQLiteRepository

logger = get_logger(__name__)

DEFAULT_WINDOW_DAYS = 30


@dataclass(frozen=True)
class DeploymentResult:
    form_id: str
    schedule: Schedule
    audience: Optional[AudienceSpec]
    assigned_count: int


def resolve_schedule(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    now: Optional[datetime] = None,
    window_days: int = DEFAULT_WINDOW_DAYS,
) -> Schedule:
    # Start defaults to now; end defaults to start + window.
    start = parse_iso(start) or parse_iso(now) or utc_now()
    end = parse_iso(end) or start + timedelta(days=window_days)
    if end <= start:
        raise ValidationError([FieldError("schedule", "End date must be after the start date")])
    return Schedule(start=start, end=end)


class DeploymentScheduler:
    """
    Turns a saved form into an active deployment.

    ``assign_to_users`` is the primitive: it records the schedule and audience for
    the form, replaces the assignment set and flips the form to ``active``.
    ``deploy`` resolves an audience description first and then delegates.
    Both are idempotent under retry: a redeploy updates the schedule and audience
    in place and leaves exactly one assignment per recipient.
    """

    def __init__(self, repository: SQLiteRepository, settings: Optional[Settings] = None):
        self.repo = repository
        self.window_days = settings.default_window_days if settings else DEFAULT_WINDOW_DAYS

    def assign_to_users(
        self,
        form_id: str,
        user_ids: Iterable[int],
        audience: Optional[AudienceSpec] = None,
        schedule: Optional[Schedule] = None,
        now: Optional[datetime] = None,
    ) -> DeploymentResult:
        now = parse_iso(now) or utc_now()
        if schedule is None:
            schedule = resolve_schedule(now=now, window_days=self.window_days)

        self.repo.upsert_deployment(
            Deployment(form_id=form_id, schedule=schedule, audience=audience, status="active", deployed_at=now)
        )
        assigned = self.repo.replace_assignments(form_id, user_ids)

        fields = {"status": "active", "schedule": schedule}
        if audience is not None:
            fields["target_audience"] = audience
        self.repo.update_form(form_id, **fields)

        logger.info(
            "form deployed",
            extra={
                "form": form_id,
                "assigned": assigned,
                "audience": audience.label() if audience else None,
                "start": schedule.to_dict()["start"],
                "end": schedule.to_dict()["end"],
            },
        )
        return DeploymentResult(form_id=form_id, schedule=schedule, audience=audience, assigned_count=assigned)

    def deploy(
        self,
        form: Form,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        audience: Optional[AudienceSpec] = None,
        now: Optional[datetime] = None,
    ) -> DeploymentResult:
        if form.id is None:
            raise ValidationError([FieldError("form_id", "Save the form before deploying it")])

        audience = audience or form.target_audience
        if audience is None:
            raise ValidationError([FieldError("target_audience", "Please select a target audience")])

        schedule = resolve_schedule(start, end, now=now or utc_now(), window_days=self.window_days)
        recipients = resolve_recipients(self.repo, audience)
        if not recipients:
            logger.warning("deploying to an empty audience", extra={"form": form.id, "audience": audience.label()})

        return self.assign_to_users(
            form.id, [r.id for r in recipients], audience=audience, schedule=schedule, now=now,
        )
