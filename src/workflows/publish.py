# src/workflows/publish.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from src.app.config import Settings
from src.app.errors import AudienceEmptyError, ValidationError
from src.app.logging import form_context, get_logger, setup_logging
from src.audience.resolver import AudienceSelection
from src.db.models import Schedule
from src.db.repository import SQLiteRepository
from src.deployment.scheduler import DeploymentScheduler, resolve_schedule
from src.forms.cache import QuestionCountCache
from src.forms.composer import FormComposer
from src.forms.drafts import DraftStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class PublishResult:
    form_id: str
    assigned_count: int
    schedule: Schedule
    warnings: List[str] = field(default_factory=list)


class PublishWorkflow:
    """
    Author-side data flow: compose -> validate -> persist -> resolve audience -> deploy.

    Saving a draft never validates. Publishing validates first and nothing reaches
    storage when it fails. An empty audience does not stop the deployment; it is
    reported back as a warning.
    """

    def __init__(
        self,
        repository: SQLiteRepository,
        settings: Optional[Settings] = None,
        cache: Optional[QuestionCountCache] = None,
        drafts: Optional[DraftStore] = None,
    ):
        self.repo = repository
        self.settings = settings
        self.cache = cache or QuestionCountCache(repository)
        self.drafts = drafts
        self.scheduler = DeploymentScheduler(repository, settings)

    def _persist(self, composer: FormComposer) -> str:
        previous_id = composer.draft.form_id
        form_id = self.repo.save_form(composer.to_form())
        composer.draft.form_id = form_id
        composer.draft.dirty = False
        self.cache.invalidate(form_id)
        if self.drafts is not None:
            self.drafts.clear_scratch(previous_id)
            self.drafts.clear_scratch(form_id)
        return form_id

    def save_draft(self, composer: FormComposer) -> str:
        composer.draft.status = "draft"
        form_id = self._persist(composer)
        logger.info("draft saved", extra={"form": form_id, "questions": len(composer.questions)})
        return form_id

    def publish(
        self,
        composer: FormComposer,
        selection: Optional[AudienceSelection] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> PublishResult:
        draft = composer.draft
        if selection is not None and selection.spec is not None:
            draft.target_audience = selection.spec

        errors = composer.validate()
        if errors:
            logger.info("publish blocked by validation", extra={"form": draft.form_id, "errors": len(errors)})
            raise ValidationError(errors)

        schedule = resolve_schedule(start, end, now=now, window_days=self.scheduler.window_days)

        form_id = self._persist(composer)
        with form_context(form_id, "author"):
            warnings: List[str] = []
            if selection is None:
                result = self.scheduler.deploy(
                    composer.to_form(), start=schedule.start, end=schedule.end, now=now,
                )
            else:
                try:
                    recipient_ids = [r.id for r in selection.require_recipients()]
                except AudienceEmptyError as e:
                    logger.warning("publishing to an empty audience", extra={"audience": str(e.audience)})
                    warnings.append(str(e))
                    recipient_ids = []
                result = self.scheduler.assign_to_users(
                    form_id, recipient_ids, audience=draft.target_audience, schedule=schedule, now=now,
                )

            if result.assigned_count == 0 and not warnings:
                warnings.append(str(AudienceEmptyError(draft.target_audience.label())))

            draft.status = "active"
            draft.schedule = result.schedule
            draft.dirty = False
            self.cache.invalidate(form_id)

            logger.info("form published", extra={"assigned": result.assigned_count, "warnings": len(warnings)})
            return PublishResult(
                form_id=form_id,
                assigned_count=result.assigned_count,
                schedule=result.schedule,
                warnings=warnings,
            )


def build_workflow(settings: Settings, configure_logging: bool = True) -> PublishWorkflow:
    if configure_logging:
        setup_logging(settings.log_level, settings.log_json)

    repo = SQLiteRepository(settings.db_path, timeout=settings.db_timeout_seconds)
    repo.init_schema()
    return PublishWorkflow(
        repo,
        settings=settings,
        cache=QuestionCountCache(repo),
        drafts=DraftStore(repo, settings.drafts_dir),
    )
