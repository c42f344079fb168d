# src/workflows/state.py
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from src.db.codec import form_from_payload, form_to_payload
from src.db.models import AudienceSpec, Form, Question, Schedule, Section, to_iso, parse_iso, utc_now


# -------------------------
# Author-side form state (single object passed between composer, drafts and publish)
# -------------------------

@dataclass
class FormDraft:
    # Identity
    form_id: Optional[str] = None

    # Header
    title: str = ""
    description: str = ""
    category: str = ""
    target_audience: Optional[AudienceSpec] = None
    image_ref: Optional[str] = None
    status: str = "draft"
    schedule: Optional[Schedule] = None

    # Body
    sections: List[Section] = field(default_factory=list)
    questions: List[Question] = field(default_factory=list)

    # Editing focus
    active_question_id: Optional[str] = None
    active_section_id: Optional[str] = None

    # Internal bookkeeping
    dirty: bool = False
    updated_at: datetime = field(default_factory=utc_now)

    def touch(self) -> None:
        self.dirty = True
        self.updated_at = utc_now()

    def patch(self, **updates: Any) -> "FormDraft":
        for k, v in updates.items():
            if not hasattr(self, k):
                continue
            setattr(self, k, v)
        self.touch()
        return self

    def has_content(self) -> bool:
        return bool(self.title.strip() or self.description.strip() or self.questions)

    # -------------------------
    # Conversion to/from the stored model
    # -------------------------

    def to_form(self) -> Form:
        return Form(
            id=self.form_id,
            title=self.title,
            description=self.description,
            category=self.category,
            target_audience=self.target_audience,
            image_ref=self.image_ref,
            status=self.status,
            schedule=self.schedule,
            sections=tuple(self.sections),
            questions=tuple(self.questions),
            updated_at=self.updated_at,
        )

    @staticmethod
    def from_form(form: Form) -> "FormDraft":
        return FormDraft(
            form_id=form.id,
            title=form.title,
            description=form.description,
            category=form.category,
            target_audience=form.target_audience,
            image_ref=form.image_ref,
            status=form.status,
            schedule=form.schedule,
            sections=list(form.sections),
            questions=list(form.questions),
            active_question_id=form.questions[0].id if form.questions else None,
            updated_at=form.updated_at or utc_now(),
        )

    # -------------------------
    # JSON serialization (scratch drafts)
    # -------------------------

    def to_dict(self) -> Dict[str, Any]:
        d = form_to_payload(self.to_form())
        d["saved_at"] = to_iso(self.updated_at)
        d["is_dirty"] = self.dirty
        return d

    def to_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=indent)

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "FormDraft":
        draft = FormDraft.from_form(form_from_payload(d))
        draft.dirty = bool(d.get("is_dirty", False))
        draft.updated_at = parse_iso(d.get("saved_at")) or draft.updated_at
        return draft

    @staticmethod
    def from_json(s: str) -> "FormDraft":
        return FormDraft.from_dict(json.loads(s))
