# src/forms/drafts.py
"""
Author-side drafts kept in two tiers:

  - authoritative: the repository (server copy)
  - scratch: one local JSON file per form, written while editing

``merge_drafts`` decides, once at load time, which copy the editor starts from.
Respondent answers are never written here.
"""
from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Optional

from src.app.errors import NotFoundError, ValidationError
from src.app.logging import get_logger
from src.db.repository import SQLiteRepository
from src.workflows.state import FormDraft

logger = get_logger(__name__)


def merge_drafts(server: Optional[FormDraft], scratch: Optional[FormDraft]) -> Optional[FormDraft]:
    # Pure: the scratch copy wins only when it holds unsaved edits newer than the server copy.
    if scratch is None or not scratch.dirty:
        return server
    if server is None:
        return scratch
    if scratch.updated_at > server.updated_at:
        if scratch.form_id is None:
            return replace(scratch, form_id=server.form_id)
        return scratch
    return server


class DraftStore:
    def __init__(self, repository: SQLiteRepository, drafts_dir: str):
        self.repo = repository
        self.drafts_dir = Path(drafts_dir)
        self.drafts_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, form_id: Optional[str]) -> Path:
        key = f"form_draft_{form_id}" if form_id else "form_draft_new"
        return self.drafts_dir / f"{key}.json"

    def save_scratch(self, draft: FormDraft) -> Path:
        path = self._path(draft.form_id)
        path.write_text(draft.to_json(), encoding="utf-8")
        return path

    def read_scratch(self, form_id: Optional[str]) -> Optional[FormDraft]:
        path = self._path(form_id)
        if not path.exists():
            return None
        try:
            return FormDraft.from_json(path.read_text(encoding="utf-8"))
        except (ValueError, KeyError, ValidationError) as e:
            # A corrupt scratch file must not block loading the server copy.
            logger.warning("discarding unreadable scratch draft", extra={"path": str(path), "error": str(e)})
            return None

    def clear_scratch(self, form_id: Optional[str]) -> None:
        self._path(form_id).unlink(missing_ok=True)

    def load(self, form_id: Optional[str]) -> Optional[FormDraft]:
        server: Optional[FormDraft] = None
        if form_id is not None:
            try:
                server = FormDraft.from_form(self.repo.get_form(form_id))
            except NotFoundError:
                server = None

        merged = merge_drafts(server, self.read_scratch(form_id))
        if merged is not None and merged is not server:
            logger.info("restored unsaved scratch draft", extra={"form": form_id})
        return merged
