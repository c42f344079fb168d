from __future__ import annotations

from typing import Dict, Optional

from src.db.repository import SQLiteRepository


class QuestionCountCache:
    # Read-through cache of question counts per form. Owners call invalidate()
    # after every successful save/update of that form.

    def __init__(self, repository: SQLiteRepository):
        self.repo = repository
        self._counts: Dict[str, int] = {}

    def get(self, form_id: str) -> int:
        if form_id not in self._counts:
            self._counts[form_id] = self.repo.count_questions(form_id)
        return self._counts[form_id]

    def peek(self, form_id: str) -> Optional[int]:
        return self._counts.get(form_id)

    def invalidate(self, form_id: Optional[str] = None) -> None:
        if form_id is None:
            self._counts.clear()
        else:
            self._counts.pop(form_id, None)
