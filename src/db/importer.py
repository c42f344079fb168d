# src/db/importer.py
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import pandas as pd

from .models import AUDIENCE_ROLES, DirectoryUser
from .repository import SQLiteRepository
from src.app.errors import FieldError, ValidationError
from src.app.logging import get_logger

logger = get_logger(__name__)

_KNOWN_ROLES = {r for r in AUDIENCE_ROLES.values() if r != "*"} | {"admin"}
_REQUIRED_COLUMNS = ("id", "full_name", "role")
_OPTIONAL_COLUMNS = ("email", "department", "course_year_section", "company", "status")

# Common header spellings in roster exports.
_ALIASES = {
    "user_id": "id",
    "name": "full_name",
    "fullname": "full_name",
    "section": "course_year_section",
    "course_yr_section": "course_year_section",
    "courseyearsection": "course_year_section",
}


@dataclass(frozen=True)
class ImportResult:
    imported_users: int
    skipped_rows: int


class DirectoryImporter:
    """
    Loads a roster export (one row per user) into the user directory the
    audience resolver queries.
    """

    def __init__(self, repository: SQLiteRepository):
        self.repo = repository

    def import_csv(self, file_path: str, encoding: Optional[str] = None) -> ImportResult:
        try:
            df = pd.read_csv(file_path, encoding=encoding, dtype=str)
        except (OSError, ValueError, pd.errors.ParserError) as e:
            raise ValidationError([FieldError("file", f"Failed to read CSV: {e}")]) from e

        return self.import_dataframe(df, source_hint=str(file_path))

    def import_dataframe(self, df: pd.DataFrame, source_hint: str = "dataframe") -> ImportResult:
        if df is None or df.empty:
            raise ValidationError([FieldError("file", "Roster is empty.")])

        df = df.copy()
        df.columns = [self._normalize_column_name(c) for c in df.columns]

        missing = [c for c in _REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            raise ValidationError([FieldError(c, f"Missing column '{c}'") for c in missing])

        records = df.to_dict(orient="records")

        users: List[DirectoryUser] = []
        skipped = 0
        for row in records:
            user = self._row_to_user(row)
            if user is None:
                skipped += 1
                continue
            users.append(user)

        imported = self.repo.upsert_users(users)
        logger.info(
            "directory import finished",
            extra={"source": source_hint, "imported": imported, "skipped": skipped},
        )
        return ImportResult(imported_users=imported, skipped_rows=skipped)

    def _row_to_user(self, row: Dict[str, Any]) -> Optional[DirectoryUser]:
        raw_id = _clean(row.get("id"))
        name = _clean(row.get("full_name"))
        role = (_clean(row.get("role")) or "").lower()
        if not raw_id or not name or role not in _KNOWN_ROLES:
            return None
        try:
            user_id = int(float(raw_id))
        except (ValueError, OverflowError):
            return None

        extra = {c: _clean(row.get(c)) for c in _OPTIONAL_COLUMNS}
        return DirectoryUser(
            id=user_id,
            full_name=name,
            role=role,
            email=extra["email"],
            department=extra["department"],
            course_year_section=extra["course_year_section"],
            company=extra["company"],
            status=(extra["status"] or "active").lower(),
        )

    def _normalize_column_name(self, raw: Any) -> str:
        s = str(raw).strip().lower()
        s = re.sub(r"[\s\-/]+", "_", s)
        s = re.sub(r"[^\w_]+", "", s)
        s = re.sub(r"_+", "_", s).strip("_")
        return _ALIASES.get(s, s) or "col"


def _clean(v: Any) -> Optional[str]:
    # blank cells arrive as NaN
    if v is None or pd.isna(v):
        return None
    s = str(v).strip()
    return s or None
