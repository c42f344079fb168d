# src/audience/resolver.py
from __future__ import annotations

from dataclasses import replace
from typing import Dict, List, Optional, Protocol, Set, Tuple

from src.app.errors import AudienceEmptyError, FieldError, ValidationError
from src.app.logging import get_logger
from src.db.models import AUDIENCE_ROLES, AudienceSpec, DirectoryUser, Recipient

logger = get_logger(__name__)

# Structural filters each audience type honours; anything else is dropped.
AUDIENCE_FILTERS: Dict[str, Tuple[str, ...]] = {
    "All Users": (),
    "Students": ("department", "course_year_section"),
    "Instructors": ("department",),
    "Alumni": ("company",),
    "Employers": ("company",),
    "Staff": ("company",),
}

# Selector values meaning "no section filter".
_ALL_SECTIONS = {"All Students", "All"}


class Directory(Protocol):
    def lookup_users(
        self,
        role: str,
        department: Optional[str] = None,
        course_year_section: Optional[str] = None,
        company: Optional[str] = None,
    ) -> List[DirectoryUser]:
        ...


def normalize_audience(spec: AudienceSpec) -> AudienceSpec:
    if spec.audience_type not in AUDIENCE_ROLES:
        raise ValidationError(
            [FieldError("target_audience", f"Unknown audience type '{spec.audience_type}'")]
        )

    allowed = AUDIENCE_FILTERS[spec.audience_type]
    values = {
        "department": (spec.department or "").strip() or None,
        "course_year_section": (spec.course_year_section or "").strip() or None,
        "company": (spec.company or "").strip() or None,
    }
    if values["course_year_section"] in _ALL_SECTIONS:
        values["course_year_section"] = None

    dropped = [k for k, v in values.items() if v and k not in allowed]
    if dropped:
        logger.debug("ignoring filters not used by audience type",
                     extra={"audience_type": spec.audience_type, "dropped": dropped})

    return replace(spec, **{k: (v if k in allowed else None) for k, v in values.items()})


def resolve_recipients(directory: Directory, spec: AudienceSpec) -> List[Recipient]:
    """
    Maps the audience type to a directory role, layers the structural filters on top,
    and returns the de-duplicated recipients in directory order.
    """
    spec = normalize_audience(spec)
    users = directory.lookup_users(
        role=spec.role,
        department=spec.department,
        course_year_section=spec.course_year_section,
        company=spec.company,
    )

    seen: Set[int] = set()
    out: List[Recipient] = []
    for u in users:
        if u.id in seen:
            continue
        seen.add(u.id)
        out.append(Recipient(id=u.id, display_name=u.full_name, detail_label=u.role_detail))
    return out


class AudienceSelection:
    """
    Authoring-time audience state: the resolved pool, the selected subset and a search
    term that narrows the visible list.

    Changing the audience marks the pool stale; it is re-resolved before it is read
    again, so the selection never reaches outside the current filters. Search only
    affects visibility: hidden recipients cannot be toggled.
    """

    def __init__(self, directory: Directory, spec: Optional[AudienceSpec] = None):
        self.directory = directory
        self.spec: Optional[AudienceSpec] = normalize_audience(spec) if spec else None
        self.search_term = ""
        self._pool: List[Recipient] = []
        self._selected: Set[int] = set()
        self._stale = spec is not None

    def set_audience(
        self,
        audience_type: str,
        department: Optional[str] = None,
        course_year_section: Optional[str] = None,
        company: Optional[str] = None,
    ) -> AudienceSpec:
        self.spec = normalize_audience(
            AudienceSpec(audience_type, department=department,
                         course_year_section=course_year_section, company=company)
        )
        self._pool = []
        self._selected = set()
        self._stale = True
        return self.spec

    def resolve(self) -> List[Recipient]:
        # Fresh pool; selection defaults to everyone in it.
        if self.spec is None:
            self._pool, self._selected = [], set()
        else:
            self._pool = resolve_recipients(self.directory, self.spec)
            self._selected = {r.id for r in self._pool}
        self._stale = False
        logger.info("audience resolved",
                    extra={"audience": self.spec.label() if self.spec else None, "recipients": len(self._pool)})
        return list(self._pool)

    def _ensure_fresh(self) -> None:
        if self._stale:
            self.resolve()

    @property
    def recipients(self) -> List[Recipient]:
        self._ensure_fresh()
        return list(self._pool)

    @property
    def selected_ids(self) -> Set[int]:
        self._ensure_fresh()
        return set(self._selected)

    @property
    def all_selected(self) -> bool:
        self._ensure_fresh()
        return bool(self._pool) and self._selected == {r.id for r in self._pool}

    def selected_recipients(self) -> List[Recipient]:
        self._ensure_fresh()
        return [r for r in self._pool if r.id in self._selected]

    def set_search(self, term: str) -> None:
        self.search_term = term or ""

    def visible(self) -> List[Recipient]:
        self._ensure_fresh()
        term = self.search_term.strip().casefold()
        if not term:
            return list(self._pool)
        return [r for r in self._pool if term in r.display_name.casefold()]

    def toggle(self, recipient_id: int) -> bool:
        # Returns False when the recipient is not in the visible pool.
        if recipient_id not in {r.id for r in self.visible()}:
            return False
        if recipient_id in self._selected:
            self._selected.discard(recipient_id)
        else:
            self._selected.add(recipient_id)
        return True

    def toggle_all(self, checked: bool) -> None:
        self._ensure_fresh()
        self._selected = {r.id for r in self._pool} if checked else set()

    def require_recipients(self) -> List[Recipient]:
        selected = self.selected_recipients()
        if not selected:
            raise AudienceEmptyError(self.spec.label() if self.spec else None)
        return selected
