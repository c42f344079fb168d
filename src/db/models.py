# models.py
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Literal, Optional, Tuple, Union


QuestionType = Literal[
    "multiple-choice", "rating", "text", "textarea", "checkbox", "dropdown", "linear-scale",
]
FormStatus = Literal["draft", "active", "template"]
AssignmentStatus = Literal["pending", "completed", "expired"]

QUESTION_TYPES: Tuple[str, ...] = (
    "multiple-choice", "rating", "text", "textarea", "checkbox", "dropdown", "linear-scale",
)
CHOICE_TYPES = frozenset({"multiple-choice", "checkbox", "dropdown"})
SCALAR_TYPES = frozenset({"rating", "linear-scale"})
TEXT_TYPES = frozenset({"text", "textarea"})

FORM_STATUSES: Tuple[str, ...] = ("draft", "active", "template")

# Audience type -> directory role ("*" matches every role)
AUDIENCE_ROLES: Dict[str, str] = {
    "All Users": "*",
    "Students": "student",
    "Instructors": "instructor",
    "Alumni": "alumni",
    "Employers": "employer",
    "Staff": "employer",
}


# -------------------------
# Time helpers
# -------------------------

def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def parse_iso(raw: Any) -> Optional[datetime]:
    # Naive values are taken as UTC; date-only strings start at midnight.
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        dt = raw
    else:
        s = str(raw).strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# -------------------------
# Form definition
# -------------------------

@dataclass(frozen=True)
class Question:
    id: str
    type: str
    prompt: str = ""
    description: Optional[str] = None
    required: bool = False
    options: Optional[Tuple[str, ...]] = None
    min: Optional[int] = None
    max: Optional[int] = None
    section_id: Optional[str] = None
    order: Optional[float] = None

    @property
    def is_choice(self) -> bool:
        return self.type in CHOICE_TYPES

    @property
    def is_standalone(self) -> bool:
        return not self.section_id

    def non_empty_options(self) -> List[str]:
        return [o for o in (self.options or ()) if o and o.strip()]


@dataclass(frozen=True)
class Section:
    id: str
    title: str = ""
    description: Optional[str] = None
    order: float = 0


@dataclass(frozen=True)
class Schedule:
    start: datetime
    end: datetime

    def is_open(self, now: datetime) -> bool:
        return self.start <= now <= self.end

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"start": to_iso(self.start), "end": to_iso(self.end)}


@dataclass(frozen=True)
class AudienceSpec:
    audience_type: str
    department: Optional[str] = None
    course_year_section: Optional[str] = None
    company: Optional[str] = None

    @property
    def role(self) -> str:
        return AUDIENCE_ROLES[self.audience_type]

    def label(self) -> str:
        # "Students - CS / BSCS-1A", "Alumni - Acme", "All Users"
        parts = [p for p in (self.department, self.course_year_section, self.company) if p]
        if not parts:
            return self.audience_type
        return f"{self.audience_type} - {' / '.join(parts)}"

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "audience_type": self.audience_type,
            "department": self.department,
            "course_year_section": self.course_year_section,
            "company": self.company,
        }

    @staticmethod
    def from_dict(d: Optional[Dict[str, Any]]) -> Optional["AudienceSpec"]:
        if not d:
            return None
        audience_type = d.get("audience_type") or d.get("type") or d.get("audienceType")
        if not audience_type:
            return None
        return AudienceSpec(
            audience_type=str(audience_type),
            department=d.get("department") or None,
            course_year_section=d.get("course_year_section") or d.get("courseYearSection") or None,
            company=d.get("company") or None,
        )


@dataclass(frozen=True)
class Form:
    id: Optional[str]
    title: str
    description: str = ""
    category: str = ""
    target_audience: Optional[AudienceSpec] = None
    image_ref: Optional[str] = None
    status: str = "draft"
    schedule: Optional[Schedule] = None
    sections: Tuple[Section, ...] = ()
    questions: Tuple[Question, ...] = ()
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def question(self, question_id: str) -> Optional[Question]:
        for q in self.questions:
            if q.id == question_id:
                return q
        return None


@dataclass(frozen=True)
class Category:
    id: int
    name: str


# -------------------------
# Directory / audience
# -------------------------

@dataclass(frozen=True)
class DirectoryUser:
    id: int
    full_name: str
    role: str
    email: Optional[str] = None
    department: Optional[str] = None
    course_year_section: Optional[str] = None
    company: Optional[str] = None
    status: str = "active"

    @property
    def role_detail(self) -> str:
        if self.role == "student":
            return self.course_year_section or "No section"
        if self.role == "instructor":
            return self.department or "No department"
        if self.role in {"alumni", "employer"}:
            return self.company or "No company"
        return "N/A"


@dataclass(frozen=True)
class Recipient:
    id: int
    display_name: str
    detail_label: str


# -------------------------
# Deployment / assignments
# -------------------------

@dataclass(frozen=True)
class Deployment:
    form_id: str
    schedule: Schedule
    audience: Optional[AudienceSpec]
    status: str = "active"
    deployed_at: Optional[datetime] = None


@dataclass(frozen=True)
class Assignment:
    form_id: str
    user_id: int
    title: str
    status: str
    due: Optional[datetime] = None
    submitted_at: Optional[datetime] = None


# -------------------------
# Responses + answers
# -------------------------

@dataclass(frozen=True)
class Response:
    id: str
    form_id: str
    respondent_id: int
    answers: Dict[str, Any] = field(default_factory=dict)
    submitted_at: Optional[datetime] = None
    respondent_name: Optional[str] = None
    respondent_email: Optional[str] = None
    respondent_role: Optional[str] = None


@dataclass(frozen=True)
class ScalarAnswer:
    value: float


@dataclass(frozen=True)
class TextAnswer:
    value: str


@dataclass(frozen=True)
class MultiSelectAnswer:
    values: Tuple[str, ...]


Answer = Union[ScalarAnswer, TextAnswer, MultiSelectAnswer]


def answer_kind(question_type: str) -> str:
    # "scalar" | "text" | "multi"; every question type maps to exactly one.
    if question_type in SCALAR_TYPES:
        return "scalar"
    if question_type == "checkbox":
        return "multi"
    if question_type in TEXT_TYPES or question_type in {"multiple-choice", "dropdown"}:
        return "text"
    raise ValueError(f"Unknown question type: {question_type!r}")


def coerce_answer(question_type: str, raw: Any) -> Optional[Answer]:
    """
    Converts a raw stored/submitted value into the Answer variant for the question type.
    Returns None when the value is missing, empty or (for scalar types) non-numeric.
    """
    kind = answer_kind(question_type)
    if raw is None:
        return None

    if kind == "scalar":
        if isinstance(raw, bool):
            return None
        if isinstance(raw, (int, float)):
            num = float(raw)
        else:
            s = str(raw).strip()
            if not s:
                return None
            try:
                num = float(s)
            except ValueError:
                return None
        if math.isnan(num) or math.isinf(num):
            return None
        return ScalarAnswer(num)

    if kind == "multi":
        items: Iterable[Any]
        if isinstance(raw, str):
            items = [raw]
        elif isinstance(raw, (list, tuple, set, frozenset)):
            items = raw
        else:
            return None
        seen: List[str] = []
        for item in items:
            s = str(item).strip() if item is not None else ""
            if s and s not in seen:
                seen.append(s)
        return MultiSelectAnswer(tuple(seen)) if seen else None

    s = str(raw).strip()
    return TextAnswer(s) if s else None


def answer_to_json(answer: Answer) -> Any:
    if isinstance(answer, ScalarAnswer):
        v = answer.value
        return int(v) if float(v).is_integer() else v
    if isinstance(answer, TextAnswer):
        return answer.value
    if isinstance(answer, MultiSelectAnswer):
        return list(answer.values)
    raise TypeError(f"Unsupported answer: {answer!r}")


def answer_to_text(answer: Optional[Answer]) -> str:
    # Flat display form (CSV cells, listings).
    if answer is None:
        return ""
    if isinstance(answer, MultiSelectAnswer):
        return "; ".join(answer.values)
    return str(answer_to_json(answer))
