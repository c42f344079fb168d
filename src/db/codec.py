# codec.py
"""
Conversion between stored / API payloads and the in-memory form model.

Payloads arrive in two shapes:
  - API shape (``question_text``, ``question_type``, ``options=[{option_text, order_index}]``,
    ``min_value``/``max_value``, ``order_index``), as written by the repository.
  - Author shape (``question``, ``type``, plain option strings, ``min``/``max``, ``order``),
    as kept by drafts and older clients.

Both are normalized here, once, so that ordering is always a single ``order`` value
by the time ordering or composition code sees a question.
"""
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Sequence

from jsonschema import Draft7Validator

from src.app.errors import FieldError, ValidationError
from src.db.models import (
    CHOICE_TYPES,
    QUESTION_TYPES,
    AudienceSpec,
    Form,
    Question,
    Schedule,
    Section,
    parse_iso,
    to_iso,
)


_ID = {"type": ["string", "integer", "null"]}
_NUM = {"type": ["number", "null"]}
_INT = {"type": ["integer", "null"]}
_STR = {"type": ["string", "null"]}

QUESTION_PAYLOAD_SCHEMA: Dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "id": _ID,
            "type": _STR,
            "question_type": _STR,
            "question": _STR,
            "question_text": _STR,
            "prompt": _STR,
            "description": _STR,
            "required": {"type": ["boolean", "integer", "null"]},
            "options": {
                "type": ["array", "null"],
                "items": {
                    "anyOf": [
                        {"type": ["string", "null"]},
                        {
                            "type": "object",
                            "properties": {"option_text": _STR, "order_index": _INT},
                        },
                    ]
                },
            },
            "min": _INT,
            "max": _INT,
            "min_value": _INT,
            "max_value": _INT,
            "section_id": _ID,
            "sectionId": _ID,
            "order": _NUM,
            "order_index": _NUM,
        },
    },
}

SECTION_PAYLOAD_SCHEMA: Dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "id": _ID,
            "title": _STR,
            "description": _STR,
            "order": _NUM,
            "order_index": _NUM,
        },
    },
}

_QUESTION_VALIDATOR = Draft7Validator(QUESTION_PAYLOAD_SCHEMA)
_SECTION_VALIDATOR = Draft7Validator(SECTION_PAYLOAD_SCHEMA)


def _check(validator: Draft7Validator, payload: Any, root: str) -> None:
    errors = []
    for err in sorted(validator.iter_errors(payload), key=lambda e: list(e.path)):
        path = root + "".join(f"[{p}]" if isinstance(p, int) else f".{p}" for p in err.path)
        errors.append(FieldError(field=path, message=f"{path}: {err.message}"))
    if errors:
        raise ValidationError(errors)


def _first(raw: Dict[str, Any], *keys: str) -> Any:
    for k in keys:
        v = raw.get(k)
        if v is not None:
            return v
    return None


def _opt_id(v: Any) -> Optional[str]:
    if v is None or v == "":
        return None
    return str(v)


def _option_text(opt: Any) -> str:
    if isinstance(opt, dict):
        return str(opt.get("option_text") or "")
    return "" if opt is None else str(opt)


def normalize_type(raw: Any) -> str:
    # "linear_scale" / "Multiple_Choice" -> "linear-scale" / "multiple-choice"
    return str(raw or "text").strip().lower().replace("_", "-")


# -------------------------
# Questions
# -------------------------

def load_questions(payload: Optional[Sequence[Dict[str, Any]]], validate: bool = True) -> List[Question]:
    if not payload:
        return []
    if validate:
        _check(_QUESTION_VALIDATOR, list(payload), "questions")

    out: List[Question] = []
    seen = set()
    type_errors: List[FieldError] = []

    for index, raw in enumerate(payload):
        qid = _opt_id(raw.get("id")) or f"q_{index + 1}"
        # First occurrence wins.
        if qid in seen:
            continue
        seen.add(qid)

        qtype = normalize_type(_first(raw, "question_type", "type"))
        if qtype not in QUESTION_TYPES:
            type_errors.append(FieldError(f"questions[{index}].type", f"Unknown question type '{qtype}'"))
            continue

        options = None
        if qtype in CHOICE_TYPES:
            options = tuple(
                t for t in (_option_text(o) for o in (raw.get("options") or [])) if t.strip()
            )

        q_min = q_max = None
        if qtype == "linear-scale":
            q_min = _first(raw, "min_value", "min")
            q_max = _first(raw, "max_value", "max")

        section_id = _opt_id(_first(raw, "section_id", "sectionId"))
        order = None
        if section_id is None:
            order = _first(raw, "order", "order_index")
            if order is None:
                order = index

        out.append(
            Question(
                id=qid,
                type=qtype,
                prompt=str(_first(raw, "question_text", "question", "prompt") or ""),
                description=raw.get("description") or None,
                required=bool(raw.get("required") or False),
                options=options,
                min=q_min,
                max=q_max,
                section_id=section_id,
                order=order,
            )
        )

    if type_errors:
        raise ValidationError(type_errors)
    return out


def clean_questions(questions: Iterable[Question]) -> List[Question]:
    # Drop blank options; options never survive on non-choice types.
    out: List[Question] = []
    for q in questions:
        if q.is_choice:
            out.append(replace(q, options=tuple(q.non_empty_options())))
        else:
            out.append(replace(q, options=None))
    return out


def api_shape(questions: Iterable[Question]) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for q in questions:
        out.append(
            {
                "id": q.id,
                "question_type": q.type,
                "question_text": q.prompt,
                "description": q.description,
                "required": q.required,
                "options": [
                    {"option_text": o, "order_index": i} for i, o in enumerate(q.options or ())
                ] if q.is_choice else None,
                "min_value": q.min,
                "max_value": q.max,
                "section_id": q.section_id,
                "order_index": q.order,
            }
        )
    return out


# -------------------------
# Sections
# -------------------------

def load_sections(payload: Optional[Sequence[Dict[str, Any]]], validate: bool = True) -> List[Section]:
    if not payload:
        return []
    if validate:
        _check(_SECTION_VALIDATOR, list(payload), "sections")

    out: List[Section] = []
    seen = set()
    for index, raw in enumerate(payload):
        sid = _opt_id(raw.get("id"))
        if sid is None or sid in seen:
            continue
        seen.add(sid)
        order = _first(raw, "order", "order_index")
        out.append(
            Section(
                id=sid,
                title=str(raw.get("title") or ""),
                description=raw.get("description") or None,
                order=index if order is None else order,
            )
        )
    return out


def sections_shape(sections: Iterable[Section]) -> List[Dict[str, Any]]:
    return [
        {"id": s.id, "title": s.title, "description": s.description, "order_index": s.order}
        for s in sections
    ]


# -------------------------
# Whole forms (drafts, duplication)
# -------------------------

def form_to_payload(form: Form) -> Dict[str, Any]:
    return {
        "id": form.id,
        "title": form.title,
        "description": form.description,
        "category": form.category,
        "target_audience": form.target_audience.to_dict() if form.target_audience else None,
        "image_ref": form.image_ref,
        "status": form.status,
        "schedule": form.schedule.to_dict() if form.schedule else None,
        "sections": sections_shape(form.sections),
        "questions": api_shape(form.questions),
        "created_at": to_iso(form.created_at),
        "updated_at": to_iso(form.updated_at),
    }


def form_from_payload(d: Dict[str, Any]) -> Form:
    schedule = None
    sched = d.get("schedule") or {}
    start, end = parse_iso(sched.get("start")), parse_iso(sched.get("end"))
    if start is not None and end is not None:
        schedule = Schedule(start=start, end=end)

    return Form(
        id=_opt_id(d.get("id")),
        title=str(d.get("title") or ""),
        description=str(d.get("description") or ""),
        category=str(d.get("category") or ""),
        target_audience=AudienceSpec.from_dict(d.get("target_audience")),
        image_ref=d.get("image_ref") or None,
        status=str(d.get("status") or "draft"),
        schedule=schedule,
        sections=tuple(load_sections(d.get("sections"))),
        questions=tuple(load_questions(d.get("questions"))),
        created_at=parse_iso(d.get("created_at")),
        updated_at=parse_iso(d.get("updated_at")),
    )
