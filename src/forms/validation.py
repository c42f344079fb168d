from __future__ import annotations

from typing import List

from src.app.errors import FieldError, ValidationError
from src.db.models import AUDIENCE_ROLES, QUESTION_TYPES, Form, Question


def validate_question(q: Question, index: int) -> List[FieldError]:
    errors: List[FieldError] = []
    prefix = f"questions[{index}]"
    label = f"Question {index + 1}"

    if not q.prompt.strip():
        errors.append(FieldError(f"{prefix}.prompt", f"{label} must have text"))

    if q.type not in QUESTION_TYPES:
        errors.append(FieldError(f"{prefix}.type", f"{label} has an unknown type '{q.type}'"))

    if q.is_choice and not q.non_empty_options():
        errors.append(FieldError(f"{prefix}.options", f"{label} needs at least one non-empty option"))

    if q.type == "linear-scale" and q.min is not None and q.max is not None and q.min >= q.max:
        errors.append(FieldError(f"{prefix}.min", f"{label}: minimum must be less than maximum"))

    return errors


def validate_form(form: Form) -> List[FieldError]:
    # Collects every problem rather than stopping at the first.
    errors: List[FieldError] = []

    if not form.title.strip():
        errors.append(FieldError("title", "Please enter a form title"))

    if not form.category.strip():
        errors.append(FieldError("category", "Please select a category"))

    audience = form.target_audience
    if audience is None or audience.audience_type not in AUDIENCE_ROLES:
        errors.append(FieldError("target_audience", "Please select a target audience"))

    if not form.questions:
        errors.append(FieldError("questions", "Please add at least one question to your form"))

    for i, q in enumerate(form.questions):
        errors.extend(validate_question(q, i))

    return errors


def ensure_valid(form: Form) -> None:
    errors = validate_form(form)
    if errors:
        raise ValidationError(errors)
