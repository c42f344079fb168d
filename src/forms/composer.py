# src/forms/composer.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, List, Literal, Optional, Tuple

from src.app.config import Settings
from src.app.errors import FieldError, NotFoundError, ValidationError
from src.app.logging import get_logger
from src.db.models import CHOICE_TYPES, QUESTION_TYPES, Form, Question, Section
from src.db.repository import new_question_id, new_section_id
from src.forms.ordering import Page, build_pages
from src.forms.validation import validate_form
from src.workflows.state import FormDraft

logger = get_logger(__name__)

Direction = Literal["up", "down"]

_DEFAULT_SCALE = (1, 10)
_EDITABLE_QUESTION_FIELDS = {"type", "prompt", "description", "required", "options", "min", "max"}
_EDITABLE_SECTION_FIELDS = {"title", "description"}


class FormComposer:
    """
    Editing operations over a FormDraft.

    Questions and sections are immutable values; every operation replaces them in the
    draft's lists. Standalone questions and sections share one top-level ``order``
    sequence; questions inside a section are ordered by their position in
    ``draft.questions``.
    """

    def __init__(self, draft: Optional[FormDraft] = None, settings: Optional[Settings] = None):
        self.draft = draft or FormDraft()
        self.settings = settings
        if settings is not None:
            self._scale = (settings.linear_scale_default_min, settings.linear_scale_default_max)
            self._orphan_policy = settings.orphan_policy
        else:
            self._scale = _DEFAULT_SCALE
            self._orphan_policy = "exclude"

    @classmethod
    def from_form(cls, form: Form, settings: Optional[Settings] = None) -> "FormComposer":
        return cls(FormDraft.from_form(form), settings)

    # -------------------------
    # Views
    # -------------------------
    @property
    def questions(self) -> List[Question]:
        return self.draft.questions

    @property
    def sections(self) -> List[Section]:
        return self.draft.sections

    def question(self, question_id: str) -> Question:
        return self.questions[self._question_index(question_id)]

    def section(self, section_id: str) -> Section:
        return self.sections[self._section_index(section_id)]

    def questions_in_section(self, section_id: str) -> List[Question]:
        return [q for q in self.questions if q.section_id == section_id]

    def standalone_questions(self) -> List[Question]:
        return [q for q in self.questions if q.is_standalone]

    def pages(self) -> List[Page]:
        return build_pages(self.questions, self.sections, orphan_policy=self._orphan_policy)

    def validate(self) -> List[FieldError]:
        return validate_form(self.draft.to_form())

    def to_form(self) -> Form:
        return self.draft.to_form()

    # -------------------------
    # Sections
    # -------------------------
    def add_section(self, title: str = "New Section", description: Optional[str] = None) -> Section:
        section = Section(id=new_section_id(), title=title, description=description, order=self._next_order())
        self.sections.append(section)
        self.draft.active_section_id = section.id
        self.draft.touch()
        return section

    def update_section(self, section_id: str, **fields: Any) -> Section:
        i = self._section_index(section_id)
        updates = {k: v for k, v in fields.items() if k in _EDITABLE_SECTION_FIELDS}
        self.sections[i] = replace(self.sections[i], **updates)
        self.draft.touch()
        return self.sections[i]

    def delete_section(self, section_id: str, detach_questions: bool = False) -> None:
        # Member questions are never deleted. Without detach they keep the dangling
        # section_id and are handled by the orphan policy when pages are built.
        i = self._section_index(section_id)
        del self.sections[i]

        members = [q.id for q in self.questions if q.section_id == section_id]
        if detach_questions:
            for qid in members:
                j = self._question_index(qid)
                self.questions[j] = replace(self.questions[j], section_id=None, order=self._next_order())
        elif members:
            logger.info("section deleted with member questions left in place",
                        extra={"section": section_id, "questions": members})

        if self.draft.active_section_id == section_id:
            self.draft.active_section_id = None
        self.draft.touch()

    def move_section(self, section_id: str, direction: Direction) -> bool:
        self._section_index(section_id)
        return self._move_top_level(("section", section_id), direction)

    # -------------------------
    # Questions
    # -------------------------
    def add_question(self, type: str = "text", section_id: Optional[str] = None, **data: Any) -> Question:
        if type not in QUESTION_TYPES:
            raise ValidationError([FieldError("type", f"Unknown question type '{type}'")])
        if section_id is not None:
            self._section_index(section_id)

        options = None
        if type in CHOICE_TYPES:
            options = tuple(data.get("options") or ("",))

        q_min, q_max = data.get("min"), data.get("max")
        if type == "linear-scale":
            q_min = self._scale[0] if q_min is None else q_min
            q_max = self._scale[1] if q_max is None else q_max
        else:
            q_min = q_max = None

        question = Question(
            id=data.get("id") or new_question_id(),
            type=type,
            prompt=data.get("prompt", ""),
            description=data.get("description"),
            required=bool(data.get("required", False)),
            options=options,
            min=q_min,
            max=q_max,
            section_id=section_id,
            order=None if section_id else data.get("order", self._next_order()),
        )
        self.questions.append(question)
        self.draft.active_question_id = question.id
        self.draft.touch()
        return question

    def duplicate_question(self, question_id: str) -> Question:
        i = self._question_index(question_id)
        source = self.questions[i]
        copy = replace(
            source,
            id=new_question_id(),
            prompt=f"{source.prompt} (Copy)",
            options=tuple(source.options) if source.options is not None else None,
        )
        self.questions.insert(i + 1, copy)
        if copy.is_standalone:
            # Same order as the source; list position breaks the tie, then renumber.
            self._renumber(self._top_level_items())
        self.draft.active_question_id = copy.id
        self.draft.touch()
        return self.question(copy.id)

    def update_question(self, question_id: str, **fields: Any) -> Question:
        i = self._question_index(question_id)
        current = self.questions[i]
        updates = {k: v for k, v in fields.items() if k in _EDITABLE_QUESTION_FIELDS}

        new_type = updates.get("type", current.type)
        if new_type not in QUESTION_TYPES:
            raise ValidationError([FieldError("type", f"Unknown question type '{new_type}'")])

        # options follow the type: (re)initialized entering a choice type, cleared leaving one
        if new_type in CHOICE_TYPES:
            if "options" in updates:
                opts = tuple(updates["options"] or ())
            elif current.is_choice:
                opts = tuple(current.options or ())
            else:
                opts = ()
            updates["options"] = opts or ("",)
        else:
            updates["options"] = None

        if new_type == "linear-scale":
            if current.type != "linear-scale":
                updates.setdefault("min", self._scale[0])
                updates.setdefault("max", self._scale[1])
        else:
            updates["min"] = None
            updates["max"] = None

        self.questions[i] = replace(current, **updates)
        self.draft.touch()
        return self.questions[i]

    def delete_question(self, question_id: str) -> None:
        i = self._question_index(question_id)
        del self.questions[i]
        if self.draft.active_question_id == question_id:
            self.draft.active_question_id = None
        self.draft.touch()

    def move_question(self, question_id: str, direction: Direction) -> bool:
        q = self.question(question_id)
        if q.is_standalone:
            return self._move_top_level(("question", question_id), direction)

        siblings = [s.id for s in self.questions if s.section_id == q.section_id]
        idx = siblings.index(question_id)
        target = idx - 1 if direction == "up" else idx + 1
        if target < 0 or target >= len(siblings):
            return False

        a, b = self._question_index(question_id), self._question_index(siblings[target])
        self.questions[a], self.questions[b] = self.questions[b], self.questions[a]
        self.draft.touch()
        return True

    def assign_question_to_section(self, question_id: str, section_id: Optional[str]) -> Question:
        i = self._question_index(question_id)
        q = self.questions.pop(i)
        if section_id is None:
            moved = replace(q, section_id=None, order=self._next_order())
            self.questions.insert(i, moved)
        else:
            try:
                self._section_index(section_id)
            except NotFoundError:
                self.questions.insert(i, q)
                raise
            # Joins the end of the section.
            moved = replace(q, section_id=section_id, order=None)
            self.questions.append(moved)
        self.draft.touch()
        return moved

    # -------------------------
    # Options
    # -------------------------
    def add_option(self, question_id: str) -> bool:
        i = self._question_index(question_id)
        q = self.questions[i]
        if not q.is_choice:
            return False
        opts = tuple(q.options or ())
        self.questions[i] = replace(q, options=opts + (f"Option {len(opts) + 1}",))
        self.draft.touch()
        return True

    def update_option(self, question_id: str, index: int, value: str) -> bool:
        i = self._question_index(question_id)
        q = self.questions[i]
        opts = list(q.options or ())
        if not q.is_choice or not 0 <= index < len(opts):
            return False
        opts[index] = value
        self.questions[i] = replace(q, options=tuple(opts))
        self.draft.touch()
        return True

    def delete_option(self, question_id: str, index: int) -> bool:
        # A choice question always keeps at least one option.
        i = self._question_index(question_id)
        q = self.questions[i]
        opts = list(q.options or ())
        if not q.is_choice or len(opts) <= 1 or not 0 <= index < len(opts):
            return False
        del opts[index]
        self.questions[i] = replace(q, options=tuple(opts))
        self.draft.touch()
        return True

    # -------------------------
    # Internals
    # -------------------------
    def _question_index(self, question_id: str) -> int:
        for i, q in enumerate(self.questions):
            if q.id == question_id:
                return i
        raise NotFoundError(f"Question not found: {question_id}")

    def _section_index(self, section_id: str) -> int:
        for i, s in enumerate(self.sections):
            if s.id == section_id:
                return i
        raise NotFoundError(f"Section not found: {section_id}")

    def _next_order(self) -> int:
        orders = [s.order for s in self.sections]
        orders += [q.order for q in self.questions if q.is_standalone and q.order is not None]
        return int(max(orders, default=-1)) + 1

    def _top_level_items(self) -> List[Tuple[str, str]]:
        # Same ordering rule as build_pages: (order, sections first, then list position).
        keyed = []
        seq = 0
        for s in self.sections:
            keyed.append((s.order, seq, ("section", s.id)))
            seq += 1
        for index, q in enumerate(self.questions):
            if q.is_standalone:
                keyed.append((q.order if q.order is not None else index, seq, ("question", q.id)))
                seq += 1
        keyed.sort(key=lambda e: (e[0], e[1]))
        return [item for _, _, item in keyed]

    def _renumber(self, items: List[Tuple[str, str]]) -> None:
        for position, (kind, item_id) in enumerate(items):
            if kind == "section":
                j = self._section_index(item_id)
                self.sections[j] = replace(self.sections[j], order=position)
            else:
                j = self._question_index(item_id)
                self.questions[j] = replace(self.questions[j], order=position)

    def _move_top_level(self, item: Tuple[str, str], direction: Direction) -> bool:
        items = self._top_level_items()
        idx = items.index(item)
        target = idx - 1 if direction == "up" else idx + 1
        if target < 0 or target >= len(items):
            return False
        items[idx], items[target] = items[target], items[idx]
        self._renumber(items)
        self.draft.touch()
        return True
