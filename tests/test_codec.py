"""
Tests for the storage-boundary codec (src.db.codec)
"""
import pytest

from src.app.errors import ValidationError
from src.db.codec import (
    api_shape,
    clean_questions,
    form_from_payload,
    form_to_payload,
    load_questions,
    load_sections,
    normalize_type,
)
from src.db.models import QUESTION_TYPES, Question

from conftest import make_form


def _sample(qtype: str) -> Question:
    options = ("Yes", "", "No") if qtype in {"multiple-choice", "checkbox", "dropdown"} else None
    q_min, q_max = (1, 7) if qtype == "linear-scale" else (None, None)
    return Question(id=f"id-{qtype}", type=qtype, prompt=f"About {qtype}", required=qtype == "rating",
                    options=options, min=q_min, max=q_max, order=3)


class TestRoundTrip:
    """api_shape -> load_questions -> clean_questions"""

    @pytest.mark.parametrize("qtype", QUESTION_TYPES)
    def test_preserves_core_fields(self, qtype):
        """Type, prompt, required and non-empty options survive the trip"""
        original = _sample(qtype)
        (back,) = clean_questions(load_questions(api_shape([original])))

        assert back.type == original.type
        assert back.prompt == original.prompt
        assert back.required == original.required
        assert list(back.options or ()) == original.non_empty_options()

    def test_linear_scale_bounds_survive(self):
        """min/max are kept for linear-scale questions"""
        (back,) = load_questions(api_shape([_sample("linear-scale")]))
        assert (back.min, back.max) == (1, 7)

    def test_form_payload_round_trip(self, course_eval):
        """Whole-form payloads reload to the same questions and audience"""
        back = form_from_payload(form_to_payload(course_eval))
        assert back.title == course_eval.title
        assert back.target_audience == course_eval.target_audience
        assert [q.id for q in back.questions] == ["q1"]


class TestLoadQuestions:
    """Normalization of incoming payloads"""

    def test_author_shape_is_accepted(self):
        """question/type/plain option strings are read like the API shape"""
        (q,) = load_questions([{"id": "a", "type": "dropdown", "question": "Pick", "options": ["x", " ", "y"]}])
        assert q.prompt == "Pick"
        assert q.options == ("x", "y")

    def test_duplicate_ids_first_wins(self):
        """A repeated id keeps the first occurrence"""
        qs = load_questions([
            {"id": "a", "type": "text", "question": "first"},
            {"id": "a", "type": "text", "question": "second"},
        ])
        assert [q.prompt for q in qs] == ["first"]

    def test_missing_ids_are_generated(self):
        """Questions without ids get positional ids"""
        qs = load_questions([{"type": "text"}, {"type": "text"}])
        assert [q.id for q in qs] == ["q_1", "q_2"]

    def test_order_falls_back_to_position(self):
        """Standalone order: explicit order, then order_index, then position"""
        qs = load_questions([
            {"id": "a", "type": "text", "order": 5},
            {"id": "b", "type": "text", "order_index": 2},
            {"id": "c", "type": "text"},
        ])
        assert [q.order for q in qs] == [5, 2, 2]

    def test_section_questions_have_no_order(self):
        """Ordering inside a section comes from list position, not order"""
        (q,) = load_questions([{"id": "a", "type": "text", "sectionId": "s1", "order": 4}])
        assert q.section_id == "s1"
        assert q.order is None

    def test_options_dropped_for_non_choice_types(self):
        """Options on a text question are ignored"""
        (q,) = load_questions([{"id": "a", "type": "text", "options": ["x"]}])
        assert q.options is None

    def test_underscore_types_are_normalized(self):
        """linear_scale is read as linear-scale"""
        assert normalize_type("Linear_Scale") == "linear-scale"
        (q,) = load_questions([{"id": "a", "question_type": "linear_scale", "min_value": 0, "max_value": 5}])
        assert q.type == "linear-scale"

    def test_unknown_type_raises(self):
        """Unknown types are a validation error"""
        with pytest.raises(ValidationError) as exc:
            load_questions([{"id": "a", "type": "slider"}])
        assert exc.value.errors[0].field == "questions[0].type"

    def test_schema_violation_reports_path(self):
        """jsonschema violations carry the offending path"""
        with pytest.raises(ValidationError) as exc:
            load_questions([{"id": "a", "type": "text", "required": "yes"}])
        assert "questions[0].required" in exc.value.by_field()


class TestLoadSections:
    """Section payload normalization"""

    def test_default_order_and_dedup(self):
        """Sections without order take their position; duplicate ids are dropped"""
        secs = load_sections([{"id": "s1", "title": "A"}, {"id": "s2"}, {"id": "s1", "title": "B"}])
        assert [(s.id, s.order) for s in secs] == [("s1", 0), ("s2", 1)]
        assert secs[0].title == "A"

    def test_form_without_sections(self):
        """A form with no sections loads with an empty tuple"""
        back = form_from_payload(form_to_payload(make_form()))
        assert back.sections == ()
