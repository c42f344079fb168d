"""
Tests for form validation (src.forms.validation)
"""
import pytest

from src.app.errors import ValidationError
from src.db.models import Form, Question
from src.forms.validation import ensure_valid, validate_form

from conftest import make_form


class TestValidateForm:
    """Each rule is reported on its own field"""

    def test_valid_form_has_no_errors(self, course_eval):
        assert validate_form(course_eval) == []

    def test_empty_form_lists_every_header_problem(self):
        fields = {e.field for e in validate_form(Form(id=None, title=""))}
        assert fields == {"title", "category", "target_audience", "questions"}

    def test_empty_prompt(self):
        form = make_form(questions=(Question("q1", "text", prompt="   "),))
        (err,) = validate_form(form)
        assert err.message == "Question 1 must have text"

    def test_choice_needs_a_non_empty_option(self):
        form = make_form(questions=(Question("q1", "checkbox", prompt="Pick", options=("", " ")),))
        assert [e.field for e in validate_form(form)] == ["questions[0].options"]

    def test_linear_scale_min_below_max(self):
        form = make_form(questions=(Question("q1", "linear-scale", prompt="Scale", min=5, max=5),))
        assert [e.field for e in validate_form(form)] == ["questions[0].min"]

    def test_ensure_valid_raises_with_all_errors(self):
        with pytest.raises(ValidationError) as exc:
            ensure_valid(make_form(title="", category=""))
        assert set(exc.value.by_field()) == {"title", "category"}
