import pytest

from insightflow.application.services.forms import FormService
from insightflow.domain.errors import AIServiceError, ValidationFailure
from insightflow.domain.schemas import FieldType, FormDraft, FormField, GeneratedForm, UserRole


def _draft(**overrides):
    data = {
        "title": "X",
        "fields": [FormField(id="q1", label="How was it?", type=FieldType.RATING, required=True)],
    }
    data.update(overrides)
    return FormDraft(**data)


class TestFormService:
    """
    Level 2 Tests: form authoring and saving.
    """

    def test_create_form_forces_tenant(self, state):
        """
        GIVEN login with institutionId 'inst-1' as INSTITUTION_ADMIN
        WHEN a form claiming 'inst-2' is created
        THEN the stored form's institutionId is 'inst-1'
        """
        state.login("maria@hotel.com", UserRole.INSTITUTION_ADMIN, "inst-1")

        form = FormService.create_form(state, _draft(institution_id="inst-2"))

        assert form.institution_id == "inst-1"
        assert state.get_form(form.id).institution_id == "inst-1"
        assert form.id and form.created_at

    def test_create_form_keeps_given_id_and_date(self, state):
        state.login("maria@hotel.com", institution_id="inst-1")
        form = FormService.create_form(state, _draft(id="form-77", created_at="2024-05-05T00:00:00Z"))

        assert form.id == "form-77"
        assert form.created_at == "2024-05-05T00:00:00Z"

    def test_missing_title_and_fields_rejected(self, state):
        state.login("maria@hotel.com", institution_id="inst-1")

        with pytest.raises(ValidationFailure) as exc:
            FormService.create_form(state, FormDraft(title="  ", fields=[]))

        assert "Form title is required." in exc.value.details
        assert "Add at least one question." in exc.value.details
        assert state.all_forms == []

    def test_duplicate_question_ids_rejected(self, state):
        state.login("maria@hotel.com", institution_id="inst-1")
        field = FormField(id="q1", label="A", type=FieldType.TEXT)

        with pytest.raises(ValidationFailure):
            FormService.create_form(state, _draft(fields=[field, field]))
        assert state.all_forms == []

    def test_super_admin_must_name_institution(self, state):
        state.login("super@insightflow.ai")

        with pytest.raises(ValidationFailure):
            FormService.create_form(state, _draft())

        form = FormService.create_form(state, _draft(institution_id="inst-2"))
        assert form.institution_id == "inst-2"

    def test_choice_without_options_is_invalid(self):
        with pytest.raises(ValueError):
            FormField(id="c", label="Pick", type=FieldType.CHOICE, options=[])

    def test_options_dropped_for_non_choice(self):
        field = FormField(id="r", label="Rate", type=FieldType.RATING, options=["a"])
        assert field.options is None

    def test_draft_from_ai_fills_identity(self):
        generated = GeneratedForm.model_validate({
            "title": "Clinic Feedback",
            "description": "How was your visit?",
            "fields": [
                {"id": "wait", "label": "Waiting time", "type": "rating", "required": True},
                {"id": "dept", "label": "Department", "type": "choice", "options": ["ER", "Lab"]},
            ],
        })

        draft = FormService.draft_from_ai(generated)

        assert draft.id and draft.created_at
        assert draft.industry == ''
        assert [f.id for f in draft.fields] == ["wait", "dept"]
        assert draft.fields[1].options == ["ER", "Lab"]

    def test_draft_from_ai_rejects_invalid_question(self):
        generated = GeneratedForm.model_validate({
            "title": "T", "description": "D",
            "fields": [{"id": "dept", "label": "Department", "type": "choice"}],
        })
        with pytest.raises(AIServiceError):
            FormService.draft_from_ai(generated)
