import uuid
from typing import List, Optional

from pydantic import ValidationError

from insightflow.application.services.app_state import AppState, utc_now_iso
from insightflow.domain.errors import AIServiceError, ValidationFailure
from insightflow.domain.schemas import FormDraft, FormField, FormTemplate, GeneratedForm, User


class FormService:
    """
    Form authoring: turns editor drafts (hand-written or AI-generated) into
    stored FormTemplates.
    """

    @staticmethod
    def validate_draft(draft: FormDraft) -> List[str]:
        """Returns every problem with the draft; an empty list means it can be saved."""
        errors = []
        if not draft.title or not draft.title.strip():
            errors.append("Form title is required.")
        if not draft.fields:
            errors.append("Add at least one question.")

        seen = set()
        for index, field in enumerate(draft.fields, start=1):
            if not field.label.strip():
                errors.append(f"Question {index} needs a label.")
            if field.id in seen:
                errors.append(f"Question id '{field.id}' is used more than once.")
            seen.add(field.id)
        return errors

    @staticmethod
    def create_form(state: AppState, draft: FormDraft, acting_user: Optional[User] = None) -> FormTemplate:
        """
        Validates and stores a draft.
        Nothing is written when validation fails. The tenant is always the
        acting user's, whatever the draft says.
        """
        errors = FormService.validate_draft(draft)

        actor = acting_user or state.current_user
        institution_id = (actor.institution_id if actor else None) or draft.institution_id
        if not institution_id:
            errors.append("Choose the institution this form belongs to.")

        if errors:
            raise ValidationFailure("Please ensure the form has a title and at least one question.", errors)

        form = FormTemplate(
            id=draft.id or str(uuid.uuid4()),
            institution_id=institution_id,
            department_id=draft.department_id,
            title=draft.title.strip(),
            description=draft.description,
            industry=draft.industry,
            created_at=draft.created_at or utc_now_iso(),
            fields=draft.fields,
        )
        return state.add_form(form, acting_user=actor)

    @staticmethod
    def draft_from_ai(generated: GeneratedForm) -> FormDraft:
        """
        Fills in what the generator never provides (id, createdAt).
        A question the form model cannot hold rejects the whole generation.
        """
        try:
            fields = [FormField.model_validate(f.model_dump()) for f in generated.fields]
        except ValidationError as e:
            raise AIServiceError("AI generated an invalid question; please try again.") from e

        return FormDraft(
            id=str(uuid.uuid4()),
            title=generated.title,
            description=generated.description,
            industry=generated.industry or '',
            created_at=utc_now_iso(),
            fields=fields,
        )
