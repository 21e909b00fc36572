import logging
import uuid
from typing import Dict

from insightflow.application.services.app_state import AppState, utc_now_iso
from insightflow.domain.errors import NotFoundError, ValidationFailure
from insightflow.domain.schemas import FieldType, FormField, FormResponse, FormTemplate

logger = logging.getLogger(__name__)


class SubmissionService:
    """
    Public response collection, addressed only by form id.
    No session is involved; the form is resolved from the full collection.
    """

    YESNO_VALUES = ('Yes', 'No')

    @staticmethod
    def get_public_form(state: AppState, form_id: str) -> FormTemplate:
        form = state.get_form(form_id)
        if form is None:
            raise NotFoundError("Form not found. It may have been deleted or the link is incorrect.")
        return form

    @staticmethod
    def submit(state: AppState, form_id: str, answers: Dict) -> FormResponse:
        """
        Validates answers against the form and appends the response.
        A rejected submission writes nothing.
        """
        form = SubmissionService.get_public_form(state, form_id)
        cleaned, errors = SubmissionService.clean_answers(form, answers or {})
        if errors:
            raise ValidationFailure("Please answer all required questions.", errors)

        response = FormResponse(
            id=str(uuid.uuid4()),
            form_id=form.id,
            answers=cleaned,
            submitted_at=utc_now_iso(),
        )
        state.add_response(response)
        logger.info(f"[Submit] Response {response.id} recorded for form {form.id}.")
        return response

    @staticmethod
    def clean_answers(form: FormTemplate, answers: Dict):
        """Returns (answers to store, error messages). Blank optional answers are dropped."""
        errors = []
        fields = {f.id: f for f in form.fields}

        for key in answers:
            if key not in fields:
                errors.append(f"Unknown question '{key}'.")

        cleaned = {}
        for field in form.fields:
            value = answers.get(field.id)
            if isinstance(value, str):
                value = value.strip()

            if value is None or value == '':
                if field.required:
                    errors.append(f"'{field.label}' is required.")
                continue

            value, error = SubmissionService._check_value(field, value)
            if error:
                errors.append(error)
                continue
            cleaned[field.id] = value

        return cleaned, errors

    @staticmethod
    def _check_value(field: FormField, value):
        if field.type == FieldType.RATING:
            if isinstance(value, str) and value.isdigit():
                value = int(value)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not 1 <= value <= 5:
                return value, f"'{field.label}' must be a rating from 1 to 5."
        elif field.type == FieldType.CHOICE:
            if value not in (field.options or []):
                return value, f"'{field.label}' must be one of: {', '.join(field.options or [])}."
        elif field.type == FieldType.YESNO:
            if value not in SubmissionService.YESNO_VALUES:
                return value, f"'{field.label}' must be Yes or No."
        return value, None
