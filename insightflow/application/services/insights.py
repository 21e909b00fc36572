import logging
from typing import List, Optional

from flask import current_app

from insightflow.application.services.app_state import AppState, utc_now_iso
from insightflow.application.services.forms import FormService
from insightflow.application.services.gemini import GeminiClient
from insightflow.domain.errors import AIServiceError, NotFoundError, ValidationFailure
from insightflow.domain.schemas import AnalysisRecord, FormDraft, FormResponse, FormTemplate, User

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_LIMIT = 50


class InsightService:
    """
    Bridges the store and the AI collaborator.
    A failed AI call leaves the store untouched: nothing is committed until a
    complete, validated result is in hand.
    """

    @staticmethod
    def get_client() -> GeminiClient:
        return GeminiClient.from_config(current_app.config)

    @staticmethod
    def select_sample(responses: List[FormResponse], limit: int = DEFAULT_SAMPLE_LIMIT) -> List[dict]:
        """The answers of the most recent responses, newest first, capped at limit."""
        newest_first = sorted(responses, key=lambda r: r.submitted_at, reverse=True)
        return [dict(r.answers) for r in newest_first[:limit]]

    @staticmethod
    def run_analysis(state: AppState, form_id: str, client: Optional[GeminiClient] = None,
                     limit: Optional[int] = None) -> AnalysisRecord:
        form = state.get_form(form_id)
        if form is None:
            raise NotFoundError(f"Form '{form_id}' not found.")

        responses = state.get_responses_by_form(form_id)
        if not responses:
            raise ValidationFailure("Please wait for at least one response before running AI analysis.")

        if limit is None:
            limit = current_app.config.get('ANALYSIS_SAMPLE_LIMIT', DEFAULT_SAMPLE_LIMIT)
        sample = InsightService.select_sample(responses, limit)

        client = client or InsightService.get_client()
        logger.info(f"[AI] Analyzing form {form_id} with {len(sample)}/{len(responses)} responses...")
        try:
            result = client.analyze_feedback(form, sample)
        except AIServiceError as e:
            logger.error(f"[AI] Analysis of form {form_id} failed: {e.message}")
            raise

        record = AnalysisRecord(form_id=form.id, result=result, generated_at=utc_now_iso())
        state.add_analysis(record)
        logger.info(f"[AI] Analysis stored for form {form_id} (score {result.sentiment_score}).")
        return record

    @staticmethod
    def generate_draft(prompt: str, client: Optional[GeminiClient] = None) -> FormDraft:
        if not prompt or not prompt.strip():
            raise ValidationFailure("Describe the form you want to generate.")

        client = client or InsightService.get_client()
        try:
            generated = client.generate_form(prompt.strip())
        except AIServiceError as e:
            logger.error(f"[AI] Form generation failed: {e.message}")
            raise
        return FormService.draft_from_ai(generated)

    @staticmethod
    def generate_and_save(state: AppState, prompt: str, acting_user: Optional[User] = None,
                          client: Optional[GeminiClient] = None) -> FormTemplate:
        draft = InsightService.generate_draft(prompt, client)
        return FormService.create_form(state, draft, acting_user=acting_user)
