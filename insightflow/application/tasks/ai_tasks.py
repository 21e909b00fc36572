import logging
from contextlib import nullcontext

from flask import has_app_context

from insightflow.extensions import celery
from insightflow.application.services.app_state import get_state
from insightflow.application.services.insights import InsightService
from insightflow.domain.errors import InsightFlowError
from insightflow.domain.schemas import User

logger = logging.getLogger(__name__)


def _app_context():
    """Tasks run inside the worker's own Flask app (its own execution context)."""
    if has_app_context():
        return nullcontext()
    from insightflow.application.tasks.celery_worker import flask_app
    return flask_app.app_context()


@celery.task(bind=True)
def async_analyze_form(self, form_id: str):
    """
    Fire-and-forget AI analysis of one form.
    The result lands in the analyses collection; other contexts pick it up
    through the sync listener. Failures are not retried.
    """
    logger.info(f"Task: Starting analysis of form {form_id}...")

    with _app_context():
        state = get_state()
        state.sync()
        try:
            record = InsightService.run_analysis(state, form_id)
        except InsightFlowError as e:
            logger.error(f"Task: Analysis of form {form_id} failed: {e.message}")
            raise

    logger.info(f"Task: Analysis of form {form_id} stored.")
    return record.to_json_dict()


@celery.task(bind=True)
def async_generate_form(self, prompt: str, acting_user: dict):
    """
    Generates a form from a prompt and stores it under the acting user's tenant.
    The acting user is passed explicitly; the worker never logs anyone in.
    """
    user = User.model_validate(acting_user)
    logger.info(f"Task: Generating form for {user.email}...")

    with _app_context():
        state = get_state()
        state.sync()
        try:
            form = InsightService.generate_and_save(state, prompt, acting_user=user)
        except InsightFlowError as e:
            logger.error(f"Task: Form generation failed: {e.message}")
            raise

    logger.info(f"Task: Form {form.id} generated and stored.")
    return form.to_json_dict()
