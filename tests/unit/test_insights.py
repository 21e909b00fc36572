import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from insightflow.application.services.gemini import GeminiClient
from insightflow.application.services.insights import InsightService
from insightflow.domain.errors import AIServiceError, NotFoundError, ValidationFailure
from insightflow.domain.schemas import AIAnalysisResult, GeneratedForm, UserRole
from tests.factories import make_form, make_response

ANALYSIS_PAYLOAD = {
    "summary": "Guests love the staff but rooms need attention.",
    "sentimentScore": 72,
    "sentimentTrend": "positive",
    "keyThemes": ["staff", "cleanliness"],
    "recommendations": [
        {"title": "Housekeeping audit", "description": "Review cleaning checklists.", "priority": "High"}
    ],
}


def _gemini_reply(payload):
    """Builds a fake requests.Response carrying payload as the model's JSON text."""
    reply = MagicMock()
    reply.raise_for_status.return_value = None
    reply.json.return_value = {"candidates": [{"content": {"parts": [{"text": json.dumps(payload)}]}}]}
    return reply


@pytest.fixture
def stored_form(state):
    state.form_repo.add(make_form("form-1"))
    return state.get_form("form-1")


class TestInsightService:
    """
    Level 2 Tests: AI analysis flow against a mocked client.
    """

    def test_run_analysis_stores_record(self, app, state, stored_form):
        state.add_response(make_response("r-1", answers={"cleanliness": 4}))
        client = MagicMock()
        client.analyze_feedback.return_value = AIAnalysisResult.model_validate(ANALYSIS_PAYLOAD)

        record = InsightService.run_analysis(state, "form-1", client=client)

        assert record.form_id == "form-1"
        assert record.result.sentiment_score == 72
        assert state.get_analysis_by_form("form-1") == record

    def test_failed_call_leaves_store_unchanged(self, app, state, stored_form):
        """
        GIVEN a previous analysis for form-1
        WHEN a new analysis fails at the AI service
        THEN the failure propagates and the previous analysis is untouched
        """
        state.add_response(make_response("r-1", answers={"cleanliness": 4}))
        client = MagicMock()
        client.analyze_feedback.return_value = AIAnalysisResult.model_validate(ANALYSIS_PAYLOAD)
        first = InsightService.run_analysis(state, "form-1", client=client)

        client.analyze_feedback.side_effect = AIServiceError("quota exceeded")
        with pytest.raises(AIServiceError):
            InsightService.run_analysis(state, "form-1", client=client)

        assert state.analyses == [first]

    def test_sample_is_capped_to_most_recent(self, app, state, stored_form):
        for i in range(60):
            state.add_response(make_response(
                f"r-{i}", answers={"cleanliness": (i % 5) + 1},
                submitted_at=f"2024-01-01T00:{i:02d}:00+00:00"
            ))
        client = MagicMock()
        client.analyze_feedback.return_value = AIAnalysisResult.model_validate(ANALYSIS_PAYLOAD)

        InsightService.run_analysis(state, "form-1", client=client)

        sent = client.analyze_feedback.call_args[0][1]
        assert len(sent) == 50
        # newest (minute 59) first, oldest sent is minute 10
        assert sent[0] == {"cleanliness": (59 % 5) + 1}
        assert sent[-1] == {"cleanliness": (10 % 5) + 1}

    def test_needs_at_least_one_response(self, app, state, stored_form):
        client = MagicMock()
        with pytest.raises(ValidationFailure):
            InsightService.run_analysis(state, "form-1", client=client)
        client.analyze_feedback.assert_not_called()

    def test_unknown_form(self, app, state):
        with pytest.raises(NotFoundError):
            InsightService.run_analysis(state, "ghost", client=MagicMock())

    def test_generate_and_save(self, app, state):
        state.login("maria@hotel.com", UserRole.INSTITUTION_ADMIN, "inst-3")
        client = MagicMock()
        client.generate_form.return_value = GeneratedForm.model_validate({
            "title": "Library Survey", "description": "Tell us", "industry": "Education",
            "fields": [{"id": "quiet", "label": "Was it quiet?", "type": "yesno"}],
        })

        form = InsightService.generate_and_save(state, "survey for a library", client=client)

        assert form.institution_id == "inst-3"
        assert state.get_form(form.id).title == "Library Survey"

    def test_generate_requires_prompt(self, app):
        with pytest.raises(ValidationFailure):
            InsightService.generate_draft("   ", client=MagicMock())


class TestGeminiClient:
    """
    Level 1 Tests: REST client and response-shape enforcement.
    """

    def _client(self, api_key="k"):
        return GeminiClient(api_key=api_key, base_url="https://ai.test/v1beta/",
                            form_model="form-model", analysis_model="analysis-model", timeout=5)

    @patch('insightflow.application.services.gemini.requests.post')
    def test_analyze_feedback(self, mock_post):
        mock_post.return_value = _gemini_reply(ANALYSIS_PAYLOAD)

        result = self._client().analyze_feedback(make_form(), [{"cleanliness": 5}])

        assert result.sentiment_trend.value == "positive"
        url = mock_post.call_args[0][0]
        assert url == "https://ai.test/v1beta/models/analysis-model:generateContent"
        body = mock_post.call_args[1]["json"]
        assert body["generationConfig"]["responseMimeType"] == "application/json"
        assert '"cleanliness": 5' in body["contents"][0]["parts"][0]["text"]

    @patch('insightflow.application.services.gemini.requests.post')
    def test_generate_form(self, mock_post):
        mock_post.return_value = _gemini_reply({
            "title": "Gym Feedback", "description": "Quick survey",
            "fields": [{"id": "equipment", "label": "Equipment quality", "type": "rating", "required": True}],
        })

        generated = self._client().generate_form("gym members")

        assert generated.title == "Gym Feedback"
        assert generated.fields[0].id == "equipment"

    @patch('insightflow.application.services.gemini.requests.post')
    def test_wrong_shape_is_hard_failure(self, mock_post):
        bad = dict(ANALYSIS_PAYLOAD, sentimentScore=140)
        mock_post.return_value = _gemini_reply(bad)

        with pytest.raises(AIServiceError):
            self._client().analyze_feedback(make_form(), [])

    @patch('insightflow.application.services.gemini.requests.post')
    def test_form_without_fields_is_rejected(self, mock_post):
        mock_post.return_value = _gemini_reply({"title": "T", "description": "D"})

        with pytest.raises(AIServiceError):
            self._client().generate_form("anything")

    @patch('insightflow.application.services.gemini.requests.post')
    def test_http_error(self, mock_post):
        mock_post.side_effect = requests.ConnectionError("boom")

        with pytest.raises(AIServiceError):
            self._client().generate_form("anything")

    @patch('insightflow.application.services.gemini.requests.post')
    def test_empty_candidates(self, mock_post):
        reply = MagicMock()
        reply.json.return_value = {"candidates": []}
        mock_post.return_value = reply

        with pytest.raises(AIServiceError) as exc:
            self._client().generate_form("anything")
        assert exc.value.message == "No response from AI"

    @patch('insightflow.application.services.gemini.requests.post')
    def test_missing_api_key(self, mock_post):
        with pytest.raises(AIServiceError):
            self._client(api_key="").generate_form("anything")
        mock_post.assert_not_called()
