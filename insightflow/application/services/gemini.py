import json
import logging
from typing import Any, Dict, List, Optional

import requests
from pydantic import ValidationError

from insightflow.domain.errors import AIServiceError
from insightflow.domain.schemas import AIAnalysisResult, FormTemplate, GeneratedForm

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# Structured-output schemas sent with each request (Gemini OpenAPI subset).
FORM_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "title": {"type": "STRING", "description": "Title of the feedback form"},
        "description": {"type": "STRING", "description": "Short description for the user filling the form"},
        "industry": {"type": "STRING", "description": "The industry category"},
        "fields": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "id": {"type": "STRING", "description": "Unique simplified key for field (e.g., 'cleanliness')"},
                    "label": {"type": "STRING", "description": "The question text"},
                    "type": {"type": "STRING", "enum": ["text", "rating", "choice", "yesno"]},
                    "options": {"type": "ARRAY", "items": {"type": "STRING"},
                                "description": "Options for choice questions"},
                    "required": {"type": "BOOLEAN"},
                },
                "required": ["id", "label", "type"],
            },
        },
    },
    "required": ["title", "description", "fields"],
}

ANALYSIS_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "summary": {"type": "STRING", "description": "Executive summary of the feedback"},
        "sentimentScore": {"type": "NUMBER",
                           "description": "Overall sentiment score from 0 (negative) to 100 (positive)"},
        "sentimentTrend": {"type": "STRING", "enum": ["positive", "neutral", "negative"]},
        "keyThemes": {"type": "ARRAY", "items": {"type": "STRING"}, "description": "List of recurring topics"},
        "recommendations": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "title": {"type": "STRING"},
                    "description": {"type": "STRING", "description": "Actionable advice"},
                    "priority": {"type": "STRING", "enum": ["High", "Medium", "Low"]},
                },
                "required": ["title", "description", "priority"],
            },
        },
    },
    "required": ["summary", "sentimentScore", "sentimentTrend", "keyThemes", "recommendations"],
}


class GeminiClient:
    """
    Thin client for the Gemini generateContent REST endpoint.
    Every failure (missing key, HTTP error, empty or malformed answer) comes
    out as a single AIServiceError; nothing is retried here.
    """

    FORM_SYSTEM_PROMPT = "You are an expert survey designer for large institutions."
    ANALYSIS_SYSTEM_PROMPT = "You are a senior business analyst specializing in institutional improvement."

    def __init__(self, api_key: str, base_url: str, form_model: str, analysis_model: str, timeout: int = 120):
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.form_model = form_model
        self.analysis_model = analysis_model
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> 'GeminiClient':
        return cls(
            api_key=config.get('GEMINI_API_KEY', ''),
            base_url=config.get('GEMINI_API_URL', 'https://generativelanguage.googleapis.com/v1beta'),
            form_model=config.get('GEMINI_FORM_MODEL', 'gemini-3-flash-preview'),
            analysis_model=config.get('GEMINI_ANALYSIS_MODEL', 'gemini-3-pro-preview'),
            timeout=config.get('AI_REQUEST_TIMEOUT', 120),
        )

    # --- Public API ---

    def generate_form(self, prompt: str) -> GeneratedForm:
        full_prompt = (
            f'Create a professional feedback form based on this request: "{prompt}". '
            "Ensure questions are relevant and actionable. Use 'rating' for satisfaction questions."
        )
        payload = self._generate(self.form_model, full_prompt, FORM_SCHEMA, self.FORM_SYSTEM_PROMPT)
        try:
            return GeneratedForm.model_validate(payload)
        except ValidationError as e:
            logger.error(f"[AI] Form generation returned an unexpected shape: {e}")
            raise AIServiceError("AI returned a form in an unexpected format.") from e

    def analyze_feedback(self, form: FormTemplate, answers: List[Dict[str, Any]]) -> AIAnalysisResult:
        """
        Asks for an analysis of the given answers.
        The caller decides which answers to send; this method sends them all.
        """
        context = f"Form Title: {form.title}. Industry: {form.industry}."
        prompt = (
            "Analyze the following survey responses.\n"
            f"{context}\n\n"
            f"Responses Data:\n{json.dumps(answers)}\n\n"
            "Provide a deep analysis with a focus on actionable management decisions."
        )
        payload = self._generate(self.analysis_model, prompt, ANALYSIS_SCHEMA, self.ANALYSIS_SYSTEM_PROMPT)
        try:
            return AIAnalysisResult.model_validate(payload)
        except ValidationError as e:
            logger.error(f"[AI] Analysis returned an unexpected shape: {e}")
            raise AIServiceError("AI returned an analysis in an unexpected format.") from e

    # --- Transport ---

    def _generate(self, model: str, prompt: str, schema: dict, system_instruction: str) -> Any:
        if not self.api_key:
            raise AIServiceError(
                "API Key is missing. Set GEMINI_API_KEY in the environment or .env file and restart."
            )

        url = f"{self.base_url}/models/{model}:generateContent"
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "systemInstruction": {"parts": [{"text": system_instruction}]},
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": schema,
            },
        }

        try:
            logger.info(f"[AI] Calling {model}...")
            response = requests.post(
                url,
                params={"key": self.api_key},
                json=body,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"[AI] Request to {model} failed: {e}")
            raise AIServiceError(f"AI request failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise AIServiceError("AI service answered with a non-JSON body.") from e

        text = self._extract_text(data)
        if not text:
            raise AIServiceError("No response from AI")

        try:
            return json.loads(text)
        except ValueError as e:
            logger.error(f"[AI] Could not parse model output as JSON: {e}")
            raise AIServiceError("AI returned malformed JSON.") from e

    @staticmethod
    def _extract_text(data: dict) -> Optional[str]:
        """Concatenates the text parts of the first candidate."""
        try:
            parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError):
            return None
        return "".join(part.get("text", "") for part in parts if isinstance(part, dict)) or None
