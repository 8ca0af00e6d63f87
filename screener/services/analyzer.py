import json
import re
import logging
from typing import Any, Dict, List

import requests
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from screener.core import prompts
from screener.core.config import settings, AISettings
from screener.core.exceptions import AIKillSwitchError, DependencyError
from screener.schemas.screening import ResumeAnalysis

logger = logging.getLogger(__name__)

OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"
MAX_RESUME_CHARS = 10000


class TransientAIError(Exception):
    """Timeouts and 5xx/429 replies; retried in-call before the queue sees a failure."""


def _as_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    return []


class OpenRouterAnalyzer:
    """
    AI resume analysis through OpenRouter chat completions.
    Any failure surfaces as DependencyError so the task queue can retry it.
    """

    def __init__(self, ai_settings: AISettings = settings.ai, session: requests.Session = None):
        self.settings = ai_settings
        self.session = session or requests.Session()

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        retry=retry_if_exception_type(TransientAIError),
        reraise=True
    )
    def _do_call(self, messages: List[Dict[str, str]]) -> str:
        """Internal method to perform the actual API call with retries."""
        logger.info(f"Calling AI Model: {self.settings.model_name}")
        try:
            response = self.session.post(
                OPENROUTER_URL,
                headers={
                    "Authorization": f"Bearer {self.settings.openrouter_api_key}",
                    "Content-Type": "application/json",
                },
                data=json.dumps({
                    "model": self.settings.model_name,
                    "messages": messages,
                    "temperature": self.settings.temperature
                }),
                timeout=self.settings.timeout_seconds
            )
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            logger.error(f"AI service unreachable: {e}")
            raise TransientAIError(str(e)) from e

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientAIError(f"AI service returned {response.status_code}")
        response.raise_for_status()
        return response.json()["choices"][0]["message"]["content"]

    def analyze(self, full_text: str, job_title: str, description: str) -> ResumeAnalysis:
        if self.settings.kill_switch:
            logger.warning("AI Kill-switch is active. Blocking request.")
            raise AIKillSwitchError()

        if not self.settings.openrouter_api_key:
            logger.error("OpenRouter API Key missing.")
            raise DependencyError("AI service configuration error.")

        messages = [
            {"role": "system", "content": prompts.RESUME_SCREENING_SYSTEM},
            {"role": "user", "content": prompts.get_prompt(
                prompts.RESUME_SCREENING_USER_TEMPLATE,
                job_title=job_title or "Unknown",
                description=description or "",
                resume_text=full_text[:MAX_RESUME_CHARS],
            )},
        ]

        try:
            content = self._do_call(messages)
        except (TransientAIError, requests.exceptions.RequestException, KeyError, ValueError) as e:
            logger.error(f"Resume analysis call failed: {e}")
            raise DependencyError("AI analysis unavailable") from e

        return self.parse_response(content)

    @staticmethod
    def parse_response(content: str) -> ResumeAnalysis:
        # Models sometimes wrap the JSON in prose or code fences
        json_match = re.search(r'\{.*\}', content or "", re.DOTALL)
        if not json_match:
            logger.error(f"AI response contained no JSON: {content[:200] if content else content}")
            raise DependencyError("Failed to parse AI response.")
        try:
            data = json.loads(json_match.group())
        except json.JSONDecodeError as e:
            logger.error(f"Failed to decode AI JSON response: {content[:200]}")
            raise DependencyError("Failed to parse AI response.") from e

        if not isinstance(data, dict):
            raise DependencyError("Failed to parse AI response.")

        return ResumeAnalysis(
            strengths=_as_list(data.get("strengths")),
            gaps=_as_list(data.get("gaps")),
            recommendations=_as_list(data.get("recommendations")),
        )
