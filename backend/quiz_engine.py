import re
import requests
import json
import asyncio
import logging
from typing import Any, List, Optional

from pydantic import ValidationError

import config
from errors import GenerationError, InvalidInput
from protocol import Question

logger = logging.getLogger(__name__)


def _sanitize_text(text: str) -> str:
    """Strip HTML tags and control characters from LLM-generated text."""
    text = re.sub(r'<[^>]+>', '', text)
    text = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)
    return text.strip()


def _sanitize_question(raw: dict) -> dict:
    """Sanitize the user-visible fields of one generated question.

    The correct answer goes through the same cleaning as the options so
    exact-match grading still lines up afterwards.
    """
    question = dict(raw)
    if isinstance(question.get("question"), str):
        question["question"] = _sanitize_text(question["question"])[:config.MAX_QUESTION_TEXT_LENGTH]
    if isinstance(question.get("options"), list):
        question["options"] = [
            _sanitize_text(opt)[:config.MAX_OPTION_LENGTH] if isinstance(opt, str) else opt
            for opt in question["options"]
        ]
    if isinstance(question.get("correctAnswer"), str):
        question["correctAnswer"] = _sanitize_text(question["correctAnswer"])[:config.MAX_OPTION_LENGTH]
    return question


def _extract_questions(text: str) -> Any:
    """Pull the question array out of a model response.

    Accepts a bare JSON array, an object wrapping it under ``quiz`` or
    ``questions``, and output wrapped in markdown code fences.
    """
    text = text.strip()
    # Models may wrap JSON in markdown code blocks
    text = text.replace("```json", "").replace("```", "").strip()
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        match = re.search(r'\[[\s\S]*\]', text)
        if not match:
            raise
        payload = json.loads(match.group(0))
    if isinstance(payload, dict):
        payload = payload.get("quiz", payload.get("questions"))
    return payload


def _validate_questions(payload: Any, attempt: int) -> Optional[List[Question]]:
    if not isinstance(payload, list):
        logger.warning("Attempt %d: Generation service returned %s instead of a list",
                       attempt, type(payload).__name__)
        return None
    if len(payload) == 0:
        logger.warning("Attempt %d: Empty questions list", attempt)
        return None

    questions = []
    for raw in payload:
        if not isinstance(raw, dict):
            logger.warning("Attempt %d: Question is not an object: %r", attempt, raw)
            return None
        try:
            questions.append(Question.model_validate(_sanitize_question(raw)))
        except ValidationError as e:
            logger.warning("Attempt %d: Invalid question %r: %s", attempt, raw.get("question"), e.errors()[0]["msg"])
            return None
    return questions


class QuizEngine:
    """Client for the external retrieval-and-generation service."""

    def __init__(self, url: str = config.GENERATION_URL,
                 timeout: int = config.GENERATION_TIMEOUT,
                 max_retries: int = config.GENERATION_MAX_RETRIES,
                 retry_delay: float = 1.0):
        self.url = url
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    async def generate_questions(self, subject: str) -> List[Question]:
        subject = subject.strip()
        if not subject:
            raise InvalidInput("Subject must not be empty")

        for attempt in range(1, self.max_retries + 1):
            try:
                logger.info("Generation attempt %d/%d for subject '%s'", attempt, self.max_retries, subject[:100])
                # requests blocks; keep it off the event loop so room timers keep running
                response = await asyncio.to_thread(
                    requests.post, self.url, json={"subject": subject}, timeout=self.timeout)
                if response.status_code == 404:
                    raise GenerationError(f"No content found for subject: {subject}")
                response.raise_for_status()
                questions = _validate_questions(_extract_questions(response.text), attempt)
                if questions:
                    logger.info("Generated %d questions for subject '%s'", len(questions), subject)
                    return questions
            except requests.Timeout:
                logger.warning("Attempt %d: Generation service timed out after %ds", attempt, self.timeout)
            except json.JSONDecodeError as e:
                logger.warning("Attempt %d: Failed to parse generation response as JSON: %s", attempt, e)
            except requests.RequestException as e:
                logger.error("Attempt %d: HTTP error calling generation service: %s", attempt, e)
            if attempt < self.max_retries:
                await asyncio.sleep(self.retry_delay * 2 ** (attempt - 1))

        logger.error("Failed to generate quiz for subject '%s'", subject[:100])
        raise GenerationError(f"Failed to generate quiz for subject: {subject}")
