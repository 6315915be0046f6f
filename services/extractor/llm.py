"""Thin client for the hosted chat-completion API and its JSON answers."""
import json
import logging
import re
from typing import Any, Dict, List

from openai import OpenAI, OpenAIError

from shared import settings

logger = logging.getLogger(__name__)

JSON_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")
JSON_ARRAY_PATTERN = re.compile(r"\[[\s\S]*\]")


class LLMError(Exception):
    """Raised when the hosted model cannot be reached or answers badly."""


def get_client() -> OpenAI:
    if not settings.openai_api_key:
        raise LLMError("OpenAI API key not configured")
    return OpenAI(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        timeout=settings.openai_timeout,
    )


def chat_completion(
    messages: List[Dict[str, Any]],
    model: str = None,
    temperature: float = 0.1,
    max_tokens: int = 1500,
) -> str:
    """Send a chat-completion request and return the first answer's text."""
    client = get_client()
    try:
        response = client.chat.completions.create(
            model=model or settings.openai_text_model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )
    except OpenAIError as e:
        logger.error(f"OpenAI request failed: {e}")
        raise LLMError(f"OpenAI request failed: {e}") from e

    content = response.choices[0].message.content if response.choices else None
    if not content:
        raise LLMError("No response from OpenAI")
    return content


def parse_json_object(text: str) -> Dict[str, Any]:
    """Pull the outermost JSON object out of a model answer."""
    match = JSON_OBJECT_PATTERN.search(text or "")
    if not match:
        raise ValueError("No JSON object found in model response")
    return json.loads(match.group(0))


def parse_json_array(text: str) -> List[Any]:
    """Pull the outermost JSON array out of a model answer."""
    match = JSON_ARRAY_PATTERN.search(text or "")
    if not match:
        raise ValueError("No JSON array found in model response")
    return json.loads(match.group(0))
