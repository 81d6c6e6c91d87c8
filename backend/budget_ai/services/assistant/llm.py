"""Gemini generation service for the budget assistant.

The orchestrator only depends on the `GenerationService` protocol; failures are
raised as `GenerationError` whose message keeps the upstream status and text
(e.g. "429 RESOURCE_EXHAUSTED: ... Please retry in 12.5s") so the caller can
classify them.
"""

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from ...config import GEMINI_API_KEY, GEMINI_MODEL, GEMINI_TIMEOUT_SECONDS
from ...errors import GenerationError
from ...schemas.chat import ChatHistoryItem, ChatRole
from ...schemas.context import BudgetContext
from .prompts import ACKNOWLEDGEMENT, generate_system_prompt

logger = logging.getLogger(__name__)

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


class GenerationService(Protocol):
    """Opaque text generation: (message, history, context) -> reply text."""

    model_name: str

    async def generate(
        self,
        message: str,
        history: Sequence[ChatHistoryItem],
        context: Optional[BudgetContext] = None,
    ) -> str:
        ...


def build_contents(
    message: str,
    history: Sequence[ChatHistoryItem],
    system_prompt: str,
) -> List[Dict[str, Any]]:
    """Conversation payload: primed system turn, prior turns, then the new message."""
    contents = [
        {
            "role": "user",
            "parts": [{"text": system_prompt + "\n\nPlease acknowledge you understand your role."}],
        },
        {"role": "model", "parts": [{"text": ACKNOWLEDGEMENT}]},
    ]
    for turn in history:
        contents.append({
            "role": "user" if turn.role == ChatRole.USER else "model",
            "parts": [{"text": turn.content}],
        })
    contents.append({"role": "user", "parts": [{"text": message}]})
    return contents


def _describe_http_error(response: httpx.Response) -> str:
    """Flatten a Gemini error body into one classifiable line."""
    try:
        error = response.json().get("error", {})
    except (ValueError, AttributeError):
        error = None
    if not isinstance(error, dict):
        return f"{response.status_code}: {response.text[:200]}"

    text = f"{response.status_code} {error.get('status', '')}: {error.get('message', '')}".strip()
    for detail in error.get("details", []) or []:
        retry_delay = detail.get("retryDelay") if isinstance(detail, dict) else None
        if retry_delay:
            text += f" (retryDelay: {retry_delay})"
    return text


class GeminiGenerator:
    """Calls the Gemini generateContent endpoint over httpx."""

    def __init__(
        self,
        api_key: Optional[str] = GEMINI_API_KEY,
        model: str = GEMINI_MODEL,
        timeout: float = GEMINI_TIMEOUT_SECONDS,
        temperature: float = 0.7,
        max_output_tokens: int = 1024,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model_name = model
        self.timeout = timeout
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self._transport = transport

    async def generate(
        self,
        message: str,
        history: Sequence[ChatHistoryItem],
        context: Optional[BudgetContext] = None,
    ) -> str:
        if not self.api_key:
            logger.warning("[LLM] GEMINI_API_KEY not found in environment")
            raise GenerationError("Gemini API key is not configured")

        payload = {
            "contents": build_contents(message, history, generate_system_prompt(context)),
            "generationConfig": {
                "temperature": self.temperature,
                "topP": 0.9,
                "topK": 40,
                "maxOutputTokens": self.max_output_tokens,
            },
        }
        url = GEMINI_URL.format(model=self.model_name)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, params={"key": self.api_key}, json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            detail = _describe_http_error(e.response)
            logger.error(f"[LLM] HTTP error: {detail}")
            raise GenerationError(detail) from e
        except httpx.HTTPError as e:
            logger.error(f"[LLM] Request failed: {e}")
            raise GenerationError(f"Error calling LLM: {e}") from e
        except ValueError as e:
            logger.error(f"[LLM] Unreadable response body: {e}")
            raise GenerationError(f"Invalid response from Gemini: {e}") from e

        try:
            candidates = data.get("candidates", [])
            if candidates:
                parts = candidates[0].get("content", {}).get("parts", [])
                text = "".join(part.get("text", "") for part in parts)
                if text:
                    return text
        except (AttributeError, TypeError) as e:
            logger.error(f"[LLM] Unexpected response shape: {e}")
            raise GenerationError(f"Invalid response from Gemini: {e}") from e

        raise GenerationError("No response from Gemini")


# Global generator instance
_generator: Optional[GeminiGenerator] = None


def get_generator() -> GeminiGenerator:
    """Get or create the global Gemini generator."""
    global _generator
    if _generator is None:
        _generator = GeminiGenerator()
    return _generator
