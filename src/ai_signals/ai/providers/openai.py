"""OpenAI chat completions adapter (JSON mode)."""

from __future__ import annotations

from typing import Any

from ai_signals.ai.providers.base import AIProvider
from ai_signals.errors import ResponseValidationError

_CHAT_URL = "https://api.openai.com/v1/chat/completions"
_EST_INPUT_TOKENS = 800
_EST_OUTPUT_TOKENS = 300


class OpenAIProvider(AIProvider):
    service_id = "openai"

    def __init__(self, *, organization: str = "", **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.organization = organization

    @property
    def cost_per_call(self) -> float:
        if "gpt-4" in self.model:
            return _EST_INPUT_TOKENS * 0.00003 + _EST_OUTPUT_TOKENS * 0.00006
        if "gpt-3.5-turbo" in self.model:
            return _EST_INPUT_TOKENS * 0.0000015 + _EST_OUTPUT_TOKENS * 0.000002
        return 0.002

    async def _generate(self, prompt: str, system: str) -> str:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if self.organization:
            headers["OpenAI-Organization"] = self.organization
        body = await self._post_json(
            _CHAT_URL,
            headers=headers,
            payload={
                "model": self.model,
                "temperature": self.temperature,
                "max_tokens": self.max_tokens,
                "response_format": {"type": "json_object"},
                "messages": [
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
            },
        )
        return extract_message_content(body, service_id=self.service_id)


def extract_message_content(payload: dict[str, Any], *, service_id: str) -> str:
    """Read assistant content from a chat-completions payload."""
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        raise ResponseValidationError("response_without_choices", service_id=service_id)
    first = choices[0]
    message = first.get("message") if isinstance(first, dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str) or not content.strip():
        raise ResponseValidationError("response_without_message_content", service_id=service_id)
    return content
