"""Anthropic Claude adapter over the Messages REST API."""

from __future__ import annotations

from typing import Any

from ai_signals.ai.providers.base import AIProvider
from ai_signals.errors import ResponseValidationError

_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
_API_VERSION = "2023-06-01"


class ClaudeProvider(AIProvider):
    service_id = "claude"

    @property
    def cost_per_call(self) -> float:
        model = self.model.lower()
        if "haiku" in model:
            return 0.000575
        if "sonnet" in model:
            return 0.003
        if "opus" in model:
            return 0.015
        return 0.001

    async def _generate(self, prompt: str, system: str) -> str:
        body = await self._post_json(
            _MESSAGES_URL,
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": _API_VERSION,
                "content-type": "application/json",
            },
            payload={
                "model": self.model,
                "max_tokens": self.max_tokens,
                "temperature": self.temperature,
                "system": system,
                "messages": [{"role": "user", "content": prompt}],
            },
        )
        return _extract_text_blocks(body)


def _extract_text_blocks(payload: dict[str, Any]) -> str:
    content = payload.get("content")
    if not isinstance(content, list):
        raise ResponseValidationError("claude_response_without_content", service_id="claude")
    pieces = [
        block.get("text")
        for block in content
        if isinstance(block, dict) and block.get("type") == "text"
    ]
    if not all(isinstance(piece, str) for piece in pieces):
        raise ResponseValidationError("claude_text_block_not_string", service_id="claude")
    text = "".join(pieces)
    if not text:
        raise ResponseValidationError("claude_response_empty", service_id="claude")
    return text
