"""OpenRouter chat completions adapter."""

from __future__ import annotations

from ai_signals.ai.providers.base import AIProvider
from ai_signals.ai.providers.openai import extract_message_content

_OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"


class OpenRouterProvider(AIProvider):
    service_id = "openrouter"

    @property
    def cost_per_call(self) -> float:
        model = self.model.lower()
        if "haiku" in model or "mini" in model or "flash" in model:
            return 0.0006
        return 0.003

    async def _generate(self, prompt: str, system: str) -> str:
        body = await self._post_json(
            _OPENROUTER_URL,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            payload={
                "model": self.model,
                "temperature": self.temperature,
                "max_tokens": self.max_tokens,
                "messages": [
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
            },
        )
        return extract_message_content(body, service_id=self.service_id)
