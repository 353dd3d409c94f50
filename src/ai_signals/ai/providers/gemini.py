"""Google Gemini adapter: SDK first, REST generate-content as fallback."""

from __future__ import annotations

from typing import Any

import google.generativeai as genai

from ai_signals.ai.providers.base import AIProvider
from ai_signals.errors import ResponseValidationError

_REST_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


class GeminiProvider(AIProvider):
    service_id = "gemini"

    @property
    def cost_per_call(self) -> float:
        # ~500 input tokens at $0.00025/1K plus ~200 output tokens at $0.0005/1K.
        return 0.0002

    async def _setup(self) -> None:
        genai.configure(api_key=self.api_key)

    async def _generate(self, prompt: str, system: str) -> str:
        try:
            return await self._sdk_generate(prompt, system)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "gemini_sdk_failed_using_rest",
                model=self.model,
                error=str(exc),
            )
        return await self._rest_generate(prompt, system)

    async def _sdk_generate(self, prompt: str, system: str) -> str:
        model = genai.GenerativeModel(
            self.model,
            system_instruction=system,
            generation_config={
                "temperature": self.temperature,
                "max_output_tokens": self.max_tokens,
            },
        )
        response = await model.generate_content_async(prompt)
        return response.text

    async def _rest_generate(self, prompt: str, system: str) -> str:
        payload = {
            "systemInstruction": {"parts": [{"text": system}]},
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_tokens,
            },
        }
        body = await self._post_json(
            _REST_URL.format(model=self.model),
            headers={"x-goog-api-key": self.api_key, "Content-Type": "application/json"},
            payload=payload,
        )
        return _extract_candidate_text(body)


def _extract_candidate_text(payload: dict[str, Any]) -> str:
    candidates = payload.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        raise ResponseValidationError("gemini_response_without_candidates", service_id="gemini")
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        raise ResponseValidationError("gemini_response_without_parts", service_id="gemini")
    pieces = [part.get("text") for part in parts if isinstance(part, dict) and "text" in part]
    if not all(isinstance(piece, str) for piece in pieces):
        raise ResponseValidationError("gemini_text_part_not_string", service_id="gemini")
    text = "".join(pieces)
    if not text:
        raise ResponseValidationError("gemini_response_empty", service_id="gemini")
    return text
