"""Common plumbing for hosted AI provider adapters."""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, ClassVar

import httpx

from ai_signals.ai.prompts import PROBE_PROMPT, SYSTEM_PROMPT, build_validation_prompt
from ai_signals.ai.schemas import AIDecision, MarketContext, parse_decision_text
from ai_signals.errors import (
    ProviderConfigError,
    ProviderError,
    ResponseValidationError,
    TransientProviderError,
)
from ai_signals.utils.logging import get_logger, log_llm_call
from ai_signals.utils.rate_limiter import RateLimiter
from ai_signals.utils.retry import RetryPolicy, run_with_retry


class AIProvider(ABC):
    """One hosted AI service behind the ``predict`` contract.

    Every outbound request passes the provider's rate limiter, is bounded by
    ``timeout`` and is retried for transient failures. The parsed decision
    is validated once after the retries; malformed answers are not retried.
    """

    service_id: ClassVar[str]

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        timeout: float = 30.0,
        temperature: float = 0.3,
        max_tokens: int = 500,
        limiter: RateLimiter | None = None,
        retry_policy: RetryPolicy | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._limiter = limiter
        self._retry_policy = retry_policy or RetryPolicy(max_delay=15.0)
        self._client = http_client
        self._owns_client = http_client is None
        self._sleep = sleep
        self._initialized = False
        self._logger = get_logger(f"ai_signals.ai.providers.{self.service_id}")

    @property
    def cost_per_call(self) -> float:
        """Estimated USD cost of one validation request."""
        return 0.001

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Check configuration and open the HTTP client.

        Raises:
            ProviderConfigError: API key or model is missing.
        """
        if not self.api_key:
            raise ProviderConfigError(
                f"missing_api_key: {self.service_id.upper()}_API_KEY",
                service_id=self.service_id,
            )
        if not self.model:
            raise ProviderConfigError("missing_model_name", service_id=self.service_id)
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        await self._setup()
        self._initialized = True

    async def predict(self, context: MarketContext) -> AIDecision:
        """Ask the service to validate one market context.

        Raises:
            ProviderError: the request failed or the answer was malformed.
        """
        text = await self.complete(build_validation_prompt(context))
        try:
            decision = parse_decision_text(text, self.service_id)
        except ProviderError:
            raise
        except Exception as exc:
            raise ResponseValidationError(
                f"unparseable_response: {exc}", service_id=self.service_id
            ) from exc
        self._logger.debug(
            "ai_decision_parsed",
            action=decision.action,
            confidence=decision.confidence,
            instrument=context.instrument,
        )
        return decision

    async def test_connection(self) -> bool:
        """Send a minimal probe and report whether a valid answer came back."""
        try:
            text = await self.complete(PROBE_PROMPT)
            parse_decision_text(text, self.service_id)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning("ai_probe_failed", service=self.service_id, error=str(exc))
            return False
        return True

    async def complete(self, prompt: str, *, system: str = SYSTEM_PROMPT) -> str:
        """Return raw completion text for ``prompt``."""
        if not self._initialized:
            raise ProviderConfigError("provider_not_initialized", service_id=self.service_id)

        async def attempt() -> str:
            if self._limiter is not None:
                await self._limiter.acquire()
            try:
                text = await asyncio.wait_for(self._generate(prompt, system), self.timeout)
            except TimeoutError as exc:
                raise TransientProviderError(
                    f"timeout after {self.timeout}s", service_id=self.service_id
                ) from exc
            if not isinstance(text, str):
                raise ResponseValidationError(
                    f"response_text_not_string: {type(text).__name__}",
                    service_id=self.service_id,
                )
            return text

        started = time.perf_counter()
        try:
            text = await run_with_retry(
                attempt,
                self._retry_policy,
                context=f"ai:{self.service_id}",
                sleep=self._sleep,
            )
        except Exception as exc:
            log_llm_call(
                self._logger,
                service=self.service_id,
                model=self.model,
                success=False,
                latency_ms=(time.perf_counter() - started) * 1000,
                error=str(exc),
            )
            if isinstance(exc, ProviderError):
                raise
            # SDK and client bugs surface as provider failures
            raise ProviderError(
                f"{type(exc).__name__}: {exc}", service_id=self.service_id
            ) from exc
        log_llm_call(
            self._logger,
            service=self.service_id,
            model=self.model,
            success=True,
            latency_ms=(time.perf_counter() - started) * 1000,
        )
        return text

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        self._initialized = False

    async def _setup(self) -> None:
        """Hook for adapters that need SDK configuration."""

    @abstractmethod
    async def _generate(self, prompt: str, system: str) -> str:
        """Perform one request and return the model's text."""

    async def _post_json(
        self,
        url: str,
        *,
        headers: dict[str, str],
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        """POST ``payload`` and map transport and HTTP failures to provider errors."""
        if self._client is None:
            raise ProviderConfigError("provider_not_initialized", service_id=self.service_id)
        try:
            response = await self._client.post(url, headers=headers, json=payload)
        except httpx.TimeoutException as exc:
            raise TransientProviderError(f"timeout: {exc}", service_id=self.service_id) from exc
        except httpx.TransportError as exc:
            raise TransientProviderError(
                f"connection error: {exc}", service_id=self.service_id
            ) from exc

        status = response.status_code
        if status == 429:
            raise TransientProviderError(
                "rate limit exceeded (429 too many requests)", service_id=self.service_id
            )
        if status >= 500:
            raise TransientProviderError(
                f"server error {status}: {response.text[:200]}", service_id=self.service_id
            )
        if status >= 400:
            raise ProviderError(
                f"http_{status}: {response.text[:200]}", service_id=self.service_id
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ResponseValidationError(
                "response_body_not_json", service_id=self.service_id
            ) from exc
        if not isinstance(body, dict):
            raise ResponseValidationError("response_body_not_object", service_id=self.service_id)
        return body
