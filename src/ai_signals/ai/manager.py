"""Multi-provider AI manager with sticky failover."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any

import httpx

from ai_signals.ai.providers.base import AIProvider
from ai_signals.ai.providers.claude import ClaudeProvider
from ai_signals.ai.providers.gemini import GeminiProvider
from ai_signals.ai.providers.openai import OpenAIProvider
from ai_signals.ai.providers.openrouter import OpenRouterProvider
from ai_signals.ai.schemas import AIDecision, MarketContext
from ai_signals.config import ProviderId, Settings
from ai_signals.errors import (
    AllProvidersFailedError,
    ProviderConfigError,
    ProviderError,
    ProviderUnavailableError,
)
from ai_signals.result import Err, Ok, Result
from ai_signals.types import ProviderHealth
from ai_signals.utils.logging import get_logger
from ai_signals.utils.rate_limiter import RateLimiter
from ai_signals.utils.retry import RetryPolicy

_COST_WINDOW_SECONDS = 86_400.0

_PROVIDER_CLASSES: dict[ProviderId, type[AIProvider]] = {
    ProviderId.GEMINI: GeminiProvider,
    ProviderId.CLAUDE: ClaudeProvider,
    ProviderId.OPENAI: OpenAIProvider,
    ProviderId.OPENROUTER: OpenRouterProvider,
}


class AIProviderManager:
    """Owns the provider adapters and exposes one ``predict`` contract.

    ``predict`` tries the active service first, then every other ready
    service in configured order. The first one that answers becomes the
    active service for later calls. Health counters are updated on every
    attempt.
    """

    def __init__(
        self,
        providers: Mapping[str, AIProvider],
        *,
        primary: str,
        fallbacks: Sequence[str] = (),
        health_check_interval: float = 300.0,
        daily_cost_limit: float | None = None,
        probe_on_init: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._providers = dict(providers)
        self._order: list[str] = []
        for service_id in [primary, *fallbacks]:
            if service_id in self._providers and service_id not in self._order:
                self._order.append(service_id)
        self._health = {
            service_id: ProviderHealth(service_id=service_id, cost_per_call=provider.cost_per_call)
            for service_id, provider in self._providers.items()
        }
        self._active: str | None = None
        self._health_check_interval = health_check_interval
        self._daily_cost_limit = daily_cost_limit
        self._probe_on_init = probe_on_init
        self._clock = clock
        self._cost_window_start = clock()
        self._cost_today = 0.0
        self._running = False
        self._health_task: asyncio.Task[None] | None = None
        self._logger = get_logger("ai_signals.ai.manager")

    @property
    def active_service(self) -> str | None:
        return self._active

    @property
    def available(self) -> bool:
        """True when at least one provider is ready and the cost budget is not spent."""
        return any(h.ready for h in self._health.values()) and not self._budget_exhausted()

    def health(self, service_id: str) -> ProviderHealth:
        return self._health[service_id]

    async def initialize(self, *, start_health_checks: bool = True) -> None:
        """Initialize every configured provider and pick the active one.

        A provider with bad configuration is left unready; the manager keeps
        going as long as another provider is usable.
        """
        for service_id in self._order:
            provider = self._providers[service_id]
            health = self._health[service_id]
            try:
                await provider.initialize()
            except ProviderConfigError as exc:
                health.ready = False
                health.last_error = str(exc)
                self._logger.warning("ai_provider_config_error", service=service_id, error=str(exc))
                continue
            except Exception as exc:  # noqa: BLE001
                health.ready = False
                health.last_error = f"{type(exc).__name__}: {exc}"
                self._logger.warning(
                    "ai_provider_init_failed", service=service_id, error=health.last_error
                )
                continue
            health.ready = await self._probe(service_id) if self._probe_on_init else True
            self._logger.info("ai_provider_initialized", service=service_id, ready=health.ready)

        self._active = next((s for s in self._order if self._health[s].ready), None)
        if self._active is None:
            self._logger.error("no_ai_provider_ready", configured=self._order)
        else:
            self._logger.info("ai_provider_active", service=self._active)

        if start_health_checks and self._health_check_interval > 0:
            await self.start_health_checks()

    async def predict(self, context: MarketContext) -> AIDecision:
        """Return a normalized decision from the first provider that answers.

        Raises:
            ProviderUnavailableError: nothing is ready or the daily budget is spent.
            AllProvidersFailedError: every ready provider failed.
        """
        if self._budget_exhausted():
            raise ProviderUnavailableError("daily_ai_cost_limit_reached")

        candidates = self._attempt_order()
        if not candidates:
            raise ProviderUnavailableError("no_ai_provider_ready")

        errors: dict[str, Exception] = {}
        for service_id in candidates:
            provider = self._providers[service_id]
            health = self._health[service_id]
            health.request_count += 1
            self._cost_today += health.cost_per_call
            try:
                decision = await provider.predict(context)
            except Exception as exc:  # noqa: BLE001
                health.error_count += 1
                health.last_error = str(exc)
                errors[service_id] = exc
                self._logger.warning(
                    "ai_provider_failed",
                    service=service_id,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                continue

            if service_id != self._active:
                self._set_active(service_id, reason="failover")
            return decision

        raise AllProvidersFailedError(errors)

    async def try_predict(self, context: MarketContext) -> Result[AIDecision, ProviderError]:
        """Same as ``predict`` but returns ``Ok`` / ``Err`` instead of raising."""
        try:
            return Ok(await self.predict(context))
        except ProviderError as exc:
            return Err(exc)

    def switch_service(self, service_id: str) -> None:
        """Manually make ``service_id`` the active service."""
        if service_id not in self._providers:
            raise ValueError(f"unknown_ai_service: {service_id}")
        if not self._health[service_id].ready:
            raise ProviderUnavailableError(
                f"ai_service_not_ready: {service_id}", service_id=service_id
            )
        self._set_active(service_id, reason="manual")

    async def check_health(self) -> dict[str, bool]:
        """Probe every initialized provider and refresh its ready flag."""
        results: dict[str, bool] = {}
        for service_id in self._order:
            provider = self._providers[service_id]
            if not provider.initialized:
                results[service_id] = False
                continue
            ready = await self._probe(service_id)
            self._health[service_id].ready = ready
            results[service_id] = ready

        if self._active is None or not self._health[self._active].ready:
            replacement = next((s for s in self._order if self._health[s].ready), None)
            if replacement is not None and replacement != self._active:
                self._set_active(replacement, reason="health_check")
            elif replacement is None:
                self._active = None
        self._logger.info("ai_health_check", results=results, active=self._active)
        return results

    def stats(self) -> dict[str, Any]:
        return {
            "active_service": self._active,
            "configured_order": list(self._order),
            "cost_today": round(self._cost_today, 6),
            "daily_cost_limit": self._daily_cost_limit,
            "providers": {
                service_id: {
                    "ready": h.ready,
                    "request_count": h.request_count,
                    "error_count": h.error_count,
                    "last_error": h.last_error,
                    "cost_per_call": h.cost_per_call,
                    "cost_accrued": round(h.cost_accrued, 6),
                }
                for service_id, h in self._health.items()
            },
        }

    async def start_health_checks(self) -> None:
        if self._running:
            return
        self._running = True
        self._health_task = asyncio.create_task(self._health_loop())
        self._logger.info("ai_health_checks_started", interval_s=self._health_check_interval)

    async def dispose(self) -> None:
        """Stop the health-check task and close every provider."""
        self._running = False
        if self._health_task is not None:
            self._health_task.cancel()
            try:
                await self._health_task
            except asyncio.CancelledError:
                pass
            self._health_task = None
        for provider in self._providers.values():
            await provider.close()
        for health in self._health.values():
            health.ready = False
        self._active = None

    async def _health_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._health_check_interval)
            try:
                await self.check_health()
            except Exception:  # noqa: BLE001
                self._logger.exception("ai_health_check_failed")

    async def _probe(self, service_id: str) -> bool:
        try:
            return await self._providers[service_id].test_connection()
        except Exception as exc:  # noqa: BLE001
            self._health[service_id].last_error = f"{type(exc).__name__}: {exc}"
            self._logger.warning("ai_probe_failed", service=service_id, error=str(exc))
            return False

    def _attempt_order(self) -> list[str]:
        ready = [s for s in self._order if self._health[s].ready]
        if self._active in ready:
            ready.remove(self._active)
            ready.insert(0, self._active)
        return ready

    def _set_active(self, service_id: str, *, reason: str) -> None:
        previous = self._active
        self._active = service_id
        self._logger.warning(
            "ai_provider_switched",
            previous=previous,
            active=service_id,
            reason=reason,
        )

    def _budget_exhausted(self) -> bool:
        if self._daily_cost_limit is None:
            return False
        now = self._clock()
        if now - self._cost_window_start >= _COST_WINDOW_SECONDS:
            self._cost_window_start = now
            self._cost_today = 0.0
        return self._cost_today >= self._daily_cost_limit


def build_provider(
    service: ProviderId,
    settings: Settings,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> AIProvider:
    """Create one provider adapter from settings with its own rate limiter."""
    kwargs: dict[str, Any] = {
        "api_key": settings.api_key_for(service),
        "model": settings.model_for(service),
        "timeout": settings.ai_timeout,
        "temperature": settings.ai_temperature,
        "max_tokens": settings.ai_max_tokens,
        "limiter": RateLimiter.for_ai_api(
            name=f"ai:{service.value}",
            capacity=settings.ai_rate_limit,
            window_seconds=settings.ai_rate_window,
        ),
        "retry_policy": RetryPolicy(
            max_retries=settings.retry_max_retries,
            initial_delay=settings.retry_initial_delay,
            backoff_factor=settings.retry_backoff_factor,
            max_delay=settings.retry_max_delay_ai,
        ),
        "http_client": http_client,
    }
    if service is ProviderId.OPENAI:
        kwargs["organization"] = settings.openai_organization
    return _PROVIDER_CLASSES[service](**kwargs)


def build_ai_manager(settings: Settings) -> AIProviderManager:
    """Wire adapters for every configured service into a manager."""
    providers = {
        service.value: build_provider(service, settings) for service in settings.configured_services
    }
    return AIProviderManager(
        providers,
        primary=settings.ai_primary_service.value,
        fallbacks=[service.value for service in settings.ai_fallback_services],
        health_check_interval=settings.ai_health_check_interval,
        daily_cost_limit=settings.ai_daily_cost_limit,
        probe_on_init=settings.ai_probe_on_init,
    )
