"""Error taxonomy shared by the pipeline layers."""

from __future__ import annotations


class SignalPipelineError(Exception):
    """Base error for the signal pipeline."""


class InsufficientHistoryError(SignalPipelineError):
    """Raised when there are too few candles to compute indicators."""

    def __init__(self, required: int, actual: int) -> None:
        super().__init__(f"insufficient_history: need {required} candles, got {actual}")
        self.required = required
        self.actual = actual


class MarketDataError(SignalPipelineError):
    """Raised when the market data source cannot serve a request."""


class PositionConflictError(SignalPipelineError):
    """Raised when a second OPEN position is inserted for an instrument."""


class ProviderError(SignalPipelineError):
    """Base error for AI provider calls."""

    def __init__(self, message: str, *, service_id: str | None = None) -> None:
        super().__init__(message)
        self.service_id = service_id


class ProviderConfigError(ProviderError):
    """Missing API key, bad model name or similar; the provider never becomes ready."""


class TransientProviderError(ProviderError):
    """Timeout, connection reset, rate limiting or 5xx; safe to retry."""


class ResponseValidationError(ProviderError):
    """Provider answered but the payload does not fit the decision schema."""


class ProviderUnavailableError(ProviderError):
    """No provider could produce a decision."""


class AllProvidersFailedError(ProviderUnavailableError):
    """Every ready provider was attempted and failed."""

    def __init__(self, errors: dict[str, Exception]) -> None:
        details = "; ".join(f"{service}: {exc}" for service, exc in errors.items())
        super().__init__(f"all_ai_providers_failed: {details}")
        self.errors = errors
