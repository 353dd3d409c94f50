"""结构化日志配置模块。

使用 structlog 提供结构化日志支持，支持 JSON 和控制台两种输出格式。
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import Processor

from ai_signals.config import LogFormat, get_settings


def setup_logging() -> None:
    """配置结构化日志系统。

    根据配置设置日志级别和输出格式。
    """
    settings = get_settings()

    # 设置标准库日志级别
    log_level = getattr(logging, settings.log_level)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    # 第三方 HTTP / 交易所客户端只输出警告以上
    for noisy in ("httpx", "httpcore", "binance", "urllib3"):
        logging.getLogger(noisy).setLevel(max(log_level, logging.WARNING))

    # 共享处理器
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    # 根据格式选择渲染器
    if settings.log_format == LogFormat.JSON:
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """获取结构化日志记录器。

    Args:
        name: 日志记录器名称。如果为 None，则使用调用模块名。

    Returns:
        结构化日志记录器实例。
    """
    return structlog.get_logger(name)


# 便捷日志函数
def log_trade_signal(
    logger: structlog.stdlib.BoundLogger,
    *,
    instrument: str,
    timeframe: str,
    action: str,
    confidence: float,
    **kwargs: Any,
) -> None:
    """记录交易信号。"""
    logger.info(
        "trade_signal",
        instrument=instrument,
        timeframe=timeframe,
        action=action,
        confidence=round(confidence, 2),
        **kwargs,
    )


def log_llm_call(
    logger: structlog.stdlib.BoundLogger,
    *,
    service: str,
    model: str,
    success: bool,
    latency_ms: float,
    **kwargs: Any,
) -> None:
    """记录 LLM 调用。"""
    level = "info" if success else "warning"
    getattr(logger, level)(
        "llm_call",
        service=service,
        model=model,
        success=success,
        latency_ms=round(latency_ms, 2),
        **kwargs,
    )


def log_position_event(
    logger: structlog.stdlib.BoundLogger,
    *,
    event: str,
    instrument: str,
    entry_price: float,
    size: float,
    exit_price: float | None = None,
    pnl: float | None = None,
    **kwargs: Any,
) -> None:
    """记录仓位开平事件。"""
    logger.info(
        event,
        instrument=instrument,
        entry_price=entry_price,
        size=size,
        exit_price=exit_price,
        pnl=pnl,
        **kwargs,
    )


def log_rate_limit(
    logger: structlog.stdlib.BoundLogger,
    *,
    service: str,
    remaining: int,
    capacity: int,
    reset_at: str,
) -> None:
    """记录限流额度不足。"""
    logger.warning(
        "rate_limit_low",
        service=service,
        remaining=remaining,
        capacity=capacity,
        reset_at=reset_at,
    )


def log_retry_attempt(
    logger: structlog.stdlib.BoundLogger,
    *,
    context: str,
    attempt: int,
    max_retries: int,
    delay_s: float,
    error: str,
) -> None:
    """记录重试尝试。"""
    logger.warning(
        "retry_attempt",
        context=context,
        attempt=attempt,
        max_retries=max_retries,
        delay_s=round(delay_s, 3),
        error=error,
    )
