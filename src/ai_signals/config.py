"""配置加载模块 - 从环境变量和 .env 文件加载配置。"""

from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import Field, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderId(str, Enum):
    """AI 服务枚举。"""

    GEMINI = "gemini"
    CLAUDE = "claude"
    OPENAI = "openai"
    OPENROUTER = "openrouter"


class LogFormat(str, Enum):
    """日志格式枚举。"""

    JSON = "json"
    CONSOLE = "console"


class Settings(BaseSettings):
    """系统配置设置。

    从环境变量和 .env 文件加载配置。
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==================== 行情数据 ====================
    binance_api_key: str = Field(default="", description="Binance API Key")
    binance_api_secret: str = Field(default="", description="Binance API Secret")
    binance_testnet: bool = Field(default=False, description="是否使用 Binance 测试网")
    instruments: list[str] = Field(
        default_factory=lambda: ["BTC/USDT", "ETH/USDT"],
        description="交易对列表",
    )
    timeframes: list[str] = Field(
        default_factory=lambda: ["1h", "4h"],
        description="信号周期列表",
    )
    candle_sync_limit: int = Field(default=100, ge=1, le=1000, description="每次同步 K 线数量")
    analysis_window: int = Field(default=100, ge=10, le=1000, description="指标计算使用的 K 线数量")
    exchange_timeout: float = Field(default=10.0, gt=0, le=120, description="交易所调用超时（秒）")
    exchange_rate_limit: int = Field(default=60, ge=1, description="交易所窗口内最大请求数")
    exchange_rate_window: float = Field(default=60.0, gt=0, description="交易所限流窗口（秒）")

    # ==================== AI 服务 ====================
    gemini_api_key: str = Field(default="", description="Gemini API Key")
    gemini_model: str = Field(default="gemini-2.5-flash", description="Gemini 模型名称")
    claude_api_key: str = Field(default="", description="Anthropic API Key")
    claude_model: str = Field(default="claude-3-haiku-20240307", description="Claude 模型名称")
    openai_api_key: str = Field(default="", description="OpenAI API Key")
    openai_model: str = Field(default="gpt-3.5-turbo", description="OpenAI 模型名称")
    openai_organization: str = Field(default="", description="OpenAI Organization")
    openrouter_api_key: str = Field(default="", description="OpenRouter API Key")
    openrouter_model: str = Field(
        default="anthropic/claude-3.5-sonnet",
        description="OpenRouter 模型名称",
    )

    ai_primary_service: ProviderId = Field(default=ProviderId.GEMINI, description="主 AI 服务")
    ai_fallback_services: list[ProviderId] = Field(
        default_factory=lambda: [ProviderId.CLAUDE, ProviderId.OPENAI],
        description="按顺序尝试的备用 AI 服务",
    )
    ai_timeout: float = Field(default=30.0, gt=0, le=120, description="LLM 调用超时（秒）")
    ai_temperature: float = Field(default=0.3, ge=0.0, le=2.0, description="LLM 温度")
    ai_max_tokens: int = Field(default=500, ge=16, le=8192, description="LLM 最大输出 token")
    ai_rate_limit: int = Field(default=30, ge=1, description="每个 AI 服务窗口内最大请求数")
    ai_rate_window: float = Field(default=60.0, gt=0, description="AI 限流窗口（秒）")
    ai_health_check_interval: float = Field(
        default=300.0,
        ge=0,
        description="AI 服务健康检查间隔（秒），0 表示关闭",
    )
    ai_probe_on_init: bool = Field(default=True, description="初始化时是否发送探测请求")
    ai_daily_cost_limit: float | None = Field(
        default=None,
        ge=0,
        description="每日 AI 成本上限（美元），为空表示不限制",
    )
    ai_min_confidence: float = Field(
        default=80.0,
        ge=0.0,
        le=100.0,
        description="BUY 信号所需最低 AI 置信度",
    )

    # ==================== 重试策略 ====================
    retry_max_retries: int = Field(default=3, ge=0, le=10, description="最大重试次数")
    retry_initial_delay: float = Field(default=1.0, ge=0, description="首次重试延迟（秒）")
    retry_backoff_factor: float = Field(default=2.0, ge=1.0, description="退避倍数")
    retry_max_delay_exchange: float = Field(default=10.0, ge=0, description="交易所重试最大延迟（秒）")
    retry_max_delay_ai: float = Field(default=15.0, ge=0, description="AI 重试最大延迟（秒）")

    # ==================== 指标参数 ====================
    rsi_period: int = Field(default=14, ge=2, description="RSI 周期")
    macd_fast_period: int = Field(default=12, ge=2, description="MACD 快线周期")
    macd_slow_period: int = Field(default=26, ge=3, description="MACD 慢线周期")
    macd_signal_period: int = Field(default=9, ge=2, description="MACD 信号线周期")
    volume_ma_period: int = Field(default=20, ge=2, description="成交量均线周期")
    indicator_buffer: int = Field(default=10, ge=0, description="指标历史缓冲 K 线数")

    # ==================== 硬过滤阈值 ====================
    filter_buy_max_rsi: float = Field(default=30.0, ge=0, le=100, description="BUY 候选 RSI 上限")
    filter_sell_min_rsi: float = Field(default=70.0, ge=0, le=100, description="SELL 候选 RSI 下限")
    filter_min_volume_ratio: float = Field(default=1.2, ge=0, description="最低量比")
    filter_min_body_pct: float = Field(default=0.5, ge=0, description="最低实体涨跌幅（百分比）")

    # ==================== 仓位规则 ====================
    take_profit_pct: float = Field(default=6.0, gt=0, le=100, description="止盈（百分比）")
    stop_loss_pct: float = Field(default=3.0, gt=0, lt=100, description="止损（百分比）")
    position_size: float = Field(default=1.0, gt=0, description="默认开仓数量")
    allow_auto_sell: bool = Field(
        default=False,
        description="是否允许 AI 确认的 SELL 信号自动平多仓",
    )

    # ==================== 调度 ====================
    monitor_interval: float = Field(default=60.0, gt=0, description="持仓监控间隔（秒）")
    health_check_interval: float = Field(default=60.0, gt=0, description="调度器健康检查间隔（秒）")
    scheduler_tick: float = Field(default=1.0, gt=0, description="调度器轮询间隔（秒）")

    # ==================== 日志配置 ====================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="日志级别",
    )
    log_format: LogFormat = Field(
        default=LogFormat.CONSOLE,
        description="日志输出格式",
    )

    # ==================== 数据存储 ====================
    journal_dir: Path = Field(
        default=Path("data/journal"),
        description="事件日志与持仓状态存储目录",
    )

    @field_validator("journal_dir", mode="before")
    @classmethod
    def parse_journal_dir(cls, v: str | Path) -> Path:
        """将字符串转换为 Path 对象。"""
        return Path(v) if isinstance(v, str) else v

    @field_validator("macd_slow_period")
    @classmethod
    def check_macd_periods(cls, v: int, info: ValidationInfo) -> int:
        """慢线周期必须大于快线周期。"""
        fast = info.data.get("macd_fast_period")
        if fast is not None and v <= fast:
            raise ValueError("macd_slow_period must be greater than macd_fast_period")
        return v

    @model_validator(mode="after")
    def check_analysis_window(self) -> "Settings":
        """分析窗口必须覆盖指标所需的最少 K 线数量。"""
        if self.analysis_window < self.required_history:
            raise ValueError(
                f"analysis_window ({self.analysis_window}) must be at least "
                f"required_history ({self.required_history})"
            )
        return self

    def ensure_directories(self) -> None:
        """确保必要的目录存在。"""
        self.journal_dir.mkdir(parents=True, exist_ok=True)

    @property
    def positions_file(self) -> Path:
        """持仓状态文件路径。"""
        return self.journal_dir / "positions.json"

    @property
    def required_history(self) -> int:
        """计算指标所需的最少 K 线数量。"""
        return (
            max(self.rsi_period, self.macd_slow_period, self.volume_ma_period)
            + self.indicator_buffer
        )

    def api_key_for(self, provider: ProviderId) -> str:
        """返回指定 AI 服务的 API Key。"""
        return {
            ProviderId.GEMINI: self.gemini_api_key,
            ProviderId.CLAUDE: self.claude_api_key,
            ProviderId.OPENAI: self.openai_api_key,
            ProviderId.OPENROUTER: self.openrouter_api_key,
        }[provider]

    def model_for(self, provider: ProviderId) -> str:
        """返回指定 AI 服务的模型名称。"""
        return {
            ProviderId.GEMINI: self.gemini_model,
            ProviderId.CLAUDE: self.claude_model,
            ProviderId.OPENAI: self.openai_model,
            ProviderId.OPENROUTER: self.openrouter_model,
        }[provider]

    @property
    def configured_services(self) -> list[ProviderId]:
        """主服务在前、备用服务按顺序去重后的服务列表。"""
        ordered: list[ProviderId] = []
        for service in [self.ai_primary_service, *self.ai_fallback_services]:
            if service not in ordered:
                ordered.append(service)
        return ordered

    def missing_provider_keys(self) -> list[str]:
        """返回已启用但缺少 API Key 的 AI 服务对应的环境变量名。"""
        return [
            f"{service.value.upper()}_API_KEY"
            for service in self.configured_services
            if not self.api_key_for(service)
        ]


# 全局配置实例（延迟初始化）
_settings: Settings | None = None


def get_settings() -> Settings:
    """获取全局配置实例。"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """重新加载配置。"""
    global _settings
    _settings = Settings()
    return _settings
