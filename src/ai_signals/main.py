"""CLI 入口模块 - AI 信号验证流水线命令行接口。"""

import asyncio
import sys
from pathlib import Path
from typing import Any

import click

from ai_signals import __version__
from ai_signals.config import Settings, get_settings
from ai_signals.journal.store import JournalStore
from ai_signals.pipeline import Orchestrator, build_orchestrator
from ai_signals.utils.logging import get_logger, setup_logging


@click.group(invoke_without_command=True)
@click.option("--version", "-v", is_flag=True, help="显示版本号")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """AI Signal Pipeline - AI 验证的加密货币交易信号系统。

    技术指标硬过滤 → 多 AI 服务验证 → 止盈止损持仓管理。
    """
    if version:
        click.echo(f"ai-signals version {__version__}")
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="试运行模式，只生成信号，不开平仓",
)
@click.option("--instrument", "-s", multiple=True, help="只处理指定交易对（可重复）")
@click.option("--timeframe", "-t", multiple=True, help="只处理指定周期（可重复）")
def once(dry_run: bool, instrument: tuple[str, ...], timeframe: tuple[str, ...]) -> None:
    """执行单次信号循环。

    同步 K 线 → 计算指标 → 硬过滤 → AI 验证 → 开/平仓
    """
    setup_logging()
    logger = get_logger("ai_signals.main")
    settings = get_settings()
    _warn_missing_keys(settings)

    logger.info(
        "starting_single_run",
        dry_run=dry_run,
        instruments=list(instrument) or settings.instruments,
        timeframes=list(timeframe) or settings.timeframes,
    )

    async def _run() -> None:
        orchestrator = build_orchestrator(settings)
        try:
            await orchestrator.start(start_health_checks=False)
            result = await orchestrator.run_all_signals(
                dry_run=dry_run,
                instruments=list(instrument) or None,
                timeframes=list(timeframe) or None,
            )
        finally:
            await orchestrator.shutdown()

        for signal in result.signals:
            click.echo(
                f"{signal.instrument:<10} {signal.timeframe:<4} {signal.final_action:<5} "
                f"confidence={signal.confidence:.1f} reason={signal.reason}"
            )
        logger.info(
            "run_completed",
            status=result.status,
            elapsed_ms=round(result.elapsed_ms, 2),
            signals=len(result.signals),
            positions=len(result.positions),
            warnings=result.warnings,
        )

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        logger.info("run_interrupted", message="User interrupted")
        sys.exit(0)
    except Exception as e:
        logger.exception("run_failed", error=str(e))
        sys.exit(1)


@cli.command()
def monitor() -> None:
    """执行一次持仓监控（止盈 / 止损检查）。"""
    setup_logging()
    logger = get_logger("ai_signals.main")
    settings = get_settings()

    async def _run() -> None:
        orchestrator = build_orchestrator(settings)
        try:
            closed = await orchestrator.run_monitor_cycle()
        finally:
            await orchestrator.shutdown()
        for position in closed:
            click.echo(
                f"closed {position.instrument} reason={position.close_reason} "
                f"exit={position.exit_price} pnl={position.pnl:.4f}"
            )
        logger.info("monitor_completed", closed=len(closed))

    try:
        asyncio.run(_run())
    except Exception as e:
        logger.exception("monitor_failed", error=str(e))
        sys.exit(1)


@cli.command()
def loop() -> None:
    """启动调度器，持续运行。

    按周期生成信号，按分钟监控持仓并做健康检查。
    使用 Ctrl+C 停止。
    """
    setup_logging()
    logger = get_logger("ai_signals.main")
    settings = get_settings()
    _warn_missing_keys(settings)

    logger.info(
        "starting_loop",
        instruments=settings.instruments,
        timeframes=settings.timeframes,
        monitor_interval=settings.monitor_interval,
    )

    async def _run(orchestrator: Orchestrator) -> None:
        await orchestrator.start()
        scheduler = orchestrator.build_scheduler()
        try:
            await scheduler.run_forever()
        finally:
            await orchestrator.shutdown()

    try:
        asyncio.run(_run(build_orchestrator(settings)))
    except KeyboardInterrupt:
        logger.info("loop_stopped", message="User stopped loop")
        sys.exit(0)


@cli.command()
def providers() -> None:
    """初始化并探测 AI 服务，输出统计信息。"""
    setup_logging()
    settings = get_settings()

    async def _run() -> dict[str, Any]:
        orchestrator = build_orchestrator(settings)
        try:
            await orchestrator.start(start_health_checks=False)
            return orchestrator.status()["ai"] or {}
        finally:
            await orchestrator.shutdown()

    stats = asyncio.run(_run())
    click.echo(f"Active service: {stats.get('active_service') or 'none'}")
    for service, item in stats.get("providers", {}).items():
        marker = "[OK]" if item["ready"] else "[--]"
        click.echo(
            f"  {marker} {service:<10} cost/call=${item['cost_per_call']:.6f} "
            f"last_error={item['last_error'] or '-'}"
        )


@cli.command()
def status() -> None:
    """显示系统状态和配置摘要。"""
    setup_logging()
    settings = get_settings()

    click.echo("=" * 50)
    click.echo("AI Signal Pipeline - Status")
    click.echo("=" * 50)
    click.echo()

    # 行情配置
    click.echo("[Market Data]")
    click.echo(f"   Instruments: {', '.join(settings.instruments)}")
    click.echo(f"   Timeframes: {', '.join(settings.timeframes)}")
    click.echo(f"   Binance Testnet: {'Yes' if settings.binance_testnet else 'No'}")
    click.echo(
        f"   Exchange rate limit: {settings.exchange_rate_limit}"
        f" per {settings.exchange_rate_window:g}s"
    )
    click.echo()

    # AI 服务配置
    click.echo("[AI Services]")
    for service in settings.configured_services:
        configured = "[OK] Configured" if settings.api_key_for(service) else "[--] Not configured"
        role = "primary" if service == settings.ai_primary_service else "fallback"
        click.echo(f"   {service.value} ({role}, {settings.model_for(service)}): {configured}")
    click.echo(f"   Min confidence: {settings.ai_min_confidence}")
    click.echo(f"   Auto-sell: {'enabled' if settings.allow_auto_sell else 'disabled (long-only)'}")
    click.echo()

    # 硬过滤与仓位参数
    click.echo("[Hard Filter]")
    click.echo(
        f"   BUY: RSI < {settings.filter_buy_max_rsi}, MACD histogram > 0, "
        f"volume ratio >= {settings.filter_min_volume_ratio}, "
        f"body >= {settings.filter_min_body_pct}%"
    )
    click.echo(f"   SELL: RSI > {settings.filter_sell_min_rsi}, MACD histogram < 0")
    click.echo()
    click.echo("[Positions]")
    click.echo(f"   Take profit: +{settings.take_profit_pct}%")
    click.echo(f"   Stop loss: -{settings.stop_loss_pct}%")
    click.echo(f"   Default size: {settings.position_size}")
    click.echo()

    # 日志配置
    click.echo("[Logging]")
    click.echo(f"   Log level: {settings.log_level}")
    click.echo(f"   Log format: {settings.log_format.value}")
    click.echo(f"   Journal dir: {settings.journal_dir}")
    click.echo()

    # 今日事件统计
    if settings.journal_dir.exists():
        counts = JournalStore(settings.journal_dir).event_counts()
        click.echo("[Journal Today]")
        if counts:
            for event_type, count in counts.items():
                click.echo(f"   {event_type}: {count}")
        else:
            click.echo("   No events yet")
        click.echo()

    missing = settings.missing_provider_keys()
    if missing:
        click.echo("[WARN] AI services without API keys:")
        for key in missing:
            click.echo(f"   - {key}")
    else:
        click.echo("[OK] All configured AI services have API keys")

    click.echo()
    click.echo("=" * 50)


@cli.command()
def check() -> None:
    """检查系统依赖和配置。"""
    setup_logging()
    logger = get_logger("ai_signals.main")

    click.echo("Checking system dependencies...")
    click.echo()

    all_ok = True

    # 检查必要的包
    packages = [
        ("pydantic", "Configuration validation"),
        ("pydantic_settings", "Settings loading"),
        ("httpx", "HTTP client"),
        ("pandas", "Data processing"),
        ("numpy", "Numerical computing"),
        ("structlog", "Structured logging"),
        ("click", "CLI framework"),
        ("tenacity", "Retry mechanism"),
        ("binance", "Market data"),
        ("google.generativeai", "Gemini SDK"),
    ]

    for pkg_name, desc in packages:
        try:
            __import__(pkg_name)
            click.echo(f"  [OK] {pkg_name} - {desc}")
        except ImportError:
            click.echo(f"  [MISSING] {pkg_name} - {desc}")
            all_ok = False

    click.echo()

    # 检查配置文件
    env_file = Path(".env")
    if env_file.exists():
        click.echo("  [OK] .env configuration file exists")
    else:
        click.echo("  [WARN] .env file not found (using defaults)")

    click.echo()

    if all_ok:
        click.echo("[OK] All dependency checks passed")
    else:
        click.echo("[ERROR] Some dependencies missing. Run: pip install -e .")

    logger.info("dependency_check_completed", all_ok=all_ok)


def _warn_missing_keys(settings: Settings) -> None:
    missing = settings.missing_provider_keys()
    if missing:
        get_logger("ai_signals.main").warning(
            "missing_ai_keys",
            missing_keys=missing,
            hint="请在 .env 文件中配置 AI 服务的 API 密钥",
        )


# 支持 python -m ai_signals.main 调用
if __name__ == "__main__":
    cli()
