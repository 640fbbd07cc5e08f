"""CLI entry point for the price monitor."""

import asyncio
import logging
from datetime import datetime
from pathlib import Path

import typer

from price_monitor.adapters.formatting import SlackBlockFormatter
from price_monitor.adapters.keepa import KeepaAuthError, KeepaClient
from price_monitor.adapters.notifications import LogNotifier, SlackNotifier
from price_monitor.config import ConfigurationError, Settings, get_settings
from price_monitor.core import (
    CooldownGate,
    DiffEvaluator,
    OutboundMessage,
    RunSummary,
    SnapshotExtractor,
    StateStore,
    StateStoreError,
)
from price_monitor.logging_config import setup_logging
from price_monitor.scheduler import JobScheduler, default_command
from price_monitor.use_cases import NotificationDispatcher, ScanService


logger = logging.getLogger("price_monitor.cli")

app = typer.Typer(add_completion=False, help="Keepa → Slack price/rank change monitor.")

CONFIG_OPTION = typer.Option(Path("config.yaml"), "--config", "-c", help="YAML config file")


def build_service(settings: Settings, dry_run: bool = False) -> ScanService:
    """Wire adapters and core components from one settings object."""
    keepa = settings.keepa
    source = KeepaClient(
        api_key=keepa.api_key,
        domain=keepa.domain,
        stats_days=keepa.stats_days,
        max_retries=keepa.max_retries,
        initial_retry_delay=keepa.initial_retry_delay,
        max_retry_delay=keepa.max_retry_delay,
        request_delay=keepa.request_delay,
        timeout=keepa.timeout,
        strict_finder=keepa.strict_finder,
    )
    notifier = LogNotifier() if dry_run else SlackNotifier(settings.slack.webhook_url)

    return ScanService(
        source=source,
        dispatcher=NotificationDispatcher(notifier, SlackBlockFormatter(), settings.slack_batch_size),
        store=StateStore(settings.paths.state_file),
        extractor=SnapshotExtractor(
            min_price=settings.monitoring.min_price,
            min_sellers=settings.monitoring.min_sellers,
            strict_category=settings.monitoring.strict_category,
        ),
        evaluator=DiffEvaluator(settings.diff_thresholds),
        cooldown=CooldownGate(settings.cooldown_ms),
        settings=settings,
        persist=not dry_run,
    )


def print_summary(summary: RunSummary) -> None:
    print("\n" + "=" * 60)
    print(f"✅ DONE: notified {summary.notified}")
    print("=" * 60)
    for result in summary.profiles:
        flags = " (search failed)" if result.search_failed else ""
        print(
            f"  • {result.profile_key}: candidates={result.candidates} observed={result.observed} "
            f"sent={result.sent}/{result.accepted} cooldown={result.suppressed} "
            f"over_budget={result.over_budget} failed_batches={result.failed_batches}{flags}"
        )
        if result.rejected:
            rejected = ", ".join(f"{k}={v}" for k, v in sorted(result.rejected.items()))
            print(f"    └─ rejected: {rejected}")
    print(f"  • pruned: {summary.pruned}")
    print(f"  • state saved: {'yes' if summary.state_saved else 'no'}")


@app.command()
def run(
    config: Path = CONFIG_OPTION,
    dry_run: bool = typer.Option(False, "--dry-run", help="Log messages instead of posting; do not save state"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
) -> None:
    """Run one scan-compare-notify-persist cycle."""
    try:
        settings = get_settings(config)
        setup_logging(settings.paths.logs_dir, verbose)
        settings.validate(require_slack=not dry_run)
        profiles = settings.selected_profiles()
        service = build_service(settings, dry_run)
        service.store.check_writable()
    except (ConfigurationError, StateStoreError) as e:
        typer.echo(f"❌ Configuration error: {e}", err=True)
        raise typer.Exit(code=2)

    try:
        summary = asyncio.run(service.run(profiles))
    except KeepaAuthError as e:
        logger.critical("Keepa rejected the API key: %s", e)
        raise typer.Exit(code=1)
    except Exception:
        logger.critical("monitor FATAL", exc_info=True)
        raise typer.Exit(code=1)

    print_summary(summary)


@app.command()
def watch(
    config: Path = CONFIG_OPTION,
    interval_min: float = typer.Option(10.0, "--interval-min", help="Minutes between runs"),
) -> None:
    """Re-run the monitor periodically, one run at a time."""
    settings = get_settings(config)
    setup_logging(settings.paths.logs_dir)

    scheduler = JobScheduler(default_command(str(config)), interval_min * 60)
    scheduler.install_signal_handlers()
    scheduler.run_forever()


@app.command()
def ping(config: Path = CONFIG_OPTION) -> None:
    """Post a test message to the Slack webhook."""
    settings = get_settings(config)
    setup_logging(settings.paths.logs_dir)
    if not settings.slack.webhook_url:
        typer.echo("❌ SLACK_WEBHOOK_URL is missing", err=True)
        raise typer.Exit(code=2)

    notifier = SlackNotifier(settings.slack.webhook_url)
    ok = asyncio.run(notifier.send(OutboundMessage(text="✅ price-monitor ping")))
    typer.echo("ok" if ok else "failed")
    if not ok:
        raise typer.Exit(code=1)


@app.command()
def state(
    config: Path = CONFIG_OPTION,
    limit: int = typer.Option(20, "--limit", help="Entries to list"),
) -> None:
    """Show stored snapshot statistics and the most recently seen items."""
    settings = get_settings(config)
    store = StateStore(settings.paths.state_file)
    persisted = store.load()
    stats = store.get_stats(persisted)

    updated = (
        datetime.fromtimestamp(stats["updated_at"] / 1000).strftime("%Y-%m-%d %H:%M:%S")
        if stats["updated_at"] else "never"
    )
    print(f"📦 {settings.paths.state_file}")
    print(f"  • entries: {stats['total']} (notified at least once: {stats['notified']})")
    print(f"  • updated: {updated}")

    for snap in store.list_recent(persisted, limit):
        price = f"¥{snap.price:,}" if snap.price is not None else "-"
        print(f"  {snap.asin}  {price:>10}  rank={snap.rank or '-'}  sellers={snap.sellers or '-'}  {snap.title[:50]}")


if __name__ == "__main__":
    app()
