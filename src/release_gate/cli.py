"""Command-line interface for the ArmorCode release gate.

Commands::

    release-gate check      run the gate for the current build
    release-gate discover   run one discovery scan (or --dry-run)
    release-gate schedule   run the discovery scheduler in the foreground
    release-gate next-run   show when the scheduler would scan next
    release-gate ping       check connectivity to ArmorCode
    release-gate validate   validate a configuration file

Exit codes: 0 passed, 1 blocked, 2 configuration error, 3 retries
exhausted, 4 degraded (failed in warn mode, the build should be marked
unstable), 130 interrupted.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

import typer

from src.discovery.host import JenkinsHomeHost
from src.discovery.models import ScheduleSpec
from src.discovery.scanner import JobScanner
from src.discovery.scheduler import (
    DiscoveryScheduler,
    next_interval,
    validate_cron_expression,
)
from src.discovery.service import DiscoveryService
from src.release_gate import display
from src.release_gate.client import ping as ping_service
from src.release_gate.models import Disposition, Invocation
from src.release_gate.runner import GateStateMachine
from src.shared.config import (
    ConfigStore,
    ReleaseGateConfig,
    Settings,
    load_config,
    validate_config,
)
from src.shared.constants import APP_NAME
from src.shared.errors import (
    ConfigurationError,
    RetriesExhaustedError,
    SchedulingError,
)
from src.shared.logging import setup_logging
from src.shared.shutdown import GracefulShutdown

EXIT_PASSED = 0
EXIT_BLOCKED = 1
EXIT_CONFIG = 2
EXIT_EXHAUSTED = 3
EXIT_UNSTABLE = 4
EXIT_INTERRUPTED = 130

# Seconds between config-file modification checks in ``schedule``
_RELOAD_POLL_S = 5.0

app = typer.Typer(
    name=APP_NAME,
    help="ArmorCode release gate and job discovery.",
    no_args_is_help=True,
)

ConfigOption = typer.Option(
    None, "--config", "-c", help="Path to the YAML configuration file."
)


def _version_callback(value: bool) -> None:
    if value:
        display.print_version()
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        help="Show the version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """ArmorCode release gate and job discovery."""
    setup_logging(APP_NAME, Settings().log_level)


def _load(config_path: Optional[Path], settings: Settings) -> ReleaseGateConfig:
    return ConfigStore(config_path, settings.base_url).snapshot()


def _default_build_dir(settings: Settings) -> Path | None:
    """``$JENKINS_HOME/jobs/<a>/jobs/<b>/builds/<n>`` for the current build.

    None unless the job directory already exists, so the gate never
    creates job trees of its own.
    """
    if not (settings.jenkins_home and settings.job_name and settings.build_number.isdigit()):
        return None
    if int(settings.build_number) < 1:
        return None
    job_dir = Path(settings.jenkins_home) / "jobs" / "/jobs/".join(
        part for part in settings.job_name.split("/") if part
    )
    if not job_dir.is_dir():
        return None
    return job_dir / "builds" / settings.build_number


def _host(cfg: ReleaseGateConfig, settings: Settings, jenkins_home: Optional[Path]) -> JenkinsHomeHost:
    home = jenkins_home or cfg.discovery.jenkins_home or settings.jenkins_home
    if not home:
        display.print_error("Configuration error", "No Jenkins home directory configured")
        raise typer.Exit(code=EXIT_CONFIG)
    return JenkinsHomeHost(home)


# ---------------------------------------------------------------------------
# check
# ---------------------------------------------------------------------------


@app.command()
def check(
    config_path: Optional[Path] = ConfigOption,
    product: Optional[str] = typer.Option(None, "--product", help="Product (group) id."),
    sub_products: Optional[List[str]] = typer.Option(
        None, "--sub-product", help="Sub-product id; repeat for several."
    ),
    environment: Optional[str] = typer.Option(None, "--env", help="Environment name."),
    mode: Optional[str] = typer.Option(None, "--mode", help="block or warn."),
    max_retries: Optional[int] = typer.Option(None, "--max-retries", help="Attempt ceiling."),
    retry_delay: Optional[float] = typer.Option(
        None, "--retry-delay", help="Seconds between attempts."
    ),
    target_url: Optional[str] = typer.Option(None, "--target-url", help="Endpoint override."),
    build_dir: Optional[Path] = typer.Option(
        None, "--build-dir", help="Directory for the gate marker and outcome files."
    ),
) -> None:
    """Run the release gate for the current build."""
    settings = Settings()
    cfg = _load(config_path, settings)

    overrides = {
        "product": product,
        "sub_products": sub_products or None,
        "environment": environment,
        "mode": mode,
        "max_retries": max_retries,
        "retry_delay": retry_delay,
        "target_url": target_url,
    }
    gate = replace(cfg.gate, **{k: v for k, v in overrides.items() if v is not None})
    invocation = Invocation(
        build_number=settings.build_number,
        job_name=settings.job_name,
        job_url=settings.job_url,
        build_dir=build_dir or _default_build_dir(settings),
    )
    machine = GateStateMachine(gate, settings.token, invocation, base_url=cfg.base_url)

    try:
        outcome = asyncio.run(machine.run())
    except ConfigurationError as exc:
        display.print_error("Configuration error", str(exc))
        raise typer.Exit(code=EXIT_CONFIG)
    except RetriesExhaustedError as exc:
        display.print_error("ArmorCode request error", str(exc))
        raise typer.Exit(code=EXIT_EXHAUSTED)
    except KeyboardInterrupt:
        raise typer.Exit(code=EXIT_INTERRUPTED)

    if outcome.halts:
        raise typer.Exit(code=EXIT_BLOCKED)
    if outcome.disposition is Disposition.CONTINUE_UNSTABLE:
        raise typer.Exit(code=EXIT_UNSTABLE)


# ---------------------------------------------------------------------------
# discovery
# ---------------------------------------------------------------------------


@app.command()
def discover(
    config_path: Optional[Path] = ConfigOption,
    jenkins_home: Optional[Path] = typer.Option(
        None, "--jenkins-home", help="Jenkins home directory to scan."
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Print the job records instead of sending them."
    ),
) -> None:
    """Run one discovery scan."""
    settings = Settings()
    cfg = _load(config_path, settings)
    host = _host(cfg, settings, jenkins_home)

    if dry_run:
        try:
            records = JobScanner(host).scan(cfg.discovery)
        except ConfigurationError as exc:
            display.print_error("Configuration error", str(exc))
            raise typer.Exit(code=EXIT_CONFIG)
        display.print_jobs_table(records)
        return

    store = ConfigStore(config_path, settings.base_url)
    service = DiscoveryService(store, host, settings.token)
    result = asyncio.run(service.run_scan())
    if result is None:
        typer.echo("Discovery scan skipped")
        return
    display.print_batch_summary(result)
    if not result.success:
        raise typer.Exit(code=EXIT_BLOCKED)


@app.command()
def schedule(
    config_path: Optional[Path] = ConfigOption,
    jenkins_home: Optional[Path] = typer.Option(
        None, "--jenkins-home", help="Jenkins home directory to scan."
    ),
) -> None:
    """Run the discovery scheduler until SIGINT/SIGTERM."""
    settings = Settings()
    store = ConfigStore(config_path, settings.base_url)
    host = _host(store.snapshot(), settings, jenkins_home)
    service = DiscoveryService(store, host, settings.token)
    scheduler = DiscoveryScheduler(service.run_scan, spec_provider=service.schedule_spec)
    store.add_listener(lambda _cfg: scheduler.reschedule(service.schedule_spec()))

    shutdown = GracefulShutdown()
    shutdown.on_stop(scheduler.shutdown)
    shutdown.install()

    scheduler.reschedule(service.schedule_spec())
    last_mtime = _mtime(config_path)
    while not shutdown.wait(_RELOAD_POLL_S):
        mtime = _mtime(config_path)
        if mtime != last_mtime:
            last_mtime = mtime
            store.reload()
    raise typer.Exit(code=EXIT_INTERRUPTED)


def _mtime(path: Optional[Path]) -> float | None:
    if path is None:
        return None
    try:
        return path.stat().st_mtime
    except OSError:
        return None


@app.command("next-run")
def next_run(
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Show the delay before the next scheduled discovery scan."""
    cfg = load_config(config_path)
    spec = ScheduleSpec(
        cron_expression=cfg.discovery.cron_expression,
        monitoring_enabled=cfg.discovery.monitoring_enabled,
    )
    typer.echo(f"Next discovery scan in {next_interval(spec)}")


# ---------------------------------------------------------------------------
# maintenance
# ---------------------------------------------------------------------------


@app.command()
def ping(
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Check connectivity to the ArmorCode service."""
    cfg = _load(config_path, Settings())
    if asyncio.run(ping_service(cfg.base_url)):
        typer.echo(f"Connection to {cfg.base_url} successful")
        return
    display.print_error("Connection failed", f"Cannot reach {cfg.base_url}")
    raise typer.Exit(code=EXIT_BLOCKED)


@app.command()
def validate(
    config_path: Path = typer.Argument(..., help="Configuration file to validate."),
) -> None:
    """Validate a configuration file."""
    if not config_path.exists():
        display.print_error("Configuration error", f"File not found: {config_path}")
        raise typer.Exit(code=EXIT_CONFIG)

    cfg = load_config(config_path)
    problems = validate_config(cfg)
    warnings: list[str] = []
    try:
        warnings = validate_cron_expression(cfg.discovery.cron_expression)
    except SchedulingError as exc:
        problems.append(str(exc))

    for warning in warnings:
        typer.echo(f"Warning: {warning}")
    if problems:
        display.print_error("Invalid configuration", "\n".join(problems))
        raise typer.Exit(code=EXIT_CONFIG)
    typer.echo("Configuration is valid")


if __name__ == "__main__":
    app()
