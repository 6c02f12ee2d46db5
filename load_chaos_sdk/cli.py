#!/usr/bin/env python3
"""
Command line interface for the load & chaos harness

This module provides the ``load-chaos`` command, built on typer and rich:
scaffold a plan from a bundled profile, validate it, run it with a live
progress display, probe the target and start the bundled mock target.

Exit codes of ``run``: 0 when every threshold passed, 1 when the verdict
failed, 2 when the plan could not be loaded or built.
"""

import asyncio
import os
import signal
from pathlib import Path
from typing import List, Optional

import httpx
import typer
import yaml
from rich import box
from rich.align import Align
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from load_chaos_sdk import __version__
from load_chaos_sdk.chaos.factory import DisruptionFactory
from load_chaos_sdk.common.errors import PlanError
from load_chaos_sdk.common.logger import get_logger, setup_logging
from load_chaos_sdk.common.telemetry import setup_telemetry, shutdown_telemetry
from load_chaos_sdk.config_loader import (
    BUILTIN_PROFILES,
    RunPlan,
    TargetConfig,
    builtin_plan_text,
    load_builtin_plan,
    load_run_plan,
)
from load_chaos_sdk.reporter.summary import render_summary, write_reports
from load_chaos_sdk.runner.engine import LoadTestRunner, RunStatus
from load_chaos_sdk.scenarios.factory import ScenarioFactory

EXIT_PASSED = 0
EXIT_FAILED = 1
EXIT_CONFIG_ERROR = 2

CONFIG_ERRORS = (FileNotFoundError, ValueError, yaml.YAMLError)

app = typer.Typer(
    name="load-chaos",
    help="Load generation and chaos injection harness",
    add_completion=False,
    no_args_is_help=True,
)
console = Console()
logger = get_logger(__name__)


def _error_panel(title: str, detail: str) -> Panel:
    return Panel(
        f"[red]✗ {title}[/red]\n\n{detail}",
        title="[bold red]Error[/bold red]",
        box=box.ROUNDED,
        border_style="red",
    )


def _success_panel(message: str) -> Panel:
    return Panel(
        Align.center(Text(message, style="green bold")),
        title="[bold green]Success[/bold green]",
        box=box.ROUNDED,
        border_style="green",
        padding=(1, 2),
    )


def plan_problems(plan: RunPlan) -> List[str]:
    """Problems the schema cannot see: unknown scenario or disruption types."""
    problems = []
    scenario_types = set(ScenarioFactory.get_available_types())
    for scenario in plan.enabled_scenarios():
        if scenario.type not in scenario_types:
            problems.append(f"scenario '{scenario.name}': unknown type '{scenario.type}'")
    if plan.chaos.enabled:
        disruption_types = set(DisruptionFactory.get_available_types())
        for strategy in plan.chaos.strategies:
            if strategy.enabled and strategy.type not in disruption_types:
                problems.append(f"disruption '{strategy.name}': unknown type '{strategy.type}'")
    return problems


def _load_plan(file: Optional[str], profile: Optional[str]) -> RunPlan:
    if file:
        return load_run_plan(file)
    if profile:
        return load_builtin_plan(profile)
    raise ValueError("Give a plan file or --profile")


def _describe_plan(plan: RunPlan) -> Table:
    info = Table.grid(padding=(0, 2))
    info.add_column(style="cyan", width=16)
    info.add_column(style="white")
    info.add_row("Plan:", plan.name)
    info.add_row("Profile:", plan.profile.name)
    info.add_row("Target:", plan.target.base_url)
    info.add_row("Stages:", f"{len(plan.stages)} ({plan.total_duration:.1f}s, peak {max(s.target for s in plan.stages)} VUs)")
    info.add_row("Scenarios:", ", ".join(f"{s.name} {s.weight:g}" for s in plan.enabled_scenarios()))
    info.add_row("Accounts:", str(plan.accounts.count))
    chaos = "off"
    if plan.chaos.enabled:
        window = plan.chaos.window
        chaos = f"{window.unit} [{window.start:g}, {window.end:g})"
    info.add_row("Chaos window:", chaos)
    return info


@app.command()
def version():
    """Print the harness version."""
    console.print(f"load-chaos [cyan]{__version__}[/cyan]")


@app.command()
def profiles():
    """List the bundled run profiles."""
    table = Table(title="Bundled profiles", box=box.ROUNDED)
    table.add_column("Profile", style="cyan")
    table.add_column("Duration", justify="right")
    table.add_column("Peak VUs", justify="right")
    table.add_column("Scenarios")
    table.add_column("Chaos")
    for name in BUILTIN_PROFILES:
        plan = load_builtin_plan(name)
        table.add_row(
            name,
            f"{plan.total_duration / 60:.1f}m",
            str(max(s.target for s in plan.stages)),
            ", ".join(s.name for s in plan.enabled_scenarios()),
            "✓" if plan.chaos.enabled else "-",
        )
    console.print(table)


@app.command()
def init(
    profile: str = typer.Option("basic_load", "--profile", "-p", help="Bundled profile to start from"),
    output: str = typer.Option("load_plan.yaml", "--output", "-o", help="Output file path"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite without asking"),
):
    """
    Generate a run plan from one of the bundled profiles.
    """
    output_path = Path(output)
    try:
        template = builtin_plan_text(profile)
    except ValueError as e:
        console.print(_error_panel("Unknown profile", str(e)))
        raise typer.Exit(EXIT_CONFIG_ERROR)

    if output_path.exists() and not force:
        console.print(f"[yellow]⚠[/yellow]  File [cyan]{output_path}[/cyan] already exists.")
        if not typer.confirm("  Overwrite?", default=False):
            console.print("[dim]Cancelled[/dim]")
            raise typer.Abort()

    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(template, encoding="utf-8")
    except OSError as e:
        console.print(_error_panel("Failed to write plan:", str(e)))
        raise typer.Exit(1)

    console.print(_success_panel(f"✓ Plan created from '{profile}'\n\n{output_path}"))
    console.print(f"\n[dim]   Then run:[/dim] [cyan]load-chaos validate {output_path}[/cyan]\n")


@app.command()
def validate(
    file: str = typer.Argument(..., help="Path to run plan YAML file"),
):
    """
    Validate a run plan YAML file.

    Checks the YAML syntax, the schema (weights, windows, thresholds) and that
    every scenario and disruption type is registered.
    """
    file_path = Path(file)
    console.print()
    console.print(Rule(f"[bold cyan]Validating: {file_path.name}[/bold cyan]"))
    console.print()

    try:
        plan = load_run_plan(str(file_path))
    except FileNotFoundError:
        console.print(_error_panel("File not found:", str(file_path)))
        raise typer.Exit(EXIT_CONFIG_ERROR)
    except CONFIG_ERRORS as e:
        console.print(_error_panel("Validation failed:", str(e)))
        raise typer.Exit(EXIT_CONFIG_ERROR)

    problems = plan_problems(plan)
    enabled = plan.enabled_scenarios()

    table = Table(title="Validation Results", box=box.ROUNDED)
    table.add_column("Check", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Details")

    table.add_row("YAML Syntax", "✓ Valid", "File parsed successfully")
    table.add_row("Schema", "✓ Valid", "Matches RunPlan schema")
    table.add_row("Stages", f"✓ {len(plan.stages)}", f"{plan.total_duration:.1f}s total")
    table.add_row("Scenarios", f"✓ {len(enabled)}", f"weights sum to {sum(s.weight for s in enabled):g}")
    table.add_row(
        "Thresholds",
        f"✓ {sum(len(v) for v in plan.thresholds.values())}",
        f"{len(plan.thresholds)} metric(s), missing samples: {plan.missing_sample_policy}",
    )
    table.add_row("Chaos", "✓ on" if plan.chaos.enabled else "○ off",
                  f"{sum(1 for s in plan.chaos.strategies if s.enabled)} strategy(ies)" if plan.chaos.enabled else "")
    if problems:
        table.add_row("Types", "[red]✗ Invalid[/red]", f"{len(problems)} unknown type(s)")
        for problem in problems:
            table.add_row("", "", f"  - {problem}", style="red")
    else:
        table.add_row("Types", "✓ Valid", "All scenario and disruption types registered")
    console.print(table)
    console.print()

    if problems:
        console.print(_error_panel("Validation failed", "\n".join(problems)))
        raise typer.Exit(EXIT_CONFIG_ERROR)

    console.print(Panel(_describe_plan(plan), title="[bold green]✓ Validation passed[/bold green]",
                        box=box.ROUNDED, border_style="green"))


async def _execute(runner: LoadTestRunner):
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, runner.abort)
    except (NotImplementedError, RuntimeError):
        pass
    try:
        return await runner.run()
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


@app.command()
def run(
    file: Optional[str] = typer.Argument(None, help="Path to run plan YAML file"),
    profile: Optional[str] = typer.Option(None, "--profile", "-p", help="Run a bundled profile instead of a file"),
    base_url: Optional[str] = typer.Option(None, "--base-url", help="Override the plan's target base URL"),
    duration_scale: float = typer.Option(1.0, "--duration-scale", help="Multiply stage durations (e.g. 0.01)"),
    seed: Optional[int] = typer.Option(None, "--seed", help="RNG seed for reproducible draws"),
    report_dir: Optional[str] = typer.Option(None, "--report-dir", help="Write run_report.json/.md here"),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Logging level (default: LOAD_CHAOS_LOG_LEVEL or WARNING)"
    ),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Also log to this file"),
    otel: bool = typer.Option(False, "--otel", help="Export metrics over OTLP"),
    otel_endpoint: str = typer.Option("http://localhost:4317", "--otel-endpoint", help="OTLP gRPC endpoint"),
):
    """
    Execute a run plan and evaluate its thresholds.
    """
    setup_logging(log_level or os.getenv("LOAD_CHAOS_LOG_LEVEL", "WARNING"), log_file)

    console.print(Rule("[bold cyan]Loading Run Plan[/bold cyan]"))
    console.print()
    try:
        plan = _load_plan(file, profile)
        updates = {}
        if base_url:
            updates["target"] = plan.target.model_copy(update={"base_url": base_url.rstrip("/")})
        if seed is not None:
            updates["seed"] = seed
        if updates:
            plan = plan.model_copy(update=updates)
        if duration_scale != 1.0:
            plan = plan.scaled(duration_scale)
        problems = plan_problems(plan)
        if problems:
            raise PlanError("; ".join(problems))
    except CONFIG_ERRORS as e:
        console.print(_error_panel("Failed to load plan:", str(e)))
        raise typer.Exit(EXIT_CONFIG_ERROR)

    console.print(Panel(_describe_plan(plan), title="[bold green]✓ Plan Loaded[/bold green]",
                        box=box.ROUNDED, border_style="green"))
    console.print()

    if otel:
        setup_telemetry(service_name=f"load-chaos-{plan.profile.name}", otlp_endpoint=otel_endpoint)

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold cyan]{task.description}"),
        BarColumn(),
        TextColumn("{task.fields[vus]} VUs"),
        TextColumn("{task.fields[iterations]} it"),
        TextColumn("[magenta]{task.fields[chaos]}"),
        TimeElapsedColumn(),
        console=console,
    )
    task_id = progress.add_task(f"Stage 1/{len(plan.stages)}", total=plan.total_duration,
                                vus=0, iterations=0, chaos="")

    def on_tick(status: RunStatus) -> None:
        stage = (status.stage_index or 0) + 1
        progress.update(
            task_id,
            completed=status.elapsed,
            description=f"Stage {stage}/{len(plan.stages)}",
            vus=f"{status.active_vus}/{status.desired_vus}",
            iterations=status.iterations,
            chaos=f"chaos {status.chaos_state}" if status.chaos_state else "",
        )

    runner = LoadTestRunner(plan, on_tick=on_tick)
    try:
        with progress:
            result = asyncio.run(_execute(runner))
            progress.update(task_id, completed=plan.total_duration)
    except PlanError as e:
        console.print(_error_panel("Failed to build run:", str(e)))
        raise typer.Exit(EXIT_CONFIG_ERROR)
    finally:
        if otel:
            shutdown_telemetry()

    console.print()
    render_summary(result, console)

    if report_dir:
        paths = write_reports(result, report_dir)
        console.print(f"\n[dim]Reports:[/dim] [cyan]{paths['json']}[/cyan], [cyan]{paths['markdown']}[/cyan]\n")

    raise typer.Exit(EXIT_PASSED if result.passed else EXIT_FAILED)


@app.command()
def health_check(
    base_url: Optional[str] = typer.Option(None, "--base-url", "-u", help="Target base URL"),
    plan: Optional[str] = typer.Option(None, "--plan", help="Read the target from this plan"),
    timeout: float = typer.Option(5.0, "--timeout", help="Request timeout (seconds)"),
):
    """
    Probe the target's health and metrics endpoints.
    """
    try:
        if plan:
            target = load_run_plan(plan).target
        else:
            target = TargetConfig(base_url=base_url) if base_url else TargetConfig()
    except CONFIG_ERRORS as e:
        console.print(_error_panel("Failed to load plan:", str(e)))
        raise typer.Exit(EXIT_CONFIG_ERROR)

    table = Table(title=f"Target {target.base_url}", box=box.ROUNDED)
    table.add_column("Endpoint", style="cyan")
    table.add_column("Status")
    table.add_column("Latency", justify="right")

    healthy = False
    with httpx.Client(base_url=target.base_url, timeout=timeout) as client:
        for path in (target.paths.health, target.paths.metrics):
            try:
                response = client.get(path)
            except httpx.HTTPError as e:
                table.add_row(path, f"[red]✗ {type(e).__name__}[/red]", "-")
                continue
            ok = response.status_code == 200
            if path == target.paths.health:
                healthy = ok
            style = "green" if ok else "red"
            table.add_row(
                path,
                f"[{style}]{'✓' if ok else '✗'} {response.status_code}[/{style}]",
                f"{response.elapsed.total_seconds() * 1000:.0f}ms",
            )
    console.print(table)

    if not healthy:
        console.print(_error_panel("Target is not healthy", target.base_url))
        raise typer.Exit(1)
    console.print(Panel("[green]✓ Target is healthy[/green]", title="[bold green]Ready[/bold green]",
                        box=box.ROUNDED, border_style="green"))


@app.command()
def mock_server(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", help="Port"),
    seed_posts: int = typer.Option(3, "--seed-posts", help="Posts created at startup"),
    chaos_degrade: float = typer.Option(
        0.0, "--chaos-degrade", help="Seconds of degraded health after disruption traffic"
    ),
    rate_limit: Optional[int] = typer.Option(None, "--rate-limit", help="Requests per second before 429"),
):
    """
    Start the bundled mock target service.
    """
    from load_chaos_sdk.tools.mock_server import run_mock_server

    console.print(Panel(
        f"Mock target on [cyan]http://{host}:{port}[/cyan]\n"
        f"Docs: [cyan]http://{host}:{port}/docs[/cyan]",
        title="[bold cyan]Mock Target[/bold cyan]",
        box=box.ROUNDED,
        border_style="cyan",
    ))
    run_mock_server(
        host=host,
        port=port,
        seed_posts=seed_posts,
        chaos_degrade_seconds=chaos_degrade,
        rate_limit_per_second=rate_limit,
    )


if __name__ == "__main__":
    app()
