"""
Run report generation.

Renders a finished run as rich console tables and writes it to disk as
``run_report.json`` (machine readable) and ``run_report.md`` (human readable).
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from load_chaos_sdk.common.logger import get_logger

logger = get_logger(__name__)

JSON_REPORT = "run_report.json"
MARKDOWN_REPORT = "run_report.md"

_TREND_STATS = ("avg", "min", "med", "max", "p(90)", "p(95)")


def format_number(value: Optional[float]) -> str:
    if value is None:
        return "-"
    if abs(value) >= 100 or float(value).is_integer():
        return f"{value:.0f}"
    return f"{value:.2f}"


def format_metric(kind: str, values: Optional[Dict[str, float]]) -> str:
    """One-line summary of a metric's aggregate values."""
    if values is None:
        return "no samples"
    if kind == "counter":
        text = f"count={format_number(values['count'])}"
        if "rate" in values:
            text += f" rate={values['rate']:.2f}/s"
        return text
    if kind == "rate":
        return (
            f"rate={values['rate'] * 100:.2f}% "
            f"(✓ {format_number(values['passes'])} ✗ {format_number(values['fails'])})"
        )
    return " ".join(f"{stat}={format_number(values.get(stat))}" for stat in _TREND_STATS)


def render_summary(result, console: Optional[Console] = None) -> None:
    """Print the run summary with rich."""
    console = console or Console()
    data = result.to_dict()

    thresholds = Table(title="Thresholds", box=box.ROUNDED)
    thresholds.add_column("Metric", style="cyan")
    thresholds.add_column("Expression")
    thresholds.add_column("Actual", justify="right")
    thresholds.add_column("Result")
    for row in data["verdict"]["thresholds"]:
        if not row["evaluated"]:
            reason = row.get("reason") or "no samples"
            status = f"[yellow]○ {reason}[/yellow]" if row["passed"] else f"[red]✗ {reason}[/red]"
        else:
            status = "[green]✓ pass[/green]" if row["passed"] else "[red]✗ fail[/red]"
        thresholds.add_row(row["metric"], row["expression"], format_number(row["actual"]), status)
    if data["verdict"]["thresholds"]:
        console.print(thresholds)

    metrics = Table(title="Metrics", box=box.ROUNDED)
    metrics.add_column("Metric", style="cyan")
    metrics.add_column("Kind", style="dim")
    metrics.add_column("Values")
    for name, metric in data["metrics"].items():
        metrics.add_row(name, metric["kind"], format_metric(metric["kind"], metric["values"]))
    console.print(metrics)

    failing = {name: t for name, t in data["checks"].items() if t["fails"]}
    if failing:
        checks = Table(title="Failing checks", box=box.ROUNDED)
        checks.add_column("Check", style="cyan")
        checks.add_column("Passes", justify="right", style="green")
        checks.add_column("Fails", justify="right", style="red")
        for name, tally in failing.items():
            checks.add_row(name, str(tally["passes"]), str(tally["fails"]))
        console.print(checks)

    chaos = data.get("chaos")
    if chaos:
        if not chaos["triggered"]:
            text = "Chaos window never reached; no disruption issued"
        elif chaos["recovered"]:
            text = (
                f"Disruption [bold]{chaos['strategy']}[/bold] at "
                f"{chaos['window']['unit']}={format_number(chaos['triggered_at'])}, "
                f"recovered in [bold]{chaos['recovery_time_ms']:.0f}ms[/bold]"
            )
        else:
            text = (
                f"Disruption [bold]{chaos['strategy']}[/bold] fired but the target "
                f"[red]did not recover[/red] before the run ended"
            )
        console.print(Panel(text, title="[bold]Chaos[/bold]", box=box.ROUNDED, border_style="magenta"))

    verdict = "[bold green]✓ PASSED[/bold green]" if data["passed"] else "[bold red]✗ FAILED[/bold red]"
    console.print(Panel(
        f"{verdict}\n\n"
        f"Duration: {data['duration_seconds']:.1f}s   Iterations: {data['iterations']}   "
        f"Peak VUs: {data['peak_vus']}   Tokens: {data['setup']['tokens']}/{data['setup']['accounts']}"
        + ("\n[yellow]Run was aborted[/yellow]" if data["aborted"] else ""),
        title=f"[bold]{data['plan']}[/bold]",
        box=box.ROUNDED,
        border_style="green" if data["passed"] else "red",
        padding=(1, 2),
    ))


def write_json_report(result, output_dir: Path) -> Path:
    path = Path(output_dir) / JSON_REPORT
    path.write_text(json.dumps(result.to_dict(), indent=2, default=str), encoding="utf-8")
    return path


def markdown_report(result) -> str:
    """Render the run as a Markdown document."""
    data = result.to_dict()
    lines: List[str] = [
        f"# Run report: {data['plan']}",
        "",
        f"- **Verdict:** {'PASSED' if data['passed'] else 'FAILED'}",
        f"- **Profile:** {data['profile']}",
        f"- **Started:** {data['started_at']}",
        f"- **Duration:** {data['duration_seconds']:.1f}s",
        f"- **Iterations:** {data['iterations']}",
        f"- **Peak VUs:** {data['peak_vus']}",
        f"- **Tokens:** {data['setup']['tokens']}/{data['setup']['accounts']}",
    ]
    if data["aborted"]:
        lines.append("- **Aborted:** yes")
    if data["stragglers_cancelled"]:
        lines.append(f"- **Cancelled stragglers:** {data['stragglers_cancelled']}")

    lines += ["", "## Thresholds", ""]
    if data["verdict"]["thresholds"]:
        lines += ["| Metric | Expression | Actual | Result |", "|---|---|---|---|"]
        for row in data["verdict"]["thresholds"]:
            if not row["evaluated"]:
                reason = row.get("reason") or "no samples"
                status = f"skipped ({reason})" if row["passed"] else f"FAIL ({reason})"
            else:
                status = "pass" if row["passed"] else "FAIL"
            lines.append(
                f"| {row['metric']} | `{row['expression']}` | {format_number(row['actual'])} | {status} |"
            )
    else:
        lines.append("No thresholds declared.")

    lines += ["", "## Metrics", "", "| Metric | Kind | Values |", "|---|---|---|"]
    for name, metric in data["metrics"].items():
        lines.append(f"| {name} | {metric['kind']} | {format_metric(metric['kind'], metric['values'])} |")

    if data["checks"]:
        lines += ["", "## Checks", "", "| Check | Passes | Fails |", "|---|---|---|"]
        for name, tally in data["checks"].items():
            lines.append(f"| {name} | {tally['passes']} | {tally['fails']} |")

    chaos = data.get("chaos")
    if chaos:
        lines += ["", "## Chaos", ""]
        lines.append(f"- **Triggered:** {'yes' if chaos['triggered'] else 'no'}")
        if chaos["triggered"]:
            lines.append(f"- **Strategy:** {chaos['strategy']}")
            lines.append(
                f"- **Triggered at:** {chaos['window']['unit']}={format_number(chaos['triggered_at'])}"
            )
            if chaos["recovered"]:
                lines.append(f"- **Recovery time:** {chaos['recovery_time_ms']:.0f}ms")
            else:
                lines.append("- **Recovery time:** not recovered before run end")
    lines.append("")
    return "\n".join(lines)


def write_markdown_report(result, output_dir: Path) -> Path:
    path = Path(output_dir) / MARKDOWN_REPORT
    path.write_text(markdown_report(result), encoding="utf-8")
    return path


def write_reports(result, output_dir: str) -> Dict[str, Any]:
    """
    Write both report files.

    Returns:
        Mapping of report kind ("json", "markdown") to written path.
    """
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    paths = {
        "json": write_json_report(result, out),
        "markdown": write_markdown_report(result, out),
    }
    logger.info(f"Reports written to {out}")
    return paths
