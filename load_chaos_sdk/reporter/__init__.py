"""Run report generation."""

from load_chaos_sdk.reporter.summary import (
    markdown_report,
    render_summary,
    write_json_report,
    write_markdown_report,
    write_reports,
)

__all__ = [
    "markdown_report",
    "render_summary",
    "write_json_report",
    "write_markdown_report",
    "write_reports",
]
