"""
Report generator – produces console, JSON and Markdown outputs.

One row per scenario with its PASS / FAIL / SKIP verdict; failing
scenarios list every contributing cause, not only the first.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from rich.console import Console
from rich.table import Table

from tools.media_qa.config import ARTIFACTS_DIR
from tools.media_qa.scenarios import ScenarioResult


# ── Data model ───────────────────────────────────────────────────────


@dataclass
class SuiteReport:
    timestamp: str = ""
    total_duration_s: float = 0.0
    overall_pass: bool = True
    results: list[ScenarioResult] = field(default_factory=list)

    def add(self, result: ScenarioResult) -> None:
        self.results.append(result)
        if not result.passed:
            self.overall_pass = False

    @property
    def counts(self) -> dict[str, int]:
        skipped = sum(1 for r in self.results if r.skipped)
        passed = sum(1 for r in self.results if r.passed and not r.skipped)
        return {"passed": passed, "failed": len(self.results) - passed - skipped, "skipped": skipped}

    def finalize(self) -> None:
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "total_duration_s": self.total_duration_s,
            "overall_pass": self.overall_pass,
            "counts": self.counts,
            "scenarios": [
                {
                    "name": r.name,
                    "passed": r.passed,
                    "skipped": r.skipped,
                    "duration_ms": r.duration_ms,
                    "detail": r.detail,
                    "failures": r.failures,
                    "correlation_id": r.correlation_id,
                }
                for r in self.results
            ],
        }


def _status(r: ScenarioResult) -> str:
    if r.skipped:
        return "SKIP"
    return "PASS" if r.passed else "FAIL"


# ── Writers ──────────────────────────────────────────────────────────


def write_reports(report: SuiteReport, artifacts_dir: str = ARTIFACTS_DIR, console: Console | None = None) -> None:
    """Write JSON, Markdown, and console reports."""
    os.makedirs(artifacts_dir, exist_ok=True)
    report.finalize()
    _write_json(report, artifacts_dir)
    _write_markdown(report, artifacts_dir)
    _write_console(report, console or Console())


def _write_json(report: SuiteReport, artifacts_dir: str) -> None:
    path = os.path.join(artifacts_dir, "media-qa-report.json")
    with open(path, "w") as f:
        json.dump(report.to_dict(), f, indent=2, default=str)


def _write_markdown(report: SuiteReport, artifacts_dir: str) -> None:
    path = os.path.join(artifacts_dir, "media-qa-report.md")
    counts = report.counts
    lines = [
        f"# Media QA Report – {report.timestamp}",
        "",
        f"**Overall**: {'✅ PASS' if report.overall_pass else '❌ FAIL'}  ",
        f"**Scenarios**: {counts['passed']} passed, {counts['failed']} failed, {counts['skipped']} skipped  ",
        f"**Duration**: {report.total_duration_s:.1f}s",
        "",
        "## Scenarios",
        "",
        "| Scenario | Status | Duration | Correlation | Detail |",
        "|----------|--------|----------|-------------|--------|",
    ]
    for r in report.results:
        lines.append(f"| {r.name} | {_status(r)} | {r.duration_ms:.0f}ms | {r.correlation_id} | {r.detail} |")

    failed = [r for r in report.results if r.failures]
    if failed:
        lines += ["", "## Failures", ""]
        for r in failed:
            lines.append(f"### {r.name}")
            lines.append("")
            lines.extend(f"- `{f}`" for f in r.failures)
            lines.append("")

    with open(path, "w") as f:
        f.write("\n".join(lines) + "\n")


def _write_console(report: SuiteReport, console: Console) -> None:
    console.print()
    console.rule("[bold]Media QA Report[/bold]")

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Scenario")
    table.add_column("Status")
    table.add_column("Duration")
    table.add_column("Detail")

    colors = {"PASS": "green", "FAIL": "red", "SKIP": "yellow"}
    for r in report.results:
        status = _status(r)
        table.add_row(r.name, f"[{colors[status]}]{status}[/{colors[status]}]", f"{r.duration_ms:.0f}ms", r.detail[:80])
    console.print(table)

    for r in report.results:
        if r.failures:
            console.print(f"\n[bold red]{r.name}[/bold red] ({r.correlation_id})")
            for f in r.failures:
                console.print(f"  • {f}", markup=False)

    verdict = "[green]✅ OVERALL PASS[/green]" if report.overall_pass else "[red]❌ OVERALL FAIL[/red]"
    console.print(f"\n{verdict}  (duration: {report.total_duration_s:.1f}s)\n")
