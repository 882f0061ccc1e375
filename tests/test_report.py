"""
Report and runner tests – verdict rendering and CLI entry-point.
"""

import io
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from rich.console import Console

from tools.media_qa import run
from tools.media_qa.report import SuiteReport, write_reports
from tools.media_qa.scenarios import ScenarioResult


def _results() -> list[ScenarioResult]:
    return [
        ScenarioResult(name="vlive_play_flv", passed=True, duration_ms=1200, detail="ok", correlation_id="aaaa1111"),
        ScenarioResult(
            name="record_mp4",
            passed=False,
            duration_ms=3400,
            detail="2 failure(s)",
            failures=["[publisher] subprocess: publisher exited code=1", "[record] setup: stop record worker failed"],
            correlation_id="bbbb2222",
        ),
        ScenarioResult(name="extra", passed=True, skipped=True, detail="media tests disabled"),
    ]


# ═══════════════════════════════════════════════════════════════════════
#  SuiteReport
# ═══════════════════════════════════════════════════════════════════════


def test_counts_and_overall_verdict():
    report = SuiteReport()
    for r in _results():
        report.add(r)
    assert report.counts == {"passed": 1, "failed": 1, "skipped": 1}
    assert report.overall_pass is False


def test_skipped_only_suite_passes():
    report = SuiteReport()
    report.add(ScenarioResult(name="x", passed=True, skipped=True))
    assert report.overall_pass is True


def test_write_reports(tmp_path):
    report = SuiteReport(total_duration_s=4.6)
    for r in _results():
        report.add(r)
    out = io.StringIO()

    write_reports(report, str(tmp_path), console=Console(file=out, width=120))

    data = json.loads((tmp_path / "media-qa-report.json").read_text())
    assert data["overall_pass"] is False
    assert data["timestamp"]
    assert [s["name"] for s in data["scenarios"]] == ["vlive_play_flv", "record_mp4", "extra"]
    assert data["scenarios"][1]["failures"][1] == "[record] setup: stop record worker failed"

    md = (tmp_path / "media-qa-report.md").read_text()
    assert "| record_mp4 | FAIL |" in md
    assert "| extra | SKIP |" in md
    assert "- `[publisher] subprocess: publisher exited code=1`" in md

    console_text = out.getvalue()
    assert "OVERALL FAIL" in console_text
    assert "[record] setup: stop record worker failed" in console_text


# ═══════════════════════════════════════════════════════════════════════
#  Runner
# ═══════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_run_suite_runs_each_scenario_in_order():
    order = []

    def _scenario(result):
        s = MagicMock()
        s.run = AsyncMock(side_effect=lambda: order.append(result.name) or result)
        return s

    results = _results()
    with patch.object(run, "build_scenarios", return_value=[_scenario(r) for r in results]) as build:
        report = await run.run_suite(MagicMock(), ["vlive_play_flv"])

    build.assert_called_once()
    assert order == ["vlive_play_flv", "record_mp4", "extra"]
    assert report.results == results
    assert report.overall_pass is False


def test_main_list(capsys):
    assert run.main(["--list"]) == 0
    out = capsys.readouterr().out
    assert "vlive_play_flv" in out
    assert "rtmp_play_flv" in out
    assert "record_mp4" in out


def test_main_rejects_unknown_scenario():
    with pytest.raises(SystemExit):
        run.main(["--only", "nope"])


def test_main_exit_code_follows_verdict(tmp_path):
    report = SuiteReport()
    report.add(ScenarioResult(name="vlive_play_flv", passed=False, failures=["[score] assertion: low score=85 < 90"]))

    with patch.object(run, "run_suite", AsyncMock(return_value=report)), \
            patch.object(run, "write_reports") as write, \
            patch.object(run, "setup_logging"):
        code = run.main(["--only", "vlive_play_flv", "--artifacts-dir", str(tmp_path)])

    assert code == 1
    write.assert_called_once_with(report, str(tmp_path))


def test_main_passes_log_overrides(tmp_path):
    report = SuiteReport()
    with patch.object(run, "run_suite", AsyncMock(return_value=report)), \
            patch.object(run, "write_reports"), \
            patch.object(run, "setup_logging") as setup:
        code = run.main(["--log-level", "debug", "--log-format", "text", "--artifacts-dir", str(tmp_path)])

    assert code == 0
    setup.assert_called_once_with("media-qa", level="DEBUG", fmt_name="text")


def test_main_rejects_unknown_log_format():
    with pytest.raises(SystemExit):
        run.main(["--log-format", "xml"])
