from __future__ import annotations

import json
from pathlib import Path
from typing import Callable, List

from ..models import Outcome, RunOutcome, RunReport
from ..utils.fs import atomic_write_text


def render_report_json(report: RunReport, redact: Callable[[str], str] = str) -> str:
    return redact(json.dumps(report.to_dict(), ensure_ascii=False, indent=2)) + "\n"


def write_report(path: Path, report: RunReport, redact: Callable[[str], str] = str) -> None:
    atomic_write_text(Path(path), render_report_json(report, redact))


def summary_lines(report: RunReport) -> List[str]:
    """Operator-facing summary: one line per channel, then what to do next."""
    lines = [f"[report] tag={report.event.tag} outcome={report.outcome.value} exit_code={report.exit_code}"]
    if report.validation_error:
        lines.append(f"[report] validation failed: {report.validation_error}; nothing was built or published")
        return lines

    for r in report.channel_results():
        code = f" [{r.error_code}]" if r.error_code else ""
        lines.append(f"[report] {r.channel.value}: {r.outcome.value}{code} {r.detail}".rstrip())

    if report.outcome == RunOutcome.PARTIAL_FAILURE or report.outcome == RunOutcome.FAILURE:
        done = [r.channel.value for r in report.channel_results() if r.outcome == Outcome.SUCCESS]
        todo = [r.channel.value for r in report.channel_results() if r.outcome != Outcome.SUCCESS]
        lines.append(f"[report] published: {done or 'none'}; complete manually: {todo}")
    return lines
