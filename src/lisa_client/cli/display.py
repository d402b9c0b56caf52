from __future__ import annotations

from typing import Iterable, List

from ..services.models import Issue, ScanRecord, Severity, count_by_severity


def format_rows(rows: list[tuple[str, str, str, str]]) -> str:
    """Build an aligned two-space padded table for readability."""
    header = ("ID", "STATUS", "CREATED", "TITLE")
    col_widths = [len(part) for part in header]
    for row in rows:
        for idx, part in enumerate(row):
            col_widths[idx] = max(col_widths[idx], len(part))

    def join(parts: tuple[str, ...]) -> str:
        return "  ".join(part.ljust(col_widths[idx]) for idx, part in enumerate(parts)).rstrip()

    line = join(header)
    return "\n".join([line, "-" * len(line), *(join(row) for row in rows)])


def render_results_table(records: Iterable[ScanRecord]) -> str:
    rows = [(record.id, record.status.value, record.created_at, record.title) for record in records]
    if not rows:
        return "No scan results."
    return format_rows(rows)


def format_severity_summary(record: ScanRecord) -> str:
    parts = [f"{count} {severity.value.lower()}" for severity, count in count_by_severity(record.result)]
    return ", ".join(parts) if parts else "none"


def render_scan_detail(record: ScanRecord, scan_url: str | None = None) -> List[str]:
    """Render human-readable lines describing one scan record."""
    lines = [
        f"Scan: {record.title}",
        f"ID: {record.id}",
        f"Status: {record.status.value}",
        f"Created: {record.created_at}",
    ]
    if record.completed_at:
        lines.append(f"Completed: {record.completed_at}")
    if scan_url:
        lines.append(f"Website: {scan_url}")
    if record.code_summary:
        lines.append(f"Summary: {record.code_summary}")
    lines.append(f"Issues: {len(record.result)} ({format_severity_summary(record)})")

    for issue in sorted(record.result, key=_severity_rank):
        lines.append(f"[{issue.severity}] {issue.title}")
        for affected in issue.affected_files:
            location = affected.file_path
            if affected.range is not None and affected.range.start is not None:
                location = f"{location}:{affected.range.start.line}:{affected.range.start.column}"
            lines.append(f"    {location}")
        if issue.description:
            lines.append(f"    {issue.description}")
        if issue.recommendation:
            lines.append(f"    Recommendation: {issue.recommendation}")
    return lines


def _severity_rank(issue: Issue) -> int:
    try:
        return Severity(issue.severity).rank
    except ValueError:
        return len(Severity.ordered())
