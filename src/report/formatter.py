"""
Review Report Formatting Module.

Turns coverage statistics into a title and a list of text lines, the data
every notification sink receives. The transport decides how lines are
rendered.
"""

from dataclasses import dataclass, field
from typing import List

from analyzers.models import ReviewStats

GOOD_RATE = 80.0
WARN_RATE = 60.0


@dataclass
class ReportMessage:
    title: str
    lines: List[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join([self.title, ""] + self.lines)


def status_marker(rate: str) -> str:
    """Marker for a rate: ok at 80 and above, warning at 60 and above, failing below."""
    value = float(rate)
    if value >= GOOD_RATE:
        return "[OK]"
    if value >= WARN_RATE:
        return "[WARN]"
    return "[LOW]"


def format_project_report(stats: ReviewStats, report_date: str) -> ReportMessage:
    """
    Daily report of one project.

    Args:
        stats (ReviewStats): Project statistics
        report_date (str): Date shown in the report

    Returns:
        ReportMessage: Title and lines
    """
    totals = stats.total_stats
    lines = [
        f"Project: {stats.project_name}",
        f"Date: {report_date}",
        "",
        "Overall",
        f"- Commits to review: {totals.total_commits}",
        f"- Reviewed: {totals.reviewed_commits}",
        f"- Pending: {totals.pending_commits}",
        f"- Coverage: {totals.review_rate}%",
    ]

    if stats.reviewers:
        lines += ["", "Reviewers"]
        for reviewer in stats.reviewers:
            lines.append(
                f"{status_marker(reviewer.review_rate)} {reviewer.nickname}: "
                f"{reviewer.reviewed_commits}/{reviewer.total_commits} ({reviewer.review_rate}%)"
            )

    if totals.pending_commits > 0:
        lines += ["", "Reviewers, please handle the pending commits."]

    return ReportMessage(title=f"Code review daily report - {stats.project_name}", lines=lines)


def format_summary_report(all_stats: List[ReviewStats], report_date: str) -> ReportMessage:
    """
    Summary report across projects.

    Args:
        all_stats (List[ReviewStats]): Statistics of every reported project
        report_date (str): Date shown in the report

    Returns:
        ReportMessage: Title and lines
    """
    total = sum(s.total_stats.total_commits for s in all_stats)
    reviewed = sum(s.total_stats.reviewed_commits for s in all_stats)
    pending = sum(s.total_stats.pending_commits for s in all_stats)
    overall_rate = f"{reviewed / total * 100:.1f}" if total else "0"

    lines = [
        f"Date: {report_date}",
        f"Projects: {len(all_stats)}",
        "",
        "All projects",
        f"- Commits to review: {total}",
        f"- Reviewed: {reviewed}",
        f"- Pending: {pending}",
        f"- Overall coverage: {overall_rate}%",
        "",
        "Per project",
    ]
    for stats in all_stats:
        totals = stats.total_stats
        lines.append(
            f"{status_marker(totals.review_rate)} {stats.project_name}: "
            f"{totals.reviewed_commits}/{totals.total_commits} ({totals.review_rate}%)"
        )

    low_coverage = [s for s in all_stats if float(s.total_stats.review_rate) < WARN_RATE]
    if low_coverage:
        lines += ["", "Projects with low coverage:"]
        lines += [f"- {s.project_name} ({s.total_stats.review_rate}%)" for s in low_coverage]

    return ReportMessage(title="Code review daily summary", lines=lines)
