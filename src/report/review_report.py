"""
Review Report Service.

Combines the coverage calculator with a notification sink: computes the
statistics, formats them and hands the result to the sink.
"""

from dataclasses import dataclass
from datetime import date
from typing import Optional

from config import logger
from analyzers.coverage import CoverageCalculator
from report.feishu_notifier import FeishuNotifier
from report.formatter import format_project_report, format_summary_report


@dataclass
class ReportResult:
    success: bool
    message: str


class ReviewReportService:
    """
    Sends coverage reports for one project or for all projects.

    Attributes:
        calculator (CoverageCalculator): Source of statistics.
        notifier (FeishuNotifier): Notification sink.
        default_webhook_url (Optional[str]): Used by manual triggers.
    """

    def __init__(
        self,
        calculator: CoverageCalculator,
        notifier: FeishuNotifier,
        default_webhook_url: Optional[str] = None,
    ):
        self.calculator = calculator
        self.notifier = notifier
        self.default_webhook_url = default_webhook_url

    async def send_project_report(self, project_id: str, webhook_url: str) -> ReportResult:
        if not webhook_url:
            return ReportResult(False, "Notification webhook URL is not configured")

        stats = self.calculator.get_project_review_stats(project_id)
        if stats is None:
            return ReportResult(False, "No statistics available for the project")

        message = format_project_report(stats, date.today().isoformat())
        success = await self.notifier.send_report(webhook_url, message)
        return ReportResult(
            success,
            "Project report sent" if success else "Project report could not be sent",
        )

    async def send_all_projects_report(self, webhook_url: str) -> ReportResult:
        if not webhook_url:
            return ReportResult(False, "Notification webhook URL is not configured")

        all_stats = self.calculator.get_all_projects_review_stats()
        if not all_stats:
            return ReportResult(False, "No project statistics available")

        message = format_summary_report(all_stats, date.today().isoformat())
        success = await self.notifier.send_report(webhook_url, message)
        return ReportResult(
            success,
            "Summary report sent" if success else "Summary report could not be sent",
        )

    async def trigger_manual_report(
        self, report_type: str, project_id: Optional[str] = None
    ) -> ReportResult:
        """
        Send a report now to the default webhook.

        Args:
            report_type (str): "single" for one project, "all" for the summary
            project_id (Optional[str]): Required for "single"

        Returns:
            ReportResult: Outcome with a human-readable message
        """
        if not self.default_webhook_url:
            return ReportResult(False, "Default notification webhook URL is not configured")

        logger.info(
            {"message": "Manual report triggered", "report_type": report_type, "project": project_id}
        )
        if report_type == "single":
            if not project_id:
                return ReportResult(False, "A project id is required for a single-project report")
            return await self.send_project_report(project_id, self.default_webhook_url)
        return await self.send_all_projects_report(self.default_webhook_url)
