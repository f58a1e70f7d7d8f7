"""
Scheduled Report Module.

Sends coverage reports on a fixed interval derived from a small cron subset:

- ``0 H * * *``: daily (every 24 hours)
- ``0 */N * * *``: every N hours
- ``*/N * * * *``: every N minutes
"""

import asyncio
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from config import logger
from report.review_report import ReportResult, ReviewReportService

INDIVIDUAL_REPORT_DELAY = 1.0


@dataclass
class ScheduleConfig:
    enabled: bool = False
    cron: str = "0 9 * * *"
    webhook_url: str = ""
    report_type: str = "all"  # "all" or "individual"
    projects: List[str] = field(default_factory=list)


def parse_cron_to_interval(cron: str) -> float:
    """
    Convert a supported cron expression into an interval in seconds.

    Args:
        cron (str): Five-field cron expression

    Returns:
        float: Interval in seconds

    Raises:
        ValueError: For malformed or unsupported expressions
    """
    parts = cron.strip().split()
    if len(parts) != 5:
        raise ValueError(f"Invalid cron expression: {cron}")

    minute, hour, day, month, weekday = parts
    any_date = day == "*" and month == "*" and weekday == "*"

    if minute == "0" and hour.isdigit() and any_date:
        if not 0 <= int(hour) <= 23:
            raise ValueError(f"Invalid hour in cron expression: {cron}")
        return 24 * 60 * 60

    if minute == "0" and hour.startswith("*/") and any_date:
        step = hour[2:]
        if not step.isdigit() or int(step) <= 0:
            raise ValueError(f"Invalid hour step in cron expression: {cron}")
        return int(step) * 60 * 60

    if minute.startswith("*/") and hour == "*" and any_date:
        step = minute[2:]
        if not step.isdigit() or int(step) <= 0:
            raise ValueError(f"Invalid minute step in cron expression: {cron}")
        return int(step) * 60

    raise ValueError(f"Unsupported cron expression: {cron}")


class ScheduledReportService:
    """
    Periodically sends review reports.

    Attributes:
        report_service (ReviewReportService): Builds and sends reports.
        config (ScheduleConfig): Current schedule.
    """

    def __init__(self, report_service: ReviewReportService, config: Optional[ScheduleConfig] = None):
        self.report_service = report_service
        self.config = config or ScheduleConfig()
        self._task: Optional[asyncio.Task] = None
        self._next_run: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def set_schedule_config(self, **changes: Any) -> ScheduleConfig:
        self.config = replace(self.config, **changes)
        logger.info({"message": "Report schedule updated", "cron": self.config.cron})
        self.restart()
        return self.config

    def start(self) -> None:
        if self.is_running:
            logger.info({"message": "Scheduled reports already running"})
            return
        if not self.config.enabled:
            logger.info({"message": "Scheduled reports disabled"})
            return
        if not self.config.webhook_url:
            logger.error({"message": "Scheduled reports need a notification webhook URL"})
            return

        try:
            interval = parse_cron_to_interval(self.config.cron)
        except ValueError as e:
            logger.error({"message": "Scheduled reports not started", "error": str(e)})
            return

        self._task = asyncio.create_task(self._loop(interval), name="scheduled-report")
        logger.info({"message": "Scheduled reports started", "interval_seconds": interval})

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
        self._next_run = None

    def restart(self) -> None:
        self.stop()
        self.start()

    def status(self) -> Dict[str, Any]:
        config = asdict(self.config)
        config["webhook_url"] = bool(config["webhook_url"])
        return {
            "running": self.is_running,
            "next_run": self._next_run.isoformat() if self._next_run else None,
            "config": config,
        }

    async def _loop(self, interval: float) -> None:
        while True:
            self._next_run = datetime.now() + timedelta(seconds=interval)
            await asyncio.sleep(interval)
            await self.execute_report()

    async def manual_execute(self) -> ReportResult:
        logger.info({"message": "Running scheduled report manually"})
        return await self.execute_report()

    async def execute_report(self) -> ReportResult:
        try:
            if self.config.report_type == "all":
                result = await self.report_service.send_all_projects_report(
                    self.config.webhook_url
                )
            else:
                sent = 0
                for project_id in self.config.projects:
                    project_result = await self.report_service.send_project_report(
                        project_id, self.config.webhook_url
                    )
                    sent += project_result.success
                    logger.info(
                        {
                            "message": "Project report",
                            "project": project_id,
                            "result": project_result.message,
                        }
                    )
                    await asyncio.sleep(INDIVIDUAL_REPORT_DELAY)
                result = ReportResult(
                    sent > 0,
                    f"Individual reports sent: {sent}/{len(self.config.projects)}",
                )
        except Exception as e:
            logger.error({"message": "Scheduled report failed", "error": str(e)})
            return ReportResult(False, f"Scheduled report failed: {e}")

        logger.info(
            {"message": "Scheduled report finished", "success": result.success, "result": result.message}
        )
        return result
