"""
Main Application Entry Point.

Wires the review tracker together and serves it over HTTP:
- Project registry and commit cache stores
- GitLab miner and incremental updater
- Commit and comment polling cadences
- Coverage statistics and scheduled reports
- Webhook receiver and management API

Run with ``review-tracker`` or ``python src/app.py``.
"""

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from config import Settings, settings, logger
from analyzers.coverage import CoverageCalculator
from api.server import Services, create_app
from miners.gitlab_miner import GitLabMiner
from report.feishu_notifier import FeishuNotifier
from report.review_report import ReviewReportService
from report.scheduled_report import ScheduleConfig, ScheduledReportService
from storage.commit_cache_store import CommitCacheStore
from storage.project_store import ProjectStore
from sync.scheduler import SyncScheduler
from sync.updater import IncrementalUpdater


def build_services(config: Settings) -> Services:
    """
    Create every long-lived service from the settings.

    Args:
        config (Settings): Application settings

    Returns:
        Services: Wired service container
    """
    logger.debug({"message": "initializing stores", "data_dir": config.data_dir})
    project_store = ProjectStore(config.projects_file)
    cache_store = CommitCacheStore(config.data_dir)

    logger.debug({"message": "initializing gitlab miner"})
    miner = GitLabMiner(
        timeout=config.gitlab_timeout,
        page_size=config.gitlab_page_size,
        max_requests=config.gitlab_max_requests,
        rate_period=config.gitlab_rate_period,
        retry_attempts=config.gitlab_retry_attempts,
    )
    updater = IncrementalUpdater(miner, cache_store, project_store)
    scheduler = SyncScheduler(
        updater,
        project_store,
        commit_interval=config.commit_pull_interval,
        comment_interval=config.comment_pull_interval,
    )

    webhook_url: Optional[str] = (
        config.feishu_webhook_url.get_secret_value() if config.feishu_webhook_url else None
    )
    calculator = CoverageCalculator(project_store, cache_store)
    notifier = FeishuNotifier(timeout=config.gitlab_timeout)
    report_service = ReviewReportService(calculator, notifier, webhook_url)
    scheduled_reports = ScheduledReportService(
        report_service,
        ScheduleConfig(
            enabled=config.report_enabled,
            cron=config.report_cron,
            webhook_url=webhook_url or "",
            report_type=config.report_type,
            projects=config.report_projects,
        ),
    )

    return Services(
        project_store=project_store,
        cache_store=cache_store,
        miner=miner,
        updater=updater,
        scheduler=scheduler,
        calculator=calculator,
        notifier=notifier,
        report_service=report_service,
        scheduled_reports=scheduled_reports,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    services: Services = app.state.services
    logger.info({"message": "Starting background services"})
    services.scheduler.start()
    services.scheduled_reports.start()
    try:
        yield
    finally:
        logger.info({"message": "Stopping background services"})
        services.scheduled_reports.stop()
        await services.scheduler.stop()
        await services.miner.close()
        await services.notifier.close()


def main() -> FastAPI:
    """Build the application from the global settings."""
    logger.info({"message": "Starting application", "app": settings.app_name})
    return create_app(build_services(settings), lifespan=lifespan)


def run() -> None:
    app = main()
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level)


if __name__ == "__main__":
    run()
