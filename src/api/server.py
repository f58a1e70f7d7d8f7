"""
HTTP Application Factory.

Builds the FastAPI application and exposes the long-lived services to the
route handlers through ``app.state.services``.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import FastAPI, Request

from analyzers.coverage import CoverageCalculator
from miners.base import RepositoryMiner
from report.feishu_notifier import FeishuNotifier
from report.review_report import ReviewReportService
from report.scheduled_report import ScheduledReportService
from storage.commit_cache_store import CommitCacheStore
from storage.project_store import ProjectStore
from sync.scheduler import SyncScheduler
from sync.updater import IncrementalUpdater


@dataclass
class Services:
    """Everything the HTTP handlers and the lifespan need."""

    project_store: ProjectStore
    cache_store: CommitCacheStore
    miner: RepositoryMiner
    updater: IncrementalUpdater
    scheduler: SyncScheduler
    calculator: CoverageCalculator
    notifier: FeishuNotifier
    report_service: ReviewReportService
    scheduled_reports: ScheduledReportService


def get_services(request: Request) -> Services:
    return request.app.state.services


def create_app(services: Services, lifespan: Optional[Callable] = None) -> FastAPI:
    """
    Create the application with every router registered.

    Args:
        services (Services): Shared service instances
        lifespan (Optional[Callable]): Startup/shutdown context manager;
            tests leave it out so no background task is started

    Returns:
        FastAPI: The configured application
    """
    from api.routes import router as api_router
    from api.webhooks import router as webhook_router

    app = FastAPI(title="Review Tracker", lifespan=lifespan)
    app.state.services = services
    app.include_router(webhook_router)
    app.include_router(api_router)
    return app
