"""
HTTP Routes.

- /api/health: liveness
- /api/sync/*: scheduler status and manual refresh
- /api/reviews/stats*: review coverage statistics
- /api/reports/*: manual report trigger, schedule status and configuration
- /api/notifications/test: notification webhook connection test
"""

from dataclasses import asdict
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config import logger
from errors import ReviewTrackerError
from analyzers.coverage import NO_DATA_MESSAGE
from api.server import Services, get_services
from report.scheduled_report import parse_cron_to_interval
from storage.models import utc_now

router = APIRouter(prefix="/api")


class ReportTriggerRequest(BaseModel):
    type: Literal["single", "all"] = "all"
    project_id: Optional[str] = None


class ScheduleConfigRequest(BaseModel):
    enabled: Optional[bool] = None
    cron: Optional[str] = None
    webhook_url: Optional[str] = None
    report_type: Optional[Literal["all", "individual"]] = None
    projects: Optional[List[str]] = None


class NotificationTestRequest(BaseModel):
    webhook_url: Optional[str] = None


@router.get("/health")
async def health():
    return {"status": "ok", "timestamp": utc_now().isoformat()}


@router.get("/sync/status")
async def sync_status(services: Services = Depends(get_services)):
    return services.scheduler.status()


@router.post("/sync/refresh")
async def refresh_all(services: Services = Depends(get_services)):
    results = await services.updater.refresh_all()
    return {
        "success": all(result is not None for result in results.values()),
        "results": {
            project_id: asdict(result) if result else None
            for project_id, result in results.items()
        },
    }


@router.post("/sync/refresh/{project_id}")
async def refresh_project(project_id: str, services: Services = Depends(get_services)):
    project = services.project_store.find_by_id(project_id)
    if project is None:
        return JSONResponse(status_code=404, content={"error": "Project not found"})

    try:
        result = await services.updater.refresh_project(project)
    except ReviewTrackerError as e:
        logger.error({"message": "Manual refresh failed", "project": project.name, "error": str(e)})
        return JSONResponse(status_code=502, content={"success": False, "error": str(e)})
    return {"success": True, "result": asdict(result)}


@router.get("/reviews/stats")
async def all_review_stats(services: Services = Depends(get_services)):
    stats = services.calculator.get_all_projects_review_stats()
    return {"stats": [s.model_dump(mode="json") for s in stats]}


@router.get("/reviews/stats/{project_id}")
async def project_review_stats(project_id: str, services: Services = Depends(get_services)):
    if services.project_store.find_by_id(project_id) is None:
        return JSONResponse(status_code=404, content={"error": "Project not found"})

    stats = services.calculator.get_project_review_stats(project_id)
    if stats is None:
        return {"stats": None, "message": NO_DATA_MESSAGE}
    return {"stats": stats.model_dump(mode="json")}


@router.post("/reports/trigger")
async def trigger_report(
    request: ReportTriggerRequest, services: Services = Depends(get_services)
):
    result = await services.report_service.trigger_manual_report(request.type, request.project_id)
    status_code = 200 if result.success else 400
    return JSONResponse(status_code=status_code, content=asdict(result))


@router.get("/reports/schedule")
async def report_schedule(services: Services = Depends(get_services)):
    return services.scheduled_reports.status()


@router.post("/reports/schedule")
async def update_report_schedule(
    request: ScheduleConfigRequest, services: Services = Depends(get_services)
):
    changes = {
        key: value
        for key, value in request.model_dump(exclude_unset=True).items()
        if value is not None
    }
    if "cron" in changes:
        try:
            parse_cron_to_interval(changes["cron"])
        except ValueError as e:
            return JSONResponse(status_code=400, content={"success": False, "error": str(e)})

    services.scheduled_reports.set_schedule_config(**changes)
    return services.scheduled_reports.status()


@router.post("/reports/schedule/execute")
async def execute_report_schedule(services: Services = Depends(get_services)):
    result = await services.scheduled_reports.manual_execute()
    status_code = 200 if result.success else 400
    return JSONResponse(status_code=status_code, content=asdict(result))


@router.post("/notifications/test")
async def send_test_notification(
    request: Optional[NotificationTestRequest] = None,
    services: Services = Depends(get_services),
):
    webhook_url = (
        request.webhook_url if request else None
    ) or services.report_service.default_webhook_url
    if not webhook_url:
        return JSONResponse(
            status_code=400, content={"success": False, "error": "No notification webhook URL configured"}
        )

    success = await services.notifier.test_webhook(webhook_url)
    logger.info({"message": "Notification webhook tested", "success": success})
    return {"success": success}
