"""
GitLab Webhook Receiver.

Handles push, note and merge request events. Each event is mapped onto the
same incremental update path the poller uses, so webhook data and polled
data never diverge.

Signature: when a project has a ``webhook_secret``, the ``X-Gitlab-Token``
header must carry the hex HMAC-SHA256 of the raw request body keyed with
that secret.
"""

import hashlib
import hmac
import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse

from config import logger
from errors import ReviewTrackerError, WebhookSignatureInvalid
from api.server import Services, get_services
from miners.gitlab_miner import normalize_base_url
from storage.models import Project

router = APIRouter(prefix="/api/webhook", tags=["webhook"])


def compute_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, secret: Optional[str], signature: Optional[str]) -> None:
    """
    Check the request signature against the project secret.

    Raises:
        WebhookSignatureInvalid: Secret configured and signature missing or wrong
    """
    if not secret:
        return
    if not signature:
        raise WebhookSignatureInvalid("Missing webhook signature")
    if not hmac.compare_digest(compute_signature(body, secret), signature.strip().lower()):
        raise WebhookSignatureInvalid("Webhook signature mismatch")


def match_project(services: Services, project_info: Dict[str, Any]) -> Optional[Project]:
    path = project_info.get("path_with_namespace")
    web_url = project_info.get("web_url") or ""
    for project in services.project_store.find_active():
        if project.name != path:
            continue
        if web_url.startswith(normalize_base_url(project.gitlab_url)):
            return project
    return None


async def handle_push(services: Services, project: Project, payload: Dict[str, Any]) -> Dict[str, Any]:
    commits = payload.get("commits")
    result = await services.updater.apply_push(
        project,
        payload.get("ref") or "",
        commits if isinstance(commits, list) else [],
        (payload.get("project") or {}).get("default_branch"),
    )
    return {"new_commits": result.new_commits if result else 0}


async def handle_note(services: Services, project: Project, payload: Dict[str, Any]) -> Dict[str, Any]:
    attributes = payload.get("object_attributes") or {}
    if attributes.get("noteable_type") != "Commit":
        return {"ignored": True}

    commit_id = attributes.get("commit_id") or (payload.get("commit") or {}).get("id")
    if not commit_id:
        return {"ignored": True}

    result = await services.updater.apply_note(project, commit_id)
    return {
        "new_comments": result.new_comments if result else 0,
        "pending_reviews": result.pending_reviews if result else None,
    }


async def _refresh_in_background(services: Services, project: Project) -> None:
    try:
        await services.updater.refresh_project(project)
    except Exception as e:
        logger.error(
            {"message": "Refresh after merge failed", "project": project.name, "error": str(e)}
        )


def handle_merge_request(
    services: Services, project: Project, payload: Dict[str, Any], background: BackgroundTasks
) -> Dict[str, Any]:
    action = (payload.get("object_attributes") or {}).get("action")
    if action != "merge":
        return {"ignored": True}
    background.add_task(_refresh_in_background, services, project)
    return {"refresh_scheduled": True}


@router.post("/gitlab")
async def gitlab_webhook(
    request: Request,
    background: BackgroundTasks,
    services: Services = Depends(get_services),
):
    body = await request.body()
    event = request.headers.get("X-Gitlab-Event", "")

    try:
        payload = json.loads(body)
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "Invalid JSON payload"})
    if not isinstance(payload, dict):
        return JSONResponse(status_code=400, content={"error": "Invalid JSON payload"})

    project_info = payload.get("project") or {}
    if not project_info.get("path_with_namespace"):
        return JSONResponse(status_code=400, content={"error": "Missing project information"})

    project = match_project(services, project_info)
    if project is None:
        logger.warning(
            {
                "message": "Webhook for unknown project",
                "path": project_info.get("path_with_namespace"),
                "event": event,
            }
        )
        return JSONResponse(status_code=404, content={"error": "Project not found"})

    secret = project.webhook_secret.get_secret_value() if project.webhook_secret else None
    try:
        verify_signature(body, secret, request.headers.get("X-Gitlab-Token"))
    except WebhookSignatureInvalid as e:
        logger.warning({"message": str(e), "project": project.name, "event": event})
        return JSONResponse(status_code=401, content={"error": "Invalid webhook signature"})

    logger.info({"message": "Webhook received", "project": project.name, "event": event})

    try:
        if event == "Push Hook":
            details = await handle_push(services, project, payload)
        elif event == "Note Hook":
            details = await handle_note(services, project, payload)
        elif event == "Merge Request Hook":
            details = handle_merge_request(services, project, payload, background)
        else:
            logger.info({"message": "Unhandled webhook event", "event": event})
            details = {"ignored": True}
    except ReviewTrackerError as e:
        logger.error(
            {"message": "Webhook handling failed", "project": project.name, "event": event, "error": str(e)}
        )
        return JSONResponse(status_code=500, content={"error": str(e)})

    return {"success": True, "event": event, "project_id": project.id, **details}


@router.get("/status/{project_id}")
async def webhook_status(project_id: str, services: Services = Depends(get_services)):
    project = services.project_store.find_by_id(project_id)
    if project is None:
        return JSONResponse(status_code=404, content={"error": "Project not found"})

    cache = (
        services.cache_store.read(project.id, project.review_days)
        if services.cache_store.exists(project.id)
        else None
    )
    return {
        "project_id": project.id,
        "project_name": project.name,
        "signature_required": project.webhook_secret is not None,
        "busy": services.updater.is_busy(project.id),
        "suspended": services.updater.is_suspended(project),
        "cached_commits": len(cache.commits) if cache else 0,
        "last_commit_pull_time": (
            cache.last_commit_pull_time.isoformat() if cache and cache.last_commit_pull_time else None
        ),
        "last_comment_pull_time": (
            cache.last_comment_pull_time.isoformat() if cache and cache.last_comment_pull_time else None
        ),
    }
