"""
Sync Scheduler Module.

Runs the two polling cadences as asyncio tasks:

- Commit pull: every active project, immediately on start and then every
  ``commit_interval`` seconds (5 minutes by default)
- Comment pull: only commits still needing review, immediately and then
  every ``comment_interval`` seconds (10 seconds by default)

Projects are processed sequentially inside a cadence. A failure in one
project is logged and recorded in the status; the pass continues with the
next project and the next tick retries. A commit pull waits for a project's
lock, while a comment pull skips a busy project until its next tick.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from config import logger
from errors import Unauthorized
from storage.models import utc_now
from storage.project_store import ProjectStore
from sync.updater import IncrementalUpdater


@dataclass
class CadenceState:
    """Bookkeeping of one polling cadence."""

    name: str
    interval: float
    in_pass: bool = False
    runs: int = 0
    last_started: Optional[datetime] = None
    last_finished: Optional[datetime] = None
    next_run: Optional[datetime] = None
    errors: Dict[str, str] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "interval_seconds": self.interval,
            "in_pass": self.in_pass,
            "runs": self.runs,
            "last_started": self.last_started.isoformat() if self.last_started else None,
            "last_finished": self.last_finished.isoformat() if self.last_finished else None,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "errors": dict(self.errors),
        }


class SyncScheduler:
    """
    Owns the polling tasks of the process.

    Attributes:
        updater (IncrementalUpdater): Applies pulled data to the caches.
        project_store (ProjectStore): Source of active projects.
        commits (CadenceState): Commit cadence state.
        comments (CadenceState): Comment cadence state.
    """

    def __init__(
        self,
        updater: IncrementalUpdater,
        project_store: ProjectStore,
        commit_interval: float = 300,
        comment_interval: float = 10,
    ):
        self.updater = updater
        self.project_store = project_store
        self.commits = CadenceState("commits", commit_interval)
        self.comments = CadenceState("comments", comment_interval)
        self._tasks: List[asyncio.Task] = []
        self._started_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        """Start both cadences. Must be called from a running event loop."""
        if self.is_running:
            logger.info({"message": "Sync scheduler already running"})
            return
        self._started_at = utc_now()
        self._tasks = [
            asyncio.create_task(
                self._run_cadence(self.commits, self._initial_commit_pass),
                name="commit-pull",
            ),
            asyncio.create_task(
                self._run_cadence(self.comments, self.run_comment_pass),
                name="comment-pull",
            ),
        ]
        logger.info(
            {
                "message": "Sync scheduler started",
                "commit_interval": self.commits.interval,
                "comment_interval": self.comments.interval,
            }
        )

    async def stop(self) -> None:
        """Cancel both cadences and wait for them to finish."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self.commits.in_pass = self.comments.in_pass = False
        self.commits.next_run = self.comments.next_run = None
        logger.info({"message": "Sync scheduler stopped"})

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "commit_pull": self.commits.as_dict(),
            "comment_pull": self.comments.as_dict(),
            "suspended_projects": self.updater.suspended_projects(),
        }

    async def _run_cadence(
        self, state: CadenceState, run_pass: Callable[[], Awaitable[Any]]
    ) -> None:
        # The next sleep starts after the pass ends, so passes of one cadence never overlap
        while True:
            try:
                await run_pass()
            except Exception as e:
                logger.error(
                    {"message": "Sync pass crashed", "cadence": state.name, "error": str(e)}
                )
            state.next_run = utc_now() + timedelta(seconds=state.interval)
            await asyncio.sleep(state.interval)

    async def _initial_commit_pass(self) -> None:
        if self.commits.runs == 0:
            await self.refresh_user_mappings()
        await self.run_commit_pass()

    async def refresh_user_mappings(self) -> None:
        for project in self.project_store.find_active():
            if self.updater.is_suspended(project):
                continue
            try:
                await self.updater.refresh_user_mappings(project)
            except Exception as e:
                logger.warning(
                    {
                        "message": "User mapping refresh failed",
                        "project": project.name,
                        "error": str(e),
                    }
                )

    async def _run_pass(
        self,
        state: CadenceState,
        sync_project: Callable[[Any], Awaitable[Any]],
    ) -> Dict[str, Any]:
        state.in_pass = True
        state.last_started = utc_now()
        results: Dict[str, Any] = {}
        try:
            for project in self.project_store.find_active():
                if self.updater.is_suspended(project):
                    logger.debug(
                        {"message": "Suspended project skipped", "project": project.name}
                    )
                    continue
                try:
                    results[project.id] = await sync_project(project)
                    state.errors.pop(project.id, None)
                except Unauthorized as e:
                    state.errors[project.id] = str(e)
                except Exception as e:
                    state.errors[project.id] = str(e)
                    logger.error(
                        {
                            "message": "Project sync failed",
                            "cadence": state.name,
                            "project": project.name,
                            "error": str(e),
                        }
                    )
        finally:
            state.in_pass = False
            state.runs += 1
            state.last_finished = utc_now()
        return results

    async def run_commit_pass(self) -> Dict[str, Any]:
        """Pull new commits for every active project."""
        return await self._run_pass(self.commits, self.updater.pull_commits)

    async def run_comment_pass(self) -> Dict[str, Any]:
        """Pull comments of pending commits; busy projects wait for the next tick."""
        return await self._run_pass(
            self.comments,
            lambda project: self.updater.pull_comments(project, skip_if_busy=True),
        )
