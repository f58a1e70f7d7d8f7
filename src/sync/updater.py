"""
Incremental Cache Updater.

Every mutation of a project's commit cache goes through
``IncrementalUpdater``: scheduled commit and comment pulls, webhook events
and manual refreshes all end in the same apply step, which merges commits,
appends comments, recomputes the review flags and writes the cache once.

Each project has an ``asyncio.Lock`` held for the whole fetch-and-apply
cycle, so two triggers never interleave their read-modify-write on the same
cache file.
"""

import asyncio
import hashlib
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from config import logger
from errors import CacheWriteError, SyncError, Unauthorized
from analyzers.filters import should_skip_review
from analyzers.identity import IdentityResolver
from miners.base import RepositoryMiner
from miners.gitlab_miner import normalize_base_url
from miners.models import GitLabComment, GitLabCommit
from storage.commit_cache_store import CommitCacheStore
from storage.models import (
    BranchCommit,
    BranchInfo,
    CachedCommit,
    Comment,
    CommentAuthor,
    Project,
    ProjectBranchCache,
    ProjectCommitCache,
    utc_now,
)
from storage.project_store import ProjectStore


@dataclass
class UpdateResult:
    """Outcome of one apply step."""

    project_id: str
    new_commits: int = 0
    new_comments: int = 0
    pending_reviews: int = 0
    failed_commits: int = 0


def credential_fingerprint(project: Project) -> str:
    raw = f"{normalize_base_url(project.gitlab_url)}|{project.access_token.get_secret_value()}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class IncrementalUpdater:
    """
    Applies remote data to the per-project commit caches.

    Attributes:
        miner (RepositoryMiner): Remote data source.
        cache_store (CommitCacheStore): Commit and branch caches.
        project_store (ProjectStore): Project registry, for user mapping write-back.
    """

    def __init__(
        self,
        miner: RepositoryMiner,
        cache_store: CommitCacheStore,
        project_store: ProjectStore,
    ):
        self.miner = miner
        self.cache_store = cache_store
        self.project_store = project_store
        self._locks: Dict[str, asyncio.Lock] = {}
        self._suspended: Dict[str, str] = {}

    # Locking and suspension

    def lock_for(self, project_id: str) -> asyncio.Lock:
        if project_id not in self._locks:
            self._locks[project_id] = asyncio.Lock()
        return self._locks[project_id]

    def is_busy(self, project_id: str) -> bool:
        return self.lock_for(project_id).locked()

    def suspend(self, project: Project) -> None:
        """Stop polling a project until its credentials change."""
        self._suspended[project.id] = credential_fingerprint(project)
        logger.error(
            {
                "message": "GitLab rejected the credentials, polling suspended until reconfigured",
                "project": project.name,
            }
        )

    def is_suspended(self, project: Project) -> bool:
        fingerprint = self._suspended.get(project.id)
        if fingerprint is None:
            return False
        if fingerprint != credential_fingerprint(project):
            del self._suspended[project.id]
            logger.info({"message": "Credentials changed, resuming", "project": project.name})
            return False
        return True

    def suspended_projects(self) -> List[str]:
        return list(self._suspended)

    # Conversions

    @staticmethod
    def to_cached_commit(
        commit: GitLabCommit, project: Project, branch: Optional[str] = None
    ) -> CachedCommit:
        message = commit.message or commit.title
        skip = should_skip_review(message, project.filter_rules)
        return CachedCommit(
            id=commit.id,
            short_id=commit.short_id or commit.id[:8],
            message=message,
            author_name=commit.author_name,
            author_email=commit.author_email,
            committed_date=commit.committed_date,
            web_url=commit.web_url,
            branch=branch,
            skip_review=skip,
            needs_review=not skip,
        )

    @staticmethod
    def to_comment(comment: GitLabComment) -> Comment:
        author = comment.author
        return Comment(
            author=CommentAuthor(
                username=author.username if author else None,
                name=author.name if author else None,
            ),
            created_at=comment.created_at,
            note=comment.note,
        )

    @classmethod
    def push_commit_stubs(
        cls, project: Project, commits_payload: List[Dict[str, Any]], branch: str
    ) -> List[CachedCommit]:
        """Commit stubs from a push webhook payload, newest first.

        Malformed entries are logged and skipped; the rest are still merged.
        """
        stubs = []
        for raw in commits_payload:
            if not isinstance(raw, dict) or not raw.get("id"):
                continue
            commit_id = str(raw["id"])
            author = raw.get("author")
            if not isinstance(author, dict):
                author = {}
            try:
                commit = GitLabCommit(
                    id=commit_id,
                    short_id=commit_id[:8],
                    title=raw.get("title") or "",
                    message=raw.get("message") or "",
                    author_name=author.get("name") or "",
                    author_email=author.get("email") or "",
                    committed_date=raw.get("timestamp"),
                    web_url=raw.get("url") or "",
                )
            except ValidationError as e:
                logger.warning(
                    {
                        "message": "Malformed push commit skipped",
                        "project": project.name,
                        "commit": commit_id[:8],
                        "error": str(e),
                    }
                )
                continue
            stubs.append(cls.to_cached_commit(commit, project, branch))
        stubs.sort(
            key=lambda c: c.committed_date.timestamp() if c.committed_date else float("-inf"),
            reverse=True,
        )
        return stubs

    # The single mutation path

    @staticmethod
    def _recompute_flags(
        cache: ProjectCommitCache, project: Project, reapply_filters: bool
    ) -> int:
        identities = IdentityResolver.for_project(project)
        pending = 0
        for commit in cache.commits:
            if reapply_filters:
                commit.skip_review = should_skip_review(commit.message, project.filter_rules)
            commit.needs_review = (
                False if commit.skip_review else not identities.is_fully_reviewed(commit)
            )
            pending += commit.needs_review
        return pending

    def _apply_locked(
        self,
        project: Project,
        cache: Optional[ProjectCommitCache] = None,
        commits: Optional[List[CachedCommit]] = None,
        comments: Optional[Dict[str, List[Comment]]] = None,
        commit_pull_time: Optional[datetime] = None,
        comment_pull_time: Optional[datetime] = None,
        reapply_filters: bool = False,
    ) -> UpdateResult:
        """Merge, recompute and write. The caller holds the project lock."""
        if cache is None:
            cache = self.cache_store.read(project.id, project.review_days)

        inserted = cache.merge_commits(commits or [])

        new_comments = 0
        for commit_id, commit_comments in (comments or {}).items():
            commit = cache.get_commit(commit_id)
            if commit is None:
                logger.debug(
                    {"message": "Comments for unknown commit ignored", "commit": commit_id}
                )
                continue
            new_comments += commit.add_comments(commit_comments)

        pending = self._recompute_flags(cache, project, reapply_filters)

        if commit_pull_time is not None:
            cache.last_commit_pull_time = commit_pull_time
        if comment_pull_time is not None:
            cache.last_comment_pull_time = comment_pull_time

        self.cache_store.write(cache)

        return UpdateResult(
            project_id=project.id,
            new_commits=len(inserted),
            new_comments=new_comments,
            pending_reviews=pending,
        )

    async def apply_incremental_update(
        self,
        project: Project,
        commits: Optional[List[CachedCommit]] = None,
        comments: Optional[Dict[str, List[Comment]]] = None,
    ) -> UpdateResult:
        """
        Merge commits and comments into a project's cache under its lock.

        Args:
            project (Project): Target project.
            commits (Optional[List[CachedCommit]]): Commits to merge, newest first.
            comments (Optional[Dict[str, List[Comment]]]): Comments per commit id.

        Returns:
            UpdateResult: Counts of what changed.
        """
        async with self.lock_for(project.id):
            return self._apply_locked(project, commits=commits, comments=comments)

    # Remote pulls

    async def refresh_branches(self, project: Project) -> ProjectBranchCache:
        branches = await self.miner.fetch_branches(project)
        cache = ProjectBranchCache(
            project_id=project.id,
            last_branch_pull_time=utc_now(),
            branches=[
                BranchInfo(
                    name=branch.name,
                    is_default=branch.default,
                    is_protected=branch.protected,
                    commit=BranchCommit(**branch.commit.model_dump()) if branch.commit else None,
                )
                for branch in branches
            ],
        )
        cache.default_branch = next(
            (branch.name for branch in cache.branches if branch.is_default), None
        )
        self.cache_store.write_branches(cache)
        return cache

    async def refresh_user_mappings(self, project: Project) -> Dict[str, str]:
        """Resolve username to display-name mappings from project members."""
        members = await self.miner.fetch_members(project)
        mappings = {m.username: m.name for m in members if m.username and m.name}
        if not mappings:
            logger.warning(
                {"message": "No project members resolved, mappings kept", "project": project.name}
            )
            return mappings
        self.project_store.update_user_mappings(project.id, mappings)
        logger.info(
            {
                "message": "User mappings updated",
                "project": project.name,
                "users": len(mappings),
            }
        )
        return mappings

    async def _pull_commits_locked(
        self, project: Project, since: Optional[datetime] = None, reapply_filters: bool = False
    ) -> UpdateResult:
        try:
            branch_cache = await self.refresh_branches(project)
        except (SyncError, CacheWriteError) as e:
            logger.warning(
                {"message": "Branch refresh failed", "project": project.name, "error": str(e)}
            )
            branch_cache = self.cache_store.read_branches(project.id)

        ref_name = project.branch or branch_cache.default_branch
        cache = self.cache_store.read(project.id, project.review_days)
        since = since or cache.last_commit_pull_time
        started = utc_now()

        try:
            remote = await self.miner.fetch_commits(project, since, ref_name)
        except Unauthorized:
            self.suspend(project)
            raise

        commits = [self.to_cached_commit(c, project, ref_name) for c in remote]
        result = self._apply_locked(
            project,
            cache=cache,
            commits=commits,
            commit_pull_time=started,
            reapply_filters=reapply_filters,
        )
        logger.info(
            {
                "message": "Commit pull finished",
                "project": project.name,
                "since": since.isoformat(),
                "fetched": len(commits),
                "new_commits": result.new_commits,
                "pending_reviews": result.pending_reviews,
            }
        )
        return result

    async def pull_commits(self, project: Project) -> UpdateResult:
        """Fetch commits since the last pull and merge them."""
        async with self.lock_for(project.id):
            return await self._pull_commits_locked(project)

    async def _fetch_comments_for(
        self, project: Project, commits: List[CachedCommit]
    ) -> tuple:
        comments: Dict[str, List[Comment]] = {}
        failed = 0
        for commit in commits:
            try:
                remote = await self.miner.fetch_comments(project, commit.id)
            except Unauthorized:
                self.suspend(project)
                raise
            except SyncError as e:
                failed += 1
                logger.warning(
                    {
                        "message": "Failed to fetch commit comments",
                        "project": project.name,
                        "commit": commit.short_id,
                        "error": str(e),
                    }
                )
                continue
            comments[commit.id] = [self.to_comment(c) for c in remote]
        return comments, failed

    async def pull_comments(
        self, project: Project, skip_if_busy: bool = False
    ) -> Optional[UpdateResult]:
        """
        Re-fetch comments of commits that still need review.

        Args:
            project (Project): Target project.
            skip_if_busy (bool): Return None instead of waiting when another
                operation holds the project's lock.

        Returns:
            Optional[UpdateResult]: None when skipped or when nothing is pending.
        """
        lock = self.lock_for(project.id)
        if skip_if_busy and lock.locked():
            logger.debug({"message": "Project busy, comment pull skipped", "project": project.name})
            return None

        async with lock:
            if not self.cache_store.exists(project.id):
                return None
            cache = self.cache_store.read(project.id, project.review_days)
            pending = [commit for commit in cache.commits if commit.needs_review]
            if not pending:
                return None

            started = utc_now()
            comments, failed = await self._fetch_comments_for(project, pending)
            result = self._apply_locked(
                project, cache=cache, comments=comments, comment_pull_time=started
            )
            result.failed_commits = failed
            if result.new_comments:
                logger.info(
                    {
                        "message": "New commit comments",
                        "project": project.name,
                        "new_comments": result.new_comments,
                        "pending_reviews": result.pending_reviews,
                    }
                )
            return result

    # Webhook triggers

    async def apply_push(
        self,
        project: Project,
        ref: str,
        commits_payload: List[Dict[str, Any]],
        default_branch: Optional[str] = None,
    ) -> Optional[UpdateResult]:
        """Merge commits announced by a push event on the tracked branch."""
        branch = ref.removeprefix("refs/heads/")
        tracked = (
            project.branch
            or default_branch
            or self.cache_store.read_branches(project.id).default_branch
        )
        if tracked and branch != tracked:
            logger.info(
                {
                    "message": "Push to untracked branch ignored",
                    "project": project.name,
                    "branch": branch,
                    "tracked": tracked,
                }
            )
            return None

        stubs = self.push_commit_stubs(project, commits_payload, branch)
        if not stubs:
            return None
        result = await self.apply_incremental_update(project, commits=stubs)
        logger.info(
            {
                "message": "Push merged",
                "project": project.name,
                "branch": branch,
                "new_commits": result.new_commits,
            }
        )
        return result

    async def apply_note(self, project: Project, commit_id: str) -> Optional[UpdateResult]:
        """Re-fetch the comments of one cached commit after a note event."""
        async with self.lock_for(project.id):
            cache = self.cache_store.read(project.id, project.review_days)
            commit = cache.get_commit(commit_id)
            if commit is None:
                logger.info(
                    {
                        "message": "Note on uncached commit ignored",
                        "project": project.name,
                        "commit": commit_id[:8],
                    }
                )
                return None
            comments, failed = await self._fetch_comments_for(project, [commit])
            result = self._apply_locked(project, cache=cache, comments=comments)
            result.failed_commits = failed
            return result

    # Manual refresh

    async def refresh_project(self, project: Project) -> UpdateResult:
        """
        Full resync of one project over its review window.

        Clears a credential suspension, refreshes user mappings and branches,
        re-fetches commits, re-applies filter rules and re-fetches comments of
        every cached commit inside the window.
        """
        self._suspended.pop(project.id, None)
        logger.info({"message": "Manual refresh started", "project": project.name})

        async with self.lock_for(project.id):
            try:
                await self.refresh_user_mappings(project)
                project = self.project_store.find_by_id(project.id) or project
            except Unauthorized:
                self.suspend(project)
                raise
            except SyncError as e:
                logger.warning(
                    {"message": "User mapping refresh failed", "project": project.name, "error": str(e)}
                )

            window_start = utc_now() - timedelta(days=project.review_days)
            commit_result = await self._pull_commits_locked(
                project, since=window_start, reapply_filters=True
            )

            cache = self.cache_store.read(project.id, project.review_days)
            in_window = [
                commit
                for commit in cache.commits
                if commit.committed_date is None or commit.committed_date >= window_start
            ]
            started = utc_now()
            comments, failed = await self._fetch_comments_for(project, in_window)
            result = self._apply_locked(
                project, cache=cache, comments=comments, comment_pull_time=started
            )

        result.new_commits = commit_result.new_commits
        result.failed_commits = failed
        logger.info(
            {
                "message": "Manual refresh finished",
                "project": project.name,
                "new_commits": result.new_commits,
                "new_comments": result.new_comments,
                "pending_reviews": result.pending_reviews,
            }
        )
        return result

    async def refresh_all(self) -> Dict[str, Optional[UpdateResult]]:
        """Refresh every active project; a failing project does not stop the rest."""
        results: Dict[str, Optional[UpdateResult]] = {}
        for project in self.project_store.find_active():
            try:
                results[project.id] = await self.refresh_project(project)
            except Exception as e:
                logger.error(
                    {"message": "Manual refresh failed", "project": project.name, "error": str(e)}
                )
                results[project.id] = None
        return results
