"""
Review Coverage Analysis Module.

Computes per-reviewer and per-project review completion from the cached
commits and the project's reviewer configuration.

Rules:
- Commits exempted by filter rules are excluded from every denominator
- A reviewer is never assigned their own commits
- A rate over an empty set is 100.0
"""

from typing import List, Optional

import pandas as pd

from config import logger
from analyzers.identity import IdentityResolver
from analyzers.models import ReviewerStat, ReviewStats, ReviewTotals
from storage.commit_cache_store import CommitCacheStore
from storage.models import CachedCommit, Project
from storage.project_store import ProjectStore

NO_DATA_MESSAGE = "No data yet, trigger a manual refresh"


def format_rate(part: int, whole: int) -> str:
    """Percentage with one decimal; an empty denominator counts as complete."""
    if whole == 0:
        return "100.0"
    return f"{part / whole * 100:.1f}"


class CoverageCalculator:
    """
    Derives review statistics from the commit cache.

    Attributes:
        project_store (ProjectStore): Source of project configuration.
        cache_store (CommitCacheStore): Source of cached commits.
    """

    def __init__(self, project_store: ProjectStore, cache_store: CommitCacheStore):
        self.project_store = project_store
        self.cache_store = cache_store

    @staticmethod
    def _commits_frame(
        commits: List[CachedCommit], identities: IdentityResolver
    ) -> pd.DataFrame:
        rows = [
            {
                "id": commit.id,
                "author": identities.commit_author(commit),
                "has_comments": commit.has_comments,
                "commenters": identities.commenters(commit),
            }
            for commit in commits
            if not commit.skip_review
        ]
        return pd.DataFrame(rows, columns=["id", "author", "has_comments", "commenters"])

    def compute_stats(self, project: Project, commits: List[CachedCommit]) -> ReviewStats:
        """
        Compute review statistics for a project's commits.

        Args:
            project (Project): Project configuration
            commits (List[CachedCommit]): Cached commits of the project

        Returns:
            ReviewStats: Per-reviewer and project-wide statistics
        """
        identities = IdentityResolver.for_project(project)
        commits_df = self._commits_frame(commits, identities)

        reviewer_stats = []
        for reviewer in identities.reviewers:
            assigned = commits_df[commits_df["author"] != reviewer.username]
            reviewed = assigned[
                assigned["commenters"]
                .apply(lambda keys: reviewer.username in keys)
                .astype(bool)
            ]
            assigned_count = int(assigned.shape[0])
            reviewed_count = int(reviewed.shape[0])
            reviewer_stats.append(
                ReviewerStat(
                    username=reviewer.username,
                    nickname=reviewer.nickname,
                    total_commits=assigned_count,
                    reviewed_commits=reviewed_count,
                    pending_commits=assigned_count - reviewed_count,
                    review_rate=format_rate(reviewed_count, assigned_count),
                )
            )

        total = int(commits_df.shape[0])
        reviewed_total = int(commits_df["has_comments"].astype(bool).sum())

        return ReviewStats(
            project_id=project.id,
            project_name=project.name,
            reviewers=reviewer_stats,
            total_stats=ReviewTotals(
                total_commits=total,
                reviewed_commits=reviewed_total,
                pending_commits=total - reviewed_total,
                review_rate=format_rate(reviewed_total, total),
            ),
        )

    def get_project_review_stats(self, project_id: str) -> Optional[ReviewStats]:
        """
        Statistics for one project.

        Args:
            project_id (str): Project identifier

        Returns:
            Optional[ReviewStats]: None when the project is unknown or has no cache yet
        """
        project = self.project_store.find_by_id(project_id)
        if project is None:
            logger.warning({"message": "Project not found", "project": project_id})
            return None

        if not self.cache_store.exists(project_id):
            logger.info(
                {"message": NO_DATA_MESSAGE, "project": project.name}
            )
            return None

        cache = self.cache_store.read(project_id, project.review_days)
        stats = self.compute_stats(project, cache.commits)
        logger.info(
            {
                "message": "Computed review stats",
                "project": project.name,
                "commits": len(cache.commits),
                "needs_review_total": stats.total_stats.total_commits,
                "review_rate": stats.total_stats.review_rate,
            }
        )
        return stats

    def get_all_projects_review_stats(self) -> List[ReviewStats]:
        """Statistics for every active project; failures are logged and skipped."""
        all_stats = []
        for project in self.project_store.find_active():
            try:
                stats = self.get_project_review_stats(project.id)
            except Exception as e:
                logger.error(
                    {
                        "message": "Failed to compute review stats",
                        "project": project.name,
                        "error": str(e),
                    }
                )
                continue
            if stats:
                all_stats.append(stats)
        return all_stats

    @staticmethod
    def is_own_commit(project: Project, commit: CachedCommit, user: str) -> bool:
        """Whether ``user`` (username or nickname) authored the commit."""
        return IdentityResolver.for_project(project).is_author(commit, user)
