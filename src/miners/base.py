"""
Abstract Base Class for Repository Miners.

Defines the interface the sync engine uses to pull review data from a
remote code host. Every operation is independently retryable and fails with
a ``SyncError`` subclass.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from miners.models import GitLabBranch, GitLabComment, GitLabCommit, GitLabMember
from storage.models import Project


class RepositoryMiner(ABC):
    """
    Abstract base class for repository miners.

    Implementations should handle:
    - Authentication with the repository service
    - Pagination and request rate limiting
    - Mapping transport failures to ``RemoteUnavailable`` / ``Unauthorized``
    """

    @abstractmethod
    async def fetch_commits(
        self, project: Project, since: datetime, ref_name: Optional[str] = None
    ) -> List[GitLabCommit]:
        """List commits committed after ``since``, newest first, capped at the project's max."""

    @abstractmethod
    async def fetch_comments(self, project: Project, commit_id: str) -> List[GitLabComment]:
        """List all comments on one commit."""

    @abstractmethod
    async def fetch_branches(self, project: Project) -> List[GitLabBranch]:
        """List all branches with head commit summaries."""

    @abstractmethod
    async def fetch_members(self, project: Project) -> List[GitLabMember]:
        """List all project members, inherited ones included."""

    async def close(self) -> None:
        """Release network resources."""
