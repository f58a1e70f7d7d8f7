"""
Cache and Project Data Models.

Defines the persisted per-project caches and the read-only project
configuration consumed by the sync engine. Uses Pydantic for validation and
serialization.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, Field, SecretStr, field_validator

DEFAULT_REVIEW_DAYS = 7
DEFAULT_MAX_COMMITS = 100


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps as UTC so they compare with aware ones."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Project(BaseModel):
    """Project configuration, owned by the project-management side."""

    id: str
    name: str  # group/project path, doubles as the API identifier
    gitlab_url: str
    access_token: SecretStr
    gitlab_project_id: Optional[int] = None
    branch: Optional[str] = None
    reviewers: List[str] = Field(default_factory=list)
    user_mappings: Dict[str, str] = Field(default_factory=dict)
    filter_rules: str = ""
    review_days: int = Field(default=DEFAULT_REVIEW_DAYS, gt=0)
    max_commits: int = Field(default=DEFAULT_MAX_COMMITS, gt=0)
    is_active: bool = True
    deleted_at: Optional[datetime] = None
    webhook_secret: Optional[SecretStr] = None

    @property
    def is_enabled(self) -> bool:
        return self.is_active and self.deleted_at is None


class CommentAuthor(BaseModel):
    """GitLab reports either a username, a display name, or both."""

    username: Optional[str] = None
    name: Optional[str] = None


class Comment(BaseModel):
    """A commit comment. Never modified after it is stored."""

    author: CommentAuthor = Field(default_factory=CommentAuthor)
    created_at: Optional[datetime] = None
    note: str = ""

    @property
    def key(self) -> tuple:
        return (
            self.author.username,
            self.author.name,
            self.created_at.isoformat() if self.created_at else None,
            self.note,
        )


class CachedCommit(BaseModel):
    """A commit known to the cache, with its comments and review flags."""

    id: str
    short_id: str
    message: str = ""
    author_name: str = ""
    author_email: str = ""
    committed_date: Optional[datetime] = None
    web_url: str = ""
    branch: Optional[str] = None
    has_comments: bool = False
    comments_count: int = 0
    skip_review: bool = False
    needs_review: bool = True
    comments: List[Comment] = Field(default_factory=list)

    @field_validator("committed_date")
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)

    def add_comments(self, comments: List[Comment]) -> int:
        """Append comments not stored yet.

        Args:
            comments (List[Comment]): Comments as reported by GitLab.

        Returns:
            int: Number of comments appended.
        """
        known: Set[tuple] = {comment.key for comment in self.comments}
        added = 0
        for comment in comments:
            if comment.key in known:
                continue
            known.add(comment.key)
            self.comments.append(comment)
            added += 1
        self.comments_count = len(self.comments)
        self.has_comments = self.comments_count > 0
        return added


class ProjectCommitCache(BaseModel):
    """Commits of one project, newest first. Rewritten as a whole on every sync."""

    project_id: str
    last_commit_pull_time: datetime
    last_comment_pull_time: Optional[datetime] = None
    commits: List[CachedCommit] = Field(default_factory=list)

    @field_validator("last_commit_pull_time", "last_comment_pull_time")
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)

    @classmethod
    def empty(cls, project_id: str, review_days: int = DEFAULT_REVIEW_DAYS):
        """Fresh cache whose first pull backfills one review window."""
        return cls(
            project_id=project_id,
            last_commit_pull_time=utc_now() - timedelta(days=review_days),
        )

    def get_commit(self, commit_id: str) -> Optional[CachedCommit]:
        for commit in self.commits:
            if commit.id == commit_id:
                return commit
        return None

    def merge_commits(self, new_commits: List[CachedCommit]) -> List[CachedCommit]:
        """
        Insert unknown commits at the head, keeping their incoming order.

        Existing entries are never reordered, replaced or removed, so merging
        the same list twice leaves the cache unchanged.

        Args:
            new_commits (List[CachedCommit]): Incoming commits, newest first.

        Returns:
            List[CachedCommit]: The commits actually inserted.
        """
        known = {commit.id for commit in self.commits}
        inserted = []
        for commit in new_commits:
            if commit.id in known:
                continue
            known.add(commit.id)
            inserted.append(commit)
        if inserted:
            self.commits = inserted + self.commits
        return inserted


class BranchCommit(BaseModel):
    """Head commit summary of a branch."""

    id: str
    short_id: str = ""
    title: str = ""
    author_name: str = ""
    committed_date: Optional[datetime] = None


class BranchInfo(BaseModel):
    name: str
    is_default: bool = False
    is_protected: bool = False
    commit: Optional[BranchCommit] = None


class ProjectBranchCache(BaseModel):
    """Branches of one project. Same storage discipline as the commit cache."""

    project_id: str
    last_branch_pull_time: Optional[datetime] = None
    branches: List[BranchInfo] = Field(default_factory=list)
    default_branch: Optional[str] = None
