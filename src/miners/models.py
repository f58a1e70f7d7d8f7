"""
GitLab Mining Data Models.

Raw shapes returned by the GitLab REST API, validated with Pydantic. Unknown
fields are ignored so API additions do not break the client.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class GitLabModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class GitLabCommit(GitLabModel):
    """Commit from ``/repository/commits``."""

    id: str
    short_id: str
    title: str = ""
    message: str = ""
    author_name: str = ""
    author_email: str = ""
    committed_date: Optional[datetime] = None
    web_url: str = ""


class GitLabUser(GitLabModel):
    id: Optional[int] = None
    username: Optional[str] = None
    name: Optional[str] = None


class GitLabComment(GitLabModel):
    """Comment from ``/repository/commits/{sha}/comments``."""

    note: str = ""
    author: Optional[GitLabUser] = None
    created_at: Optional[datetime] = None


class GitLabBranchCommit(GitLabModel):
    id: str
    short_id: str = ""
    title: str = ""
    author_name: str = ""
    committed_date: Optional[datetime] = None


class GitLabBranch(GitLabModel):
    """Branch from ``/repository/branches``."""

    name: str
    default: bool = False
    protected: bool = False
    commit: Optional[GitLabBranchCommit] = None


class GitLabMember(GitLabModel):
    """Member from ``/members/all``."""

    id: int
    username: str
    name: str = ""
    state: Optional[str] = None
