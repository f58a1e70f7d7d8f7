"""
Review Coverage Data Models.

Derived statistics handed to report consumers. Never persisted; computed
fresh on each request.
"""

from datetime import datetime, timezone
from typing import List

from pydantic import BaseModel, Field


class ReviewerStat(BaseModel):
    """Completion of one required reviewer."""

    username: str
    nickname: str
    total_commits: int  # assigned to this reviewer
    reviewed_commits: int
    pending_commits: int
    review_rate: str  # percentage, one decimal


class ReviewTotals(BaseModel):
    """Project-wide completion."""

    total_commits: int
    reviewed_commits: int
    pending_commits: int
    review_rate: str


class ReviewStats(BaseModel):
    """Coverage report of a project."""

    project_id: str
    project_name: str
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    reviewers: List[ReviewerStat]
    total_stats: ReviewTotals
