import pytest
from datetime import datetime, timedelta, timezone

from storage.models import CachedCommit, Comment, CommentAuthor, Project


@pytest.fixture
def make_project():
    """Factory for project configurations."""

    def _make(**overrides):
        data = {
            "id": "p1",
            "name": "group/app",
            "gitlab_url": "https://gitlab.example.com",
            "access_token": "token-1",
            "reviewers": ["bob", "alice"],
            "user_mappings": {"bob": "Bob", "alice": "Alice"},
            "filter_rules": "^Merge branch.*",
        }
        data.update(overrides)
        return Project(**data)

    return _make


@pytest.fixture
def make_commit():
    """Factory for cached commits; ``age_hours`` sets the commit date."""

    def _make(commit_id, author="Alice", message="Add feature", age_hours=1, comments=None, **kw):
        commit = CachedCommit(
            id=commit_id,
            short_id=commit_id[:8],
            message=message,
            author_name=author,
            committed_date=datetime.now(timezone.utc) - timedelta(hours=age_hours),
            **kw,
        )
        if comments:
            commit.add_comments(comments)
        return commit

    return _make


@pytest.fixture
def make_comment():
    """Factory for commit comments."""

    def _make(username=None, name=None, note="LGTM", minutes=0):
        return Comment(
            author=CommentAuthor(username=username, name=name),
            created_at=datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc) + timedelta(minutes=minutes),
            note=note,
        )

    return _make
