"""
Reviewer Identity Resolution.

GitLab reports commit authors by display name and comment authors by
username, display name, or both. Every identity comparison in the service
goes through ``IdentityResolver`` so that "assigned to", "reviewed by" and
"own commit" always agree.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from storage.models import CachedCommit, Comment, Project


@dataclass(frozen=True)
class ReviewerIdentity:
    """A required reviewer: GitLab username plus the nickname shown in reports."""

    username: str
    nickname: str


class IdentityResolver:
    """
    Maps any known alias (username or nickname) to a canonical username.

    Built once per project configuration load.
    """

    def __init__(self, reviewers: List[str], user_mappings: Dict[str, str]):
        """
        Args:
            reviewers (List[str]): Required reviewer usernames.
            user_mappings (Dict[str, str]): Username to display name / nickname.
        """
        self.user_mappings = dict(user_mappings)
        self._aliases: Dict[str, str] = {}
        for username, nickname in self.user_mappings.items():
            if nickname:
                self._aliases.setdefault(nickname, username)
        # Usernames win over a clashing nickname of someone else
        for username in self.user_mappings:
            self._aliases[username] = username

        self.reviewers: List[ReviewerIdentity] = []
        for reviewer in reviewers:
            username = self.canonical(reviewer) or reviewer
            nickname = self.user_mappings.get(username) or reviewer
            self.reviewers.append(ReviewerIdentity(username=username, nickname=nickname))

    @classmethod
    def for_project(cls, project: Project) -> "IdentityResolver":
        return cls(project.reviewers, project.user_mappings)

    def canonical(self, alias: Optional[str]) -> Optional[str]:
        """Canonical key of a username or nickname; unknown aliases map to themselves."""
        if not alias:
            return None
        return self._aliases.get(alias, alias)

    def commit_author(self, commit: CachedCommit) -> Optional[str]:
        return self.canonical(commit.author_name)

    def comment_authors(self, comment: Comment) -> Set[str]:
        keys = {
            self.canonical(comment.author.username),
            self.canonical(comment.author.name),
        }
        keys.discard(None)
        return keys

    def commenters(self, commit: CachedCommit) -> Set[str]:
        """Canonical keys of everyone who commented on a commit."""
        keys: Set[str] = set()
        for comment in commit.comments:
            keys |= self.comment_authors(comment)
        return keys

    def is_author(self, commit: CachedCommit, user: str) -> bool:
        author = self.commit_author(commit)
        return author is not None and author == self.canonical(user)

    def required_reviewers(self, commit: CachedCommit) -> List[ReviewerIdentity]:
        """Configured reviewers minus the commit's own author."""
        return [r for r in self.reviewers if not self.is_author(commit, r.username)]

    def is_fully_reviewed(self, commit: CachedCommit) -> bool:
        """
        Whether every required reviewer has commented.

        With no reviewers configured at all, any comment counts.
        """
        if not self.reviewers:
            return commit.has_comments
        commenters = self.commenters(commit)
        return all(r.username in commenters for r in self.required_reviewers(commit))
