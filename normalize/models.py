"""
Normalized entities for pull-request activity: pull requests, comments and reactions.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional


class CommentKind(str, Enum):
    """Where a comment lives on the pull request."""
    ISSUE = 'issue'
    REVIEW = 'review'

    @property
    def channel(self) -> 'ReactionChannel':
        return ReactionChannel.ISSUE_COMMENT if self is CommentKind.ISSUE else ReactionChannel.REVIEW_COMMENT


class ReactionChannel(str, Enum):
    """Reaction endpoint a reaction came from; issue and review reactions are distinct sets."""
    ISSUE_COMMENT = 'issue_comment'
    REVIEW_COMMENT = 'review_comment'


class CheckState(str, Enum):
    """Cache knowledge about one aspect of a pull request."""
    UNKNOWN = 'unknown'
    CONFIRMED_ABSENT = 'absent'
    CONFIRMED_PRESENT = 'present'

    @classmethod
    def from_flags(cls, checked: bool, has: bool) -> 'CheckState':
        if not checked:
            return cls.UNKNOWN
        return cls.CONFIRMED_PRESENT if has else cls.CONFIRMED_ABSENT

    @classmethod
    def from_result(cls, found: bool) -> 'CheckState':
        return cls.CONFIRMED_PRESENT if found else cls.CONFIRMED_ABSENT

    def to_flags(self):
        """Return the (checked, has) pair persisted by the store."""
        return self is not CheckState.UNKNOWN, self is CheckState.CONFIRMED_PRESENT


# PR aspects tracked by the cache
ASPECT_ISSUE_COMMENTS = 'issue_comments'
ASPECT_REVIEW_COMMENTS = 'review_comments'
ASPECT_REVIEWS = 'reviews'
PR_ASPECTS = (ASPECT_ISSUE_COMMENTS, ASPECT_REVIEW_COMMENTS, ASPECT_REVIEWS)

ASPECT_FOR_KIND = {
    CommentKind.ISSUE: ASPECT_ISSUE_COMMENTS,
    CommentKind.REVIEW: ASPECT_REVIEW_COMMENTS,
}


class Repository:
    """An owner/name pair to analyse."""

    def __init__(self, owner: str, name: str):
        self.owner = owner
        self.name = name

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def __eq__(self, other):
        return isinstance(other, Repository) and (self.owner, self.name) == (other.owner, other.name)

    def __hash__(self):
        return hash((self.owner, self.name))

    def __repr__(self):
        return f"Repository({self.full_name!r})"


class PullRequest:
    """
    Merged pull request identified by (owner, repo, number).
    """
    def __init__(
        self,
        owner: str,
        repo: str,
        number: int,
        title: str = '',
        author: str = '',
        merged_at: Optional[datetime] = None,
        additions: Optional[int] = None,
        deletions: Optional[int] = None,
        changed_files: Optional[int] = None,
        checks: Optional[Dict[str, CheckState]] = None,
        cached_at: Optional[datetime] = None,
    ):
        self.owner = owner
        self.repo = repo
        self.number = number
        self.title = title
        self.author = author
        self.merged_at = merged_at
        self.additions = additions
        self.deletions = deletions
        self.changed_files = changed_files
        self.checks = {aspect: CheckState.UNKNOWN for aspect in PR_ASPECTS}
        if checks:
            self.checks.update(checks)
        self.cached_at = cached_at

    @property
    def key(self):
        return self.owner, self.repo, self.number

    @property
    def is_complete(self) -> bool:
        return bool(self.title)

    def check_state(self, aspect: str) -> CheckState:
        return self.checks.get(aspect, CheckState.UNKNOWN)

    def __repr__(self):
        return f"PullRequest({self.owner}/{self.repo}#{self.number}, author={self.author!r})"


class Comment:
    """
    Issue-level or review-level comment on a pull request.
    """
    def __init__(
        self,
        comment_id: int,
        owner: str,
        repo: str,
        pr_number: int,
        kind: CommentKind,
        author: str,
        body: str = '',
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
        cached_at: Optional[datetime] = None,
        reactions_checked: bool = False,
        reactions_cached_at: Optional[datetime] = None,
    ):
        self.comment_id = comment_id
        self.owner = owner
        self.repo = repo
        self.pr_number = pr_number
        self.kind = CommentKind(kind)
        self.author = author
        self.body = body
        self.created_at = created_at
        self.updated_at = updated_at
        self.cached_at = cached_at
        self.reactions_checked = reactions_checked
        self.reactions_cached_at = reactions_cached_at

    @property
    def pr_key(self):
        return self.owner, self.repo, self.pr_number

    @property
    def channel(self) -> ReactionChannel:
        return self.kind.channel

    def __repr__(self):
        return f"Comment({self.comment_id}, {self.kind.value}, author={self.author!r})"


class Reaction:
    """
    Single reaction on a comment.
    """
    def __init__(
        self,
        comment_id: int,
        channel: ReactionChannel,
        content: str,
        author: str = '',
        created_at: Optional[datetime] = None,
        cached_at: Optional[datetime] = None,
    ):
        self.comment_id = comment_id
        self.channel = ReactionChannel(channel)
        self.content = content
        self.author = author
        self.created_at = created_at
        self.cached_at = cached_at

    def __repr__(self):
        return f"Reaction({self.content!r} on {self.comment_id} by {self.author!r})"
