"""
GitHub REST client for merged pull requests, their comments and comment reactions.
Every method performs remote calls only; caching lives in storage.cache.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from normalize.models import PullRequest, Comment, CommentKind, Reaction, ReactionChannel
from normalize.util import normalize_pull_request, normalize_comment, normalize_reaction, parse_timestamp
from . import transport

logger = logging.getLogger(__name__)

PER_PAGE = 100

# merged PRs are accepted up to one day past the requested end date
END_GRACE = timedelta(days=1)

_REACTION_PATHS = {
    ReactionChannel.ISSUE_COMMENT: "issues/comments",
    ReactionChannel.REVIEW_COMMENT: "pulls/comments",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class GitHubClient:
    """Remote source for pull-request activity."""

    def __init__(self, token: Optional[str] = None, base_url: str = None):
        self.token = token
        self.base_url = (base_url or "https://api.github.com").rstrip('/')
        self.headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            self.headers["Authorization"] = f"Bearer {self.token}"

    def _repo_url(self, owner: str, repo: str, path: str) -> str:
        return f"{self.base_url}/repos/{owner}/{repo}/{path}"

    def list_merged_prs(self, owner: str, repo: str, start: datetime, end: datetime) -> List[PullRequest]:
        """Return PRs merged in [start, end + 1 day). Closed-but-unmerged PRs are skipped."""
        url = self._repo_url(owner, repo, "pulls")
        params = {"state": "closed", "sort": "created", "direction": "desc", "per_page": PER_PAGE}
        start_utc = parse_timestamp(start)
        end_limit = parse_timestamp(end) + END_GRACE
        prs: List[PullRequest] = []
        for raw in transport.get_paginated(url, headers=self.headers, params=params):
            merged_at = parse_timestamp(raw.get('merged_at'))
            if merged_at is None:
                continue
            if start_utc <= merged_at < end_limit:
                prs.append(normalize_pull_request(raw, owner, repo))
        logger.info("%d merged PRs found in %s/%s", len(prs), owner, repo)
        return prs

    def get_pr(self, owner: str, repo: str, number: int) -> PullRequest:
        raw = transport.get_json(self._repo_url(owner, repo, f"pulls/{number}"), headers=self.headers)
        return normalize_pull_request(raw, owner, repo)

    def _list_comments(self, owner: str, repo: str, number: int, kind: CommentKind, path: str) -> List[Comment]:
        url = self._repo_url(owner, repo, path)
        fetched_at = _now()
        raws = transport.get_paginated(url, headers=self.headers, params={"per_page": PER_PAGE})
        return [normalize_comment(raw, owner, repo, number, kind, cached_at=fetched_at) for raw in raws]

    def list_issue_comments(self, owner: str, repo: str, number: int) -> List[Comment]:
        return self._list_comments(owner, repo, number, CommentKind.ISSUE, f"issues/{number}/comments")

    def list_review_comments(self, owner: str, repo: str, number: int) -> List[Comment]:
        return self._list_comments(owner, repo, number, CommentKind.REVIEW, f"pulls/{number}/comments")

    def list_comments(self, owner: str, repo: str, number: int, kind: CommentKind) -> List[Comment]:
        if CommentKind(kind) is CommentKind.ISSUE:
            return self.list_issue_comments(owner, repo, number)
        return self.list_review_comments(owner, repo, number)

    def list_reactions(self, owner: str, repo: str, comment_id: int, channel: ReactionChannel) -> List[Reaction]:
        channel = ReactionChannel(channel)
        url = self._repo_url(owner, repo, f"{_REACTION_PATHS[channel]}/{comment_id}/reactions")
        fetched_at = _now()
        raws = transport.get_paginated(url, headers=self.headers, params={"per_page": PER_PAGE})
        return [normalize_reaction(raw, comment_id, channel, cached_at=fetched_at) for raw in raws]
