"""
Cache orchestration between the durable SQLite store and the remote GitHub source.

Every read returns a Fetched(value, source) pair. Write-through to the store happens in
separate best-effort backfill steps: a failed write is logged and the already fetched value
is still returned, so the next run simply refetches.
"""

import logging
import sqlite3
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Callable, List, NamedTuple, Optional, Any, Dict

from ingest.errors import RemoteSourceError
from normalize.models import (
    PullRequest,
    Comment,
    CommentKind,
    Reaction,
    ReactionChannel,
    CheckState,
    ASPECT_FOR_KIND,
)

logger = logging.getLogger(__name__)

# cached comments (and the reaction sets hanging off them) are trusted for this long
CACHE_RETENTION = timedelta(days=7)

SOURCE_STORE = 'store'
SOURCE_REMOTE = 'remote'


class Fetched(NamedTuple):
    value: Any
    source: str

    @property
    def from_store(self) -> bool:
        return self.source == SOURCE_STORE


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CachedGitHub:
    """Serves PRs, comments and reactions from the store when fresh, from the remote otherwise.

    :param remote: object implementing the GitHubClient interface.
    :param store: SQLiteStore (or anything with the same methods).
    :param clock: returns the current aware datetime; injectable for tests.
    """

    def __init__(self, remote, store, clock: Callable[[], datetime] = _utcnow, retention: timedelta = CACHE_RETENTION):
        self.remote = remote
        self.store = store
        self.clock = clock
        self.retention = retention
        self.hits: Counter = Counter()
        self.misses: Counter = Counter()

    # --- staleness ---

    def is_stale(self, cached_at: Optional[datetime]) -> bool:
        if cached_at is None:
            return True
        return self.clock() - cached_at > self.retention

    def _any_stale(self, comments: List[Comment]) -> bool:
        return any(self.is_stale(c.cached_at) for c in comments)

    # --- best-effort store access ---

    def _read(self, what: str, fn, *args):
        """Run a store read; any store error means 'no usable cache'."""
        try:
            return fn(*args)
        except sqlite3.Error as ex:
            logger.warning("store read failed for %s, falling back to remote: %s", what, ex)
            return None

    def _backfill(self, what: str, fn, *args) -> bool:
        try:
            fn(*args)
            return True
        except sqlite3.Error as ex:
            logger.warning("failed to write %s to store: %s", what, ex)
            return False

    # --- pull requests ---

    def list_merged_prs(self, owner: str, repo: str, start: datetime, end: datetime) -> Fetched:
        """PR listings always come from the remote; listed PRs are recorded so later backfills hit."""
        prs = self.remote.list_merged_prs(owner, repo, start, end)
        self.misses['pr_list'] += 1
        for pr in prs:
            self._backfill(f"PR #{pr.number} in {owner}/{repo}", self.store.save_pr, pr)
        return Fetched(prs, SOURCE_REMOTE)

    def get_pr(self, owner: str, repo: str, number: int) -> Fetched:
        """Return the PR, treating a stored record with a non-empty title as complete."""
        stored = self._read(f"PR #{number}", self.store.get_pr, owner, repo, number)
        if stored is not None and stored.is_complete:
            self.hits['pr'] += 1
            return Fetched(stored, SOURCE_STORE)

        self.misses['pr'] += 1
        pr = self.remote.get_pr(owner, repo, number)
        pr.cached_at = self.clock()
        self._backfill(f"PR #{number} in {owner}/{repo}", self.store.save_pr, pr)
        if stored is not None:
            # keep what the cache already knows about this PR's aspects
            pr.checks = dict(stored.checks)
        return Fetched(pr, SOURCE_REMOTE)

    def _ensure_pr(self, owner: str, repo: str, number: int):
        try:
            self.get_pr(owner, repo, number)
        except RemoteSourceError as ex:
            # comments can still be fetched without a complete PR record
            logger.warning("could not backfill PR #%d in %s/%s: %s", number, owner, repo, ex)

    # --- comments ---

    def get_comments(self, owner: str, repo: str, number: int, kind: CommentKind) -> Fetched:
        kind = CommentKind(kind)
        aspect = ASPECT_FOR_KIND[kind]
        entity = f"{kind.value}_comments"

        pr = self._read(f"PR #{number}", self.store.get_pr, owner, repo, number)
        if pr is not None and pr.check_state(aspect) is CheckState.CONFIRMED_ABSENT:
            logger.debug("cache hit: PR #%d in %s/%s has no %s comments", number, owner, repo, kind.value)
            self.hits[entity] += 1
            return Fetched([], SOURCE_STORE)

        cached = self._read(f"{kind.value} comments of PR #{number}", self.store.list_comments, owner, repo, number, kind)
        if cached and not self._any_stale(cached):
            logger.debug("cache hit: %d %s comments of PR #%d in %s/%s", len(cached), kind.value, number, owner, repo)
            self.hits[entity] += 1
            return Fetched(cached, SOURCE_STORE)

        logger.info("cache miss: fetching %s comments of PR #%d in %s/%s", kind.value, number, owner, repo)
        self.misses[entity] += 1
        self._ensure_pr(owner, repo, number)

        comments = self.remote.list_comments(owner, repo, number, kind)
        now = self.clock()
        for comment in comments:
            comment.cached_at = now
        self._backfill(f"{kind.value} comments of PR #{number}", self.store.replace_comments, owner, repo, number, kind, comments)
        self._backfill(
            f"{aspect} check of PR #{number}",
            self.store.mark_pr_checked, owner, repo, number, aspect, CheckState.from_result(bool(comments)),
        )
        return Fetched(comments, SOURCE_REMOTE)

    def get_issue_comments(self, owner: str, repo: str, number: int) -> Fetched:
        return self.get_comments(owner, repo, number, CommentKind.ISSUE)

    def get_review_comments(self, owner: str, repo: str, number: int) -> Fetched:
        return self.get_comments(owner, repo, number, CommentKind.REVIEW)

    # --- reactions ---

    def get_reactions(self, owner: str, repo: str, comment_id: int, channel: ReactionChannel) -> Fetched:
        channel = ReactionChannel(channel)
        entity = f"{channel.value}_reactions"

        comment = self._read(f"comment {comment_id}", self.store.get_comment, comment_id)
        if comment is not None and comment.reactions_checked and not self.is_stale(comment.reactions_cached_at):
            reactions = self._read(f"reactions of comment {comment_id}", self.store.get_reactions, comment_id, channel)
            if reactions is not None:
                logger.debug("cache hit: %d reactions of comment %d", len(reactions), comment_id)
                self.hits[entity] += 1
                return Fetched(reactions, SOURCE_STORE)

        logger.info("cache miss: fetching reactions of comment %d", comment_id)
        self.misses[entity] += 1
        reactions = self.remote.list_reactions(owner, repo, comment_id, channel)
        now = self.clock()
        for reaction in reactions:
            reaction.cached_at = now
        # an empty list is a valid, cacheable answer
        if self._backfill(f"reactions of comment {comment_id}", self.store.save_reactions, comment_id, channel, reactions):
            self._backfill(f"reactions check of comment {comment_id}", self.store.mark_reactions_checked, comment_id, now)
        return Fetched(reactions, SOURCE_REMOTE)

    # --- maintenance ---

    def clear_cache(self):
        logger.info("clearing store at %s", getattr(self.store, 'path', '?'))
        self.store.clear()

    def stats(self) -> Dict[str, Dict[str, int]]:
        """Hit/miss counters per entity class for this run."""
        return {'hits': dict(self.hits), 'misses': dict(self.misses)}

    def close(self):
        self.store.close()


__all__ = ["CachedGitHub", "Fetched", "CACHE_RETENTION", "SOURCE_STORE", "SOURCE_REMOTE"]
