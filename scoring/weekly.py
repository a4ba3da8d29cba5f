"""
Weekly aggregation of merged PRs and review comments into per-week winners and user statistics.

Weeks start on Monday 00:00 UTC. Comments are credited to the week of their PR's merge, so a
review cycle and its merge land in the same bucket.
"""
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Optional

from normalize.models import PullRequest, Comment, Reaction
from normalize.util import parse_timestamp
from .models import WeekBucket, UserStat
from .reactions import score_comment

logger = logging.getLogger(__name__)

EXCLUDED_USERS = (
    'grupogcb',
    'sonarqubecloud',
    'copilot',
    'github-actions',
    'dependabot',
    'codecov',
    'sonarcloud',
    'renovate',
    'greenkeeper',
    'snyk-bot',
)
BOT_SUFFIX = '[bot]'


class AggregationError(Exception):
    """Raised when aggregator state would be double counted."""


class TieBreak(str, Enum):
    """How to choose between users tied for a weekly lead.

    FIRST_SEEN keeps whoever reached the top value first in input order.
    LEXICOGRAPHIC picks the alphabetically smallest username and ignores input order.
    """
    FIRST_SEEN = 'first-seen'
    LEXICOGRAPHIC = 'lexicographic'


def week_start(ts: datetime) -> datetime:
    """Monday 00:00 UTC of the week containing ts (Sunday belongs to the preceding Monday)."""
    ts = parse_timestamp(ts)
    day = ts.replace(hour=0, minute=0, second=0, microsecond=0)
    return day - timedelta(days=ts.isoweekday() - 1)


def week_end(ts: datetime) -> datetime:
    return week_start(ts) + timedelta(days=6)


def is_excluded_user(username: str, excluded: Iterable[str] = EXCLUDED_USERS) -> bool:
    """True for bots and service accounts: exact or substring match (case-insensitive), or a [bot] suffix."""
    name = (username or '').lower()
    for entry in excluded:
        if name == entry or entry in name:
            return True
    return name.endswith(BOT_SUFFIX)


def pick_winner(tally: Dict[str, float], tie_break: TieBreak = TieBreak.FIRST_SEEN, require_positive: bool = False) -> Optional[str]:
    """
    Return the user with the strictly greatest value, or None for an empty tally.
    With require_positive the winning value must be > 0 (raw counts are always positive anyway).
    """
    winner = None
    best = 0.0 if require_positive else None
    for user, value in tally.items():
        if best is None or value > best:
            winner, best = user, value
        elif value == best and winner is not None and TieBreak(tie_break) is TieBreak.LEXICOGRAPHIC and user < winner:
            winner = user
    return winner


class WeeklyAggregator:
    """
    Owns week buckets and user statistics for one run.

    Feed merged PRs with add_pull_requests() and their comments with add_comment(), then call
    fold() exactly once to get the per-user statistics.
    """

    def __init__(self, tie_break: TieBreak = TieBreak.FIRST_SEEN, weights: Optional[Dict[str, float]] = None,
                 excluded_users: Iterable[str] = EXCLUDED_USERS):
        self.tie_break = TieBreak(tie_break)
        self.weights = weights
        self.excluded_users = tuple(u.lower() for u in excluded_users)
        self._weeks: Dict[datetime, WeekBucket] = {}
        self.user_stats: Dict[str, UserStat] = {}
        self._folded = False

    def _bucket(self, ts: datetime) -> WeekBucket:
        start = week_start(ts)
        bucket = self._weeks.get(start)
        if bucket is None:
            bucket = self._weeks[start] = WeekBucket(start)
        return bucket

    def _check_open(self):
        if self._folded:
            raise AggregationError("aggregator already folded; start a new one for another run")

    def add_pull_requests(self, prs: Iterable[PullRequest]) -> int:
        """Tally merged PRs by author into their merge week. Returns the number counted."""
        self._check_open()
        counted = 0
        for pr in prs:
            if pr.merged_at is None:
                logger.warning("skipping PR #%s in %s/%s without merge time", pr.number, pr.owner, pr.repo)
                continue
            bucket = self._bucket(pr.merged_at)
            bucket.user_prs[pr.author] = bucket.user_prs.get(pr.author, 0) + 1
            counted += 1
        return counted

    def exclusion_reason(self, pr: PullRequest, comment: Comment) -> Optional[str]:
        """Why a comment does not count for credit, or None when it counts."""
        if pr.merged_at is None:
            return 'pr not merged'
        if is_excluded_user(comment.author, self.excluded_users):
            return 'excluded user'
        if pr.author and comment.author == pr.author:
            return 'pr author'
        created = parse_timestamp(comment.created_at)
        if created is not None and created > parse_timestamp(pr.merged_at):
            return 'after merge'
        return None

    def counts(self, pr: PullRequest, comment: Comment) -> bool:
        return self.exclusion_reason(pr, comment) is None

    def add_comment(self, pr: PullRequest, comment: Comment, reactions: Optional[List[Reaction]]) -> Optional[float]:
        """
        Credit a comment to its author in the PR's merge week.

        `reactions` is None when they could not be fetched; the comment then gets the fallback score.
        Returns the weighted score added, or None if the comment was excluded.
        """
        self._check_open()
        reason = self.exclusion_reason(pr, comment)
        if reason is not None:
            logger.debug("ignoring comment %s by %s on PR #%s: %s", comment.comment_id, comment.author, pr.number, reason)
            return None
        score = score_comment(reactions, pr.merged_at, self.weights)
        bucket = self._bucket(pr.merged_at)
        user = comment.author
        bucket.user_comments[user] = bucket.user_comments.get(user, 0) + 1
        bucket.user_weighted_comments[user] = bucket.user_weighted_comments.get(user, 0.0) + score
        return score

    def weeks(self) -> List[WeekBucket]:
        """Buckets ascending by week start, with winners resolved."""
        ordered = [self._weeks[k] for k in sorted(self._weeks)]
        for bucket in ordered:
            bucket.pr_winner = pick_winner(bucket.user_prs, self.tie_break)
            bucket.comment_winner = pick_winner(bucket.user_comments, self.tie_break)
            bucket.weighted_comment_winner = pick_winner(bucket.user_weighted_comments, self.tie_break, require_positive=True)
        return ordered

    def _stat(self, username: str) -> UserStat:
        stat = self.user_stats.get(username)
        if stat is None:
            stat = self.user_stats[username] = UserStat(username)
        return stat

    def fold(self) -> Dict[str, UserStat]:
        """Accumulate every week into user statistics. May only be called once."""
        self._check_open()
        for week in self.weeks():
            for user, count in week.user_prs.items():
                stat = self._stat(user)
                stat.prs_count += count
                if user == week.pr_winner:
                    stat.weekly_wins += 1
                    stat.total_score += 1
            for user, count in week.user_comments.items():
                stat = self._stat(user)
                stat.comments_count += count
                if user == week.comment_winner:
                    stat.comment_weekly_wins += 1
                    stat.comment_score += 1
            for user, score in week.user_weighted_comments.items():
                stat = self._stat(user)
                stat.weighted_comment_score += score
                if user == week.weighted_comment_winner:
                    stat.weighted_comment_weekly_wins += 1
                    stat.weighted_comment_weekly_score += 1
        self._folded = True
        return self.user_stats
