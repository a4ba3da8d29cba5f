"""
Derived aggregation records: weekly buckets and cumulative per-user statistics.
"""
from datetime import datetime, timedelta
from typing import Dict, Optional


class WeekBucket:
    """
    One Monday-anchored calendar week of activity.
    Winners are None when the week has no qualifying entries for that metric.
    """
    def __init__(self, start: datetime):
        self.start = start
        self.end = start + timedelta(days=6)
        self.user_prs: Dict[str, int] = {}
        self.user_comments: Dict[str, int] = {}
        self.user_weighted_comments: Dict[str, float] = {}
        self.pr_winner: Optional[str] = None
        self.comment_winner: Optional[str] = None
        self.weighted_comment_winner: Optional[str] = None

    @property
    def key(self) -> str:
        return self.start.strftime('%Y-%m-%d')

    def __repr__(self):
        return f"WeekBucket({self.key}, prs={self.user_prs}, winner={self.pr_winner!r})"


class UserStat:
    """
    Cumulative statistics for one username across all folded weeks.
    """
    def __init__(self, username: str):
        self.username = username
        self.prs_count = 0
        self.weekly_wins = 0
        self.total_score = 0
        self.comments_count = 0
        self.comment_weekly_wins = 0
        self.comment_score = 0
        self.weighted_comment_score = 0.0
        self.weighted_comment_weekly_wins = 0
        self.weighted_comment_weekly_score = 0

    def to_dict(self) -> Dict[str, object]:
        return dict(vars(self))

    def __repr__(self):
        return f"UserStat({self.username!r}, prs={self.prs_count}, wins={self.weekly_wins})"
