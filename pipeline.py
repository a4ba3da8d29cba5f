"""
PR champion pipeline: merged PRs -> comments -> reactions -> weekly aggregation.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from ingest.errors import RemoteSourceError
from ingest.github import GitHubClient
from normalize.models import PullRequest, CommentKind, Repository
from scoring.models import WeekBucket, UserStat
from scoring.weekly import WeeklyAggregator, TieBreak
from storage.cache import CachedGitHub, CACHE_RETENTION
from storage.store import SQLiteStore

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = './data/comments.db'


class RunResult:
    """
    Everything the report needs; the renderer never talks to the source or the store.
    """
    def __init__(
        self,
        repositories: List[Repository],
        start: datetime,
        end: datetime,
        weeks: List[WeekBucket],
        user_stats: Dict[str, UserStat],
        pr_count: int = 0,
        comment_count: int = 0,
        failures: Optional[List[str]] = None,
        cache_stats: Optional[dict] = None,
        store_path: Optional[str] = None,
    ):
        self.repositories = repositories
        self.start = start
        self.end = end
        self.weeks = weeks
        self.user_stats = user_stats
        self.pr_count = pr_count
        self.comment_count = comment_count
        self.failures = failures or []
        self.cache_stats = cache_stats or {}
        self.store_path = store_path
        self.retention_days = CACHE_RETENTION.days


def build_source(token: Optional[str], db_path: Optional[str] = None, base_url: Optional[str] = None) -> CachedGitHub:
    """Create the cached GitHub source backed by a SQLite file."""
    store = SQLiteStore(db_path or DEFAULT_DB_PATH)
    return CachedGitHub(GitHubClient(token, base_url=base_url), store)


class PRChampion:
    """Runs one analysis over a set of repositories and a date window.

    PRs are processed one at a time; each PR's comments and then their reactions are fetched
    before moving on. A failure on one entity is logged and recorded, never fatal.
    """

    def __init__(self, source: CachedGitHub, repositories: List[Repository], start: datetime, end: datetime,
                 tie_break: TieBreak = TieBreak.FIRST_SEEN, weights: Optional[Dict[str, float]] = None):
        self.source = source
        self.repositories = repositories
        self.start = start
        self.end = end
        self.aggregator = WeeklyAggregator(tie_break=tie_break, weights=weights)
        self.failures: List[str] = []
        self.comment_count = 0

    def fetch_merged_prs(self) -> List[PullRequest]:
        prs: List[PullRequest] = []
        for repo in self.repositories:
            logger.info("analysing %s", repo.full_name)
            try:
                prs.extend(self.source.list_merged_prs(repo.owner, repo.name, self.start, self.end).value)
            except RemoteSourceError as ex:
                logger.warning("failed to list PRs of %s: %s", repo.full_name, ex)
                self.failures.append(f"{repo.full_name}: PR listing failed ({ex})")
        logger.info("%d merged PRs in the period", len(prs))
        return prs

    def _reactions_for(self, pr: PullRequest, comment):
        try:
            return self.source.get_reactions(pr.owner, pr.repo, comment.comment_id, comment.channel).value
        except RemoteSourceError as ex:
            logger.warning("failed to fetch reactions of comment %s: %s", comment.comment_id, ex)
            self.failures.append(f"{pr.owner}/{pr.repo}#{pr.number}: reactions of comment {comment.comment_id} ({ex})")
            return None

    def collect_comments(self, pr: PullRequest):
        for kind in (CommentKind.ISSUE, CommentKind.REVIEW):
            try:
                comments = self.source.get_comments(pr.owner, pr.repo, pr.number, kind).value
            except RemoteSourceError as ex:
                logger.warning("failed to fetch %s comments of PR #%d in %s/%s: %s", kind.value, pr.number, pr.owner, pr.repo, ex)
                self.failures.append(f"{pr.owner}/{pr.repo}#{pr.number}: {kind.value} comments ({ex})")
                continue
            for comment in comments:
                if not self.aggregator.counts(pr, comment):
                    continue
                reactions = self._reactions_for(pr, comment)
                self.aggregator.add_comment(pr, comment, reactions)
                self.comment_count += 1

    def run(self) -> RunResult:
        prs = self.fetch_merged_prs()
        self.aggregator.add_pull_requests(prs)
        for pr in prs:
            self.collect_comments(pr)
        user_stats = self.aggregator.fold()
        logger.info("%d comments counted in the period", self.comment_count)
        return RunResult(
            repositories=self.repositories,
            start=self.start,
            end=self.end,
            weeks=self.aggregator.weeks(),
            user_stats=user_stats,
            pr_count=len(prs),
            comment_count=self.comment_count,
            failures=self.failures,
            cache_stats=self.source.stats(),
            store_path=getattr(self.source.store, 'path', None),
        )
