"""
SQLite-backed durable store for pull requests, comments and reactions.
Records are keyed by their natural GitHub identifiers and carry a cached_at timestamp.
"""

import os
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Optional, Any, Dict, List, Iterable

from normalize.models import (
    PullRequest,
    Comment,
    CommentKind,
    Reaction,
    ReactionChannel,
    CheckState,
    PR_ASPECTS,
)
from normalize.util import parse_timestamp, format_timestamp

DB_PATH = os.getenv("PRCHAMP_DB_PATH") or None  # can be overridden by caller

# noinspection SqlResolve
SQL_CREATE = """
CREATE TABLE IF NOT EXISTS prs (
    repo_owner TEXT NOT NULL,
    repo_name TEXT NOT NULL,
    pr_number INTEGER NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    username TEXT NOT NULL DEFAULT '',
    merged_at TEXT,
    additions INTEGER,
    deletions INTEGER,
    changed_files INTEGER,
    issue_comments_checked INTEGER NOT NULL DEFAULT 0,
    has_issue_comments INTEGER NOT NULL DEFAULT 0,
    review_comments_checked INTEGER NOT NULL DEFAULT 0,
    has_review_comments INTEGER NOT NULL DEFAULT 0,
    reviews_checked INTEGER NOT NULL DEFAULT 0,
    has_reviews INTEGER NOT NULL DEFAULT 0,
    cached_at TEXT NOT NULL,
    PRIMARY KEY (repo_owner, repo_name, pr_number)
);
CREATE TABLE IF NOT EXISTS comments (
    comment_id INTEGER PRIMARY KEY,
    repo_owner TEXT NOT NULL,
    repo_name TEXT NOT NULL,
    pr_number INTEGER NOT NULL,
    comment_type TEXT NOT NULL CHECK (comment_type IN ('issue', 'review')),
    username TEXT NOT NULL DEFAULT '',
    body TEXT,
    created_at TEXT,
    updated_at TEXT,
    cached_at TEXT NOT NULL,
    reactions_checked INTEGER NOT NULL DEFAULT 0,
    reactions_cached_at TEXT
);
CREATE TABLE IF NOT EXISTS reactions (
    comment_id INTEGER NOT NULL,
    reaction_type TEXT NOT NULL,
    content TEXT NOT NULL,
    username TEXT NOT NULL DEFAULT '',
    created_at TEXT,
    cached_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_comments_repo_pr ON comments(repo_owner, repo_name, pr_number, comment_type);
CREATE INDEX IF NOT EXISTS idx_reactions_comment ON reactions(comment_id, reaction_type);
"""

_ASPECT_COLUMNS = {
    'issue_comments': ('issue_comments_checked', 'has_issue_comments'),
    'review_comments': ('review_comments_checked', 'has_review_comments'),
    'reviews': ('reviews_checked', 'has_reviews'),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SQLiteStore:
    def __init__(self, path: Optional[str] = None):
        """Open (and create if needed) the store.

        :param path: SQLite file path or None for in-memory. Parent directories are created.
        """
        self.path = path or DB_PATH or ':memory:'
        if self.path != ':memory:':
            parent = os.path.dirname(os.path.abspath(self.path))
            os.makedirs(parent, exist_ok=True)
        self.conn = sqlite3.connect(self.path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._init_db()

    def _init_db(self):
        with self._lock:
            self.conn.executescript(SQL_CREATE)
            self.conn.commit()

    def close(self):
        with self._lock:
            if self.conn is not None:
                try:
                    self.conn.close()
                finally:
                    self.conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # --- pull requests ---

    @staticmethod
    def _pr_from_row(row) -> PullRequest:
        checks = {}
        for aspect in PR_ASPECTS:
            checked_col, has_col = _ASPECT_COLUMNS[aspect]
            checks[aspect] = CheckState.from_flags(bool(row[checked_col]), bool(row[has_col]))
        return PullRequest(
            owner=row['repo_owner'],
            repo=row['repo_name'],
            number=row['pr_number'],
            title=row['title'],
            author=row['username'],
            merged_at=parse_timestamp(row['merged_at']),
            additions=row['additions'],
            deletions=row['deletions'],
            changed_files=row['changed_files'],
            checks=checks,
            cached_at=parse_timestamp(row['cached_at']),
        )

    # noinspection SqlResolve
    def get_pr(self, owner: str, repo: str, number: int) -> Optional[PullRequest]:
        with self._lock:
            cur = self.conn.execute(
                'SELECT * FROM prs WHERE repo_owner = ? AND repo_name = ? AND pr_number = ?',
                (owner, repo, number),
            )
            row = cur.fetchone()
        return self._pr_from_row(row) if row else None

    # noinspection SqlResolve
    def save_pr(self, pr: PullRequest):
        """Upsert descriptive PR fields.

        Check states are only written for a brand-new row; an existing row keeps its checks so a
        backfill never reverts a checked aspect. Empty titles and missing metrics do not overwrite
        known values.
        """
        flags = []
        for aspect in PR_ASPECTS:
            flags.extend(int(f) for f in pr.check_state(aspect).to_flags())
        cached_at = format_timestamp(pr.cached_at or _utcnow())
        with self._lock, self.conn:
            self.conn.execute(
                """
                INSERT INTO prs (repo_owner, repo_name, pr_number, title, username, merged_at,
                                 additions, deletions, changed_files,
                                 issue_comments_checked, has_issue_comments,
                                 review_comments_checked, has_review_comments,
                                 reviews_checked, has_reviews, cached_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (repo_owner, repo_name, pr_number) DO UPDATE SET
                    title = CASE WHEN excluded.title != '' THEN excluded.title ELSE prs.title END,
                    username = CASE WHEN excluded.username != '' THEN excluded.username ELSE prs.username END,
                    merged_at = COALESCE(excluded.merged_at, prs.merged_at),
                    additions = COALESCE(excluded.additions, prs.additions),
                    deletions = COALESCE(excluded.deletions, prs.deletions),
                    changed_files = COALESCE(excluded.changed_files, prs.changed_files),
                    cached_at = excluded.cached_at
                """,
                (
                    pr.owner, pr.repo, pr.number, pr.title or '', pr.author or '', format_timestamp(pr.merged_at),
                    pr.additions, pr.deletions, pr.changed_files, *flags, cached_at,
                ),
            )

    # noinspection SqlResolve
    def mark_pr_checked(self, owner: str, repo: str, number: int, aspect: str, state: CheckState):
        """Atomically set an aspect's checked flag together with its result.

        A placeholder PR row (empty title) is created when the PR is not stored yet.
        """
        state = CheckState(state)
        if state is CheckState.UNKNOWN:
            raise ValueError("cannot mark an aspect as checked with UNKNOWN state")
        if aspect not in _ASPECT_COLUMNS:
            raise ValueError(f"unknown PR aspect: {aspect}")
        checked_col, has_col = _ASPECT_COLUMNS[aspect]
        _, has = state.to_flags()
        with self._lock, self.conn:
            self.conn.execute(
                'INSERT OR IGNORE INTO prs (repo_owner, repo_name, pr_number, cached_at) VALUES (?, ?, ?, ?)',
                (owner, repo, number, format_timestamp(_utcnow())),
            )
            self.conn.execute(
                f'UPDATE prs SET {checked_col} = 1, {has_col} = ? '
                'WHERE repo_owner = ? AND repo_name = ? AND pr_number = ?',
                (int(has), owner, repo, number),
            )

    # --- comments ---

    @staticmethod
    def _comment_from_row(row) -> Comment:
        return Comment(
            comment_id=row['comment_id'],
            owner=row['repo_owner'],
            repo=row['repo_name'],
            pr_number=row['pr_number'],
            kind=CommentKind(row['comment_type']),
            author=row['username'],
            body=row['body'] or '',
            created_at=parse_timestamp(row['created_at']),
            updated_at=parse_timestamp(row['updated_at']),
            cached_at=parse_timestamp(row['cached_at']),
            reactions_checked=bool(row['reactions_checked']),
            reactions_cached_at=parse_timestamp(row['reactions_cached_at']),
        )

    # noinspection SqlResolve
    def get_comment(self, comment_id: int) -> Optional[Comment]:
        with self._lock:
            row = self.conn.execute('SELECT * FROM comments WHERE comment_id = ?', (comment_id,)).fetchone()
        return self._comment_from_row(row) if row else None

    # noinspection SqlResolve
    def _upsert_comment(self, comment: Comment):
        self.conn.execute(
            """
            INSERT INTO comments (comment_id, repo_owner, repo_name, pr_number, comment_type, username,
                                  body, created_at, updated_at, cached_at, reactions_checked)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (comment_id) DO UPDATE SET
                repo_owner = excluded.repo_owner,
                repo_name = excluded.repo_name,
                pr_number = excluded.pr_number,
                comment_type = excluded.comment_type,
                username = excluded.username,
                body = excluded.body,
                created_at = excluded.created_at,
                updated_at = excluded.updated_at,
                cached_at = excluded.cached_at,
                reactions_checked = MAX(comments.reactions_checked, excluded.reactions_checked)
            """,
            (
                comment.comment_id, comment.owner, comment.repo, comment.pr_number, comment.kind.value,
                comment.author or '', comment.body, format_timestamp(comment.created_at),
                format_timestamp(comment.updated_at), format_timestamp(comment.cached_at or _utcnow()),
                int(bool(comment.reactions_checked)),
            ),
        )

    def save_comment(self, comment: Comment):
        """Upsert one comment; reactions_checked never goes back to false."""
        with self._lock, self.conn:
            self._upsert_comment(comment)

    # noinspection SqlResolve
    def replace_comments(self, owner: str, repo: str, number: int, kind: CommentKind, comments: Iterable[Comment]):
        """Make the stored comments of one PR and kind exactly `comments`, in a single transaction.

        Comments no longer returned by the remote are dropped along with their reactions.
        """
        kind = CommentKind(kind)
        comments = list(comments)
        keep = {c.comment_id for c in comments}
        with self._lock, self.conn:
            rows = self.conn.execute(
                'SELECT comment_id FROM comments WHERE repo_owner = ? AND repo_name = ? AND pr_number = ? AND comment_type = ?',
                (owner, repo, number, kind.value),
            ).fetchall()
            gone = [(r['comment_id'],) for r in rows if r['comment_id'] not in keep]
            if gone:
                self.conn.executemany('DELETE FROM reactions WHERE comment_id = ?', gone)
                self.conn.executemany('DELETE FROM comments WHERE comment_id = ?', gone)
            for comment in comments:
                self._upsert_comment(comment)

    # noinspection SqlResolve
    def list_comments(self, owner: str, repo: str, number: int, kind: CommentKind) -> List[Comment]:
        """Comments of one PR and kind, oldest first."""
        with self._lock:
            rows = self.conn.execute(
                'SELECT * FROM comments WHERE repo_owner = ? AND repo_name = ? AND pr_number = ? AND comment_type = ? '
                'ORDER BY created_at, comment_id',
                (owner, repo, number, CommentKind(kind).value),
            ).fetchall()
        return [self._comment_from_row(r) for r in rows]

    # noinspection SqlResolve
    def mark_reactions_checked(self, comment_id: int, checked_at: Optional[datetime] = None) -> int:
        """Flag a comment's reactions as fetched at `checked_at` (now by default).

        reactions_cached_at is the freshness stamp for the reaction set; a comment refetch leaves it alone.
        Returns the number of comment rows updated.
        """
        with self._lock, self.conn:
            cur = self.conn.execute(
                'UPDATE comments SET reactions_checked = 1, reactions_cached_at = ? WHERE comment_id = ?',
                (format_timestamp(checked_at or _utcnow()), comment_id),
            )
            return cur.rowcount

    # --- reactions ---

    # noinspection SqlResolve
    def get_reactions(self, comment_id: int, channel: ReactionChannel) -> List[Reaction]:
        with self._lock:
            rows = self.conn.execute(
                'SELECT * FROM reactions WHERE comment_id = ? AND reaction_type = ? ORDER BY rowid',
                (comment_id, ReactionChannel(channel).value),
            ).fetchall()
        return [
            Reaction(
                comment_id=r['comment_id'],
                channel=ReactionChannel(r['reaction_type']),
                content=r['content'],
                author=r['username'],
                created_at=parse_timestamp(r['created_at']),
                cached_at=parse_timestamp(r['cached_at']),
            )
            for r in rows
        ]

    # noinspection SqlResolve
    def save_reactions(self, comment_id: int, channel: ReactionChannel, reactions: Iterable[Reaction]):
        """Replace the stored reaction set of (comment_id, channel). All rows commit or none do."""
        channel = ReactionChannel(channel)
        now = format_timestamp(_utcnow())
        rows = [
            (comment_id, channel.value, r.content, r.author or '', format_timestamp(r.created_at), format_timestamp(r.cached_at) or now)
            for r in reactions
        ]
        with self._lock, self.conn:
            self.conn.execute('DELETE FROM reactions WHERE comment_id = ? AND reaction_type = ?', (comment_id, channel.value))
            self.conn.executemany(
                'INSERT INTO reactions (comment_id, reaction_type, content, username, created_at, cached_at) '
                'VALUES (?, ?, ?, ?, ?, ?)',
                rows,
            )

    # --- maintenance ---

    # noinspection SqlWithoutWhere
    def clear(self):
        """Delete every stored record."""
        with self._lock, self.conn:
            self.conn.execute('DELETE FROM reactions')
            self.conn.execute('DELETE FROM comments')
            self.conn.execute('DELETE FROM prs')

    # noinspection SqlResolve
    def stats(self) -> Dict[str, Any]:
        """Return row counts per table and the oldest/newest comment cache timestamps."""
        with self._lock:
            counts = {}
            for table in ('prs', 'comments', 'reactions'):
                counts[table] = int(self.conn.execute(f'SELECT COUNT(1) FROM {table}').fetchone()[0] or 0)
            oldest, newest = self.conn.execute('SELECT MIN(cached_at), MAX(cached_at) FROM comments').fetchone()
        counts['oldest'] = oldest
        counts['newest'] = newest
        counts['path'] = self.path
        return counts


__all__ = ["SQLiteStore", "DB_PATH"]
