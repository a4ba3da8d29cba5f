"""
Normalization utility helpers.
Turn raw GitHub REST payloads and user input into normalize.models entities.
"""
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

from normalize.models import PullRequest, Comment, CommentKind, Reaction, ReactionChannel, Repository

DATE_FORMATS = ('%d/%m/%Y', '%Y-%m-%d', '%d-%m-%Y')


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a GitHub ISO-8601 timestamp (e.g. 2024-10-04T12:00:00Z) into an aware UTC datetime.

    Returns None for empty values. Naive datetimes are assumed to be UTC.
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Inverse of parse_timestamp for storage; None stays None."""
    if value is None:
        return None
    return parse_timestamp(value).isoformat()


def _login(raw: Dict[str, Any]) -> str:
    return ((raw or {}).get('user') or {}).get('login') or ''


def normalize_pull_request(raw: Dict[str, Any], owner: str, repo: str) -> PullRequest:
    """Create a PullRequest from a /pulls payload. Size metrics are only present on single-PR responses."""
    return PullRequest(
        owner=owner,
        repo=repo,
        number=int(raw.get('number')),
        title=raw.get('title') or '',
        author=_login(raw),
        merged_at=parse_timestamp(raw.get('merged_at')),
        additions=raw.get('additions'),
        deletions=raw.get('deletions'),
        changed_files=raw.get('changed_files'),
    )


def normalize_comment(raw: Dict[str, Any], owner: str, repo: str, pr_number: int, kind: CommentKind, cached_at: Optional[datetime] = None) -> Comment:
    """Create a Comment from an issue-comment or review-comment payload."""
    return Comment(
        comment_id=int(raw.get('id')),
        owner=owner,
        repo=repo,
        pr_number=pr_number,
        kind=kind,
        author=_login(raw),
        body=raw.get('body') or '',
        created_at=parse_timestamp(raw.get('created_at')),
        updated_at=parse_timestamp(raw.get('updated_at')),
        cached_at=cached_at,
    )


def normalize_reaction(raw: Dict[str, Any], comment_id: int, channel: ReactionChannel, cached_at: Optional[datetime] = None) -> Reaction:
    """Create a Reaction from a reactions payload. created_at may be missing on older responses."""
    return Reaction(
        comment_id=comment_id,
        channel=channel,
        content=raw.get('content') or '',
        author=_login(raw),
        created_at=parse_timestamp(raw.get('created_at')),
        cached_at=cached_at,
    )


def parse_date(text: str) -> datetime:
    """Parse a CLI date in DD/MM/YYYY, YYYY-MM-DD or DD-MM-YYYY form into midnight UTC."""
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text.strip(), fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    raise ValueError(f"invalid date format: {text} (use DD/MM/YYYY or YYYY-MM-DD)")


def parse_repositories(entries: List[str]) -> List[Repository]:
    """Parse owner/repo strings, ignoring blanks. Raises ValueError on a malformed entry."""
    repositories: List[Repository] = []
    for entry in entries:
        entry = (entry or '').strip()
        if not entry:
            continue
        parts = entry.split('/')
        if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
            raise ValueError(f"invalid repository: {entry} (use owner/repo)")
        repositories.append(Repository(parts[0].strip(), parts[1].strip()))
    return repositories
