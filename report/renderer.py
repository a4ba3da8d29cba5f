"""
Report renderer: plain text, Markdown, CSV and JSON views of a pipeline RunResult.
Rankings are computed here from the folded user statistics; nothing is fetched.
"""

from typing import Dict, List, Tuple
import csv
import io
import json

TOP_N = 3
MEDALS = ('1.', '2.', '3.')
RULE = '=' * 60


def top_entries(tally: Dict[str, float], limit: int = TOP_N) -> List[Tuple[str, float]]:
    """Highest values first; equal values ordered by username."""
    return sorted(tally.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]


def top_users_by_score(user_stats, limit: int = TOP_N):
    users = sorted(user_stats.values(), key=lambda s: (-s.total_score, -s.prs_count, s.username))
    return users[:limit]


def top_users_by_prs(user_stats, limit: int = TOP_N):
    users = [s for s in user_stats.values() if s.prs_count > 0]
    return sorted(users, key=lambda s: (-s.prs_count, s.username))[:limit]


def top_users_by_comments(user_stats, limit: int = TOP_N):
    users = [s for s in user_stats.values() if s.comments_count > 0]
    return sorted(users, key=lambda s: (-s.comments_count, s.username))[:limit]


def top_users_by_weighted_weekly_score(user_stats, limit: int = TOP_N):
    users = [s for s in user_stats.values() if s.weighted_comment_weekly_score > 0]
    users.sort(key=lambda s: (-s.weighted_comment_weekly_score, -s.weighted_comment_weekly_wins, s.username))
    return users[:limit]


def _fmt_day(dt) -> str:
    return dt.strftime('%Y-%m-%d') if dt else ''


def _cache_lines(result) -> List[str]:
    stats = result.cache_stats or {}
    hits = sum((stats.get('hits') or {}).values())
    misses = sum((stats.get('misses') or {}).values())
    lines = [
        f"Store: {result.store_path or 'n/a'}",
        f"Comment and reaction retention: {result.retention_days} days",
        f"Cache hits: {hits}, misses: {misses}",
    ]
    return lines


def _week_text(week) -> List[str]:
    lines = [f"Week: {_fmt_day(week.start)} - {_fmt_day(week.end)}"]
    if week.pr_winner:
        lines.append(f"  PR champion: {week.pr_winner}")
        for medal, (user, count) in zip(MEDALS, top_entries(week.user_prs)):
            lines.append(f"    {medal} {user}: {count} PRs")
    if week.comment_winner:
        lines.append(f"  Comment champion: {week.comment_winner}")
        for medal, (user, count) in zip(MEDALS, top_entries(week.user_comments)):
            lines.append(f"    {medal} {user}: {count} comments")
    if week.weighted_comment_winner:
        lines.append(f"  Quality champion: {week.weighted_comment_winner}")
        for medal, (user, score) in zip(MEDALS, top_entries(week.user_weighted_comments)):
            lines.append(f"    {medal} {user}: {score:.1f} points")
    return lines


def render_text(result) -> str:
    """Render the full plain-text report."""
    out = [f"PR CHAMPION REPORT - {_fmt_day(result.start)} to {_fmt_day(result.end)}", '']
    out.append(f"Repositories analysed ({len(result.repositories)}):")
    out.extend(f"  - {r.full_name}" for r in result.repositories)
    out.append('')

    out.extend(["WEEKLY SUMMARY", RULE])
    for week in result.weeks:
        out.extend(_week_text(week))
        out.append('')

    out.extend(["OVERALL RANKING BY SCORE", RULE])
    for pos, user in enumerate(top_users_by_score(result.user_stats), start=1):
        out.append(f"{pos}. {user.username}")
        out.append(f"   Score: {user.total_score} points")
        out.append(f"   Weekly wins: {user.weekly_wins}")
        out.append(f"   Total PRs: {user.prs_count}")
    out.append('')

    out.extend(["WEEKLY RANKING BY COMMENT QUALITY", RULE])
    quality = top_users_by_weighted_weekly_score(result.user_stats)
    if not quality:
        out.append("  No weekly comment-quality wins in the period.")
    for pos, user in enumerate(quality, start=1):
        out.append(f"{pos}. {user.username}")
        out.append(f"   Weekly score: {user.weighted_comment_weekly_score} points")
        out.append(f"   Weekly wins (quality): {user.weighted_comment_weekly_wins}")
        out.append(f"   Total reaction-weighted score: {user.weighted_comment_score:.1f} points")
    out.append('')

    out.extend([f"TOP {TOP_N} BY TOTAL PRS", RULE])
    for pos, user in enumerate(top_users_by_prs(result.user_stats), start=1):
        out.append(f"{pos}. {user.username} - {user.prs_count} PRs")
    out.append('')

    out.extend([f"TOP {TOP_N} BY TOTAL COMMENTS", RULE])
    commenters = top_users_by_comments(result.user_stats)
    if not commenters:
        out.append("  No comments found in the period.")
    for pos, user in enumerate(commenters, start=1):
        out.append(f"{pos}. {user.username} - {user.comments_count} comments")
    out.append('')

    if result.failures:
        out.extend([f"INCOMPLETE DATA ({len(result.failures)} failed requests)", RULE])
        out.extend(f"  - {f}" for f in result.failures)
        out.append('')

    out.extend(["CACHE", RULE])
    out.extend(_cache_lines(result))
    return "\n".join(out)


def render_markdown(result) -> str:
    """Render a Markdown report: weekly table plus a per-user table."""
    md = ["# PR Champion Report\n", f"Period: **{_fmt_day(result.start)}** to **{_fmt_day(result.end)}**\n"]
    md.append("Repositories: " + ", ".join(f"`{r.full_name}`" for r in result.repositories) + "\n")
    md.append("## Weekly champions\n")
    md.append("| Week | PRs | Comments | Quality |")
    md.append("|---|---|---|---|")
    for week in result.weeks:
        md.append(f"| {_fmt_day(week.start)} | {week.pr_winner or '-'} | {week.comment_winner or '-'} | {week.weighted_comment_winner or '-'} |")
    md.append("\n## Users\n")
    md.append("| User | Score | Weekly wins | PRs | Comments | Quality wins | Weighted score |")
    md.append("|---|---|---|---|---|---|---|")
    for user in top_users_by_score(result.user_stats, limit=len(result.user_stats)):
        md.append(
            f"| {user.username} | {user.total_score} | {user.weekly_wins} | {user.prs_count} | {user.comments_count} "
            f"| {user.weighted_comment_weekly_wins} | {user.weighted_comment_score:.1f} |"
        )
    if result.failures:
        md.append(f"\n_{len(result.failures)} requests failed; results may be incomplete._")
    return "\n".join(md)


CSV_FIELDS = [
    'username', 'prs_count', 'weekly_wins', 'total_score', 'comments_count', 'comment_weekly_wins',
    'comment_score', 'weighted_comment_score', 'weighted_comment_weekly_wins', 'weighted_comment_weekly_score',
]


def render_csv(result) -> str:
    """One row per user, ordered by overall ranking."""
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=CSV_FIELDS, lineterminator='\n')
    writer.writeheader()
    for user in top_users_by_score(result.user_stats, limit=len(result.user_stats)):
        writer.writerow({k: getattr(user, k) for k in CSV_FIELDS})
    return buf.getvalue()


def _week_dict(week) -> dict:
    return {
        'start': _fmt_day(week.start),
        'end': _fmt_day(week.end),
        'user_prs': week.user_prs,
        'user_comments': week.user_comments,
        'user_weighted_comments': week.user_weighted_comments,
        'pr_winner': week.pr_winner,
        'comment_winner': week.comment_winner,
        'weighted_comment_winner': week.weighted_comment_winner,
    }


def render_json(result) -> str:
    doc = {
        'start': _fmt_day(result.start),
        'end': _fmt_day(result.end),
        'repositories': [r.full_name for r in result.repositories],
        'pr_count': result.pr_count,
        'comment_count': result.comment_count,
        'weeks': [_week_dict(w) for w in result.weeks],
        'users': [u.to_dict() for u in top_users_by_score(result.user_stats, limit=len(result.user_stats))],
        'failures': result.failures,
        'cache': result.cache_stats,
    }
    return json.dumps(doc, indent=2)


_RENDERERS = {
    'text': render_text,
    'md': render_markdown,
    'csv': render_csv,
    'json': render_json,
}
FORMATS = tuple(_RENDERERS)


def render(result, fmt: str = 'text') -> str:
    """Render a RunResult in one of FORMATS."""
    fmt = (fmt or 'text').lower()
    if fmt not in _RENDERERS:
        raise ValueError(f"Unsupported format: {fmt} (choose from {', '.join(FORMATS)})")
    return _RENDERERS[fmt](result)
