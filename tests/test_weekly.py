import unittest
from datetime import datetime, timedelta, timezone

import pytest

from normalize.models import PullRequest, Comment, CommentKind, Reaction, ReactionChannel
from scoring.weekly import (
    WeeklyAggregator,
    AggregationError,
    TieBreak,
    week_start,
    week_end,
    is_excluded_user,
    pick_winner,
)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def _pr(number, author, merged_at, repo='r'):
    return PullRequest('o', repo, number, title=f'PR {number}', author=author, merged_at=merged_at)


def _comment(cid, author, created_at, pr_number=1, kind=CommentKind.ISSUE):
    return Comment(cid, 'o', 'r', pr_number, kind, author, created_at=created_at)


def _reaction(content, cid=1):
    return Reaction(cid, ReactionChannel.ISSUE_COMMENT, content)


class TestWeekBoundaries(unittest.TestCase):
    def test_friday_maps_to_monday(self):
        self.assertEqual(week_start(utc(2024, 10, 4, 15, 30)), utc(2024, 9, 30))

    def test_sunday_maps_to_preceding_monday(self):
        self.assertEqual(week_start(utc(2024, 10, 6, 23, 59)), utc(2024, 9, 30))

    def test_monday_midnight_is_own_week(self):
        self.assertEqual(week_start(utc(2024, 9, 30)), utc(2024, 9, 30))

    def test_idempotent(self):
        ts = utc(2024, 10, 2, 8, 0)
        self.assertEqual(week_start(week_start(ts)), week_start(ts))

    def test_week_end_is_sunday(self):
        self.assertEqual(week_end(utc(2024, 10, 1)), utc(2024, 10, 6))

    def test_accepts_iso_string(self):
        self.assertEqual(week_start('2024-10-04T12:00:00Z'), utc(2024, 9, 30))


class TestExclusions(unittest.TestCase):
    def test_denylisted_and_bot_suffix(self):
        self.assertTrue(is_excluded_user('dependabot'))
        self.assertTrue(is_excluded_user('SonarQubeCloud'))
        self.assertTrue(is_excluded_user('my-codecov-helper'))
        self.assertTrue(is_excluded_user('release-please[bot]'))
        self.assertFalse(is_excluded_user('alice'))

    def test_comment_exclusion_reasons(self):
        agg = WeeklyAggregator()
        pr = _pr(1, 'alice', utc(2024, 10, 4, 12))
        self.assertEqual(agg.exclusion_reason(pr, _comment(1, 'github-actions[bot]', utc(2024, 10, 3))), 'excluded user')
        self.assertEqual(agg.exclusion_reason(pr, _comment(2, 'alice', utc(2024, 10, 3))), 'pr author')
        self.assertEqual(agg.exclusion_reason(pr, _comment(3, 'bob', utc(2024, 10, 5))), 'after merge')
        self.assertIsNone(agg.exclusion_reason(pr, _comment(4, 'bob', utc(2024, 10, 4, 12))))

    def test_deleted_user_comment_on_deleted_author_pr_counts(self):
        # both logins come back empty for deleted accounts
        agg = WeeklyAggregator()
        pr = _pr(1, '', utc(2024, 10, 4, 12))
        self.assertIsNone(agg.exclusion_reason(pr, _comment(1, '', utc(2024, 10, 3))))

    def test_excluded_comment_not_counted(self):
        agg = WeeklyAggregator()
        pr = _pr(1, 'alice', utc(2024, 10, 4, 12))
        agg.add_pull_requests([pr])
        self.assertIsNone(agg.add_comment(pr, _comment(1, 'dependabot[bot]', utc(2024, 10, 3)), []))
        self.assertIsNone(agg.add_comment(pr, _comment(2, 'alice', utc(2024, 10, 3)), []))
        stats = agg.fold()
        self.assertEqual(stats['alice'].comments_count, 0)
        self.assertNotIn('dependabot[bot]', stats)


class TestPickWinner(unittest.TestCase):
    def test_empty_tally(self):
        self.assertIsNone(pick_winner({}))

    def test_strictly_greatest(self):
        self.assertEqual(pick_winner({'a': 1, 'b': 3, 'c': 2}), 'b')

    def test_first_seen_tie_break(self):
        self.assertEqual(pick_winner({'zoe': 2, 'adam': 2}), 'zoe')

    def test_lexicographic_tie_break(self):
        self.assertEqual(pick_winner({'zoe': 2, 'adam': 2}, TieBreak.LEXICOGRAPHIC), 'adam')

    def test_require_positive(self):
        self.assertIsNone(pick_winner({'a': -1.0, 'b': 0.0}, require_positive=True))
        self.assertEqual(pick_winner({'a': -1.0, 'b': 0.5}, require_positive=True), 'b')


class TestWeeklyAggregator(unittest.TestCase):
    def test_two_week_fold(self):
        week1 = utc(2024, 9, 30, 10)
        week2 = utc(2024, 10, 8, 10)
        prs = [_pr(n, 'alice', week1) for n in range(1, 6)]
        prs += [_pr(n, 'bob', week2) for n in range(6, 12)]
        prs += [_pr(n, 'alice', week2) for n in range(12, 14)]

        agg = WeeklyAggregator()
        self.assertEqual(agg.add_pull_requests(prs), 13)
        weeks = agg.weeks()
        self.assertEqual([w.start for w in weeks], [utc(2024, 9, 30), utc(2024, 10, 7)])
        self.assertEqual(weeks[0].pr_winner, 'alice')
        self.assertEqual(weeks[1].pr_winner, 'bob')

        stats = agg.fold()
        self.assertEqual(stats['alice'].prs_count, 7)
        self.assertEqual(stats['alice'].weekly_wins, 1)
        self.assertEqual(stats['alice'].total_score, 1)
        self.assertEqual(stats['bob'].prs_count, 6)
        self.assertEqual(stats['bob'].weekly_wins, 1)
        self.assertEqual(stats['bob'].total_score, 1)

    def test_unmerged_pr_skipped(self):
        agg = WeeklyAggregator()
        self.assertEqual(agg.add_pull_requests([_pr(1, 'alice', None)]), 0)
        self.assertEqual(agg.weeks(), [])

    def test_comments_bucketed_by_merge_week(self):
        # comment made the week before the merge still lands in the merge week
        merged = utc(2024, 10, 8, 10)
        pr = _pr(1, 'alice', merged)
        agg = WeeklyAggregator()
        agg.add_pull_requests([pr])
        score = agg.add_comment(pr, _comment(1, 'bob', utc(2024, 10, 3)), [_reaction('+1')])
        self.assertEqual(score, 3.0)
        week = agg.weeks()[0]
        self.assertEqual(week.start, utc(2024, 10, 7))
        self.assertEqual(week.user_comments, {'bob': 1})
        self.assertEqual(week.user_weighted_comments, {'bob': 3.0})
        self.assertEqual(week.comment_winner, 'bob')
        self.assertEqual(week.weighted_comment_winner, 'bob')

    def test_weighted_winner_requires_positive_total(self):
        pr = _pr(1, 'alice', utc(2024, 10, 4, 12))
        agg = WeeklyAggregator()
        agg.add_pull_requests([pr])
        agg.add_comment(pr, _comment(1, 'bob', utc(2024, 10, 3)), [_reaction('-1'), _reaction('-1')])
        week = agg.weeks()[0]
        self.assertEqual(week.comment_winner, 'bob')
        self.assertIsNone(week.weighted_comment_winner)
        stats = agg.fold()
        self.assertEqual(stats['bob'].comment_weekly_wins, 1)
        self.assertEqual(stats['bob'].weighted_comment_weekly_wins, 0)
        self.assertEqual(stats['bob'].weighted_comment_score, -1.0)

    def test_fetch_failure_scores_fallback(self):
        pr = _pr(1, 'alice', utc(2024, 10, 4, 12))
        agg = WeeklyAggregator()
        self.assertEqual(agg.add_comment(pr, _comment(1, 'bob', utc(2024, 10, 3)), None), 1.0)

    def test_comment_tie_break_lexicographic(self):
        pr = _pr(1, 'alice', utc(2024, 10, 4, 12))
        agg = WeeklyAggregator(tie_break=TieBreak.LEXICOGRAPHIC)
        agg.add_comment(pr, _comment(1, 'zed', utc(2024, 10, 3)), [])
        agg.add_comment(pr, _comment(2, 'carol', utc(2024, 10, 3)), [])
        self.assertEqual(agg.weeks()[0].comment_winner, 'carol')

    def test_custom_weights(self):
        pr = _pr(1, 'alice', utc(2024, 10, 4, 12))
        agg = WeeklyAggregator(weights={'laugh': 1.0})
        self.assertEqual(agg.add_comment(pr, _comment(1, 'bob', utc(2024, 10, 3)), [_reaction('laugh')]), 2.0)


def test_fold_twice_raises():
    agg = WeeklyAggregator()
    agg.add_pull_requests([_pr(1, 'alice', utc(2024, 10, 4))])
    agg.fold()
    with pytest.raises(AggregationError):
        agg.fold()


def test_adding_after_fold_raises():
    agg = WeeklyAggregator()
    agg.fold()
    with pytest.raises(AggregationError):
        agg.add_pull_requests([_pr(1, 'alice', utc(2024, 10, 4))])


def test_merge_times_spread_over_week_share_bucket():
    monday = utc(2024, 9, 30)
    agg = WeeklyAggregator()
    agg.add_pull_requests([_pr(n, 'alice', monday + timedelta(days=n, hours=23)) for n in range(7)])
    weeks = agg.weeks()
    assert len(weeks) == 1
    assert weeks[0].user_prs == {'alice': 7}


if __name__ == '__main__':
    unittest.main()
