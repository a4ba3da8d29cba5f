import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

import cli
from cli import build_parser, _resolve_repositories, _resolve_window, _resolve_token, _clear_cache, write_output
from normalize.models import Repository, Comment, CommentKind
from storage.store import SQLiteStore

NOW = datetime(2024, 10, 10, 9, 0, tzinfo=timezone.utc)


def _args(*argv):
    parser = build_parser()
    return parser.parse_args(list(argv)), parser


def test_repositories_from_flag_deduplicated(monkeypatch):
    monkeypatch.delenv('GITHUB_REPOS', raising=False)
    args, parser = _args('--repos', 'a/b, c/d ,a/b,')
    assert _resolve_repositories(args, parser) == [Repository('a', 'b'), Repository('c', 'd')]


def test_repositories_from_owner_and_repo(monkeypatch):
    monkeypatch.delenv('GITHUB_REPOS', raising=False)
    args, parser = _args('--owner', 'acme', '--repo', 'api')
    assert _resolve_repositories(args, parser) == [Repository('acme', 'api')]


def test_repositories_from_env(monkeypatch):
    monkeypatch.setenv('GITHUB_REPOS', 'x/y')
    args, parser = _args()
    assert _resolve_repositories(args, parser) == [Repository('x', 'y')]


def test_repositories_missing_or_malformed(monkeypatch):
    monkeypatch.delenv('GITHUB_REPOS', raising=False)
    args, parser = _args()
    with pytest.raises(SystemExit):
        _resolve_repositories(args, parser)
    args, parser = _args('--repos', 'not-a-repo')
    with pytest.raises(SystemExit):
        _resolve_repositories(args, parser)


def test_window_from_dates():
    args, parser = _args('--start', '01/09/2024', '--end', '2024-09-30')
    start, end = _resolve_window(args, parser, now=NOW)
    assert start == datetime(2024, 9, 1, tzinfo=timezone.utc)
    assert end == datetime(2024, 9, 30, tzinfo=timezone.utc)


def test_window_from_days_and_default():
    args, parser = _args('--days', '7')
    assert _resolve_window(args, parser, now=NOW) == (NOW - timedelta(days=7), NOW)
    args, parser = _args()
    assert _resolve_window(args, parser, now=NOW) == (NOW - timedelta(days=30), NOW)


def test_window_rejects_end_before_start_and_bad_dates():
    args, parser = _args('--start', '2024-10-02', '--end', '2024-10-01')
    with pytest.raises(SystemExit):
        _resolve_window(args, parser, now=NOW)
    args, parser = _args('--start', '2024/10/02')
    with pytest.raises(SystemExit):
        _resolve_window(args, parser, now=NOW)


def test_token_flag_wins_over_env(monkeypatch):
    monkeypatch.setenv('GITHUB_TOKEN', 'env-token')
    args, _ = _args('--token', 'flag-token')
    assert _resolve_token(args) == 'flag-token'
    args, _ = _args()
    assert _resolve_token(args) == 'env-token'


def test_clear_cache_confirmation(monkeypatch, tmp_path):
    with SQLiteStore(str(tmp_path / 'c.db')) as store:
        store.save_comment(Comment(1, 'o', 'r', 1, CommentKind.ISSUE, 'bob', cached_at=NOW))
        monkeypatch.setattr('builtins.input', lambda _prompt: 'n')
        assert _clear_cache(store, force=False) is False
        assert store.stats()['comments'] == 1
        monkeypatch.setattr('builtins.input', lambda _prompt: 'yes')
        assert _clear_cache(store, force=False) is True
        assert store.stats()['comments'] == 0


def test_write_output_to_file(tmp_path, capsys):
    target = tmp_path / 'reports' / 'out.csv'
    write_output('a,b\n1,2\n', str(target))
    assert target.read_text(encoding='utf-8') == 'a,b\n1,2\n'
    assert 'Wrote report to' in capsys.readouterr().out


def test_write_output_to_stdout(capsys):
    write_output('hello')
    assert capsys.readouterr().out == 'hello\n'


def test_main_cache_info(tmp_path, capsys):
    db = tmp_path / 'comments.db'
    with SQLiteStore(str(db)) as store:
        store.save_comment(Comment(1, 'o', 'r', 1, CommentKind.ISSUE, 'bob', cached_at=NOW))
    cli.main(['--db', str(db), '--cache-info'])
    info = json.loads(capsys.readouterr().out)
    assert info['comments'] == 1
    assert info['path'] == str(db)


def _seed_comment(db):
    with SQLiteStore(str(db)) as store:
        store.save_comment(Comment(1, 'o', 'r', 1, CommentKind.ISSUE, 'bob', cached_at=NOW))


def _fail_run(*_args, **_kwargs):
    raise AssertionError('pipeline should not run')


def test_main_clear_database_aborted_keeps_cache(monkeypatch, tmp_path):
    db = tmp_path / 'comments.db'
    _seed_comment(db)
    monkeypatch.setattr('builtins.input', lambda _prompt: 'n')
    monkeypatch.setattr(cli, 'PRChampion', _fail_run)
    cli.main(['--repos', 'o/r', '--db', str(db), '-c'])
    with SQLiteStore(str(db)) as store:
        assert store.stats()['comments'] == 1


def test_main_clear_database_force_skips_prompt(monkeypatch, tmp_path):
    db = tmp_path / 'comments.db'
    _seed_comment(db)
    monkeypatch.setattr('builtins.input', _fail_run)

    class EmptyChampion:
        def __init__(self, *args, **kwargs):
            pass

        def run(self):
            return 'result'

    monkeypatch.setattr(cli, 'PRChampion', EmptyChampion)
    monkeypatch.setattr(cli, 'render', lambda result, fmt: result)
    cli.main(['--repos', 'o/r', '--db', str(db), '-c', '--force'])
    with SQLiteStore(str(db)) as store:
        assert store.stats()['comments'] == 0


def test_main_runs_pipeline_with_flags(monkeypatch, tmp_path):
    captured = {}

    class FakeChampion:
        def __init__(self, source, repositories, start, end, tie_break, weights):
            captured.update(repositories=repositories, tie_break=tie_break, weights=weights)

        def run(self):
            return 'result'

    monkeypatch.setattr(cli, 'PRChampion', FakeChampion)
    monkeypatch.setattr(cli, 'render', lambda result, fmt: f'{result}:{fmt}')
    out_file = tmp_path / 'report.json'
    cli.main([
        '--token', 't', '--repos', 'o/r', '--days', '7', '--db', str(tmp_path / 'c.db'),
        '--output', 'json', '--out-file', str(out_file), '--tie-break', 'lexicographic',
    ])
    assert Path(out_file).read_text(encoding='utf-8') == 'result:json'
    assert captured['repositories'] == [Repository('o', 'r')]
    assert captured['tie_break'].value == 'lexicographic'
    assert captured['weights']['+1'] == 2.0
