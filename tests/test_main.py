"""Tests for the command-line entry point."""

import pytest

from clubtab.main import build_parser, main


def test_info_prints_business_day(capsys):
    assert main(["info", "--at", "2025-03-23T02:00:00"]) == 0
    out = capsys.readouterr().out
    assert "2025-03-22" in out
    assert "business_date" in out


def test_watch_flags():
    args = build_parser().parse_args(["watch", "--once"])
    assert args.once is True
    assert args.poll is None
    assert build_parser().parse_args(["watch", "--poll"]).poll is True


def test_command_is_required():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])
