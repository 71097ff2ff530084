"""Unit tests for ai_agent.utils formatting and console helpers."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from ai_agent.utils import format_duration, print_stage_header, print_warning, truncate


class TestFormatDuration:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        "seconds,expected",
        [
            (0.0, "0.0s"),
            (3.7, "3.7s"),
            (65.2, "1m 5s"),
            (3661.0, "1h 1m 1s"),
            (-1.0, "0.0s"),
        ],
    )
    def test_format(self, seconds, expected):
        assert format_duration(seconds) == expected


class TestTruncate:
    @pytest.mark.unit
    def test_short_text_unchanged(self):
        assert truncate("hello", 10) == "hello"

    @pytest.mark.unit
    def test_long_text_cut_with_ellipsis(self):
        result = truncate("x" * 50, 10)
        assert result == "xxxxxxx..."
        assert len(result) == 10


class TestConsoleHelpers:
    @pytest.mark.unit
    def test_warning_escapes_markup(self):
        with patch("ai_agent.utils.console") as console:
            print_warning("[red]not markup[/red]")
        printed = console.print.call_args.args[0]
        assert "\\[red]" in printed

    @pytest.mark.unit
    def test_stage_header_uses_title(self):
        with patch("ai_agent.utils.console") as console:
            print_stage_header("architecture")
        rule = console.print.call_args_list[-1].args[0]
        assert "Architecture Design" in str(rule.title)
