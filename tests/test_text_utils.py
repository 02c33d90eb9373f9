"""Tests for shared text helpers."""

import pytest

from agent_reporter.text_utils import (
    MAX_NAME_LENGTH,
    relative_to_cwd,
    safe_name,
    strip_ansi,
    truncate_block,
    truncate_text,
)


class TestStripAnsi:
    @pytest.mark.parametrize("raw,expected", [
        ("\x1b[31mred\x1b[39m", "red"),
        ("\x1b[1;32mbold green\x1b[0m", "bold green"),
        ("[2mexpect([22mreceived[2m)[22m", "expect(received)"),
        ("plain [text] stays", "plain [text] stays"),
    ])
    def test_strip(self, raw, expected):
        assert strip_ansi(raw) == expected


class TestTruncation:
    def test_truncate_text(self):
        assert truncate_text("abcdef", 3) == "abc..."
        assert truncate_text("abc", 3) == "abc"

    def test_truncate_block_marks_cut(self):
        assert truncate_block("abcdef", 3) == "abc\n... (truncated)"
        assert truncate_block("abc", 3) == "abc"


class TestSafeName:
    def test_simple(self):
        assert safe_name("TestAuth", "test_login[chromium]") == "testauth-test-login-chromium"

    def test_empty_parts(self):
        assert safe_name("", "test_home") == "test-home"
        assert safe_name("", "") == "test"

    def test_long_names_stay_distinct(self):
        a = safe_name("Suite", "x" * 200 + "a")
        b = safe_name("Suite", "x" * 200 + "b")
        assert len(a) <= MAX_NAME_LENGTH
        assert a != b


class TestRelativeToCwd:
    def test_below_cwd(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert relative_to_cwd(str(tmp_path / "tests" / "test_a.py")) == "tests/test_a.py"

    def test_outside_cwd_unchanged(self, tmp_path, monkeypatch):
        (tmp_path / "work").mkdir()
        monkeypatch.chdir(tmp_path / "work")
        outside = str(tmp_path / "other" / "test_a.py")
        assert relative_to_cwd(outside) == outside
