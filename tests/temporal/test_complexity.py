"""Tests for temporal/complexity.py - indentation complexity."""

from gitmem.temporal.complexity import EMPTY, compute_complexity, is_binary


class TestComputeComplexity:
    def test_empty(self):
        assert compute_complexity("") == EMPTY

    def test_flat_file(self):
        result = compute_complexity("a = 1\nb = 2\n")
        assert result.lines_of_code == 2
        assert result.indent_complexity == 0
        assert result.max_indent == 0

    def test_nested_spaces(self):
        source = "def f():\n    if x:\n        return 1\n    return 2\n"
        result = compute_complexity(source)
        assert result.lines_of_code == 4
        assert result.indent_complexity == 0 + 1 + 2 + 1
        assert result.max_indent == 2

    def test_blank_lines_ignored(self):
        result = compute_complexity("a\n\n    \n    b\n")
        assert result.lines_of_code == 2
        assert result.indent_complexity == 1

    def test_tabs_count_as_one_level(self):
        result = compute_complexity("x\n\ty\n\t\tz\n")
        assert result.indent_complexity == 3
        assert result.max_indent == 2

    def test_partial_levels_round_down(self):
        # 2-space indent is half a level at the default width
        assert compute_complexity("a\n  b\n").indent_complexity == 0
        assert compute_complexity("a\n  b\n", tab_width=2).indent_complexity == 1


class TestIsBinary:
    def test_text(self):
        assert not is_binary(b"print('hi')\n")

    def test_nul_byte(self):
        assert is_binary(b"\x89PNG\r\n\x1a\n\x00\x00")

    def test_nul_after_sniff_window(self):
        assert not is_binary(b"a" * 9000 + b"\x00")
