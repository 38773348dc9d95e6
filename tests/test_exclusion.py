"""Tests for exclusion pattern parsing and matching."""

import pytest

from webdeploy.services.exclusion import is_excluded, matches_pattern, parse_patterns


class TestParsePatterns:
    def test_splits_on_commas_and_semicolons(self):
        assert parse_patterns("*.log, temp/* ;web.config") == ["*.log", "temp/*", "web.config"]

    def test_discards_empty_entries(self):
        assert parse_patterns(" ,;, uploads ;") == ["uploads"]

    @pytest.mark.parametrize("value", [None, "", "  ", ",;"])
    def test_empty_input_yields_no_patterns(self, value):
        assert parse_patterns(value) == []


class TestIsExcluded:
    def test_empty_pattern_list_never_excludes(self):
        assert is_excluded("anything.log", []) is False

    def test_exact_match_is_case_insensitive(self):
        assert is_excluded("Web.Config", ["web.config"]) is True

    def test_exact_pattern_does_not_match_substring(self):
        assert is_excluded("web.config.bak", ["web.config"]) is False

    def test_wildcard_suffix(self):
        assert is_excluded("app.log", ["*.log"]) is True
        assert is_excluded("APP.LOG", ["*.log"]) is True
        assert is_excluded("app.log.txt", ["*.log"]) is False

    def test_wildcard_is_anchored_both_ends(self):
        assert is_excluded("logs", ["log*"]) is True
        assert is_excluded("catalog", ["log*"]) is False

    def test_regex_metacharacters_are_literal(self):
        assert is_excluded("a+b(1).txt", ["a+b(*).txt"]) is True
        assert is_excluded("aab1.txt", ["a+b(*).txt"]) is False
        assert is_excluded("fileXtxt", ["file.txt"]) is False

    def test_any_pattern_matching_excludes(self):
        patterns = parse_patterns("uploads;*.tmp")
        assert is_excluded("uploads", patterns) is True
        assert is_excluded("x.tmp", patterns) is True
        assert is_excluded("index.html", patterns) is False

    def test_directory_pattern_matches_relative_path(self):
        assert matches_pattern("temp/temp.txt", "temp/*") is True
        assert matches_pattern("temp", "temp/*") is False

    def test_wildcard_does_not_cross_path_separator(self):
        assert matches_pattern("src/main.cs", "src*.cs") is False
        assert matches_pattern("temp/sub/file.txt", "temp/*") is False
        assert matches_pattern("temp/sub", "temp/*") is True

    def test_name_patterns_ignore_relative_path(self):
        assert is_excluded("main.cs", ["src*.cs"], "src/main.cs") is False
        assert is_excluded("src_gen.cs", ["src*.cs"], "src_gen.cs") is True

    def test_path_patterns_need_relative_path(self):
        assert is_excluded("temp.txt", ["temp/*"]) is False
        assert is_excluded("temp.txt", ["temp/*"], "temp/temp.txt") is True

    def test_backslash_patterns_are_normalized(self):
        assert parse_patterns(r"temp\*") == ["temp/*"]
