"""Tests for dotted version normalisation and comparison.

Coverage:
  1. Padding / truncation to four numeric segments
  2. Non-numeric and empty segments count as zero
  3. Numeric (not lexical) ordering between segments
  4. Total over odd input: never raises
"""

import pytest

from release_planner.services.version_compare import compare_versions, normalize_version


class TestNormalizeVersion:

    @pytest.mark.parametrize("raw, expected", [
        ("1.2", (1, 2, 0, 0)),
        ("1.2.3.4", (1, 2, 3, 4)),
        ("1.2.3.4.5", (1, 2, 3, 4)),
        ("", (0, 0, 0, 0)),
        (None, (0, 0, 0, 0)),
        ("1.x.3", (1, 0, 3, 0)),
        ("1..2", (1, 0, 2, 0)),
        (" 2 . 7 ", (2, 7, 0, 0)),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_version(raw) == expected

    def test_negative_and_unicode_digits_count_as_zero(self):
        assert normalize_version("-1.2") == (0, 2, 0, 0)
        assert normalize_version("١.2") == (0, 2, 0, 0)

    def test_segment_with_suffix_counts_as_zero(self):
        # a leading-digit prefix is not salvaged: "3-beta" is non-numeric
        assert normalize_version("1.3-beta") == (1, 0, 0, 0)
        assert compare_versions("3-beta", "0.0.0.1") == -1


class TestCompareVersions:

    def test_padding_makes_versions_equal(self):
        assert compare_versions("1.2", "1.2.0.0") == 0

    def test_numeric_segment_ordering(self):
        assert compare_versions("1.10", "1.9") == 1
        assert compare_versions("1.9", "1.10") == -1

    def test_earlier_segment_dominates(self):
        assert compare_versions("2.0.0.0", "1.99.99.99") == 1

    def test_empty_is_lowest(self):
        assert compare_versions("", "0.0.0.1") == -1
        assert compare_versions(None, "") == 0

    def test_garbage_never_raises(self):
        assert compare_versions("beta", "rc-1") == 0
        assert compare_versions(object(), "1") == -1
