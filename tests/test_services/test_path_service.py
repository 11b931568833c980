"""Tests for canonical path helpers."""

from __future__ import annotations

import pytest

from spacc.services.path_service import (
    canonical_name,
    canonical_path,
    join_path,
    path_segments,
    split_path,
)


class TestCanonicalPath:
    def test_backslashes_become_forward_slashes(self) -> None:
        assert canonical_path("docs\\sub\\a.txt") == "/docs/sub/a.txt"

    def test_repeated_slashes_collapse(self) -> None:
        assert canonical_path("//docs///a.txt") == "/docs/a.txt"

    def test_segments_are_trimmed(self) -> None:
        assert canonical_path(" docs / a.txt ") == "/docs/a.txt"

    def test_single_leading_slash_added(self) -> None:
        assert canonical_path("docs/a.txt") == "/docs/a.txt"

    def test_empty_path_is_root(self) -> None:
        assert canonical_path("") == "/"
        assert canonical_path("///") == "/"

    def test_nfc_normalization(self) -> None:
        decomposed = "/Cafe\u0301/a.txt"
        assert canonical_path(decomposed) == "/Caf\u00e9/a.txt"

    def test_idempotent(self) -> None:
        once = canonical_path("a\\\\b// c /d.txt")
        assert canonical_path(once) == once


class TestCanonicalName:
    def test_composes_and_trims(self) -> None:
        assert canonical_name(" Cafe\u0301 ") == "Caf\u00e9"

    def test_keeps_inner_spaces(self) -> None:
        assert canonical_name("Site  A") == "Site  A"


class TestJoinPath:
    def test_joins_and_canonicalizes(self) -> None:
        assert join_path("/Project Files/", "Site A", "x/y.txt") == "/Project Files/Site A/x/y.txt"

    def test_skips_empty_parts(self) -> None:
        assert join_path("", "/a", "", "b.txt") == "/a/b.txt"


class TestSplitPath:
    def test_nested_file(self) -> None:
        assert split_path("/Project Files/a/b.txt") == ("/Project Files/a", "b.txt")

    def test_top_level_file(self) -> None:
        assert split_path("b.txt") == ("/", "b.txt")

    def test_root_has_no_file_name(self) -> None:
        with pytest.raises(ValueError, match="no file name"):
            split_path("/")


class TestPathSegments:
    def test_segments(self) -> None:
        assert path_segments("/a//b/c") == ["a", "b", "c"]

    def test_root_has_no_segments(self) -> None:
        assert path_segments("/") == []
