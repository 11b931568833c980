"""Canonical path helpers shared by collectors, diff and repair."""

from __future__ import annotations

import re
import unicodedata

_MULTI_SLASH_RE = re.compile(r"/{2,}")


def canonical_path(path: str) -> str:
    """Return the canonical form of a file path.

    NFC-normalized, forward slashes only, no surrounding whitespace per
    segment, no empty segments and exactly one leading slash.
    """
    normalized = unicodedata.normalize("NFC", str(path)).replace("\\", "/")
    normalized = _MULTI_SLASH_RE.sub("/", normalized)
    segments = [segment.strip() for segment in normalized.split("/")]
    return "/" + "/".join(segment for segment in segments if segment)


def canonical_name(name: str) -> str:
    """Return a single path segment in the form used for name comparisons."""
    return unicodedata.normalize("NFC", str(name)).strip()


def join_path(*parts: str) -> str:
    """Join path fragments and canonicalize the result."""
    return canonical_path("/".join(part for part in parts if part))


def split_path(path: str) -> tuple[str, str]:
    """Split a canonical file path into ``(folder_path, file_name)``.

    The last segment is the file name; the remaining segments form the
    folder path, always with a leading slash (``"/"`` for top-level files).
    """
    segments = [segment for segment in canonical_path(path).split("/") if segment]
    if not segments:
        msg = f"Path has no file name: {path!r}"
        raise ValueError(msg)
    file_name = segments.pop()
    return "/" + "/".join(segments), file_name


def path_segments(path: str) -> list[str]:
    """Return the non-empty segments of a canonical path."""
    return [segment for segment in canonical_path(path).split("/") if segment]
