"""Diff engine: classify each source file against the target inventory."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from spacc.services.datetime_service import milliseconds_between, parse_optional_datetime
from spacc.services.path_service import canonical_path

if TYPE_CHECKING:
    from collections.abc import Iterable

    from spacc.services.inventory_service import FileRecord

DEFAULT_MTIME_TOLERANCE_MS = 2000


class DiffState(StrEnum):
    """Classification of one source file."""

    OK = "OK"
    MISSING_IN_ACC = "MISSING_IN_ACC"
    SIZE_MISMATCH = "SIZE_MISMATCH"
    HASH_MISMATCH = "HASH_MISMATCH"
    MTIME_DRIFT = "MTIME_DRIFT"


class RepairAction(StrEnum):
    """What repair would do for a row."""

    UPLOAD = "UPLOAD"
    OVERWRITE = "OVERWRITE"


class HashPolicy(StrEnum):
    """How equal-path records are compared."""

    AUTO = "auto"
    SIZE_ONLY = "size_only"
    SIZE_AND_TIME = "size_and_time"
    FULL_HASH = "full_hash"


_ACTIONS: dict[DiffState, RepairAction] = {
    DiffState.MISSING_IN_ACC: RepairAction.UPLOAD,
    DiffState.SIZE_MISMATCH: RepairAction.UPLOAD,
    DiffState.HASH_MISMATCH: RepairAction.OVERWRITE,
}


def action_for(state: DiffState) -> RepairAction | None:
    return _ACTIONS.get(state)


@dataclass(frozen=True)
class DiffSide:
    """Metadata of one side of a diff row. All fields null when absent."""

    size: int | None = None
    content_hash: str | None = None
    mtime: str | None = None
    id: str | None = None

    @classmethod
    def of(cls, record: FileRecord | None) -> DiffSide:
        if record is None:
            return cls()
        return cls(
            size=record.size, content_hash=record.content_hash, mtime=record.mtime, id=record.id
        )

    def to_dict(self) -> dict[str, Any]:
        return {"size": self.size, "hash": self.content_hash, "mtime": self.mtime, "id": self.id}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> DiffSide:
        data = data or {}
        size = data.get("size")
        return cls(
            size=int(size) if isinstance(size, (int, float)) else None,
            content_hash=data.get("hash") or None,
            mtime=data.get("mtime") or None,
            id=data.get("id") or data.get("urn") or None,
        )


@dataclass(frozen=True)
class DiffRow:
    """One classified source file."""

    path: str
    src: DiffSide
    dst: DiffSide
    state: DiffState
    action: RepairAction | None = None
    notes: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "src": self.src.to_dict(),
            "dst": self.dst.to_dict(),
            "state": self.state.value,
            "action": self.action.value if self.action else None,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DiffRow:
        action = data.get("action")
        return cls(
            path=str(data["path"]),
            src=DiffSide.from_dict(data.get("src")),
            dst=DiffSide.from_dict(data.get("dst")),
            state=DiffState(data["state"]),
            action=RepairAction(action) if action else None,
            notes=str(data.get("notes") or ""),
        )


@dataclass
class _Comparison:
    src: DiffSide
    dst: DiffSide
    tolerance_ms: int
    drift_ms: int | None = field(init=False)

    def __post_init__(self) -> None:
        src_time = parse_optional_datetime(self.src.mtime)
        dst_time = parse_optional_datetime(self.dst.mtime)
        self.drift_ms = (
            milliseconds_between(src_time, dst_time)
            if src_time is not None and dst_time is not None
            else None
        )

    @property
    def both_hashes(self) -> bool:
        return bool(self.src.content_hash and self.dst.content_hash)

    @property
    def both_sizes(self) -> bool:
        return self.src.size is not None and self.dst.size is not None

    def by_hash(self) -> DiffState:
        if self.src.content_hash == self.dst.content_hash:
            return DiffState.OK
        return DiffState.HASH_MISMATCH

    def by_size(self) -> DiffState:
        if not self.both_sizes:
            return DiffState.MTIME_DRIFT
        if self.src.size == self.dst.size:
            return DiffState.OK
        return DiffState.SIZE_MISMATCH

    def by_size_and_time(self) -> DiffState:
        state = self.by_size()
        if state is not DiffState.OK:
            return state
        if self.drift_ms is None or self.drift_ms <= self.tolerance_ms:
            return DiffState.OK
        return DiffState.MTIME_DRIFT


def classify(
    src: DiffSide,
    dst: DiffSide,
    policy: HashPolicy = HashPolicy.AUTO,
    *,
    tolerance_ms: int = DEFAULT_MTIME_TOLERANCE_MS,
) -> tuple[DiffState, str]:
    """Classify a pair of equal-path records. Returns ``(state, notes)``."""
    comparison = _Comparison(src, dst, tolerance_ms)
    if policy is HashPolicy.SIZE_ONLY:
        state = comparison.by_size()
    elif policy is HashPolicy.SIZE_AND_TIME:
        state = comparison.by_size_and_time()
    elif comparison.both_hashes:
        state = comparison.by_hash()
    elif policy is HashPolicy.FULL_HASH:
        state = comparison.by_size_and_time()
    else:
        state = comparison.by_size()

    notes = ""
    if (
        state is DiffState.OK
        and comparison.drift_ms is not None
        and comparison.drift_ms > tolerance_ms
    ):
        notes = (
            f"mtime drift {round(comparison.drift_ms / 1000)}s "
            f"(src={src.mtime} vs dst={dst.mtime})"
        )
    return state, notes


def build_diff(
    source: Iterable[FileRecord],
    target: Iterable[FileRecord],
    policy: HashPolicy | str = HashPolicy.AUTO,
    *,
    tolerance_ms: int = DEFAULT_MTIME_TOLERANCE_MS,
) -> list[DiffRow]:
    """Compare two inventories and return one row per source file.

    Pure: no I/O, deterministic, source order preserved.  When several
    target records share a canonical path the last one wins.
    """
    policy = HashPolicy(policy)
    by_path: dict[str, FileRecord] = {}
    for record in target:
        by_path[canonical_path(record.path)] = record

    rows: list[DiffRow] = []
    for record in source:
        path = canonical_path(record.path)
        src = DiffSide.of(record)
        match = by_path.get(path)
        if match is None:
            state, notes = DiffState.MISSING_IN_ACC, ""
        else:
            state, notes = classify(src, DiffSide.of(match), policy, tolerance_ms=tolerance_ms)
        rows.append(
            DiffRow(
                path=path,
                src=src,
                dst=DiffSide.of(match),
                state=state,
                action=action_for(state),
                notes=notes,
            )
        )
    return rows


def count_states(rows: Iterable[DiffRow]) -> dict[DiffState, int]:
    counts = dict.fromkeys(DiffState, 0)
    for row in rows:
        counts[row.state] += 1
    return counts
