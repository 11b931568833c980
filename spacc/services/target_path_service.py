"""Resolve the destination path of a target folder from its ancestor chain."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from spacc.services.path_service import canonical_path

if TYPE_CHECKING:
    from collections.abc import Iterable

    from spacc.backends.base import TargetBackend

logger = logging.getLogger(__name__)

DEFAULT_ROOT_NAMES = ("project files", "archivos de proyecto")


async def resolve_target_folder_path(
    target: TargetBackend,
    folder_id: str,
    *,
    root_names: Iterable[str] = DEFAULT_ROOT_NAMES,
    max_depth: int = 64,
) -> str:
    """Walk parents of ``folder_id`` up to the project's root marker folder.

    The root marker (``Project Files`` or a localized name, matched
    case-insensitively) is the first segment of the returned path.  If the
    walk reaches the top of the tree without meeting a marker, the path of
    the whole chain is returned.  At most ``max_depth`` folders are visited.
    """
    markers = {name.casefold() for name in root_names}
    names: list[str] = []
    current: str | None = folder_id
    for _ in range(max_depth):
        if not current:
            break
        folder = await target.get_folder(current)
        names.append(folder.name)
        if folder.name.casefold() in markers:
            break
        current = folder.parent_id
    else:
        logger.warning(
            "Folder chain of %s exceeded %d levels without a root marker", folder_id, max_depth
        )
    return canonical_path("/".join(reversed(names)))


async def find_project_files_folder(
    target: TargetBackend, *, root_names: Iterable[str] = DEFAULT_ROOT_NAMES
) -> str | None:
    """Return the ID of the project's root marker top folder, if any."""
    markers = {name.casefold() for name in root_names}
    for folder in await target.get_top_folders():
        if folder.name.casefold() in markers:
            return folder.id
    return None
