"""Normalization and validation of caller-supplied filesystem paths."""

from __future__ import annotations

import os
from pathlib import Path

from wni.constants import TRACKER_FILE_NAME
from wni.errors import PathNotFoundError


def resolve_path(path: str, *, optional: bool = False, what: str = "path") -> str:
    """Turn a user-supplied path into an absolute path that exists.

    Args:
        path: Path as given by the caller. A leading ``~`` is expanded to the
            invoking user's home directory.
        optional: Whether the caller's field may be left empty. Empty optional
            paths are returned unchanged.
        what: Description used in error messages.

    Returns:
        The absolute path. Directories always end with a separator.

    Raises:
        PathNotFoundError: If the path is empty (and not optional) or missing.
    """
    if not path:
        if optional:
            return path
        raise PathNotFoundError(path, what)

    if path.startswith("~"):
        path = os.path.join(Path.home(), path[1:].lstrip("/" + os.sep))

    resolved = os.path.abspath(path)
    if not os.path.exists(resolved):
        raise PathNotFoundError(resolved, what)

    if os.path.isdir(resolved) and not resolved.endswith(os.sep):
        resolved += os.sep
    return resolved


def tracker_file_path(directory: str) -> str:
    """Location of the resource tracker file inside a resolved directory."""
    return os.path.join(directory, TRACKER_FILE_NAME)
