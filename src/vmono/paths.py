import os
from pathlib import Path

from .constants import CONFIG_FILENAME


def resolve_path(path: str | os.PathLike[str]) -> Path:
    """Resolves a path against the current working directory.

    Absolute paths pass through (normalized); relative paths are joined to the
    working directory. The path does not have to exist, and symlinks are not
    followed.

    Args:
        path (str | os.PathLike[str]): The path to resolve.

    Returns:
        Path: The absolute, normalized path.
    """
    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = Path.cwd() / candidate
    return Path(os.path.normpath(candidate))


def find_root(start: str | os.PathLike[str] | None = None) -> Path | None:
    """Finds the monorepo root by walking up from `start`.

    Args:
        start (str | os.PathLike[str] | None): Directory to start from.
            Defaults to the current working directory.

    Returns:
        Path | None: The first directory holding the configuration document,
        or None if the filesystem root is reached without a match.
    """
    current = resolve_path(start) if start is not None else resolve_path(".")

    # One step per path component; the filesystem root is its own parent.
    for candidate in (current, *current.parents):
        if (candidate / CONFIG_FILENAME).is_file():
            return candidate
    return None


def relative_path(base: str | os.PathLike[str], target: str | os.PathLike[str]) -> str:
    """Returns the POSIX-style path of `target` relative to `base`."""
    rel = os.path.relpath(resolve_path(target), resolve_path(base))
    return Path(rel).as_posix()
