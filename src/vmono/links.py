"""Cross-module file deduplication through a master copy and hardlinks.

Each linked file has one canonical copy in the links directory at the
monorepo root. The source location and every target location are hardlinks
to that copy, so a write through any of them is visible through all of them.
"""

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from rich.console import Console

from .constants import APP_NAME, LINKS_DIRNAME, MASTER_COPY_SEPARATOR
from .errors import (
    LinkConflict,
    LinkFailed,
    MonoError,
    PathNotInModule,
    SameModule,
    SourceNotFound,
)
from .lock import hold_lock
from .paths import resolve_path
from .store import LinkEndpoint, LinkRecord, Module, MonorepoConfig, load_config, save_config

console = Console()
logger = logging.getLogger(APP_NAME)


@dataclass
class LinkResult:
    """Tally of a link operation.

    Attributes:
        created (int): New link records.
        extended (int): Existing records that gained a target.
        already_linked (int): Requests that were already satisfied.
        errors (int): Files that could not be linked (directory mode only).
    """

    created: int = 0
    extended: int = 0
    already_linked: int = 0
    errors: int = 0

    @property
    def total(self) -> int:
        return self.created + self.extended + self.already_linked + self.errors


def master_copy_name(module_name: str, rel_path: str) -> str:
    """Builds the filesystem-safe master copy name for a source file.

    Args:
        module_name (str): The source module.
        rel_path (str): The file's POSIX path within the module.

    Returns:
        str: `<module>__<rel_path with separators replaced by '_'>`.
    """
    sanitized = rel_path.replace("/", "_").replace("\\", "_")
    return f"{module_name}{MASTER_COPY_SEPARATOR}{sanitized}"


def same_file(a: Path, b: Path) -> bool:
    """Checks whether two paths share the same device and inode.

    Returns:
        bool: False if either path is missing.
    """
    try:
        sa, sb = os.stat(a), os.stat(b)
    except FileNotFoundError:
        return False
    return (sa.st_dev, sa.st_ino) == (sb.st_dev, sb.st_ino)


def create_hardlink(existing: Path, new: Path) -> None:
    """Hardlinks `new` to `existing`, replacing a file already at `new`.

    Args:
        existing (Path): The file to link to (usually the master copy).
        new (Path): The link to create.

    Raises:
        OSError: For any failure other than `new` already existing.
    """
    try:
        os.link(existing, new)
    except FileExistsError:
        os.unlink(new)
        os.link(existing, new)


def list_files_recursively(directory: Path) -> list[Path]:
    """Lists every non-directory entry below `directory`, in sorted order.

    Version-control internals (`.git`) are never descended into.
    """
    files: list[Path] = []
    with os.scandir(directory) as it:
        entries = sorted(it, key=lambda e: e.name)

    for entry in entries:
        path = Path(entry.path)
        if entry.is_dir(follow_symlinks=False):
            if entry.name == ".git":
                continue
            files.extend(list_files_recursively(path))
        else:
            files.append(path)
    return files


def find_module_containing(config: MonorepoConfig, path: str | os.PathLike[str]) -> Module | None:
    """Finds the module whose directory contains `path`.

    Containment is tested on whole path components, and the longest matching
    module path wins, so nested modules resolve to the innermost one.

    Args:
        config (MonorepoConfig): A loaded config (modules carry `absolute_path`).
        path (str | os.PathLike[str]): The path to locate.

    Returns:
        Module | None: The containing module, if any.
    """
    target = resolve_path(path)
    best: Module | None = None
    best_depth = -1

    for module in config.modules:
        if module.absolute_path is None:
            continue
        if target == module.absolute_path or target.is_relative_to(module.absolute_path):
            depth = len(module.absolute_path.parts)
            if depth > best_depth:
                best, best_depth = module, depth
    return best


def path_in_module(
    config: MonorepoConfig, path: str | os.PathLike[str]
) -> tuple[Module, str] | None:
    """Locates `path` inside a module.

    Returns:
        tuple[Module, str] | None: The module and the POSIX path relative to
        its root, or None if no module contains `path`.
    """
    module = find_module_containing(config, path)
    if module is None or module.absolute_path is None:
        return None
    rel = resolve_path(path).relative_to(module.absolute_path)
    return module, rel.as_posix()


def _find_conflict(
    config: MonorepoConfig, endpoint: LinkEndpoint, owner: LinkRecord | None
) -> LinkRecord | None:
    """Returns a record other than `owner` that already uses `endpoint`."""
    for record in config.links:
        if record is owner:
            continue
        if record.source == endpoint or endpoint in record.targets:
            return record
    return None


def _link_file(
    config: MonorepoConfig,
    links_dir: Path,
    source_path: Path,
    target_path: Path,
    source: LinkEndpoint,
    target: LinkEndpoint,
    result: LinkResult,
) -> None:
    """Links one file, creating or extending its link record."""
    existing = next((r for r in config.links if r.source == source), None)

    if existing is not None and target in existing.targets:
        console.print(f"{target.module}/{target.path} is already linked", style="yellow")
        result.already_linked += 1
        return

    if existing is None and (clash := _find_conflict(config, source, None)):
        raise LinkConflict(
            f"{source.module}/{source.path} is already linked from "
            f"{clash.source.module}/{clash.source.path}"
        )
    if clash := _find_conflict(config, target, existing):
        raise LinkConflict(
            f"{target.module}/{target.path} already belongs to the link of "
            f"{clash.source.module}/{clash.source.path}"
        )

    if existing is not None:
        master_path = links_dir / existing.master_copy
        target_path.parent.mkdir(parents=True, exist_ok=True)
        create_hardlink(master_path, target_path)
        existing.targets.append(target)

        logger.info(f"Extended link {existing.master_copy} with {target.module}/{target.path}")
        console.print(
            f"Added {target.module}/{target.path} as a target for existing link",
            style="green",
        )
        result.extended += 1
        return

    name = master_copy_name(source.module, source.path)
    if any(r.master_copy == name for r in config.links):
        raise LinkConflict(f"Master copy name '{name}' is already used by another link")

    master_path = links_dir / name
    links_dir.mkdir(parents=True, exist_ok=True)
    if master_path.exists():
        # Left over from an earlier run that never recorded it.
        master_path.unlink()
    shutil.copy2(source_path, master_path)

    target_path.parent.mkdir(parents=True, exist_ok=True)
    create_hardlink(master_path, source_path)
    create_hardlink(master_path, target_path)

    config.links.append(LinkRecord(source=source, targets=[target], master_copy=name))

    logger.info(f"Created link {name}: {source.module}/{source.path} -> {target.module}/{target.path}")
    console.print(f"Created new link with master copy {name}", style="green")
    result.created += 1


def _link_directory(
    config: MonorepoConfig,
    links_dir: Path,
    source_dir: Path,
    target_dir: Path,
    source: LinkEndpoint,
    target: LinkEndpoint,
    result: LinkResult,
) -> None:
    """Links every file below `source_dir` to the parallel path below `target_dir`."""
    target_dir.mkdir(parents=True, exist_ok=True)

    files = list_files_recursively(source_dir)
    if not files:
        console.print("Source directory is empty. Nothing to link.", style="yellow")
        return

    for file_path in files:
        rel = PurePosixPath(file_path.relative_to(source_dir).as_posix())
        try:
            _link_file(
                config,
                links_dir,
                file_path,
                target_dir / rel,
                LinkEndpoint(source.module, (PurePosixPath(source.path) / rel).as_posix()),
                LinkEndpoint(target.module, (PurePosixPath(target.path) / rel).as_posix()),
                result,
            )
        except (MonoError, OSError) as e:
            logger.error(f"Failed to link {file_path}: {e}")
            console.print(f"[bold red]ERROR:[/bold red] {rel}: {e}")
            result.errors += 1

    if result.errors == len(files):
        raise LinkFailed(f"None of the {len(files)} files under {source_dir} could be linked")


def _resolve_endpoints(
    config: MonorepoConfig,
    source: str | os.PathLike[str],
    target: str | os.PathLike[str],
) -> tuple[LinkEndpoint, LinkEndpoint]:
    """Maps the source and target paths onto endpoints in two different modules."""
    source_info = path_in_module(config, source)
    if source_info is None:
        raise PathNotInModule(f"Source path {source} is not in any module of the mono repo")
    target_info = path_in_module(config, target)
    if target_info is None:
        raise PathNotInModule(f"Target path {target} is not in any module of the mono repo")

    source_module, source_rel = source_info
    target_module, target_rel = target_info
    if source_module.name == target_module.name:
        raise SameModule(
            f"Source and target are both in module '{source_module.name}'. "
            "Links must cross modules."
        )
    return (
        LinkEndpoint(source_module.name, source_rel),
        LinkEndpoint(target_module.name, target_rel),
    )


def link(source: str | os.PathLike[str], target: str | os.PathLike[str]) -> LinkResult:
    """Deduplicates a file or directory from one module into another.

    Args:
        source (str | os.PathLike[str]): Existing file or directory in one module.
        target (str | os.PathLike[str]): Destination path in a different module.

    Returns:
        LinkResult: What was created, extended, or already in place.

    Raises:
        SourceNotFound: If the source does not exist.
        PathNotInModule: If either path lies outside every module.
        SameModule: If both paths resolve into the same module.
        LockHeld: If another process holds the monorepo lock.
        LinkFailed: If a directory link could not link any of its files.
    """
    config, root = load_config()

    source_path = resolve_path(source)
    target_path = resolve_path(target)

    if not source_path.exists():
        raise SourceNotFound(f"Source path {source} does not exist")

    _resolve_endpoints(config, source_path, target_path)

    links_dir = root / LINKS_DIRNAME
    result = LinkResult()

    with hold_lock(root):
        # Re-read under the lock; the copy loaded above may be stale.
        config, _ = load_config(root)
        source_endpoint, target_endpoint = _resolve_endpoints(
            config, source_path, target_path
        )
        if source_path.is_dir():
            _link_directory(
                config, links_dir, source_path, target_path,
                source_endpoint, target_endpoint, result,
            )
        else:
            _link_file(
                config, links_dir, source_path, target_path,
                source_endpoint, target_endpoint, result,
            )
        save_config(config, root)

    summary_style = "yellow" if result.errors else "green"
    console.print(
        f"\nLinked {source} → {target}: {result.created} new, "
        f"{result.extended} extended, {result.already_linked} already linked, "
        f"{result.errors} errors.",
        style=summary_style,
    )
    return result
