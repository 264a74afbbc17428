"""Persistence of the monorepo configuration document.

The document lives at the monorepo root and is the only artifact the meta
repository tracks. Module paths are stored relative to the root and resolved
to absolute paths on load; derived fields never reach the disk.
"""

import contextlib
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from rich.console import Console

from .constants import (
    APP_NAME,
    CONFIG_FILENAME,
    GITIGNORE_FILENAME,
    LINKS_DIRNAME,
    LOCK_FILENAME,
    META_INIT_MESSAGE,
)
from .errors import AlreadyInitialized, CorruptConfig, NotInitialized
from .git_wrapper import GitRepo, is_git_repo
from .paths import find_root, resolve_path

console = Console()
logger = logging.getLogger(APP_NAME)


@dataclass
class Module:
    """One registered working tree.

    Attributes:
        name (str): Unique module name.
        path (str): Path of the module root, relative to the monorepo root.
        description (str | None): Optional free text.
        absolute_path (Path | None): Derived on load; never persisted.
        current_branch (str | None): Derived from Git; never persisted.
    """

    name: str
    path: str
    description: str | None = None
    absolute_path: Path | None = field(default=None, compare=False)
    current_branch: str | None = field(default=None, compare=False)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "path": self.path}
        if self.description is not None:
            data["description"] = self.description
        return data


@dataclass(frozen=True)
class LinkEndpoint:
    """A file location inside a module (`path` is module-relative, POSIX)."""

    module: str
    path: str

    def to_dict(self) -> dict[str, str]:
        return {"module": self.module, "path": self.path}


@dataclass
class LinkRecord:
    """A deduplicated file: one source, its targets, and the backing master copy."""

    source: LinkEndpoint
    targets: list[LinkEndpoint] = field(default_factory=list)
    master_copy: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source.to_dict(),
            "targets": [t.to_dict() for t in self.targets],
            "masterCopy": self.master_copy,
        }


@dataclass
class MonorepoConfig:
    """The configuration document of one monorepo root.

    Attributes:
        name (str): Monorepo name.
        description (str | None): Optional free text.
        modules (list[Module]): Registered modules, in insertion order.
        links (list[LinkRecord]): Deduplicated files.
        meta_branch (str | None): Derived branch of the meta repository.
        extra (dict[str, Any]): Top-level keys this version does not know
            about, written back untouched.
    """

    name: str
    description: str | None = None
    modules: list[Module] = field(default_factory=list)
    links: list[LinkRecord] = field(default_factory=list)
    meta_branch: str | None = field(default=None, compare=False)
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    def get_module(self, name: str) -> Module | None:
        return next((m for m in self.modules if m.name == name), None)

    def to_dict(self) -> dict[str, Any]:
        """Serializes the persisted form, without any derived field."""
        data: dict[str, Any] = {"name": self.name}
        if self.description is not None:
            data["description"] = self.description
        data["modules"] = [m.to_dict() for m in self.modules]
        data["links"] = [link.to_dict() for link in self.links]
        for key, value in self.extra.items():
            data.setdefault(key, value)
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "MonorepoConfig":
        """Builds a config from its parsed JSON form.

        Raises:
            CorruptConfig: If required fields are missing or have the wrong shape.
        """
        if not isinstance(data, dict):
            raise CorruptConfig("Config document must be a JSON object")

        try:
            modules = [
                Module(
                    name=str(m["name"]),
                    path=str(m["path"]),
                    description=m.get("description"),
                )
                for m in data.get("modules") or []
            ]
            # Documents written before linking existed have no "links" key.
            links = [
                LinkRecord(
                    source=_endpoint(link["source"]),
                    targets=[_endpoint(t) for t in link.get("targets") or []],
                    master_copy=str(link["masterCopy"]),
                )
                for link in data.get("links") or []
            ]
            name = str(data["name"])
        except (KeyError, TypeError, AttributeError) as e:
            raise CorruptConfig(f"Malformed config document: {e!r}") from e

        known = {"name", "description", "modules", "links"}
        return cls(
            name=name,
            description=data.get("description"),
            modules=modules,
            links=links,
            extra={k: v for k, v in data.items() if k not in known},
        )


def _endpoint(data: Any) -> LinkEndpoint:
    return LinkEndpoint(module=str(data["module"]), path=str(data["path"]))


def write_json_atomic(path: Path, data: Any) -> None:
    """Writes JSON to `path` so readers never observe a partial file.

    Args:
        path (Path): Destination file.
        data (Any): JSON-serializable payload.
    """
    tmp_file = path.with_name(f"{path.name}.tmp")
    try:
        with open(tmp_file, "w") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())

        os.replace(tmp_file, path)
    except OSError:
        with contextlib.suppress(OSError):
            tmp_file.unlink()
        raise


def write_config(root: Path, config: MonorepoConfig) -> None:
    """Persists `config` into the document at `root`."""
    write_json_atomic(root / CONFIG_FILENAME, config.to_dict())


def load_config(start: Path | None = None) -> tuple[MonorepoConfig, Path]:
    """Loads the configuration of the monorepo enclosing `start`.

    Args:
        start (Path | None): Where to begin the root search. Defaults to cwd.

    Returns:
        tuple[MonorepoConfig, Path]: The config, with every module's
        `absolute_path` attached, and the monorepo root.

    Raises:
        NotInitialized: If no monorepo root encloses `start`.
        CorruptConfig: If the document cannot be parsed.
    """
    root = find_root(start)
    if root is None:
        raise NotInitialized(start)

    config_path = root / CONFIG_FILENAME
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except ValueError as e:
        # Covers both malformed JSON and bytes that are not valid UTF-8.
        raise CorruptConfig(f"Failed to parse {config_path}: {e}") from e

    config = MonorepoConfig.from_dict(data)
    for module in config.modules:
        module.absolute_path = resolve_path(root / module.path)

    return config, root


def save_config(config: MonorepoConfig, start: Path | None = None) -> Path:
    """Writes `config` back to the monorepo enclosing `start`.

    Returns:
        Path: The monorepo root the document was written to.

    Raises:
        NotInitialized: If no monorepo root encloses `start`.
    """
    root = find_root(start)
    if root is None:
        raise NotInitialized(start)
    write_config(root, config)
    logger.debug(f"Saved config for '{config.name}' at {root}")
    return root


def init_meta_repository(root: Path) -> bool:
    """Creates the meta repository that tracks only the config document.

    Args:
        root (Path): The monorepo root.

    Returns:
        bool: True if the meta repository exists afterwards.
    """
    if is_git_repo(root):
        return True

    try:
        repo = GitRepo.init(root)
        (root / GITIGNORE_FILENAME).write_text(
            f"# Ignore everything\n*\n# Except the monorepo config\n!{CONFIG_FILENAME}\n"
        )
        repo.add(CONFIG_FILENAME)
        repo.commit(META_INIT_MESSAGE)
    except (RuntimeError, ValueError, OSError) as e:
        logger.error(f"Failed to initialize meta repository in {root}: {e}")
        console.print(
            f"[bold red]ERROR:[/bold red] Failed to initialize meta Git repository: {e}"
        )
        return False

    logger.info(f"Initialized meta repository in {root}")
    return True


def _update_gitignore(root: Path) -> None:
    """Keeps the links directory ignored and the lockfile explicitly included."""
    gitignore = root / GITIGNORE_FILENAME
    content = gitignore.read_text() if gitignore.exists() else ""

    if LINKS_DIRNAME not in content:
        content += f"\n# Monorepo links directory\n{LINKS_DIRNAME}\n"
    if LOCK_FILENAME not in content:
        content += f"\n# Monorepo lockfile\n!{LOCK_FILENAME}\n"

    gitignore.write_text(content)


def init_monorepo(
    target_dir: str | os.PathLike[str] = ".",
    name: str | None = None,
    description: str | None = None,
) -> Path:
    """Initializes a new monorepo root.

    Creates the config document, the links directory, the lockfile, and the
    meta repository, then updates the root ignore-list.

    Args:
        target_dir (str | os.PathLike[str]): Directory to initialize. Created if absent.
        name (str | None): Monorepo name. Defaults to the directory name.
        description (str | None): Optional description.

    Returns:
        Path: The new monorepo root.

    Raises:
        AlreadyInitialized: If the directory or an ancestor is already a monorepo.
    """
    root = resolve_path(target_dir)
    root.mkdir(parents=True, exist_ok=True)

    existing = find_root(root)
    if existing is not None:
        if existing == root:
            raise AlreadyInitialized(
                f"Mono repo already initialized in this directory: {root}"
            )
        raise AlreadyInitialized(
            f"This directory is already part of a mono repo at: {existing}"
        )

    config = MonorepoConfig(name=name or root.name, description=description or None)

    (root / LINKS_DIRNAME).mkdir(exist_ok=True)
    write_json_atomic(root / LOCK_FILENAME, {"locked": False})
    write_config(root, config)

    meta_ok = init_meta_repository(root)
    _update_gitignore(root)

    console.print(
        f"[bold green]✔ Mono repo '{config.name}' initialized at[/bold green] "
        f"[cyan]{root}[/cyan]"
    )
    console.print(f"Configuration stored at: {root / CONFIG_FILENAME}", style="dim")
    if meta_ok:
        console.print("✔ Meta repository tracks the monorepo configuration.", style="green")
    else:
        console.print(
            "⚠ Meta repository was not initialized. You can run 'git init' "
            "in the root manually later.",
            style="yellow",
        )

    return root
