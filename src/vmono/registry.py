import logging
import os
from pathlib import Path

from rich.console import Console
from rich.table import Table

from .constants import APP_NAME
from .errors import DuplicateModule, ModuleNotFound, PathNotFound
from .lock import hold_lock
from .paths import relative_path, resolve_path
from .store import Module, MonorepoConfig, load_config, save_config

console = Console()
logger = logging.getLogger(APP_NAME)


def _ensure_unique(config: MonorepoConfig, name: str) -> None:
    if config.get_module(name) is not None:
        raise DuplicateModule(f"Module with name '{name}' already exists in the mono repo")


def _find_registered(config: MonorepoConfig, name: str) -> Module:
    module = config.get_module(name)
    if module is None:
        raise ModuleNotFound(f"Module '{name}' not found in mono repo")
    return module


def add_module(
    path: str | os.PathLike[str],
    name: str | None = None,
    description: str | None = None,
) -> Module:
    """Registers an existing directory as a module of the monorepo.

    Args:
        path (str | os.PathLike[str]): The module directory.
        name (str | None): Module name. Defaults to the directory name.
        description (str | None): Optional description.

    Returns:
        Module: The newly registered module.

    Raises:
        PathNotFound: If `path` does not exist.
        DuplicateModule: If a module with the same name is registered.
        LockHeld: If another process holds the monorepo lock.
    """
    config, root = load_config()

    full_path = resolve_path(path)
    if not full_path.exists():
        raise PathNotFound(f"Module path does not exist: {full_path}")

    name = name or full_path.name
    _ensure_unique(config, name)

    with hold_lock(root):
        # Re-read under the lock; the copy loaded above may be stale.
        config, _ = load_config(root)
        _ensure_unique(config, name)
        module = Module(
            name=name,
            path=relative_path(root, full_path),
            description=description or None,
            absolute_path=full_path,
        )
        config.modules.append(module)
        save_config(config, root)

    logger.info(f"Module '{name}' added at {module.path}")
    console.print(f"✔ Module '[cyan]{name}[/cyan]' added to mono repo", style="green")
    return module


def remove_module(name: str) -> Module:
    """Unregisters a module.

    Link records that still reference the module are left in place; the next
    `mono check` drops the endpoints whose module is gone.

    Args:
        name (str): The module name.

    Returns:
        Module: The removed module.

    Raises:
        ModuleNotFound: If no module has that name.
        LockHeld: If another process holds the monorepo lock.
    """
    config, root = load_config()
    _find_registered(config, name)

    with hold_lock(root):
        config, _ = load_config(root)
        module = _find_registered(config, name)
        config.modules.remove(module)
        save_config(config, root)

    logger.info(f"Module '{name}' removed")
    console.print(f"✔ Module '[cyan]{name}[/cyan]' removed from mono repo", style="green")

    dangling = [
        link
        for link in config.links
        if link.source.module == name or any(t.module == name for t in link.targets)
    ]
    if dangling:
        logger.warning(f"{len(dangling)} link record(s) still reference module '{name}'")
        console.print(
            f"⚠ {len(dangling)} link record(s) still reference '{name}'. "
            "Run 'mono check' to prune them.",
            style="yellow",
        )
    return module


def list_modules() -> list[Module]:
    """Prints every registered module with its resolved path.

    Returns:
        list[Module]: The registered modules, in configuration order.
    """
    config, root = load_config()

    if not config.modules:
        console.print("[yellow]No modules in mono repo.[/yellow]")
        return []

    console.print(f"\n[bold blue]Mono Repo:[/bold blue] {config.name}")
    console.print(f"[bold blue]Root Directory:[/bold blue] {root}")
    if config.description:
        console.print(f"[bold blue]Description:[/bold blue] {config.description}")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Module", style="cyan")
    table.add_column("Path")
    table.add_column("Relative Path", style="dim")
    table.add_column("Description")

    home = str(Path.home())
    for index, module in enumerate(config.modules, start=1):
        abs_path = module.absolute_path or resolve_path(root / module.path)
        display_path = str(abs_path).replace(home, "~", 1)
        if not abs_path.exists():
            display_path = f"[red]{display_path} (missing)[/red]"
        table.add_row(
            str(index), module.name, display_path, module.path, module.description or ""
        )

    console.print(table)
    return config.modules
