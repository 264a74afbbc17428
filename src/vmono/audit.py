"""Detection and repair of drift between the config and the filesystem.

`check` walks every module and link record, recreates missing master
copies and endpoints, relinks endpoints whose hardlink was broken, and drops
link state that can no longer be recovered.
"""

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from rich.console import Console

from .constants import APP_NAME, LINKS_DIRNAME
from .errors import NotInitialized
from .links import create_hardlink, same_file
from .lock import hold_lock
from .paths import find_root
from .store import LinkEndpoint, LinkRecord, Module, MonorepoConfig, load_config, save_config

console = Console()
logger = logging.getLogger(APP_NAME)


@dataclass
class AuditReport:
    """Totals of one audit pass.

    Attributes:
        checked (int): Modules plus link endpoints examined.
        errors (int): Problems found that were not repaired.
        fixed (int): Repairs applied.
        messages (list[str]): One line per error or fix, in order.
    """

    checked: int = 0
    errors: int = 0
    fixed: int = 0
    messages: list[str] = field(default_factory=list)

    def error(self, message: str) -> None:
        self.errors += 1
        self.messages.append(message)
        logger.warning(f"AUDIT ERROR: {message}")
        console.print(f"[bold red]✘[/bold red] {message}")

    def fix(self, message: str) -> None:
        self.fixed += 1
        self.messages.append(message)
        logger.info(f"AUDIT FIX: {message}")
        console.print(f"[bold green]✔[/bold green] {message}")


def _repair_endpoint(
    master: Path, module: Module, endpoint: LinkEndpoint, report: AuditReport
) -> bool:
    """Makes one endpoint a hardlink of `master` again.

    Returns:
        bool: Whether the endpoint is valid after the repair attempt.
    """
    label = f"{endpoint.module}/{endpoint.path}"
    if module.absolute_path is None or not module.absolute_path.exists():
        report.error(f"{label}: module directory is missing")
        return False

    path = module.absolute_path / endpoint.path

    if not master.exists():
        # Nothing to link against; the file is only as good as its content.
        return path.is_file()

    try:
        if path.exists():
            if same_file(path, master):
                return True
            os.unlink(path)
            create_hardlink(master, path)
            report.fix(f"{label}: relinked broken hardlink to master copy")
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            create_hardlink(master, path)
            report.fix(f"{label}: recreated from master copy")
    except OSError as e:
        report.error(f"{label}: could not relink: {e}")
        return False
    return True


def _check_record(
    config: MonorepoConfig, links_dir: Path, record: LinkRecord, report: AuditReport
) -> LinkRecord | None:
    """Audits one link record.

    Returns:
        LinkRecord | None: The repaired record, or None if nothing of it
        could be kept.
    """
    master = links_dir / record.master_copy
    source_module = config.get_module(record.source.module)
    source_path: Path | None = None

    if source_module is None:
        report.error(
            f"Link {record.master_copy}: source module '{record.source.module}' "
            "no longer exists"
        )
    else:
        report.checked += 1
        if source_module.absolute_path is not None:
            source_path = source_module.absolute_path / record.source.path

    if not master.exists():
        if source_path is not None and source_path.is_file():
            try:
                shutil.copy2(source_path, master)
                report.fix(f"Link {record.master_copy}: regenerated master copy from source")
            except OSError as e:
                report.error(f"Link {record.master_copy}: could not regenerate master copy: {e}")
        elif source_module is not None:
            report.error(
                f"Link {record.master_copy}: master copy and source are both missing"
            )

    source_ok = source_module is not None and _repair_endpoint(
        master, source_module, record.source, report
    )

    targets: list[LinkEndpoint] = []
    any_target_ok = False
    for target in record.targets:
        target_module = config.get_module(target.module)
        if target_module is None:
            report.error(
                f"Link {record.master_copy}: target module '{target.module}' "
                "no longer exists; dropping target"
            )
            continue
        report.checked += 1
        targets.append(target)
        if _repair_endpoint(master, target_module, target, report):
            any_target_ok = True

    if not (source_ok or any_target_ok):
        logger.warning(f"Dropping unrecoverable link record {record.master_copy}")
        console.print(
            f"Dropping link {record.master_copy}: no valid source or target remains",
            style="yellow",
        )
        return None

    return LinkRecord(source=record.source, targets=targets, master_copy=record.master_copy)


def check(start: Path | None = None) -> AuditReport:
    """Audits the monorepo and repairs what it can.

    Args:
        start (Path | None): Where to begin the root search. Defaults to cwd.

    Returns:
        AuditReport: Items checked, errors found, and issues fixed.

    Raises:
        NotInitialized: If no monorepo encloses `start`.
        LockHeld: If another process holds the monorepo lock.
    """
    root = find_root(start)
    if root is None:
        raise NotInitialized(start)
    report = AuditReport()

    with hold_lock(root):
        config, _ = load_config(root)
        links_dir = root / LINKS_DIRNAME
        if not links_dir.is_dir():
            links_dir.mkdir(parents=True, exist_ok=True)
            report.fix(f"Created missing links directory {links_dir}")

        for module in config.modules:
            report.checked += 1
            if module.absolute_path is None or not module.absolute_path.exists():
                report.error(
                    f"Module '{module.name}' path does not exist: "
                    f"{module.absolute_path or module.path}"
                )

        repaired = [
            kept
            for record in config.links
            if (kept := _check_record(config, links_dir, record, report)) is not None
        ]

        if repaired != config.links:
            config.links = repaired
            save_config(config, root)
            logger.info("Audit updated link records")

    style = "yellow" if report.errors else "green"
    console.print(
        f"\nChecked {report.checked} items: {report.errors} errors found, "
        f"{report.fixed} issues fixed.",
        style=style,
    )
    return report
