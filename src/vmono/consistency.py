import logging
from collections.abc import Callable
from typing import TypeVar

from rich.console import Console

from .constants import APP_NAME
from .git_wrapper import is_git_repo
from .orchestrator import load_git_state, read_current_branch
from .store import MonorepoConfig

console = Console(stderr=True)
logger = logging.getLogger(APP_NAME)

T = TypeVar("T")


def validate_branch_consistency(config: MonorepoConfig | None = None) -> bool:
    """Checks that every Git module is on the meta repository's branch.

    Uses the branch state cached on `config` when given (for example the
    config returned by a branch switch); otherwise loads it from disk.

    This check fails open: if the state cannot be read at all, it reports
    the monorepo as consistent rather than blocking the caller.

    Args:
        config (MonorepoConfig | None): A config loaded with Git state.

    Returns:
        bool: False if at least one module is on a different branch.
    """
    try:
        if config is None:
            config, _ = load_git_state()

        meta_branch = config.meta_branch
        mismatched = []
        for module in config.modules:
            path = module.absolute_path
            if path is None or not is_git_repo(path):
                continue
            branch = module.current_branch or read_current_branch(path)
            if branch and branch != meta_branch:
                mismatched.append(f"{module.name} (on branch {branch})")
    except Exception as e:
        logger.debug(f"Branch consistency check could not run: {e}")
        return True

    if mismatched:
        logger.warning(
            f"Branch mismatch against meta branch '{meta_branch}': {', '.join(mismatched)}"
        )
        console.print(
            "Warning: Not all repositories are on the same branch.", style="yellow"
        )
        console.print(
            f"Meta repository is on branch '{meta_branch}', but these modules "
            "are on different branches:",
            style="yellow",
        )
        for entry in mismatched:
            console.print(f"  - {entry}", style="yellow")
        return False

    return True


def with_validation(action: Callable[[], T]) -> T:
    """Runs `action` after an advisory branch consistency check.

    The check only warns; `action` always runs.
    """
    if not validate_branch_consistency():
        console.print(
            "⚠ Branch inconsistency detected in the monorepo. Proceeding with caution...",
            style="yellow",
        )
    return action()
