"""Fan-out of Git operations across the meta repository and every module.

Each operation visits the meta repository first, then every module in
configuration order. A failure in one repository is logged and tallied and
never stops the remaining repositories; the outcome counts are the result.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from rich.console import Console
from rich.panel import Panel

from .config import Config
from .constants import APP_NAME
from .git_wrapper import GitRepo, is_git_repo
from .store import Module, MonorepoConfig, load_config

console = Console()
logger = logging.getLogger(APP_NAME)

META_NAME = "meta repository"

SUCCESS = "success"
SKIPPED = "skipped"
NO_CHANGES = "no_changes"
ERROR = "error"

# An action returns the outcome kind and a short message for one repository.
RepoAction = Callable[[GitRepo, str, Module | None], tuple[str, str]]


@dataclass
class RepoOutcome:
    """What happened in one repository during a fan-out.

    Attributes:
        name (str): Module name, or META_NAME.
        kind (str): One of SUCCESS, SKIPPED, NO_CHANGES, ERROR.
        is_meta (bool): Whether this is the meta repository.
        message (str): Reason or error text.
    """

    name: str
    kind: str
    is_meta: bool = False
    message: str = ""


@dataclass
class FanOutResult:
    """Ordered per-repository outcomes of one fan-out operation.

    Attributes:
        operation (str): The Git operation name.
        outcomes (list[RepoOutcome]): One entry per visited repository.
        config (MonorepoConfig | None): The config the operation ran against,
            including any branch state it refreshed.
    """

    operation: str
    outcomes: list[RepoOutcome] = field(default_factory=list)
    config: MonorepoConfig | None = None

    def record(self, name: str, kind: str, is_meta: bool = False, message: str = "") -> None:
        self.outcomes.append(RepoOutcome(name, kind, is_meta, message))

    def _count(self, kind: str) -> int:
        return sum(1 for o in self.outcomes if o.kind == kind)

    @property
    def success(self) -> int:
        return self._count(SUCCESS)

    @property
    def skipped(self) -> int:
        return self._count(SKIPPED)

    @property
    def no_changes(self) -> int:
        return self._count(NO_CHANGES)

    @property
    def errors(self) -> int:
        return self._count(ERROR)

    def modules(self) -> "FanOutResult":
        """Returns the same result restricted to module repositories."""
        return FanOutResult(
            self.operation, [o for o in self.outcomes if not o.is_meta], self.config
        )

    def summary(self) -> str:
        return (
            f"Completed {self.operation} with {self.success} successful, "
            f"{self.no_changes} with no changes, {self.skipped} skipped, "
            f"and {self.errors} errors."
        )


def read_current_branch(path: Path) -> str | None:
    try:
        return GitRepo(path).current_branch() or None
    except (RuntimeError, ValueError) as e:
        logger.debug(f"Could not read current branch of {path}: {e}")
        return None


def load_git_state(start: Path | None = None) -> tuple[MonorepoConfig, Path]:
    """Loads the config and attaches the current branch of every repository.

    Args:
        start (Path | None): Where to begin the root search. Defaults to cwd.

    Returns:
        tuple[MonorepoConfig, Path]: The config, with `meta_branch` and each
        Git module's `current_branch` filled in, and the monorepo root.
    """
    config, root = load_config(start)
    settings = Config.load(root)

    config.meta_branch = read_current_branch(root) or settings.core.default_branch
    for module in config.modules:
        if module.absolute_path is not None and is_git_repo(module.absolute_path):
            module.current_branch = read_current_branch(module.absolute_path)

    return config, root


def _run_one(
    result: FanOutResult,
    name: str,
    path: Path,
    action: RepoAction,
    module: Module | None = None,
) -> None:
    """Runs `action` in one repository and records its outcome."""
    try:
        kind, message = action(GitRepo(path), name, module)
    except Exception as e:
        logger.error(f"{result.operation} failed in {name} ({path}): {e}")
        console.print(f"[bold red]Failed to {result.operation} {name}:[/bold red] {e}")
        result.record(name, ERROR, module is None, str(e))
        return
    result.record(name, kind, module is None, message)


def _visit(
    operation: str,
    config: MonorepoConfig,
    root: Path,
    action: RepoAction,
    meta_skip_reason: str | None = None,
) -> FanOutResult:
    """Applies `action` to the meta repository and then every module.

    Args:
        operation (str): Operation name used in messages and the result.
        config (MonorepoConfig): The loaded config.
        root (Path): The monorepo root (the meta repository).
        action (RepoAction): Callable run per Git repository.
        meta_skip_reason (str | None): If set, the meta repository is skipped
            with this reason instead of running `action`.

    Returns:
        FanOutResult: The collected outcomes.
    """
    result = FanOutResult(operation, config=config)

    if meta_skip_reason:
        console.print(f"Skipping {META_NAME} - {meta_skip_reason}", style="yellow")
        result.record(META_NAME, SKIPPED, True, meta_skip_reason)
    elif not is_git_repo(root):
        console.print(f"Skipping {META_NAME} - not a Git repository", style="yellow")
        result.record(META_NAME, SKIPPED, True, "not a Git repository")
    else:
        _run_one(result, META_NAME, root, action)

    for module in config.modules:
        path = module.absolute_path
        if path is None or not is_git_repo(path):
            console.print(f"Skipping {module.name} - not a Git repository", style="yellow")
            result.record(module.name, SKIPPED, message="not a Git repository")
            continue
        _run_one(result, module.name, path, action, module)

    style = "yellow" if result.errors else "green"
    console.print(f"\n{result.summary()}", style=style)
    return result


def _print_output(output: str) -> None:
    if output:
        console.print(output, markup=False, highlight=False)


def status(start: Path | None = None) -> FanOutResult:
    """Shows the branch and `git status` of every repository."""
    config, root = load_git_state(start)
    console.print(f"=== Mono Repo Status: {config.name} ===", style="bold blue")
    console.print(f"Root: {root}", style="blue")

    def action(repo: GitRepo, name: str, module: Module | None) -> tuple[str, str]:
        branch = module.current_branch if module else config.meta_branch
        console.print(
            Panel.fit(
                f"[bold cyan]{name}[/bold cyan]\n"
                f"Path: {repo.path}\nBranch: {branch or 'unknown'}"
            )
        )
        _print_output(repo.status_text() or "No output from git status")
        return SUCCESS, ""

    return _visit("status", config, root, action)


def add(start: Path | None = None) -> FanOutResult:
    """Stages all changes in every repository (`git add .`)."""
    config, root = load_git_state(start)
    console.print("Adding all changes in each repository...", style="blue")

    def action(repo: GitRepo, name: str, module: Module | None) -> tuple[str, str]:
        console.print(f"\nRunning 'git add .' in {name}...", style="blue")
        _print_output(repo.add_all())
        console.print(f"✔ Added changes in {name}", style="green")
        return SUCCESS, ""

    return _visit("add", config, root, action)


def commit(message: str, start: Path | None = None) -> FanOutResult:
    """Commits pending changes in every repository with one message.

    Repositories without pending changes are counted as "no changes" instead
    of being committed.

    Args:
        message (str): The commit message.
        start (Path | None): Where to begin the root search.
    """
    config, root = load_git_state(start)
    console.print(f'Committing changes with message: "{message}"', style="blue")

    def action(repo: GitRepo, name: str, module: Module | None) -> tuple[str, str]:
        if not repo.has_changes():
            console.print(f"No changes to commit in {name}", style="yellow")
            return NO_CHANGES, "nothing to commit"
        console.print(f"\nRunning git commit in {name}...", style="blue")
        _print_output(repo.commit(message))
        console.print(f"✔ Committed changes in {name}", style="green")
        return SUCCESS, ""

    return _visit("commit", config, root, action)


def push(start: Path | None = None) -> FanOutResult:
    """Pushes the current branch of every module to the configured remote.

    The meta repository is never pushed. A branch without an upstream is
    pushed with `--set-upstream`.
    """
    config, root = load_git_state(start)
    remote = Config.load(root).core.remote_name
    console.print("Pushing changes to remote repositories...", style="blue")

    def action(repo: GitRepo, name: str, module: Module | None) -> tuple[str, str]:
        branch = (module.current_branch if module else None) or repo.current_branch()
        if not branch:
            console.print(
                f"Skipping {name} - could not determine current branch", style="yellow"
            )
            return SKIPPED, "no current branch"
        if remote not in repo.remotes():
            console.print(f"Skipping {name} - remote {remote} not found", style="yellow")
            return SKIPPED, f"no remote {remote}"

        has_upstream = repo.upstream(branch) is not None
        console.print(f"\nRunning git push in {name}...", style="blue")
        _print_output(repo.push(remote, branch, set_upstream=not has_upstream))
        console.print(f"✔ Pushed {name} to {remote}/{branch}", style="green")
        return SUCCESS, ""

    return _visit(
        "push", config, root, action, meta_skip_reason="not meant to be pushed to a remote"
    )


def pull(start: Path | None = None) -> FanOutResult:
    """Pulls every module from the configured remote; the meta repository is skipped."""
    config, root = load_git_state(start)
    remote = Config.load(root).core.remote_name
    console.print("Pulling changes from remote repositories...", style="blue")

    def action(repo: GitRepo, name: str, module: Module | None) -> tuple[str, str]:
        if remote not in repo.remotes():
            console.print(f"Skipping {name} - remote {remote} not found", style="yellow")
            return SKIPPED, f"no remote {remote}"

        console.print(f"\nRunning git pull in {name}...", style="blue")
        _print_output(repo.pull(remote))
        console.print(f"✔ Pulled changes for {name}", style="green")
        return SUCCESS, ""

    return _visit(
        "pull", config, root, action, meta_skip_reason="not meant to be pulled from a remote"
    )


def switch_branch(
    branch: str, create: bool = False, start: Path | None = None
) -> FanOutResult:
    """Checks out (or creates) `branch` in the meta repository and every module.

    After each checkout attempt the repository's resulting branch is cached on
    the returned config, so a following consistency check needs no extra Git
    calls.

    Args:
        branch (str): The branch name.
        create (bool): Whether to create the branch (`checkout -b`).
        start (Path | None): Where to begin the root search.
    """
    config, root = load_git_state(start)
    verb = "Creating and switching" if create else "Switching"
    console.print(f"{verb} to branch '{branch}' across all repositories...", style="blue")

    def action(repo: GitRepo, name: str, module: Module | None) -> tuple[str, str]:
        console.print(f"\nRunning git checkout in {name}...", style="blue")
        try:
            _print_output(repo.checkout(branch, create=create))
        finally:
            current = read_current_branch(repo.path)
            if module is not None:
                module.current_branch = current
            else:
                config.meta_branch = current
        console.print(f"✔ Switched {name} to '{branch}'", style="green")
        return SUCCESS, ""

    return _visit("switch", config, root, action)
