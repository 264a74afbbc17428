import logging
import subprocess
from pathlib import Path

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)


def is_git_repo(path: Path) -> bool:
    """Checks for the version-control marker of a working tree.

    Args:
        path (Path): The directory to test.

    Returns:
        bool: True if `path` contains a `.git` entry (directory or gitfile).
    """
    return (path / ".git").exists()


class GitRepo:
    """A wrapper around the Git command-line interface for a specific repository.

    Every method shells out to `git` inside the repository directory. Failures
    surface as `RuntimeError` so callers fanning out across many repositories
    can catch them per repository.

    Attributes:
        path (Path): The file system path to the repository root.
    """

    def __init__(self, path: Path):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root directory.

        Raises:
            ValueError: If the specified path does not contain a .git entry.
        """
        self.path = path
        if not is_git_repo(self.path):
            raise ValueError(f"Not a git repository: {self.path}")

    @classmethod
    def init(cls, path: Path) -> "GitRepo":
        """Runs `git init` in `path` and wraps the new repository.

        Args:
            path (Path): The directory to initialize.

        Returns:
            GitRepo: The wrapper for the freshly initialized repository.

        Raises:
            RuntimeError: If `git init` fails.
        """
        try:
            subprocess.run(
                ["git", "init"],
                cwd=path,
                capture_output=True,
                text=True,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            raise RuntimeError(f"Git error: {e.stderr or e}") from e
        return cls(path)

    def _run(self, args: list[str], capture: bool = True) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            capture (bool, optional): Whether to capture and return stdout.
                Defaults to True.

        Returns:
            str: The stripped stdout of the command if capture is True,
            otherwise an empty string.

        Raises:
            RuntimeError: If the git command returns a non-zero exit code.
        """
        logger.debug(f"git {' '.join(args)} (in {self.path})")
        try:
            res = subprocess.run(
                ["git", *args],
                cwd=self.path,
                capture_output=capture,
                text=True,
                check=True,
            )
            return res.stdout.strip() if capture else ""
        except subprocess.CalledProcessError as e:
            raise RuntimeError(f"Git error: {(e.stderr or '').strip() or e}") from e

    def current_branch(self) -> str:
        """Retrieves the name of the currently checked-out branch.

        Returns:
            str: The branch name, or an empty string on a detached HEAD.
        """
        return self._run(["branch", "--show-current"])

    def status_porcelain(self) -> list[str]:
        """Returns the porcelain (machine-readable) status lines."""
        output = self._run(["status", "--porcelain"])
        return output.splitlines() if output else []

    def has_changes(self) -> bool:
        return bool(self.status_porcelain())

    def status_text(self) -> str:
        """Returns the human-readable `git status` output."""
        return self._run(["status"])

    def add_all(self) -> str:
        """Stages all changes (modified, deleted, and untracked files)."""
        return self._run(["add", "."])

    def add(self, *paths: str) -> str:
        return self._run(["add", "--", *paths])

    def commit(self, message: str) -> str:
        """Creates a new commit with the provided message.

        Args:
            message (str): The commit message.

        Returns:
            str: Git's summary of the new commit.
        """
        return self._run(["commit", "-m", message])

    def checkout(self, branch: str, create: bool = False) -> str:
        """Checks out (and optionally creates) a branch.

        Args:
            branch (str): The target branch name.
            create (bool, optional): Whether to create the branch (`-b`).
                Defaults to False.
        """
        cmd = ["checkout"]
        if create:
            cmd.append("-b")
        cmd.append(branch)
        return self._run(cmd)

    def remotes(self) -> list[str]:
        """Lists the names of the configured remotes."""
        output = self._run(["remote"])
        return output.splitlines() if output else []

    def upstream(self, branch: str) -> str | None:
        """Returns the short upstream name of `branch`, or None if it has none.

        Args:
            branch (str): The local branch to inspect.
        """
        output = self._run(
            ["for-each-ref", "--format=%(upstream:short)", f"refs/heads/{branch}"]
        )
        return output or None

    def push(self, remote: str, branch: str, set_upstream: bool = False) -> str:
        """Pushes `branch` to `remote`.

        Args:
            remote (str): The remote name.
            branch (str): The branch to push.
            set_upstream (bool, optional): Establish the upstream while pushing
                (`--set-upstream`). Defaults to False.
        """
        cmd = ["push"]
        if set_upstream:
            cmd.append("--set-upstream")
        cmd.extend([remote, branch])
        return self._run(cmd)

    def pull(self, remote: str) -> str:
        return self._run(["pull", remote])
