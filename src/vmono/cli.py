import argparse
import logging
import sys
from collections.abc import Callable
from logging.handlers import RotatingFileHandler
from typing import TypeVar

from rich.console import Console
from rich.prompt import Prompt

from . import audit, consistency, links, lock, orchestrator, registry, store
from .config import Config
from .constants import APP_NAME, LOG_FILE
from .errors import MonoError, NotInitialized
from .paths import find_root

logger = logging.getLogger(APP_NAME)
console = Console()
err_console = Console(stderr=True)

T = TypeVar("T")


def setup_logging(verbose: bool = False) -> None:
    """Configures the logging subsystem.

    Logs always go to a size-rotated file in the state directory. With
    `verbose`, DEBUG output is also written to stderr.

    Args:
        verbose (bool): Whether to echo logs to stderr.
    """
    if logger.handlers:
        return

    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    if verbose:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)

    try:
        LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=Config.load(find_root()).limits.max_log_size,
            backupCount=5,
        )
    except OSError as e:
        err_console.print(f"[yellow]Logging to {LOG_FILE} disabled: {e}[/yellow]")
        return
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)


def _validated(action: Callable[[], T]) -> T:
    """Runs `action`, preceded by the branch check unless it is disabled."""
    if Config.load(find_root()).validation.branch_check:
        return consistency.with_validation(action)
    return action()


def _run(action: Callable[[], object]) -> None:
    """Runs a command handler, turning operation-level failures into exit codes."""
    try:
        action()
    except MonoError as e:
        logger.error(f"{type(e).__name__}: {e}")
        err_console.print(f"[bold red]ERROR:[/bold red] {e}")
        sys.exit(1)
    except OSError as e:
        logger.error(f"Filesystem error: {e}")
        err_console.print(f"[bold red]ERROR:[/bold red] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        err_console.print("\n[yellow]Interrupted.[/yellow]")
        sys.exit(130)


class GroupedHelpFormatter(argparse.HelpFormatter):
    """Help formatter that renders subcommands in labelled groups.

    Attributes:
        groups (dict[str, list[str]]): Group header to subcommand names.
    """

    groups: dict[str, list[str]] = {}

    def _format_action(self, action: argparse.Action) -> str:
        if isinstance(action, argparse._SubParsersAction):
            parts = []
            subactions = list(self._iter_indented_subactions(action))

            for group_name, commands in self.groups.items():
                group_actions = [a for a in subactions if a.dest in commands]
                if not group_actions:
                    continue

                parts.append(f"\n  {group_name}:\n")
                self._indent()
                for subaction in group_actions:
                    parts.append(self._format_action(subaction))
                self._dedent()

            return self._join_parts(parts)

        return super()._format_action(action)


class MonoHelpFormatter(GroupedHelpFormatter):
    groups = {
        "Setup": ["init"],
        "Modules": ["add", "remove", "list"],
        "Links": ["link", "check"],
        "Maintenance": ["unlock"],
    }


class MgitHelpFormatter(GroupedHelpFormatter):
    groups = {
        "Working Tree": ["status", "add", "commit"],
        "Remote": ["push", "pull"],
        "Branches": ["checkout", "switch"],
    }


def _add_verbose_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Echo debug logs to stderr"
    )


def build_mono_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mono",
        description="Manage a virtual monorepo of independent Git repositories.",
        formatter_class=MonoHelpFormatter,
    )
    _add_verbose_flag(parser)
    subparsers = parser.add_subparsers(dest="command")

    init_parser = subparsers.add_parser("init", help="Initialize a new monorepo")
    init_parser.add_argument("--name", help="Monorepo name (default: directory name)")
    init_parser.add_argument("--path", default=".", help="Directory to initialize")
    init_parser.add_argument("--description", help="Monorepo description")

    add_parser = subparsers.add_parser("add", help="Register a module")
    add_parser.add_argument("--path", required=True, help="Module directory")
    add_parser.add_argument("--name", help="Module name (default: directory name)")
    add_parser.add_argument("--description", help="Module description")

    remove_parser = subparsers.add_parser("remove", help="Unregister a module")
    remove_parser.add_argument("--name", required=True, help="Module name")

    subparsers.add_parser("list", help="List registered modules")

    link_parser = subparsers.add_parser(
        "link", help="Deduplicate a file or directory across modules"
    )
    link_parser.add_argument("--source", required=True, help="Existing file or directory")
    link_parser.add_argument("--target", required=True, help="Destination in another module")

    subparsers.add_parser("check", help="Audit and repair links")
    subparsers.add_parser("unlock", help="Force-release a stale monorepo lock")
    return parser


def build_mgit_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mgit",
        description="Run Git across the meta repository and every module.",
        formatter_class=MgitHelpFormatter,
    )
    _add_verbose_flag(parser)
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("status", help="Show status of every repository")
    subparsers.add_parser("add", help="Stage all changes everywhere")

    commit_parser = subparsers.add_parser("commit", help="Commit pending changes everywhere")
    commit_parser.add_argument("-m", "--message", help="Commit message")

    subparsers.add_parser("push", help="Push every module (meta is never pushed)")
    subparsers.add_parser("pull", help="Pull every module (meta is never pulled)")

    for name in ("checkout", "switch"):
        branch_parser = subparsers.add_parser(name, help="Switch every repository to a branch")
        branch_parser.add_argument("branch", help="Branch name")
        flags = ["-b", "-c", "--create"] if name == "switch" else ["-b"]
        branch_parser.add_argument(
            *flags, dest="create", action="store_true", help="Create the branch"
        )
    return parser


def unlock() -> None:
    """Force-releases the monorepo lock and reports who held it."""
    root = find_root()
    if root is None:
        raise NotInitialized()

    previous = lock.force_release(root)
    if previous.locked:
        console.print(
            f"✔ Lock released (was held by pid {previous.pid} since {previous.timestamp}).",
            style="green",
        )
    else:
        console.print("Lock was not held.", style="dim")


def _ask_commit_message() -> str:
    message = ""
    while not message.strip():
        message = Prompt.ask("Enter commit message")
        if not message.strip():
            console.print("Commit message cannot be empty", style="red")
    return message


def switch(branch: str, create: bool) -> None:
    result = orchestrator.switch_branch(branch, create=create)
    consistency.validate_branch_consistency(result.config)


def mono_main(argv: list[str] | None = None) -> None:
    """Entry point of the `mono` command."""
    parser = build_mono_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    if args.command == "init":
        _run(lambda: store.init_monorepo(args.path, args.name, args.description))
    elif args.command == "add":
        _run(
            lambda: _validated(
                lambda: registry.add_module(args.path, args.name, args.description)
            )
        )
    elif args.command == "remove":
        _run(lambda: _validated(lambda: registry.remove_module(args.name)))
    elif args.command == "list":
        _run(lambda: _validated(registry.list_modules))
    elif args.command == "link":
        _run(lambda: _validated(lambda: links.link(args.source, args.target)))
    elif args.command == "check":
        _run(lambda: _validated(audit.check))
    elif args.command == "unlock":
        _run(unlock)
    else:
        parser.print_help()


def mgit_main(argv: list[str] | None = None) -> None:
    """Entry point of the `mgit` command."""
    parser = build_mgit_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    if args.command == "status":
        _run(lambda: _validated(orchestrator.status))
    elif args.command == "add":
        _run(lambda: _validated(orchestrator.add))
    elif args.command == "commit":
        _run(
            lambda: _validated(
                lambda: orchestrator.commit(args.message or _ask_commit_message())
            )
        )
    elif args.command == "push":
        _run(lambda: _validated(orchestrator.push))
    elif args.command == "pull":
        _run(lambda: _validated(orchestrator.pull))
    elif args.command in ("checkout", "switch"):
        _run(lambda: switch(args.branch, args.create))
    else:
        parser.print_help()


if __name__ == "__main__":
    mono_main()
