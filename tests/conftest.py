"""Shared fixtures: an isolated settings layer and a monorepo on tmp_path."""

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from vmono import lock, registry
from vmono.config import Config
from vmono.constants import LINKS_DIRNAME
from vmono.store import MonorepoConfig, write_config

MODULE_NAMES = ("alpha", "beta", "gamma")


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, mocker: MagicMock) -> Any:
    """Keeps the user's global settings file out of every test."""
    Config._global_cache = None
    mocker.patch("vmono.config.CONFIG_FILE", tmp_path / "no-global-config.toml")
    yield
    Config._global_cache = None


@pytest.fixture
def mono_root(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A monorepo root with three plain module directories, not yet registered.

    The root is created without `init`, so no Git process is involved.
    """
    root = tmp_path / "mono"
    root.mkdir()
    write_config(root, MonorepoConfig(name="mono"))
    (root / LINKS_DIRNAME).mkdir()
    for name in MODULE_NAMES:
        (root / name).mkdir()
    monkeypatch.chdir(root)
    return root


@pytest.fixture
def registered(mono_root: Path, mocker: MagicMock) -> Path:
    """`mono_root` with every module directory registered."""
    mocker.patch("vmono.registry.console")
    for name in MODULE_NAMES:
        registry.add_module(mono_root / name)
    return mono_root


@pytest.fixture
def interleaved_lock(mocker: MagicMock) -> Callable[[str, Callable[[], object]], None]:
    """Runs a competing command just before an operation takes the lock.

    Returns a function taking the dotted `hold_lock` name to patch and the
    competing command. The competing command runs to completion, taking and
    releasing the real lock itself, the first time the patched operation asks
    for the lock.
    """

    def install(target: str, competing: Callable[[], object]) -> None:
        pending = [competing]

        @contextmanager
        def racing_hold_lock(root: Path) -> Iterator[lock.LockHandle]:
            if pending:
                pending.pop()()
            with lock.hold_lock(root) as handle:
                yield handle

        mocker.patch(target, racing_hold_lock)

    return install
