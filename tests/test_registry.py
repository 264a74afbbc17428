"""Tests for module registration."""

import json
from collections.abc import Callable
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from vmono import registry, store
from vmono.constants import CONFIG_FILENAME, LOCK_FILENAME
from vmono.errors import DuplicateModule, LockHeld, ModuleNotFound, PathNotFound
from vmono.store import LinkEndpoint, LinkRecord


@pytest.fixture(autouse=True)
def quiet_console(mocker: MagicMock) -> MagicMock:
    return mocker.patch("vmono.registry.console")


def test_add_module_defaults_name_and_stores_relative_path(mono_root: Path) -> None:
    module = registry.add_module("alpha", description="first")

    assert module.name == "alpha"
    saved = json.loads((mono_root / CONFIG_FILENAME).read_text())
    assert saved["modules"] == [{"name": "alpha", "path": "alpha", "description": "first"}]


def test_add_module_outside_root(mono_root: Path, tmp_path: Path) -> None:
    outside = tmp_path / "elsewhere"
    outside.mkdir()

    registry.add_module(outside, name="ext")

    config, _ = store.load_config()
    assert config.modules[0].path == "../elsewhere"
    assert config.modules[0].absolute_path == outside


def test_add_module_rejects_missing_path(mono_root: Path) -> None:
    with pytest.raises(PathNotFound):
        registry.add_module("does-not-exist")


def test_add_module_rejects_duplicate_name(mono_root: Path) -> None:
    registry.add_module("alpha")
    with pytest.raises(DuplicateModule):
        registry.add_module("beta", name="alpha")


def test_add_module_while_locked_leaves_config_untouched(mono_root: Path) -> None:
    """Verifies that a held lock blocks registration without touching the document."""
    (mono_root / LOCK_FILENAME).write_text(json.dumps({"locked": True, "pid": 1}))
    before = (mono_root / CONFIG_FILENAME).read_text()

    with pytest.raises(LockHeld):
        registry.add_module("alpha")

    assert (mono_root / CONFIG_FILENAME).read_text() == before


def test_add_module_releases_lock(mono_root: Path) -> None:
    registry.add_module("alpha")
    assert json.loads((mono_root / LOCK_FILENAME).read_text())["locked"] is False


def test_remove_module(registered: Path) -> None:
    registry.remove_module("beta")

    config, _ = store.load_config()
    assert [m.name for m in config.modules] == ["alpha", "gamma"]


def test_remove_unknown_module(registered: Path) -> None:
    with pytest.raises(ModuleNotFound):
        registry.remove_module("delta")


def test_remove_module_keeps_link_records(registered: Path) -> None:
    """Verifies that removal leaves dangling link records for the audit to prune."""
    config, _ = store.load_config()
    config.links.append(
        LinkRecord(LinkEndpoint("alpha", "f"), [LinkEndpoint("beta", "f")], "alpha__f")
    )
    store.save_config(config)

    registry.remove_module("beta")

    config, _ = store.load_config()
    assert len(config.links) == 1
    printed = " ".join(str(c) for c in registry.console.print.call_args_list)
    assert "mono check" in printed


def test_list_modules_returns_configured_order(registered: Path) -> None:
    modules = registry.list_modules()
    assert [m.name for m in modules] == ["alpha", "beta", "gamma"]
    assert modules[0].absolute_path == registered / "alpha"


def test_list_modules_empty(mono_root: Path, quiet_console: MagicMock) -> None:
    assert registry.list_modules() == []
    quiet_console.print.assert_called_once_with("[yellow]No modules in mono repo.[/yellow]")


def test_add_module_keeps_concurrent_registration(
    mono_root: Path, interleaved_lock: Callable[[str, Callable[[], object]], None]
) -> None:
    """Verifies that a registration finished while waiting for the lock survives.

    Args:
        mono_root (Path): The monorepo root.
        interleaved_lock (Callable): Runs a competing command before the lock.
    """
    interleaved_lock("vmono.registry.hold_lock", lambda: registry.add_module("beta"))

    registry.add_module("alpha")

    config, _ = store.load_config()
    assert {m.name for m in config.modules} == {"alpha", "beta"}


def test_add_module_detects_duplicate_registered_meanwhile(
    mono_root: Path, interleaved_lock: Callable[[str, Callable[[], object]], None]
) -> None:
    interleaved_lock(
        "vmono.registry.hold_lock", lambda: registry.add_module("beta", name="alpha")
    )

    with pytest.raises(DuplicateModule):
        registry.add_module("alpha")

    config, _ = store.load_config()
    assert [m.path for m in config.modules] == ["beta"]


def test_remove_module_keeps_concurrent_registration(
    registered: Path, interleaved_lock: Callable[[str, Callable[[], object]], None]
) -> None:
    (registered / "delta").mkdir()
    interleaved_lock("vmono.registry.hold_lock", lambda: registry.add_module("delta"))

    registry.remove_module("beta")

    config, _ = store.load_config()
    assert [m.name for m in config.modules] == ["alpha", "gamma", "delta"]


def test_remove_module_removed_meanwhile(
    registered: Path, interleaved_lock: Callable[[str, Callable[[], object]], None]
) -> None:
    interleaved_lock("vmono.registry.hold_lock", lambda: registry.remove_module("beta"))

    with pytest.raises(ModuleNotFound):
        registry.remove_module("beta")
