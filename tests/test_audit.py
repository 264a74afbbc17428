"""Tests for the link audit and repair pass."""

import os
import shutil
from collections.abc import Callable
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from vmono import audit, links, registry, store
from vmono.constants import LINKS_DIRNAME

MASTER = "alpha__util.py"


@pytest.fixture(autouse=True)
def quiet_consoles(mocker: MagicMock) -> None:
    mocker.patch("vmono.audit.console")
    mocker.patch("vmono.links.console")


@pytest.fixture
def linked(registered: Path) -> Path:
    """A monorepo where alpha/util.py is linked into beta and gamma."""
    source = registered / "alpha" / "util.py"
    source.write_text("shared\n")
    links.link(source, registered / "beta" / "util.py")
    links.link(source, registered / "gamma" / "util.py")
    return registered


def _same(*paths: Path) -> bool:
    return len({(os.stat(p).st_dev, os.stat(p).st_ino) for p in paths}) == 1


def test_clean_monorepo_has_nothing_to_fix(linked: Path) -> None:
    report = audit.check()

    assert report.errors == 0
    assert report.fixed == 0
    # Three modules plus one source and two targets.
    assert report.checked == 6


def test_deleted_target_is_recreated(linked: Path) -> None:
    target = linked / "beta" / "util.py"
    target.unlink()

    report = audit.check()

    assert report.fixed == 1
    assert report.errors == 0
    assert _same(target, linked / "alpha" / "util.py")


def test_deleted_master_is_regenerated(linked: Path) -> None:
    """Verifies that a lost master copy is rebuilt from the source.

    The rebuilt master is a new inode, so the source and both targets are
    relinked to it as well.
    """
    master = linked / LINKS_DIRNAME / MASTER
    master.unlink()

    report = audit.check()

    assert report.fixed == 4
    assert report.errors == 0
    assert _same(
        master,
        linked / "alpha" / "util.py",
        linked / "beta" / "util.py",
        linked / "gamma" / "util.py",
    )
    assert master.read_text() == "shared\n"


def test_broken_hardlink_is_relinked(linked: Path) -> None:
    target = linked / "gamma" / "util.py"
    target.unlink()
    target.write_text("diverged\n")

    report = audit.check()

    assert report.fixed == 1
    assert target.read_text() == "shared\n"
    assert _same(target, linked / LINKS_DIRNAME / MASTER)


def test_target_of_removed_module_is_dropped(linked: Path) -> None:
    config, _ = store.load_config()
    config.modules = [m for m in config.modules if m.name != "gamma"]
    store.save_config(config)

    report = audit.check()

    assert report.errors == 1
    config, _ = store.load_config()
    assert [t.module for t in config.links[0].targets] == ["beta"]


def test_unrecoverable_record_is_dropped(linked: Path) -> None:
    config, _ = store.load_config()
    config.modules = [m for m in config.modules if m.name == "alpha"]
    store.save_config(config)
    (linked / LINKS_DIRNAME / MASTER).unlink()
    shutil.rmtree(linked / "alpha")

    report = audit.check()

    assert report.errors > 0
    config, _ = store.load_config()
    assert config.links == []


def test_missing_links_directory_is_recreated(registered: Path) -> None:
    (registered / LINKS_DIRNAME).rmdir()

    report = audit.check()

    assert (registered / LINKS_DIRNAME).is_dir()
    assert report.fixed == 1


def test_missing_module_directory_is_an_error(registered: Path) -> None:
    (registered / "beta").rmdir()

    report = audit.check()

    assert report.errors == 1
    assert report.checked == 3


def test_second_pass_is_clean(linked: Path) -> None:
    (linked / "beta" / "util.py").unlink()
    (linked / LINKS_DIRNAME / MASTER).unlink()

    audit.check()
    report = audit.check()

    assert report.fixed == 0
    assert report.errors == 0


def test_deleted_source_is_recreated(linked: Path) -> None:
    source = linked / "alpha" / "util.py"
    source.unlink()

    report = audit.check()

    assert report.fixed == 1
    assert report.errors == 0
    assert _same(source, linked / LINKS_DIRNAME / MASTER)


def _drop_module(name: str) -> None:
    config, _ = store.load_config()
    config.modules = [m for m in config.modules if m.name != name]
    store.save_config(config)


def test_record_with_removed_source_module_keeps_targets(linked: Path) -> None:
    """Verifies that valid targets keep a record alive after its source module goes.

    Args:
        linked (Path): A monorepo with alpha/util.py linked into beta and gamma.
    """
    _drop_module("alpha")
    target = linked / "beta" / "util.py"
    target.unlink()

    report = audit.check()

    assert report.errors == 1
    assert report.fixed == 1
    assert _same(target, linked / LINKS_DIRNAME / MASTER)
    config, _ = store.load_config()
    assert len(config.links) == 1
    assert [t.module for t in config.links[0].targets] == ["beta", "gamma"]


def test_missing_master_of_removed_source_module_counts_once(linked: Path) -> None:
    _drop_module("alpha")
    (linked / LINKS_DIRNAME / MASTER).unlink()

    report = audit.check()

    assert report.errors == 1
    assert report.fixed == 0


def test_audit_keeps_concurrent_registration(
    linked: Path,
    mocker: MagicMock,
    interleaved_lock: Callable[[str, Callable[[], object]], None],
) -> None:
    """Verifies that the audit saves on top of changes made while it waited."""
    mocker.patch("vmono.registry.console")
    _drop_module("gamma")
    (linked / "delta").mkdir()
    interleaved_lock("vmono.audit.hold_lock", lambda: registry.add_module("delta"))

    audit.check()

    config, _ = store.load_config()
    assert [m.name for m in config.modules] == ["alpha", "beta", "delta"]
    assert [t.module for t in config.links[0].targets] == ["beta"]
