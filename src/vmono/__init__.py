"""vmono: a virtual monorepo of independently versioned Git repositories.

This package provides the configuration store, cooperative lock, module
registry, hardlink-based cross-module file deduplication, Git fan-out, and the
audit pass that repairs drift between the configuration and the filesystem.
"""

from . import (
    audit,
    cli,
    config,
    consistency,
    constants,
    errors,
    git_wrapper,
    links,
    lock,
    orchestrator,
    paths,
    registry,
    store,
)

__all__ = [
    "audit",
    "cli",
    "config",
    "consistency",
    "constants",
    "errors",
    "git_wrapper",
    "links",
    "lock",
    "orchestrator",
    "paths",
    "registry",
    "store",
]
