"""Exception taxonomy for monorepo operations.

Structural errors (the monorepo is missing, its document is unreadable, the
lock is held) abort a command. Errors scoped to one module or one file are
caught by the fan-out and repair loops and only tallied.
"""


class MonoError(Exception):
    """Base class for every failure the CLI reports as an operation error."""


class NotInitialized(MonoError):
    def __init__(self, start: object = None):
        where = f" (searched upward from {start})" if start else ""
        super().__init__(
            f"Mono repo not initialized{where}. Run 'mono init' first."
        )


class AlreadyInitialized(MonoError):
    pass


class CorruptConfig(MonoError):
    pass


class PathNotFound(MonoError):
    pass


class DuplicateModule(MonoError):
    pass


class ModuleNotFound(MonoError):
    pass


class PathNotInModule(MonoError):
    pass


class SameModule(MonoError):
    pass


class SourceNotFound(MonoError):
    pass


class LockHeld(MonoError):
    """Raised when the lockfile already records an active holder."""


class LinkConflict(MonoError):
    """Raised when an endpoint already belongs to a different link record."""


class LinkFailed(MonoError):
    """Raised when no file of a directory link could be linked."""
