"""Exception hierarchy for lenssync."""

from __future__ import annotations


class LensSyncError(RuntimeError):
    pass


class NeverThrown(LensSyncError):
    """Raised by the explicit never() marker.

    Reaching one of these means an internal invariant was violated; the
    keyword payload passed to never() is kept on ``env`` for diagnostics.
    """

    def __init__(self, message: str, *, env: dict[str, object] | None = None):
        super().__init__(message)
        self.env = dict(env or {})


class LaunchError(LensSyncError):
    """The external binary could not be started."""


class CommandPayloadError(LensSyncError):
    pass


class ConfigError(LensSyncError):
    pass
