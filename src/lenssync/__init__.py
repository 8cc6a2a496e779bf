"""lenssync package root."""

from lenssync.exceptions import LensSyncError, NeverThrown
from lenssync.invariants import never

__all__ = ["__version__", "LensSyncError", "NeverThrown", "never"]

__version__ = "0.1.0"
