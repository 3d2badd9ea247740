"""Error taxonomy for the turn pipeline.

Only ``InvalidModeTransition`` is meant to surface as a bug; every other
error is converted into a fallback by the phase that raised it.
"""

from __future__ import annotations


class EnclaveError(Exception):
    """Base class for all pipeline errors."""


class RetrievalError(EnclaveError):
    """A retrieval branch failed; the scope contributes no evidence."""

    def __init__(self, branch: str, message: str = "") -> None:
        super().__init__(f"{branch}: {message}" if message else branch)
        self.branch = branch


class RetrievalTimeout(RetrievalError):
    """A retrieval branch exceeded its timeout or the turn deadline."""


class GenerationFailure(EnclaveError):
    """The generation service was unreachable or returned unusable output."""


class PersistenceFailure(EnclaveError):
    """A store read or write failed."""


class InvalidModeTransition(EnclaveError):
    """A handler was asked to serve a mode it does not own."""
