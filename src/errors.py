"""Exception taxonomy for the analysis engine."""

from __future__ import annotations


class AnalysisError(Exception):
    """Base class for analysis failures."""


class AnalysisInputError(AnalysisError, ValueError):
    """Malformed input from the caller (missing userId, bad dateKey, ...)."""


class PersistenceError(AnalysisError, RuntimeError):
    """A pack store or promotion write failed."""
