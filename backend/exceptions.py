"""
RothPilot - Engine Errors
=========================
Typed failures raised by the projection engine.

Every error carries a stable `code` so the API layer (or any other caller)
can branch on it without parsing messages, and converts to a plain
EngineFailure record for serialization.
"""

from typing import Any, Dict, Optional


class ProjectionError(Exception):
    """Base class for expected domain failures."""

    code = "ProjectionError"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_failure(self):
        from models import EngineFailure  # models imports this module

        return EngineFailure(code=self.code, message=self.message, details=self.details)


class InvalidHorizon(ProjectionError):
    """End year before start year, or a horizon beyond the supported bound."""
    code = "InvalidHorizon"


class InvalidProfile(ProjectionError):
    """Client profile is missing required data or holds out-of-range values."""
    code = "InvalidProfile"


class MismatchedHorizon(ProjectionError):
    """Two results being compared do not cover the same years."""
    code = "MismatchedHorizon"


class IneligibleAnalysis(ProjectionError):
    """The requested analysis does not apply to this client. Callers skip it."""
    code = "IneligibleAnalysis"


class StrategyConfigurationError(ProjectionError):
    """A strategy policy combines options that cannot be simulated."""
    code = "StrategyConfigurationError"
