"""
Domain exceptions raised inside the clustering engine.

Every error carries a stable snake_case `code` (`dimension_mismatch`,
`clustering_error`, `missing_collaborator`) that callers can match on
instead of parsing messages.

Only precondition violations are modelled here. Failures coming from
external collaborators (embedding sources, sinks) are never wrapped, so
callers see the original exception.
"""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------------- #
# Custom exception classes
# --------------------------------------------------------------------------- #

class SwipeEngineError(Exception):
    """Base exception for all domain errors raised inside services."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(message)


class DimensionMismatchError(SwipeEngineError):
    def __init__(self, left: int, right: int) -> None:
        super().__init__(
            "dimension_mismatch",
            f"Vectors have {left} and {right} dimensions; they must match.",
        )


class ClusteringError(SwipeEngineError):
    def __init__(self, message: str) -> None:
        super().__init__("clustering_error", message)


class MissingCollaboratorError(SwipeEngineError):
    def __init__(self, collaborator: str, method: str) -> None:
        super().__init__(
            "missing_collaborator",
            f"'{collaborator}' does not provide a callable '{method}'.",
        )


# --------------------------------------------------------------------------- #
# Collaborator checks
# --------------------------------------------------------------------------- #

def require_method(obj: Any, method: str, collaborator: str) -> None:
    """Fail fast when an injected collaborator lacks a required method."""
    if not callable(getattr(obj, method, None)):
        logger.error("Collaborator '%s' is missing '%s'", collaborator, method)
        raise MissingCollaboratorError(collaborator, method)
