"""Exception types for the reliability pipeline.

Validation problems, discovery misses and failed repairs are *values*
(ValidationIssue, a fallback TemplateMatch, FixResult.success=False) and
never raised. Only the two classes below are exceptions.
"""

from __future__ import annotations


class ExternalServiceError(Exception):
    """A collaborator (store, catalogue, engine, language model) failed.

    Raised by collaborator adapters and converted into a degraded
    SourceResult by ``pipeline.result.guarded`` at the call site.
    """

    def __init__(self, service: str, message: str) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service
        self.message = message


class FallbackIntegrityError(RuntimeError):
    """The static fallback workflow failed its own feasibility check.

    This is a packaging defect, not a runtime condition; it is the only
    failure the orchestrator lets escape.
    """
