"""Error taxonomy shared by collectors, the merge engine and the orchestrator."""

from typing import Optional


class PipelineError(RuntimeError):
    """Base class for every error the sync pipeline raises on purpose."""

    kind = "pipeline"

    def __init__(self, message: str, *, source_id: Optional[str] = None, external_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.source_id = source_id
        self.external_id = external_id


class TransientSourceError(PipelineError):
    """Network failure, timeout, 5xx or rate-limit response. Safe to retry."""

    kind = "transient"


class PermanentSourceError(PipelineError):
    """4xx, not-found or a rejected request. Retrying will not help."""

    kind = "permanent"


class ValidationError(PipelineError):
    """A raw record lacks the identity fields needed for matching."""

    kind = "validation"


class ConflictError(PipelineError):
    """Slug unique constraint violated by a concurrent insert."""

    kind = "conflict"


class FatalConfigError(PipelineError):
    """Credentials or configuration for a source are missing or invalid."""

    kind = "config"


class SourceUnavailableError(PipelineError):
    """A source failed repeatedly and its pass cannot continue."""

    kind = "unavailable"


class StoreUnavailableError(PipelineError):
    """The directory database cannot be reached."""

    kind = "store"
