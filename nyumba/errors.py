"""Exception taxonomy for the room analysis pipeline.

``ValidationError``, ``MediaProcessingError`` and ``AnalysisError`` are the
expected reasons a run ends in ``failed``.  Catalog misses and compositing
problems are degraded in place and never fail a run.
"""


class PipelineError(Exception):
    """Base class for errors that terminate a pipeline run."""


class ValidationError(PipelineError):
    """Bad input: oversize file, wrong MIME family, malformed preferences."""


class MediaProcessingError(PipelineError):
    """Frame or thumbnail extraction failed."""


class AnalysisError(PipelineError):
    """The vision model call failed or returned non-conforming output."""


class ResolutionWarning(UserWarning):
    """Catalog lookup produced no matches; handled by fallback synthesis."""


# ---------------------------------------------------------------------------
# Store errors
# ---------------------------------------------------------------------------

class StoreError(Exception):
    """Base class for persistence-level integrity errors."""


class AssetNotFoundError(StoreError):
    pass


class InvalidStatusTransition(StoreError):
    """Raised when a terminal asset status would be mutated."""


class DuplicateAnalysisError(StoreError):
    """A RoomAnalysis already exists for the media asset."""
