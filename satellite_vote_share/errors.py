"""Exception hierarchy shared by every pipeline stage."""


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    pass


class SchemaDriftError(PipelineError):
    """An expected column or vocabulary is absent from an upstream file.

    Never swallowed: a silent drop here corrupts every downstream join.
    """

    pass


class UnitProcessingError(PipelineError):
    """A single geometric unit (one archive) could not be processed."""

    def __init__(self, unit: str, message: str):
        super().__init__(f"{unit}: {message}")
        self.unit = unit


class DataQualityError(PipelineError):
    """A numeric invariant (share bounds, positive totals) does not hold."""

    pass


class AcquisitionError(PipelineError):
    """Base exception for remote data acquisition."""

    pass


class SourceNotFoundError(AcquisitionError):
    """Remote resource does not exist (HTTP 404). Terminal, never retried."""

    pass


class TransientSourceError(AcquisitionError):
    """Timeout, connection reset, HTTP 429 or 5xx. Retried with backoff."""

    pass


class MalformedSourceError(AcquisitionError):
    """Remote responded, but the payload is unusable (bad JSON, bad zip)."""

    pass
