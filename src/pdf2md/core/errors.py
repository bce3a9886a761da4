"""Error taxonomy for the conversion pipeline."""


class PipelineError(Exception):
    """Failure of an externally-wrapped unit of work."""

    retryable = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class RateLimitError(PipelineError):
    """The AI service asked us to slow down. Always retryable."""

    retryable = True

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class APIError(PipelineError):
    """Error response from the AI service."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retryable: bool | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        if retryable is None:
            retryable = status_code is not None and (
                status_code == 429 or 500 <= status_code <= 599
            )
        self.retryable = retryable


class PipelineTimeoutError(PipelineError):
    """A unit of work did not finish in time. Retryable."""

    retryable = True


class ConversionCancelled(Exception):
    """Raised between units of work once the caller cancelled the conversion."""


# =============================================================================
# Pass Errors
# =============================================================================


class LayoutAnalysisError(Exception):
    def __init__(self, message: str, page_number: int | None = None):
        self.page_number = page_number
        super().__init__(message)


class StructureAnalysisError(Exception):
    pass


class ContentExtractionError(Exception):
    def __init__(self, message: str, page_number: int | None = None):
        self.page_number = page_number
        super().__init__(message)


class OrganizationError(Exception):
    """Assembly failed in one of the organization sub-steps."""

    def __init__(self, step: str, message: str):
        self.step = step
        self.message = message
        super().__init__(f"{step}: {message}")
