"""Exceptions raised by the site indexing pipeline.

Every expected failure derives from `IndexPipelineError` so the CLI can turn
it into a single `ERROR:` line without a stack trace.
"""


class IndexPipelineError(Exception):
    """Base exception for pipeline errors."""

    pass


class SiteNotFoundError(IndexPipelineError):
    """Raised when the remote reports that the site does not exist."""

    def __init__(self, site: str):
        super().__init__(f"site {site} does not exist")
        self.site = site


class NoPagesFoundError(IndexPipelineError):
    """Raised when a site structure contains no page."""

    def __init__(self, site: str):
        super().__init__(f"no page found in site {site}")
        self.site = site


class SchemaValidationError(IndexPipelineError):
    """Raised when the page index content type is missing or mistyped."""

    pass


class SessionError(IndexPipelineError):
    """Raised when the session broker cannot authenticate or start."""

    pass


class SessionTimeoutError(SessionError):
    """Raised when the session is not established within the poll budget."""

    pass


class RemoteCallError(IndexPipelineError):
    """Raised when a remote call fails.

    Carries enough context (operation, batch, page, status) to diagnose the
    failure from the message alone.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        status_code: int | str | None = None,
        page_id: str | None = None,
        batch: int | None = None,
    ):
        parts = [message]
        if page_id is not None:
            parts.append(f"page: {page_id}")
        if batch is not None:
            parts.append(f"batch: {batch}")
        if status_code is not None:
            parts.append(f"status: {status_code}")
        super().__init__(" ".join(parts))
        self.operation = operation
        self.status_code = status_code
        self.page_id = page_id
        self.batch = batch


class JobFailedError(IndexPipelineError):
    """Raised when a remote bulk operation ends in failure."""

    def __init__(self, job_id: str | None, detail: str | None = None):
        super().__init__(detail or f"job {job_id} failed")
        self.job_id = job_id
        self.detail = detail


class PollTimeoutError(IndexPipelineError):
    """Raised when a polled condition is not met within its attempt budget."""

    def __init__(self, attempts: int):
        super().__init__(f"condition not met after {attempts} attempts")
        self.attempts = attempts
