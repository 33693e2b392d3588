class IngestError(Exception):
    """Base class for failures raised by the ingestion pipeline."""


class TransientNetworkError(IngestError):
    """Timeout, connection failure or 5xx. Retried with backoff."""


class RateLimited(IngestError):
    def __init__(self, wait_seconds: float):
        super().__init__(f"rate limited, retry in {wait_seconds:.0f}s")
        self.wait_seconds = wait_seconds


class AuthError(IngestError):
    """Credentials rejected by a backend. Fatal for the run, never retried."""


class RepositoryNotFound(AuthError):
    pass


class FetchError(IngestError):
    """A commit page could not be fetched after all retries."""


class InvalidRepositoryUrl(IngestError):
    pass


class GitError(IngestError):
    pass


class ProjectNotFound(IngestError):
    pass


class ContentTooLarge(IngestError):
    pass


class BinaryContent(IngestError):
    pass


class UnreadableFile(IngestError):
    pass


def describe_error(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__
