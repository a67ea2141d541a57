"""Error taxonomy shared by the pipeline core and the HTTP layer.

Each error carries the HTTP status it maps to; the FastAPI exception handler
in ``app.main`` only has to copy ``status_code`` and ``detail`` across.
"""


class PipelineError(Exception):
    status_code = 500

    def __init__(self, detail: str, status_code: int | None = None):
        super().__init__(detail)
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code


class InputValidationError(PipelineError):
    """Missing or unknown criteria, missing job key, malformed payload."""
    status_code = 400


class AuthError(PipelineError):
    """Bad webhook signature or missing/invalid bearer token."""
    status_code = 401


class InsufficientCreditError(PipelineError):
    status_code = 402


class NotFoundError(PipelineError):
    """The subject (image) does not exist."""
    status_code = 404


class JobNotFoundError(NotFoundError):
    """A webhook referenced a job key with no record (expired or unknown)."""
    status_code = 400


class ProviderError(PipelineError):
    """An inline or async inference provider failed."""
    status_code = 502


class InfrastructureError(PipelineError):
    """The key-value store or object storage is unavailable."""
    status_code = 500
