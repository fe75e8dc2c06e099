from __future__ import annotations


class TutorError(RuntimeError):
    """Base error carrying the HTTP status the API layer should answer with."""

    status_code = 500

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(TutorError):
    status_code = 400


class NotFoundError(TutorError):
    status_code = 404


class PayloadTooLargeError(TutorError):
    status_code = 413


class UpstreamError(TutorError):
    """Non-success answer from the reasoning service.

    `upstream_status` keeps the status code the service returned (None when the
    failure never produced an HTTP response).
    """

    status_code = 502

    def __init__(self, message: str, *, upstream_status: int | None = None, status_code: int | None = None) -> None:
        super().__init__(message, status_code=status_code or upstream_status)
        self.upstream_status = upstream_status


class UpstreamAuthError(UpstreamError):
    status_code = 500

    def __init__(self, message: str, *, upstream_status: int | None = None) -> None:
        super().__init__(message, upstream_status=upstream_status, status_code=500)


class UpstreamTransientError(UpstreamError):
    pass


class UpstreamMalformedError(UpstreamError):
    def __init__(self, message: str, *, raw: str | None = None) -> None:
        super().__init__(message, status_code=502)
        self.raw = raw


class UpstreamTimeoutError(UpstreamError):
    def __init__(self, message: str = "Upstream request timed out.") -> None:
        super().__init__(message, status_code=504)


def classify_upstream_status(status: int, body: str | None) -> UpstreamError:
    detail = (body or "").strip()[:1000]
    message = f"Reasoning service HTTP {status}: {detail}" if detail else f"Reasoning service HTTP {status}"
    if status in (401, 403):
        return UpstreamAuthError(message, upstream_status=status)
    if status == 429 or status >= 500:
        return UpstreamTransientError(message, upstream_status=status)
    return UpstreamError(message, upstream_status=status)
